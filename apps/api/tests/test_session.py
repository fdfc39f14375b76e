from __future__ import annotations

import asyncio

import pytest

from fakes import FakeChannel, FakeDevices, FakePeerConnection
from peerlink.client import CallSession, ConnectionPhase, MediaAcquisitionError


async def settle(session: CallSession) -> None:
    """Let the pump and state-machine tasks drain whatever is queued."""

    for _ in range(50):
        await asyncio.sleep(0)


def make_session(*, devices: FakeDevices | None = None, grace: float = 0.0):
    channel = FakeChannel()
    created: list[FakePeerConnection] = []

    async def factory():
        pc = FakePeerConnection()
        created.append(pc)
        return pc

    session = CallSession(
        "r1",
        "Bob",
        channel=channel,
        devices=devices or FakeDevices(),
        peer_connection_factory=factory,
        client_id="B",
        end_call_grace_seconds=grace,
    )
    return session, channel, created


@pytest.mark.asyncio
async def test_media_failure_prevents_join():
    session, channel, created = make_session(devices=FakeDevices(fail=True))

    with pytest.raises(MediaAcquisitionError):
        await session.start()

    assert channel.sent == []
    assert created == []
    assert session.view.error == "Permission denied"
    assert session.machine is None


@pytest.mark.asyncio
async def test_start_joins_and_negotiates_as_initiator():
    session, channel, created = make_session()
    await session.start()

    assert channel.sent[0] == {"type": "join", "roomId": "r1", "userName": "Bob", "clientId": "B"}
    assert [s.track.kind for s in created[0].senders] == ["audio", "video"]

    channel.deliver({"type": "joined", "roomId": "r1", "clientId": "B", "participants": 2})
    channel.deliver({"type": "ready", "peerId": "A", "peerName": "Alice"})
    await settle(session)

    assert channel.sent_types() == ["join", "offer"]
    assert session.view.peer_name == "Alice"
    assert session.view.phase is ConnectionPhase.NEGOTIATING

    created[0].emit_state("connected")
    await settle(session)
    assert session.view.phase is ConnectionPhase.CONNECTED

    await session.leave()
    assert channel.sent_types()[-1] == "leave"
    assert channel.closed


@pytest.mark.asyncio
async def test_chat_and_side_messages_update_view():
    session, channel, _ = make_session()
    await session.start()

    assert await session.send_chat("too early") is False

    channel.deliver({"type": "peer-joined", "peerId": "A", "peerName": "Alice"})
    channel.deliver({"type": "chat-message", "message": "hello", "senderName": "Alice", "timestamp": 5, "from": "A"})
    channel.deliver({"type": "typing-indicator", "isTyping": True, "from": "A"})
    channel.deliver({"type": "screen-share-state", "isSharing": True, "from": "A"})
    await settle(session)

    assert [m.text for m in session.view.messages] == ["hello"]
    assert session.view.messages[0].timestamp == 5
    assert session.view.remote_typing
    assert session.view.remote_screen_sharing

    assert await session.send_chat("hi Alice") is True
    assert channel.sent[-1]["type"] == "chat-message"
    assert channel.sent[-1]["target"] == "A"
    assert session.view.messages[-1].is_local

    session.clear_chat()
    assert session.view.messages == []
    await session.leave()


@pytest.mark.asyncio
async def test_peer_left_replaces_peer_connection():
    session, channel, created = make_session()
    await session.start()
    channel.deliver({"type": "ready", "peerId": "A", "peerName": "Alice"})
    await settle(session)

    channel.deliver({"type": "peer-left", "peerId": "A"})
    await settle(session)

    assert created[0].closed
    assert len(created) == 2
    assert session.machine.peer_connection is created[1]
    assert session.view.peer_name == ""
    assert session.view.phase is ConnectionPhase.DISCONNECTED
    await session.leave()


@pytest.mark.asyncio
async def test_call_ended_by_creator_releases_everything():
    session, channel, created = make_session()
    await session.start()
    captured = list(session.media.tracks)
    channel.deliver({"type": "ready", "peerId": "A", "peerName": "Alice"})
    channel.deliver({"type": "call-ended-by-creator", "creatorName": "Alice"})
    await settle(session)

    assert created[0].closed
    assert channel.closed
    assert session.view.phase is ConnectionPhase.ENDED
    assert all(track.stopped for track in captured)
    assert session.media.tracks == []
    assert session._run_task.done()

    sent_before = len(channel.sent)
    await session.leave()
    assert len(channel.sent) == sent_before


@pytest.mark.asyncio
async def test_end_call_sends_before_closing_and_waits_grace(monkeypatch):
    session, channel, created = make_session(grace=0.5)
    await session.start()
    order = []

    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        if delay == 0.5:
            order.append(("sleep", channel.closed))
        return await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    await session.leave(end_call=True)

    assert channel.sent_types()[-1] == "end-call"
    assert order == [("sleep", False)]
    assert channel.closed
    assert created[0].closed
    assert session.view.phase is ConnectionPhase.ENDED


@pytest.mark.asyncio
async def test_end_call_during_offer_creation_waits_for_the_step_in_flight():
    session, channel, created = make_session()
    await session.start()
    gate = asyncio.Event()
    created[0].offer_gate = gate
    channel.deliver({"type": "ready", "peerId": "A", "peerName": "Alice"})
    await settle(session)

    leaving = asyncio.create_task(session.leave(end_call=True))
    await settle(session)
    assert channel.sent_types() == ["join"]
    assert not created[0].closed

    gate.set()
    await leaving

    assert channel.sent_types() == ["join", "offer", "end-call"]
    assert created[0].closed
    assert channel.closed
    assert session.view.phase is ConnectionPhase.ENDED
