"""In-memory stand-ins for the capabilities a call session drives."""
from __future__ import annotations

import asyncio
import itertools
from typing import Callable, Optional

from peerlink.client.capabilities import MediaAcquisitionError

_ids = itertools.count(1)


class FakeTrack:
    def __init__(self, kind: str, label: str = "") -> None:
        self.kind = kind
        self.id = f"{kind}-{label or next(_ids)}"
        self.enabled = True
        self.stopped = False
        self._ended: Optional[Callable[[], None]] = None

    def stop(self) -> None:
        self.stopped = True

    def on_ended(self, handler: Callable[[], None]) -> None:
        self._ended = handler

    def end(self) -> None:
        """Simulate the source going away (e.g. the browser's stop-sharing button)."""

        self.stopped = True
        if self._ended:
            self._ended()


class FakeSender:
    def __init__(self, track: Optional[FakeTrack]) -> None:
        self.track = track
        self.replaced: list[Optional[FakeTrack]] = []

    async def replace_track(self, track: Optional[FakeTrack]) -> None:
        self.replaced.append(track)
        self.track = track


class FakePeerConnection:
    def __init__(self) -> None:
        self.calls: list[str] = []
        self.offer_kwargs: list[dict] = []
        self.local_descriptions: list[dict] = []
        self.remote_descriptions: list[dict] = []
        self.applied_candidates: list[dict] = []
        self.early_candidates: list[dict] = []
        self.senders: list[FakeSender] = []
        self.closed = False
        self.fail_create_offer = False
        self.fail_set_remote = False
        self.fail_candidates: set[str] = set()
        self.candidates_during_offer: list[dict] = []
        self.offer_gate: Optional[asyncio.Event] = None
        self._offers = itertools.count(1)
        self._on_candidate: Optional[Callable] = None
        self._on_state: Optional[Callable] = None
        self._on_track: Optional[Callable] = None

    async def create_offer(self, *, receive_audio=True, receive_video=True, ice_restart=False) -> dict:
        self.calls.append("create_offer")
        self.offer_kwargs.append(
            {"receive_audio": receive_audio, "receive_video": receive_video, "ice_restart": ice_restart}
        )
        for candidate in self.candidates_during_offer:
            self.emit_candidate(candidate)
        await asyncio.sleep(0)
        if self.offer_gate is not None:
            await self.offer_gate.wait()
        if self.fail_create_offer:
            raise RuntimeError("offer failed")
        return {"type": "offer", "sdp": f"offer-{next(self._offers)}"}

    async def create_answer(self) -> dict:
        self.calls.append("create_answer")
        await asyncio.sleep(0)
        return {"type": "answer", "sdp": "answer-sdp"}

    async def set_local_description(self, description: dict) -> None:
        self.calls.append("set_local_description")
        self.local_descriptions.append(description)

    async def set_remote_description(self, description: dict) -> None:
        self.calls.append("set_remote_description")
        await asyncio.sleep(0)
        if self.fail_set_remote:
            raise RuntimeError("bad sdp")
        self.remote_descriptions.append(description)

    async def add_ice_candidate(self, candidate: dict) -> None:
        self.calls.append("add_ice_candidate")
        if not self.remote_descriptions:
            self.early_candidates.append(candidate)
        if candidate.get("candidate") in self.fail_candidates:
            raise RuntimeError("bad candidate")
        self.applied_candidates.append(candidate)

    def add_track(self, track: FakeTrack) -> FakeSender:
        sender = FakeSender(track)
        self.senders.append(sender)
        return sender

    def get_senders(self) -> list[FakeSender]:
        return list(self.senders)

    def on_ice_candidate(self, handler) -> None:
        self._on_candidate = handler

    def on_connection_state_change(self, handler) -> None:
        self._on_state = handler

    def on_track(self, handler) -> None:
        self._on_track = handler

    def emit_candidate(self, candidate: Optional[dict]) -> None:
        if self._on_candidate:
            self._on_candidate(candidate)

    def emit_state(self, state: str) -> None:
        if self._on_state:
            self._on_state(state)

    def emit_track(self, track: FakeTrack) -> None:
        if self._on_track:
            self._on_track(track)

    async def close(self) -> None:
        self.closed = True


class FakeChannel:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self.fail_sends = False
        self._incoming: asyncio.Queue[Optional[dict]] = asyncio.Queue()

    async def send(self, message: dict) -> None:
        if self.fail_sends:
            raise ConnectionError("socket gone")
        self.sent.append(message)

    async def messages(self):
        while True:
            payload = await self._incoming.get()
            if payload is None:
                return
            yield payload

    def deliver(self, payload: dict) -> None:
        self._incoming.put_nowait(payload)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)

    def sent_types(self) -> list[str]:
        return [message["type"] for message in self.sent]


class FakeDevices:
    def __init__(self, *, fail: bool = False, audio_only: bool = False) -> None:
        self.fail = fail
        self.audio_only = audio_only
        self.requests: list[dict] = []
        self.display_tracks: list[FakeTrack] | None = None

    async def get_user_media(self, *, audio=True, video=True, audio_device_id=None, video_device_id=None):
        self.requests.append(
            {"audio": audio, "video": video, "audio_device_id": audio_device_id, "video_device_id": video_device_id}
        )
        if self.fail:
            raise MediaAcquisitionError("Permission denied")
        tracks = []
        if audio:
            tracks.append(FakeTrack("audio", audio_device_id or ""))
        if video and not self.audio_only:
            tracks.append(FakeTrack("video", video_device_id or ""))
        return tracks

    async def get_display_media(self):
        if self.display_tracks is not None:
            return self.display_tracks
        return [FakeTrack("video", "screen")]
