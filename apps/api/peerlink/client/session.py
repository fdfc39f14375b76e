"""One client's membership in a two-party call."""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import suppress
from dataclasses import dataclass, field
from typing import Optional

from ..core.config import settings
from ..schemas import signaling as schemas
from .capabilities import (
    MediaAcquisitionError,
    MediaDevices,
    MediaTrack,
    PeerConnection,
    PeerConnectionFactory,
    SignalingChannel,
)
from .identity import generate_client_id
from .negotiation import (
    ConnectionPhase,
    ConnectionStateChanged,
    Invoke,
    LocalCandidate,
    NegotiationObserver,
    NegotiationStateMachine,
    RemoteTrackReceived,
    Severity,
    SignalReceived,
    StatusMessage,
)
from .renegotiation import LocalMedia, RenegotiationController

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatEntry:
    sender: str
    text: str
    timestamp: int
    is_local: bool


@dataclass
class CallView:
    """What a UI would render for this call."""

    status: Optional[StatusMessage] = None
    error: Optional[str] = None
    phase: ConnectionPhase = ConnectionPhase.IDLE
    peer_name: str = ""
    remote_tracks: list[MediaTrack] = field(default_factory=list)
    remote_screen_sharing: bool = False
    remote_typing: bool = False
    messages: list[ChatEntry] = field(default_factory=list)


class CallSession(NegotiationObserver):
    def __init__(
        self,
        room_id: str,
        user_name: str,
        *,
        channel: SignalingChannel,
        devices: MediaDevices,
        peer_connection_factory: PeerConnectionFactory,
        client_id: str | None = None,
        end_call_grace_seconds: float | None = None,
    ) -> None:
        self.room_id = room_id
        self.user_name = user_name
        self.client_id = client_id or generate_client_id()
        self.view = CallView()
        self.media = LocalMedia()
        self.machine: Optional[NegotiationStateMachine] = None
        self.controller: Optional[RenegotiationController] = None
        self._channel = channel
        self._devices = devices
        self._pc_factory = peer_connection_factory
        self._grace = settings.end_call_grace_seconds if end_call_grace_seconds is None else end_call_grace_seconds
        self._tasks: list[asyncio.Task[None]] = []
        self._run_task: Optional[asyncio.Task[None]] = None
        self._released = False

    # Setup

    async def start(self) -> None:
        """Capture media, build the peer connection and join the room.

        :class:`MediaAcquisitionError` propagates and nothing is started.
        """

        try:
            tracks = await self._devices.get_user_media(audio=True, video=True)
        except MediaAcquisitionError as exc:
            self.view.error = str(exc) or "Failed to access camera/microphone"
            self.view.status = StatusMessage("Media access denied")
            raise
        if not tracks:
            raise MediaAcquisitionError("No camera or microphone available")
        self.media.tracks = list(tracks)

        pc = await self._new_peer_connection()
        self.machine = NegotiationStateMachine(pc, self._channel, client_id=self.client_id, observer=self)
        self.controller = RenegotiationController(self.machine, self._devices, self.media)

        self._run_task = asyncio.create_task(self.machine.run())
        self._tasks = [self._run_task, asyncio.create_task(self._pump_signals())]
        await self.machine.start(self.room_id, self.user_name)

    async def _new_peer_connection(self) -> PeerConnection:
        pc = await self._pc_factory()
        for track in self.media.tracks:
            pc.add_track(track)
        pc.on_ice_candidate(lambda candidate: self._post(LocalCandidate(candidate)))
        pc.on_connection_state_change(lambda state: self._post(ConnectionStateChanged(state)))
        pc.on_track(lambda track: self._post(RemoteTrackReceived(track)))
        return pc

    def _post(self, event: object) -> None:
        if self.machine is not None:
            self.machine.post(event)

    async def _pump_signals(self) -> None:
        async for payload in self._channel.messages():
            self._post(SignalReceived(payload))

    # Observer hooks

    def on_status(self, status: StatusMessage) -> None:
        self.view.status = status
        if status.severity is Severity.ERROR:
            self.view.error = status.text

    def on_phase(self, phase: ConnectionPhase) -> None:
        self.view.phase = phase

    def on_peer(self, peer_id: str, peer_name: str) -> None:
        self.view.peer_name = peer_name

    def on_remote_track(self, track: MediaTrack) -> None:
        self.view.remote_tracks.append(track)

    async def on_peer_left(self, peer_id: str) -> None:
        self.view.peer_name = ""
        self.view.remote_tracks = []
        self.view.remote_screen_sharing = False
        self.view.remote_typing = False
        if self.machine is None:
            return
        old = self.machine.peer_connection
        if old is not None:
            await old.close()
        # The dead connection cannot be renegotiated; the next peer gets a fresh one.
        self.machine.attach(await self._new_peer_connection())

    async def on_call_ended(self, creator_name: str) -> None:
        await self._release()

    def on_side_message(self, message: schemas.Envelope) -> None:
        if isinstance(message, schemas.ChatMessage):
            self.view.messages.append(
                ChatEntry(
                    sender=message.sender_name,
                    text=message.message,
                    timestamp=message.timestamp or int(time.time() * 1000),
                    is_local=False,
                )
            )
        elif isinstance(message, schemas.TypingIndicatorMessage):
            self.view.remote_typing = message.is_typing
        elif isinstance(message, schemas.ScreenShareStateMessage):
            self.view.remote_screen_sharing = message.is_sharing

    # Chat

    async def send_chat(self, text: str) -> bool:
        if self.machine is None or not self.machine.state.peer_id:
            return False
        timestamp = int(time.time() * 1000)
        self.view.messages.append(ChatEntry(sender=self.user_name, text=text, timestamp=timestamp, is_local=True))
        return await self.machine.send_to_peer(
            schemas.ChatMessage(message=text, sender_name=self.user_name, timestamp=timestamp)
        )

    async def send_typing(self, is_typing: bool) -> bool:
        if self.machine is None:
            return False
        return await self.machine.send_to_peer(schemas.TypingIndicatorMessage(is_typing=is_typing))

    def clear_chat(self) -> None:
        self.view.messages = []

    # Teardown

    async def leave(self, end_call: bool = False) -> None:
        """Leave the room, or end it for everyone when ``end_call`` is set."""

        run_task = self._run_task
        if (
            not self._released
            and self.machine is not None
            and run_task is not None
            and not run_task.done()
            and run_task is not asyncio.current_task()
        ):
            # Teardown runs on the state-owning task, after any step in flight.
            self.machine.post(Invoke(lambda: self._shut_down(end_call)))
            self.machine.stop()
            await run_task
        else:
            await self._shut_down(end_call)

        if end_call and self._grace > 0:
            # Give the relay time to fan the termination out before the socket goes away.
            await asyncio.sleep(self._grace)
        await self._channel.close()
        await self._cancel_tasks()

    async def _shut_down(self, end_call: bool) -> None:
        if self.machine is not None and self.machine.state.phase is not ConnectionPhase.ENDED:
            message = schemas.EndCallMessage() if end_call else schemas.LeaveMessage()
            await self.machine.send(message)
        await self._release(close_channel=False)

    async def _release(self, close_channel: bool = True) -> None:
        if self._released:
            return
        self._released = True

        self.media.stop_all()
        if self.machine is not None:
            pc = self.machine.peer_connection
            self.machine.teardown()
            self.machine.stop()
            if pc is not None:
                try:
                    await pc.close()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Closing peer connection failed: %s", exc)
        self.view.remote_tracks = []
        self.view.peer_name = ""
        if close_channel:
            await self._channel.close()

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()
        for task in self._tasks:
            if task is not current:
                with suppress(asyncio.CancelledError):
                    await task
        self._tasks = []
