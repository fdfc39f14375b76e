"""Client-side offer/answer/candidate sequencing for one room membership.

Every input (relay envelopes, local ICE candidates, connection-state changes,
remote tracks) becomes an event on a single queue. :meth:`NegotiationStateMachine.run`
consumes that queue so all mutation of :class:`NegotiationState` happens in
one task, even though the peer connection fires its callbacks whenever it
likes.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Optional

from pydantic import ValidationError

from ..schemas import signaling as schemas
from .capabilities import IceCandidate, MediaTrack, PeerConnection, SessionDescription, SignalingChannel

logger = logging.getLogger(__name__)


class ConnectionPhase(str, enum.Enum):
    IDLE = "idle"
    JOINING = "joining"
    WAITING_FOR_PEER = "waiting-for-peer"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    ENDED = "ended"


TERMINAL_PHASES = frozenset({ConnectionPhase.FAILED, ConnectionPhase.ENDED})


class Severity(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class StatusMessage:
    text: str
    severity: Severity = Severity.INFO


class NegotiationError(RuntimeError):
    """A description could not be created or applied."""


@dataclass
class NegotiationState:
    local_description_set: bool = False
    remote_description_set: bool = False
    candidate_buffer: Deque[IceCandidate] = field(default_factory=deque)
    peer_id: Optional[str] = None
    peer_name: str = ""
    phase: ConnectionPhase = ConnectionPhase.IDLE
    restart_attempted: bool = False

    def reset_negotiation(self) -> None:
        self.local_description_set = False
        self.remote_description_set = False
        self.candidate_buffer.clear()
        self.restart_attempted = False


# Events


@dataclass(frozen=True, slots=True)
class SignalReceived:
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class LocalCandidate:
    candidate: Optional[IceCandidate]


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    state: str


@dataclass(frozen=True, slots=True)
class RemoteTrackReceived:
    track: MediaTrack


@dataclass(frozen=True, slots=True)
class Invoke:
    """Run a coroutine function inside the state-owning task."""

    action: Callable[[], Awaitable[Any]]


class _Stop:
    pass


_STOP = _Stop()


class NegotiationObserver:
    """Hooks for whoever presents the call. All methods are optional."""

    def on_status(self, status: StatusMessage) -> None:
        pass

    def on_phase(self, phase: ConnectionPhase) -> None:
        pass

    def on_peer(self, peer_id: str, peer_name: str) -> None:
        pass

    async def on_peer_left(self, peer_id: str) -> None:
        pass

    async def on_call_ended(self, creator_name: str) -> None:
        pass

    def on_remote_track(self, track: MediaTrack) -> None:
        pass

    def on_side_message(self, message: schemas.Envelope) -> None:
        """Chat, typing and screen-share announcements from the peer."""


class NegotiationStateMachine:
    def __init__(
        self,
        peer_connection: PeerConnection,
        channel: SignalingChannel,
        *,
        client_id: str,
        observer: NegotiationObserver | None = None,
    ) -> None:
        self.peer_connection: Optional[PeerConnection] = peer_connection
        self.client_id = client_id
        self.state = NegotiationState()
        self.events: asyncio.Queue[object] = asyncio.Queue()
        self.failure: Optional[NegotiationError] = None
        self._channel = channel
        self._observer = observer or NegotiationObserver()

    # Event plumbing

    def post(self, event: object) -> None:
        """Queue an event; safe to call from peer-connection callbacks."""

        self.events.put_nowait(event)

    def stop(self) -> None:
        self.post(_STOP)

    async def run(self) -> None:
        while True:
            event = await self.events.get()
            if event is _STOP:
                return
            try:
                await self.dispatch(event)
            except Exception:
                logger.exception("Unhandled error while processing %r", event)

    async def dispatch(self, event: object) -> None:
        if isinstance(event, Invoke):
            await event.action()
            return

        if self.state.phase in TERMINAL_PHASES:
            logger.debug("Ignoring %r in terminal phase %s", event, self.state.phase.value)
            return

        try:
            if isinstance(event, SignalReceived):
                await self.handle_signal(event.payload)
            elif isinstance(event, LocalCandidate):
                await self.handle_local_candidate(event.candidate)
            elif isinstance(event, ConnectionStateChanged):
                await self.handle_connection_state(event.state)
            elif isinstance(event, RemoteTrackReceived):
                self._observer.on_remote_track(event.track)
            else:
                logger.warning("Unknown negotiation event %r", event)
        except NegotiationError as exc:
            self._fail(exc)

    # Outbound helpers

    async def send(self, message: schemas.Envelope) -> bool:
        try:
            await self._channel.send(message.to_wire())
        except Exception as exc:  # noqa: BLE001 - a dead channel shows up as a status, not a crash
            logger.warning("Failed to send %s: %s", message.to_wire().get("type"), exc)
            return False
        return True

    async def send_to_peer(self, message: schemas.TargetedEnvelope) -> bool:
        """Address ``message`` to the current peer; drop it when there is none."""

        if not self.state.peer_id:
            logger.debug("No peer yet, dropping %s", message.type)
            return False
        message.target = self.state.peer_id
        return await self.send(message)

    def report(self, text: str, severity: Severity = Severity.INFO) -> StatusMessage:
        status = StatusMessage(text=text, severity=severity)
        if severity is Severity.ERROR:
            logger.error(text)
        self._observer.on_status(status)
        return status

    def _set_phase(self, phase: ConnectionPhase) -> None:
        if self.state.phase is phase:
            return
        logger.info("Negotiation phase %s -> %s", self.state.phase.value, phase.value)
        self.state.phase = phase
        self._observer.on_phase(phase)

    def _fail(self, exc: NegotiationError) -> None:
        self.failure = exc
        self._set_phase(ConnectionPhase.FAILED)
        self.report(str(exc), Severity.ERROR)

    # Lifecycle

    async def start(self, room_id: str, user_name: str) -> None:
        self._set_phase(ConnectionPhase.JOINING)
        await self.send(schemas.JoinMessage(room_id=room_id, user_name=user_name, client_id=self.client_id))
        self.report("Waiting for other participant...")

    def attach(self, peer_connection: PeerConnection) -> None:
        """Swap in a fresh peer connection after the previous peer went away."""

        self.peer_connection = peer_connection
        self.state.reset_negotiation()

    def teardown(self) -> None:
        self.peer_connection = None
        self.state = NegotiationState(phase=ConnectionPhase.ENDED)
        self._observer.on_phase(ConnectionPhase.ENDED)

    def _superseded(self, pc: PeerConnection) -> bool:
        """True when ``pc`` was swapped out or the call ended while a step awaited it."""

        if self.peer_connection is pc and self.state.phase not in TERMINAL_PHASES:
            return False
        logger.info("Discarding negotiation step for a peer connection that is no longer current")
        return True

    def _require_pc(self) -> PeerConnection:
        if self.peer_connection is None:
            raise NegotiationError("Peer connection is not available")
        return self.peer_connection

    # Relay envelopes

    async def handle_signal(self, payload: dict[str, Any]) -> None:
        try:
            message = schemas.parse_server(payload)
        except ValidationError as exc:
            logger.warning("Ignoring malformed %r message: %s", payload.get("type"), exc.errors(include_url=False))
            return

        if isinstance(message, schemas.JoinedMessage):
            logger.info("Joined room %s (%d present)", message.room_id, message.participants)
            self._set_phase(ConnectionPhase.WAITING_FOR_PEER)
        elif isinstance(message, schemas.ReadyMessage):
            await self._on_ready(message)
        elif isinstance(message, schemas.PeerJoinedMessage):
            self._remember_peer(message.peer_id, message.peer_name)
            self._set_phase(ConnectionPhase.WAITING_FOR_PEER)
            self.report("Peer joined, waiting for connection...")
        elif isinstance(message, schemas.OfferMessage):
            await self._on_offer(message)
        elif isinstance(message, schemas.AnswerMessage):
            await self._on_answer(message)
        elif isinstance(message, schemas.IceCandidateMessage):
            await self._on_remote_candidate(message.candidate)
        elif isinstance(message, schemas.PeerLeftMessage):
            await self._on_peer_left(message)
        elif isinstance(message, schemas.CallEndedByCreatorMessage):
            self._set_phase(ConnectionPhase.ENDED)
            self.report(f"Call ended: {message.creator_name} ended the call", Severity.WARNING)
            await self._observer.on_call_ended(message.creator_name)
        elif isinstance(message, schemas.ErrorMessage):
            self._set_phase(ConnectionPhase.FAILED)
            self.report(message.message, Severity.ERROR)
        else:
            self._observer.on_side_message(message)

    def _remember_peer(self, peer_id: str, peer_name: str) -> None:
        self.state.peer_id = peer_id
        self.state.peer_name = peer_name
        self._observer.on_peer(peer_id, peer_name)

    async def _on_ready(self, message: schemas.ReadyMessage) -> None:
        self._remember_peer(message.peer_id, message.peer_name)
        self._set_phase(ConnectionPhase.NEGOTIATING)
        self.report("Creating connection...")
        pc = self._require_pc()
        try:
            offer = await pc.create_offer(receive_audio=True, receive_video=True)
            await pc.set_local_description(offer)
        except Exception as exc:
            raise NegotiationError("Failed to create connection offer") from exc
        if self._superseded(pc):
            return
        self.state.local_description_set = True
        await self.send(schemas.OfferMessage(offer=offer, target=message.peer_id))

    async def _on_offer(self, message: schemas.OfferMessage) -> None:
        pc = self._require_pc()
        sender = message.from_ or self.state.peer_id
        if sender and sender != self.state.peer_id:
            self._remember_peer(sender, self.state.peer_name)
        self._set_phase(ConnectionPhase.NEGOTIATING)
        try:
            await self._apply_remote_description(message.offer)
            answer = await pc.create_answer()
            await pc.set_local_description(answer)
        except Exception as exc:
            raise NegotiationError("Failed to handle connection offer") from exc
        if self._superseded(pc):
            return
        self.state.local_description_set = True
        await self.send(schemas.AnswerMessage(answer=answer, target=sender))

    async def _on_answer(self, message: schemas.AnswerMessage) -> None:
        try:
            await self._apply_remote_description(message.answer)
        except Exception as exc:
            raise NegotiationError("Failed to handle connection answer") from exc

    async def _apply_remote_description(self, description: SessionDescription) -> None:
        pc = self._require_pc()
        await pc.set_remote_description(description)
        self.state.remote_description_set = True
        await self._drain_candidates()

    async def _on_remote_candidate(self, candidate: IceCandidate) -> None:
        if not self.state.remote_description_set:
            logger.debug("Queuing ICE candidate until the remote description is set")
            self.state.candidate_buffer.append(candidate)
            return
        await self._add_candidate(candidate)

    async def _drain_candidates(self) -> None:
        buffer = self.state.candidate_buffer
        if buffer:
            logger.debug("Applying %d queued ICE candidates", len(buffer))
        while buffer:
            await self._add_candidate(buffer.popleft())

    async def _add_candidate(self, candidate: IceCandidate) -> None:
        pc = self._require_pc()
        try:
            await pc.add_ice_candidate(candidate)
        except Exception as exc:  # noqa: BLE001 - one bad candidate must not stop the rest
            logger.warning("Error adding ICE candidate: %s", exc)

    async def _on_peer_left(self, message: schemas.PeerLeftMessage) -> None:
        logger.info("Peer %s left", message.peer_id)
        self.state.peer_id = None
        self.state.peer_name = ""
        self.state.reset_negotiation()
        self._set_phase(ConnectionPhase.DISCONNECTED)
        self.report("Participant left")
        await self._observer.on_peer_left(message.peer_id)

    # Peer-connection callbacks

    async def handle_local_candidate(self, candidate: Optional[IceCandidate]) -> None:
        if candidate is None:
            logger.debug("ICE gathering complete")
            return
        if not self.state.peer_id:
            logger.debug("Dropping local ICE candidate: no peer yet")
            return
        await self.send(schemas.IceCandidateMessage(candidate=candidate, target=self.state.peer_id))

    async def handle_connection_state(self, state: str) -> None:
        logger.debug("Peer connection state %s", state)
        if state == "connected":
            self._set_phase(ConnectionPhase.CONNECTED)
            self.report("Call connected")
        elif state == "connecting":
            self.report("Establishing connection...")
        elif state == "disconnected":
            self.report("Connection lost - attempting to reconnect...", Severity.WARNING)
        elif state == "failed":
            await self._restart_ice()

    async def _restart_ice(self) -> None:
        if self.state.restart_attempted:
            raise NegotiationError("Connection failed after ICE restart")
        if not self.state.peer_id:
            raise NegotiationError("Connection failed and no peer is available to restart with")

        self.state.restart_attempted = True
        self.report("Connection failed - retrying...", Severity.WARNING)
        pc = self._require_pc()
        try:
            offer = await pc.create_offer(ice_restart=True)
            await pc.set_local_description(offer)
        except Exception as exc:
            raise NegotiationError("ICE restart failed") from exc
        if self._superseded(pc):
            return
        self.state.local_description_set = True
        self._set_phase(ConnectionPhase.NEGOTIATING)
        await self.send(schemas.OfferMessage(offer=offer, target=self.state.peer_id))
