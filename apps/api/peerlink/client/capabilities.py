"""Structural interfaces for the platform pieces a call session drives.

The negotiation code never talks to a concrete WebRTC stack. Anything that
offers these operations (a browser bridge, aiortc, a test double) can be
plugged in.
"""
from __future__ import annotations

from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Protocol

SessionDescription = dict[str, Any]
IceCandidate = dict[str, Any]

CandidateHandler = Callable[[Optional[IceCandidate]], None]
StateHandler = Callable[[str], None]
TrackHandler = Callable[["MediaTrack"], None]


class MediaAcquisitionError(RuntimeError):
    """Camera, microphone or screen capture could not be obtained."""


class MediaTrack(Protocol):
    @property
    def kind(self) -> str:
        """``"audio"`` or ``"video"``."""
        ...

    @property
    def id(self) -> str:
        ...

    enabled: bool

    def stop(self) -> None:
        ...

    def on_ended(self, handler: Callable[[], None]) -> None:
        """Register a callback for when the source ends outside our control."""
        ...


class RtpSender(Protocol):
    @property
    def track(self) -> Optional[MediaTrack]:
        ...

    async def replace_track(self, track: Optional[MediaTrack]) -> None:
        ...


class PeerConnection(Protocol):
    """The subset of an RTCPeerConnection the state machine relies on.

    Callback registrations may fire at any time, including while one of the
    coroutine methods is awaiting.
    """

    async def create_offer(
        self,
        *,
        receive_audio: bool = True,
        receive_video: bool = True,
        ice_restart: bool = False,
    ) -> SessionDescription:
        ...

    async def create_answer(self) -> SessionDescription:
        ...

    async def set_local_description(self, description: SessionDescription) -> None:
        ...

    async def set_remote_description(self, description: SessionDescription) -> None:
        ...

    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        ...

    def add_track(self, track: MediaTrack) -> RtpSender:
        ...

    def get_senders(self) -> list[RtpSender]:
        ...

    def on_ice_candidate(self, handler: CandidateHandler) -> None:
        ...

    def on_connection_state_change(self, handler: StateHandler) -> None:
        ...

    def on_track(self, handler: TrackHandler) -> None:
        ...

    async def close(self) -> None:
        ...


PeerConnectionFactory = Callable[[], Awaitable[PeerConnection]]


class MediaDevices(Protocol):
    async def get_user_media(
        self,
        *,
        audio: bool = True,
        video: bool = True,
        audio_device_id: str | None = None,
        video_device_id: str | None = None,
    ) -> list[MediaTrack]:
        """Raise :class:`MediaAcquisitionError` when nothing can be captured."""
        ...

    async def get_display_media(self) -> list[MediaTrack]:
        ...


class SignalingChannel(Protocol):
    async def send(self, message: dict) -> None:
        ...

    def messages(self) -> AsyncIterator[dict]:
        ...

    async def close(self) -> None:
        ...
