"""Outgoing track substitution without a new offer/answer round.

Device switches and screen sharing swap the track on the existing RTP sender.
Only when no sender of that kind exists yet is a track added, and the
transport handles whatever renegotiation that implies.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..schemas import signaling as schemas
from .capabilities import MediaAcquisitionError, MediaDevices, MediaTrack, RtpSender
from .negotiation import Invoke, NegotiationStateMachine, Severity

logger = logging.getLogger(__name__)


@dataclass
class LocalMedia:
    """Tracks captured on this side of the call."""

    tracks: list[MediaTrack] = field(default_factory=list)
    audio_device_id: Optional[str] = None
    video_device_id: Optional[str] = None
    camera_track: Optional[MediaTrack] = None
    screen_track: Optional[MediaTrack] = None

    def track(self, kind: str) -> Optional[MediaTrack]:
        return next((t for t in self.tracks if t.kind == kind), None)

    def put(self, track: MediaTrack) -> None:
        self.tracks = [t for t in self.tracks if t.kind != track.kind] + [track]

    @property
    def is_audio_only(self) -> bool:
        return self.track("video") is None

    def stop_all(self) -> None:
        for track in (*self.tracks, self.screen_track):
            if track is not None:
                track.stop()
        self.tracks = []
        self.camera_track = None
        self.screen_track = None


class RenegotiationController:
    def __init__(self, machine: NegotiationStateMachine, devices: MediaDevices, media: LocalMedia) -> None:
        self._machine = machine
        self._devices = devices
        self.media = media

    @property
    def is_screen_sharing(self) -> bool:
        return self.media.screen_track is not None

    def _sender_for(self, kind: str) -> Optional[RtpSender]:
        pc = self._machine.peer_connection
        if pc is None:
            return None
        return next((s for s in pc.get_senders() if s.track is not None and s.track.kind == kind), None)

    async def _publish(self, track: MediaTrack) -> None:
        """Put ``track`` on the wire in place of whatever is sent for its kind."""

        sender = self._sender_for(track.kind)
        if sender is not None:
            await sender.replace_track(track)
            logger.info("Replaced outgoing %s track", track.kind)
            return
        pc = self._machine.peer_connection
        if pc is not None:
            pc.add_track(track)
            logger.info("Added outgoing %s track", track.kind)

    async def switch_device(self, kind: str, device_id: str) -> bool:
        if kind not in ("audio", "video"):
            raise ValueError(f"Unsupported media kind: {kind}")

        if kind == "audio":
            self.media.audio_device_id = device_id
        else:
            self.media.video_device_id = device_id

        old = self.media.track(kind)
        # Some cameras and microphones are exclusive, release before reopening.
        if old is not None:
            old.stop()

        try:
            tracks = await self._devices.get_user_media(
                audio=kind == "audio",
                video=kind == "video",
                audio_device_id=self.media.audio_device_id,
                video_device_id=self.media.video_device_id,
            )
            new = next((t for t in tracks if t.kind == kind), None)
            if new is None:
                raise MediaAcquisitionError(f"No {kind} track from device {device_id}")

            self.media.put(new)
            if kind == "video" and self.is_screen_sharing:
                # Keep the screen on the wire; the new camera comes back on stop.
                self.media.camera_track = new
            else:
                await self._publish(new)
        except Exception as exc:  # noqa: BLE001 - reported to the user, call continues
            logger.warning("Switching %s device failed: %s", kind, exc)
            self._machine.report(f"Failed to switch {kind} device", Severity.ERROR)
            return False

        logger.info("%s device switched to %s", kind.capitalize(), device_id)
        return True

    async def start_screen_share(self) -> bool:
        if self._machine.peer_connection is None:
            self._machine.report("Cannot share screen: connection not established", Severity.ERROR)
            return False
        if self.is_screen_sharing:
            return True

        try:
            tracks = await self._devices.get_display_media()
            screen = next((t for t in tracks if t.kind == "video"), None)
            if screen is None:
                self._machine.report("No video track found in screen share", Severity.ERROR)
                return False

            self.media.camera_track = self.media.track("video")
            await self._publish(screen)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Starting screen share failed: %s", exc)
            self._machine.report(str(exc) or "Failed to toggle screen sharing", Severity.ERROR)
            return False

        self.media.screen_track = screen
        screen.on_ended(lambda: self._machine.post(Invoke(self.stop_screen_share)))
        await self._machine.send_to_peer(schemas.ScreenShareStateMessage(is_sharing=True))
        return True

    async def stop_screen_share(self) -> bool:
        screen = self.media.screen_track
        if screen is None:
            return False

        screen.stop()
        self.media.screen_track = None
        camera = self.media.camera_track
        self.media.camera_track = None

        # Without a camera the sender goes back to sending nothing.
        sender = self._sender_for("video")
        try:
            if sender is not None:
                await sender.replace_track(camera)
                logger.info("Restored %s on the video sender", "camera track" if camera else "no track")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Restoring camera failed: %s", exc)
            self._machine.report("Failed to restore camera after screen share", Severity.ERROR)

        await self._machine.send_to_peer(schemas.ScreenShareStateMessage(is_sharing=False))
        return False

    async def toggle_screen_share(self) -> bool:
        if self.is_screen_sharing:
            return await self.stop_screen_share()
        return await self.start_screen_share()

    def toggle_audio(self) -> bool:
        return self._toggle("audio")

    def toggle_video(self) -> bool:
        return self._toggle("video")

    def _toggle(self, kind: str) -> bool:
        track = self.media.track(kind)
        if track is None:
            return False
        track.enabled = not track.enabled
        return track.enabled
