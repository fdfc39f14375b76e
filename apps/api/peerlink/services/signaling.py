"""In-memory two-party room relay.

One :class:`RelayService` owns a :class:`RoomTable` and handles every envelope
read from a WebSocket. Each connection gets a :class:`ConnectionContext`
that carries its lifecycle so an ``end-call`` suppresses the ``peer-left``
that the following transport close would otherwise produce.
"""
from __future__ import annotations

import asyncio
import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from ..schemas import signaling as schemas
from .rooms import Participant, RelayConnection, Room, RoomFullError, RoomTable

logger = logging.getLogger(__name__)


class ConnectionLifecycle(str, enum.Enum):
    ACTIVE = "active"
    LEAVING = "leaving"
    ENDED = "ended"


@dataclass
class ConnectionContext:
    """Per-connection relay state."""

    connection: RelayConnection
    lifecycle: ConnectionLifecycle = ConnectionLifecycle.ACTIVE

    @property
    def connection_id(self) -> str:
        return self.connection.connection_id


class MessageRouter:
    """Resolve recipients inside a room and deliver envelopes to them."""

    def __init__(self, send_timeout: float = 5.0) -> None:
        self._send_timeout = send_timeout

    async def deliver(self, participant: Participant, message: dict) -> bool:
        try:
            await asyncio.wait_for(participant.connection.send(message), timeout=self._send_timeout)
        except Exception as exc:  # noqa: BLE001 - one bad socket must not affect the others
            logger.warning(
                "Failed to deliver %s to %s: %s", message.get("type"), participant.participant_id, exc
            )
            return False
        return True

    async def fan_out(self, participants: Iterable[Participant], message: dict) -> int:
        """Send ``message`` to every participant; return how many sends succeeded."""

        tasks = [self.deliver(participant, message) for participant in participants]
        if not tasks:
            return 0
        results = await asyncio.gather(*tasks, return_exceptions=True)
        return sum(1 for result in results if result is True)

    def resolve(self, room: Optional[Room], target: Optional[str]) -> Optional[Participant]:
        if room is None or not target:
            return None
        return room.participants.get(target)


class RelayService:
    """Handle join, relay, leave and end-call for two-party rooms."""

    def __init__(self, table: RoomTable, router: MessageRouter | None = None) -> None:
        self.table = table
        self.router = router or MessageRouter()

    def open(self, connection: RelayConnection) -> ConnectionContext:
        return ConnectionContext(connection=connection)

    async def handle_message(self, ctx: ConnectionContext, raw: str | bytes | dict) -> None:
        """Parse one inbound payload and dispatch it. Malformed input is logged and ignored."""

        try:
            payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        except ValueError as exc:
            logger.warning("Ignoring unparseable payload on %s: %s", ctx.connection_id, exc)
            return
        if not isinstance(payload, dict):
            logger.warning("Ignoring non-object payload on %s", ctx.connection_id)
            return

        try:
            message = schemas.parse_inbound(payload)
        except ValidationError as exc:
            logger.warning(
                "Ignoring invalid %r envelope on %s: %s",
                payload.get("type"),
                ctx.connection_id,
                exc.errors(include_url=False),
            )
            return

        logger.debug("Relay received %s from %s", message.type, ctx.connection_id)

        if isinstance(message, schemas.JoinMessage):
            await self.join(ctx, message)
        elif isinstance(message, schemas.LeaveMessage):
            await self.leave(ctx)
        elif isinstance(message, schemas.EndCallMessage):
            await self.end_call(ctx)
        else:
            await self.relay(ctx, payload)

    async def join(self, ctx: ConnectionContext, message: schemas.JoinMessage) -> None:
        if self.table.registry.lookup(ctx.connection_id) is not None:
            await self.leave(ctx)

        participant = Participant(
            participant_id=message.client_id,
            display_name=message.user_name,
            connection=ctx.connection,
        )

        async with self.table.lock:
            try:
                room = self.table.add(message.room_id, participant)
            except RoomFullError:
                logger.info("Rejected %s: room %s is full", message.client_id, message.room_id)
                rejection = schemas.ErrorMessage(message=schemas.ROOM_FULL_MESSAGE)
                await self.router.deliver(participant, rejection.to_wire())
                return
            ctx.lifecycle = ConnectionLifecycle.ACTIVE
            occupancy = len(room.participants)
            others = room.others(participant.participant_id)

            logger.info(
                "%s joined room %s (%d/%d)", participant.participant_id, room.room_id, occupancy, room.capacity
            )

            # Sent under the lock: a peer-left for this room must come after them.
            joined = schemas.JoinedMessage(
                room_id=room.room_id, client_id=participant.participant_id, participants=occupancy
            )
            await self.router.deliver(participant, joined.to_wire())

            if occupancy == 2 and others:
                existing = others[0]
                # The newcomer creates the offer; the existing participant waits.
                ready = schemas.ReadyMessage(peer_id=existing.participant_id, peer_name=existing.display_name)
                peer_joined = schemas.PeerJoinedMessage(
                    peer_id=participant.participant_id, peer_name=participant.display_name
                )
                await self.router.deliver(participant, ready.to_wire())
                await self.router.deliver(existing, peer_joined.to_wire())

    async def relay(self, ctx: ConnectionContext, payload: dict[str, Any]) -> bool:
        """Forward a targeted envelope to a peer in the sender's room; drop it if the peer is gone."""

        async with self.table.lock:
            membership = self.table.registry.lookup(ctx.connection_id)
            if membership is None:
                logger.debug("Dropping %s from %s: not in a room", payload.get("type"), ctx.connection_id)
                return False
            room = self.table.get(membership.room_id)
            recipient = self.router.resolve(room, payload.get("target"))
            sender_id = membership.participant_id

        if recipient is None or recipient.participant_id == sender_id:
            logger.debug("Dropping %s from %s: target %r not present", payload.get("type"), sender_id, payload.get("target"))
            return False

        forwarded = {**payload, "from": sender_id}
        return await self.router.deliver(recipient, forwarded)

    async def leave(self, ctx: ConnectionContext) -> None:
        # Only an active connection can leave; LEAVING and ENDED have already done so.
        if ctx.lifecycle is not ConnectionLifecycle.ACTIVE:
            return
        ctx.lifecycle = ConnectionLifecycle.LEAVING

        async with self.table.lock:
            room, participant = self.table.remove(ctx.connection_id)
            remaining = list(room.participants.values()) if room is not None and participant is not None else []

        if participant is None:
            return

        logger.info("%s left room %s", participant.participant_id, room.room_id)
        if remaining:
            notice = schemas.PeerLeftMessage(peer_id=participant.participant_id)
            await self.router.fan_out(remaining, notice.to_wire())

    async def end_call(self, ctx: ConnectionContext) -> None:
        """Tell every other participant the call is over, then delete the room."""

        async with self.table.lock:
            membership = self.table.registry.lookup(ctx.connection_id)
            if membership is None:
                return
            room = self.table.get(membership.room_id)
            if room is None:
                return

            creator = room.participants.get(membership.participant_id)
            creator_name = (creator.display_name if creator else "") or "Room creator"
            others = room.others(membership.participant_id)
            notice = schemas.CallEndedByCreatorMessage(creator_name=creator_name)

            # Broadcast completes before the room disappears.
            delivered = await self.router.fan_out(others, notice.to_wire())
            ctx.lifecycle = ConnectionLifecycle.ENDED
            self.table.delete(room.room_id)

        logger.info(
            "%s ended room %s; notified %d of %d participants",
            membership.participant_id,
            room.room_id,
            delivered,
            len(others),
        )

    async def disconnect(self, ctx: ConnectionContext) -> None:
        """Transport-level close: behaves like ``leave`` unless the call was ended."""

        if ctx.lifecycle is ConnectionLifecycle.ENDED:
            logger.debug("Connection %s closed after end-call", ctx.connection_id)
            return
        await self.leave(ctx)
