"""In-memory room table and connection registry for the relay."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

SendCallable = Callable[[dict], Awaitable[None]]


@dataclass(slots=True)
class RelayConnection:
    """Send-capable handle for one WebSocket connection."""

    connection_id: str
    send: SendCallable


@dataclass(slots=True)
class Participant:
    participant_id: str
    display_name: str
    connection: RelayConnection


@dataclass
class Room:
    room_id: str
    capacity: int = 2
    participants: Dict[str, Participant] = field(default_factory=dict)

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= self.capacity

    def others(self, participant_id: str) -> list[Participant]:
        return [p for pid, p in self.participants.items() if pid != participant_id]


@dataclass(slots=True)
class Membership:
    room_id: str
    participant_id: str


class RoomFullError(RuntimeError):
    """Raised when a join targets a room already at capacity."""

    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} is full")
        self.room_id = room_id


class ConnectionRegistry:
    """Map connection handles to the room membership they currently hold."""

    def __init__(self) -> None:
        self._memberships: Dict[str, Membership] = {}

    def bind(self, connection_id: str, room_id: str, participant_id: str) -> None:
        self._memberships[connection_id] = Membership(room_id=room_id, participant_id=participant_id)

    def lookup(self, connection_id: str) -> Optional[Membership]:
        return self._memberships.get(connection_id)

    def release(self, connection_id: str) -> Optional[Membership]:
        return self._memberships.pop(connection_id, None)

    def __len__(self) -> int:
        return len(self._memberships)


class RoomTable:
    """Rooms keyed by ID, each bounded to ``capacity`` participants.

    All mutating methods must be called while holding ``lock``; the relay
    service owns the locking so a whole join/leave/end-call step is atomic.
    """

    def __init__(self, capacity: int = 2) -> None:
        self.capacity = capacity
        self.lock = asyncio.Lock()
        self.registry = ConnectionRegistry()
        self._rooms: Dict[str, Room] = {}

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def add(self, room_id: str, participant: Participant) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            room = Room(room_id=room_id, capacity=self.capacity)
        if room.is_full:
            raise RoomFullError(room_id)
        self._rooms[room_id] = room
        room.participants[participant.participant_id] = participant
        self.registry.bind(participant.connection.connection_id, room_id, participant.participant_id)
        return room

    def remove(self, connection_id: str) -> tuple[Optional[Room], Optional[Participant]]:
        """Drop the participant bound to ``connection_id``; delete the room once empty."""

        membership = self.registry.release(connection_id)
        if membership is None:
            return None, None
        room = self._rooms.get(membership.room_id)
        if room is None:
            return None, None
        participant = room.participants.get(membership.participant_id)
        if participant is None or participant.connection.connection_id != connection_id:
            return room, None
        room.participants.pop(membership.participant_id, None)
        if not room.participants:
            self._rooms.pop(membership.room_id, None)
        return room, participant

    def delete(self, room_id: str) -> Optional[Room]:
        room = self._rooms.pop(room_id, None)
        if room is not None:
            for participant in room.participants.values():
                self.registry.release(participant.connection.connection_id)
        return room

    def occupancy(self, room_id: str) -> int:
        room = self._rooms.get(room_id)
        return len(room.participants) if room else 0

    def snapshot(self) -> Dict[str, list[str]]:
        return {room_id: list(room.participants) for room_id, room in self._rooms.items()}

    def __contains__(self, room_id: object) -> bool:
        return room_id in self._rooms
