"""Data contracts for RTC endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class IceServer(BaseModel):
    urls: str | list[str] = Field(..., description="STUN/TURN URL or list of URLs")
    username: str | None = None
    credential: str | None = None


class IceServersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    ice_servers: list[IceServer] = Field(default_factory=list)


class RoomOccupancyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    room_id: str
    participants: list[str] = Field(default_factory=list, description="Participant IDs in join order")
