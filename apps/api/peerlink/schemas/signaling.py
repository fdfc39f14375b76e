"""Wire contracts for the room relay WebSocket protocol."""
from __future__ import annotations

import enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class MessageType(str, enum.Enum):
    JOIN = "join"
    JOINED = "joined"
    READY = "ready"
    PEER_JOINED = "peer-joined"
    PEER_LEFT = "peer-left"
    OFFER = "offer"
    ANSWER = "answer"
    ICE_CANDIDATE = "ice-candidate"
    LEAVE = "leave"
    END_CALL = "end-call"
    CALL_ENDED_BY_CREATOR = "call-ended-by-creator"
    CHAT_MESSAGE = "chat-message"
    TYPING_INDICATOR = "typing-indicator"
    SCREEN_SHARE_STATE = "screen-share-state"
    ERROR = "error"


RELAYED_TYPES = frozenset(
    {
        MessageType.OFFER.value,
        MessageType.ANSWER.value,
        MessageType.ICE_CANDIDATE.value,
        MessageType.CHAT_MESSAGE.value,
        MessageType.TYPING_INDICATOR.value,
        MessageType.SCREEN_SHARE_STATE.value,
    }
)

ROOM_FULL_MESSAGE = "Room is full. Only 2 participants allowed."


class Envelope(BaseModel):
    """Base class for every message crossing the relay."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="allow")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class TargetedEnvelope(Envelope):
    target: str | None = None
    from_: str | None = Field(default=None, alias="from")


# Inbound (client -> relay)


class JoinMessage(Envelope):
    type: Literal["join"] = "join"
    room_id: str = Field(..., min_length=1)
    user_name: str = ""
    client_id: str = Field(..., min_length=1)


class OfferMessage(TargetedEnvelope):
    type: Literal["offer"] = "offer"
    offer: dict[str, Any]


class AnswerMessage(TargetedEnvelope):
    type: Literal["answer"] = "answer"
    answer: dict[str, Any]


class IceCandidateMessage(TargetedEnvelope):
    type: Literal["ice-candidate"] = "ice-candidate"
    candidate: dict[str, Any]


class ChatMessage(TargetedEnvelope):
    type: Literal["chat-message"] = "chat-message"
    message: str
    sender_name: str = ""
    timestamp: int | None = None


class TypingIndicatorMessage(TargetedEnvelope):
    type: Literal["typing-indicator"] = "typing-indicator"
    is_typing: bool


class ScreenShareStateMessage(TargetedEnvelope):
    type: Literal["screen-share-state"] = "screen-share-state"
    is_sharing: bool


class LeaveMessage(Envelope):
    type: Literal["leave"] = "leave"


class EndCallMessage(Envelope):
    type: Literal["end-call"] = "end-call"


# Outbound (relay -> client)


class JoinedMessage(Envelope):
    type: Literal["joined"] = "joined"
    room_id: str
    client_id: str
    participants: int


class ReadyMessage(Envelope):
    type: Literal["ready"] = "ready"
    peer_id: str
    peer_name: str = ""


class PeerJoinedMessage(Envelope):
    type: Literal["peer-joined"] = "peer-joined"
    peer_id: str
    peer_name: str = ""


class PeerLeftMessage(Envelope):
    type: Literal["peer-left"] = "peer-left"
    peer_id: str


class CallEndedByCreatorMessage(Envelope):
    type: Literal["call-ended-by-creator"] = "call-ended-by-creator"
    creator_name: str


class ErrorMessage(Envelope):
    type: Literal["error"] = "error"
    message: str


InboundMessage = Annotated[
    Union[
        JoinMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        ChatMessage,
        TypingIndicatorMessage,
        ScreenShareStateMessage,
        LeaveMessage,
        EndCallMessage,
    ],
    Field(discriminator="type"),
]

ServerMessage = Annotated[
    Union[
        JoinedMessage,
        ReadyMessage,
        PeerJoinedMessage,
        PeerLeftMessage,
        CallEndedByCreatorMessage,
        ErrorMessage,
        OfferMessage,
        AnswerMessage,
        IceCandidateMessage,
        ChatMessage,
        TypingIndicatorMessage,
        ScreenShareStateMessage,
    ],
    Field(discriminator="type"),
]

inbound_adapter: TypeAdapter[InboundMessage] = TypeAdapter(InboundMessage)
server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)


def parse_inbound(payload: Any) -> InboundMessage:
    """Validate a decoded client payload; raises ``pydantic.ValidationError``."""

    return inbound_adapter.validate_python(payload)


def parse_server(payload: Any) -> ServerMessage:
    """Validate a decoded relay payload on the client side."""

    return server_adapter.validate_python(payload)
