"""
messages.py — typed envelopes for the live stream protocol.

Every frame, in both directions, is a JSON object:
    {"type": "<kind>", "payload": {...}}

Inbound kinds form a closed table (INBOUND_MESSAGES); anything outside it is
rejected by parse_inbound() before it reaches the hub. Payload keys on the wire
are camelCase (userId, streamId, ...); Python attributes are snake_case.
"""

import json
from datetime import datetime, timezone
from typing import Dict, Literal, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class ProtocolError(Exception):
    """Base class for frames the hub refuses to act on."""


class MalformedMessage(ProtocolError):
    pass


class UnknownMessageType(ProtocolError):
    def __init__(self, msg_type: str):
        super().__init__(f"Unknown type: {msg_type}")
        self.msg_type = msg_type


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _Envelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# ============================================================================
# Inbound (client -> hub)
# ============================================================================

class JoinStreamPayload(_Payload):
    user_id: str = Field(alias="userId", min_length=1)
    stream_id: str = Field(alias="streamId", min_length=1)
    is_creator: bool = Field(default=False, alias="isCreator")

    @field_validator("is_creator", mode="before")
    @classmethod
    def _creator_flag(cls, value):
        # Informational only: anything but a JSON true reads as false
        return value is True


class EmptyPayload(_Payload):
    pass


class ChatPayload(_Payload):
    message: str


class ViewerCountRequestPayload(_Payload):
    stream_id: str = Field(alias="streamId", min_length=1)


class JoinStream(_Envelope):
    type: Literal["join_stream"] = "join_stream"
    payload: JoinStreamPayload


class LeaveStream(_Envelope):
    type: Literal["leave_stream"] = "leave_stream"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class SendChat(_Envelope):
    type: Literal["chat_message"] = "chat_message"
    payload: ChatPayload


class SendLike(_Envelope):
    type: Literal["stream_like"] = "stream_like"
    payload: EmptyPayload = Field(default_factory=EmptyPayload)


class RequestViewerCount(_Envelope):
    type: Literal["viewer_count"] = "viewer_count"
    payload: ViewerCountRequestPayload


InboundMessage = Union[JoinStream, LeaveStream, SendChat, SendLike, RequestViewerCount]

INBOUND_MESSAGES: Dict[str, Type[_Envelope]] = {
    "join_stream": JoinStream,
    "leave_stream": LeaveStream,
    "chat_message": SendChat,
    "stream_like": SendLike,
    "viewer_count": RequestViewerCount,
}


def parse_inbound(raw: Union[str, bytes]) -> InboundMessage:
    """
    Decode one client frame into its typed envelope.

    Raises MalformedMessage for anything that is not a valid envelope of a
    known kind, and UnknownMessageType for a valid envelope of an unknown kind.
    A missing or null payload is read as {}.
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage("frame is not valid UTF-8") from e

    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        # JSONDecodeError, oversized int literals, pathological nesting
        raise MalformedMessage("Invalid JSON") from e

    if not isinstance(data, dict):
        raise MalformedMessage("envelope must be a JSON object")

    msg_type = data.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise MalformedMessage("envelope is missing 'type'")

    model = INBOUND_MESSAGES.get(msg_type)
    if model is None:
        raise UnknownMessageType(msg_type)

    payload = data.get("payload")
    if payload is None:
        payload = {}

    try:
        return model.model_validate({"type": msg_type, "payload": payload})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedMessage(f"invalid {msg_type} envelope ({fields})") from e


# ============================================================================
# Outbound (hub -> client)
# ============================================================================

class JoinedPayload(_Payload):
    stream_id: str = Field(alias="streamId")
    connection_id: str = Field(alias="connectionId")


class ViewerCountPayload(_Payload):
    viewer_count: int = Field(alias="viewerCount")


class ViewerJoinedPayload(_Payload):
    user_id: str = Field(alias="userId")
    viewer_count: int = Field(alias="viewerCount")


class ChatBroadcastPayload(_Payload):
    user_id: str = Field(alias="userId")
    message: str
    timestamp: str


class LikeBroadcastPayload(_Payload):
    user_id: str = Field(alias="userId")
    timestamp: str


class Joined(_Envelope):
    type: Literal["joined"] = "joined"
    payload: JoinedPayload

    @classmethod
    def create(cls, stream_id: str, connection_id: str) -> "Joined":
        return cls(payload=JoinedPayload(stream_id=stream_id, connection_id=connection_id))


class ViewerCount(_Envelope):
    type: Literal["viewer_count"] = "viewer_count"
    payload: ViewerCountPayload

    @classmethod
    def create(cls, viewer_count: int) -> "ViewerCount":
        return cls(payload=ViewerCountPayload(viewer_count=viewer_count))


class ViewerJoined(_Envelope):
    type: Literal["viewer_joined"] = "viewer_joined"
    payload: ViewerJoinedPayload

    @classmethod
    def create(cls, user_id: str, viewer_count: int) -> "ViewerJoined":
        return cls(payload=ViewerJoinedPayload(user_id=user_id, viewer_count=viewer_count))


class ChatBroadcast(_Envelope):
    type: Literal["chat_message"] = "chat_message"
    payload: ChatBroadcastPayload

    @classmethod
    def create(cls, user_id: str, message: str, timestamp: str) -> "ChatBroadcast":
        return cls(payload=ChatBroadcastPayload(user_id=user_id, message=message, timestamp=timestamp))


class LikeBroadcast(_Envelope):
    type: Literal["stream_like"] = "stream_like"
    payload: LikeBroadcastPayload

    @classmethod
    def create(cls, user_id: str, timestamp: str) -> "LikeBroadcast":
        return cls(payload=LikeBroadcastPayload(user_id=user_id, timestamp=timestamp))


OutboundMessage = Union[Joined, ViewerCount, ViewerJoined, ChatBroadcast, LikeBroadcast]


def format_timestamp(dt: datetime) -> str:
    """ISO-8601 UTC with millisecond precision, e.g. 2026-01-01T12:00:00.123Z"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
