from datetime import datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, StringConstraints
from pydantic.alias_generators import to_camel

from devconnect.models.chat import MessageStatus


class WireModel(BaseModel):
    """Base for every event payload: camelCase on the wire, snake_case in code."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


Identity = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=64)]


def _as_utc(value: datetime) -> datetime:
    # the store keeps naive UTC; the wire always carries the offset
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


# --- client -> server -------------------------------------------------------

class JoinChatPayload(WireModel):
    user_id: Identity
    target_user_id: Identity


class JoinGroupPayload(WireModel):
    user_id: Identity
    group_id: Identity


class SendMessagePayload(WireModel):
    user_id: Identity
    target_user_id: Identity
    text: str
    ack_id: Optional[str] = None


class SendGroupMessagePayload(WireModel):
    user_id: Identity
    group_id: Identity
    text: str
    ack_id: Optional[str] = None


class MarkSeenPayload(WireModel):
    user_id: Identity
    target_user_id: Identity


# --- server -> client -------------------------------------------------------

class MessageReceived(WireModel):
    text: str
    sender_id: str
    timestamp: UtcDatetime


class GroupMessageReceived(WireModel):
    sender_id: str
    sender_name: str
    text: str
    timestamp: UtcDatetime


class PeerStatusChanged(WireModel):
    user_id: str
    is_online: bool
    last_seen: Optional[UtcDatetime] = None


class MessagesSeen(WireModel):
    reader_id: str
    count: int


class MessageAck(WireModel):
    ack_id: str
    timestamp: UtcDatetime


class MessageFailed(WireModel):
    ack_id: str
    reason: str


# --- REST seed responses ----------------------------------------------------

class MessageRead(WireModel):
    """Persisted message as returned to the client."""
    id: int
    sender_id: str
    sender_name: Optional[str] = None
    text: str
    status: Optional[MessageStatus] = None
    created_at: UtcDatetime

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class TargetStatus(WireModel):
    user_id: str
    first_name: str
    last_name: Optional[str] = None
    is_online: bool
    last_seen: Optional[UtcDatetime] = None


class DirectChatRead(WireModel):
    conversation_id: int
    participants: List[str]
    messages: List[MessageRead]
    target_status: TargetStatus


class GroupInfo(WireModel):
    id: str
    name: str


class GroupChatRead(WireModel):
    group: GroupInfo
    messages: List[MessageRead]
