from dataclasses import dataclass
from typing import Optional

from devconnect.core.logger import get_logger
from devconnect.models.chat import Message, MessageStatus
from devconnect.schemas.chat import (
    GroupMessageReceived,
    MarkSeenPayload,
    MessageReceived,
    MessagesSeen,
    SendGroupMessagePayload,
    SendMessagePayload,
)
from devconnect.websocket.rooms import direct_room_id, group_room_id

logger = get_logger(__name__)

INVALID = "invalid"
FORBIDDEN = "forbidden"
PERSIST_FAILED = "persist_failed"


@dataclass
class DispatchResult:
    ok: bool
    reason: Optional[str] = None
    message: Optional[Message] = None
    room_id: Optional[str] = None


class MessageDispatcher:
    """
    The only write path for chat messages.

    A message is broadcast only after it has been persisted. When the store
    fails, nothing is broadcast and nothing is retried.
    """

    def __init__(self, chats, rooms, groups, users) -> None:
        self._chats = chats
        self._rooms = rooms
        self._groups = groups
        self._users = users

    async def send_direct(self, payload: SendMessagePayload) -> DispatchResult:
        sender, target = payload.user_id, payload.target_user_id
        if not payload.text.strip():
            logger.warning("Dropped empty direct message from user %s", sender)
            return DispatchResult(ok=False, reason=INVALID)
        if sender == target:
            logger.warning("Dropped direct message from user %s to themselves", sender)
            return DispatchResult(ok=False, reason=INVALID)

        room_id = direct_room_id(sender, target)
        try:
            conversation = await self._chats.get_or_create_direct(sender, target)
            message = await self._chats.append_message(
                conversation.id,
                sender_id=sender,
                text=payload.text,
                status=MessageStatus.SENT,
            )
        except Exception:
            logger.exception("Failed to persist direct message from %s to %s", sender, target)
            return DispatchResult(ok=False, reason=PERSIST_FAILED, room_id=room_id)

        event = MessageReceived(
            text=message.text,
            sender_id=message.sender_id,
            timestamp=message.created_at,
        )
        await self._rooms.broadcast(room_id, "messageReceived", event.to_wire())
        return DispatchResult(ok=True, message=message, room_id=room_id)

    async def send_group(self, payload: SendGroupMessagePayload) -> DispatchResult:
        sender, group_id = payload.user_id, payload.group_id
        if not payload.text.strip():
            logger.warning("Dropped empty group message from user %s", sender)
            return DispatchResult(ok=False, reason=INVALID)

        # membership can change between join and send
        try:
            allowed = await self._groups.is_member(group_id, sender)
        except Exception:
            logger.exception("Membership lookup failed for user=%s group=%s", sender, group_id)
            allowed = False
        if not allowed:
            logger.warning("Group send declined: user %s not member of group %s", sender, group_id)
            return DispatchResult(ok=False, reason=FORBIDDEN)

        room_id = group_room_id(group_id)
        try:
            conversation = await self._chats.get_or_create_group(group_id)
            message = await self._chats.append_message(
                conversation.id,
                sender_id=sender,
                text=payload.text,
            )
        except Exception:
            logger.exception("Failed to persist group message from %s in %s", sender, group_id)
            return DispatchResult(ok=False, reason=PERSIST_FAILED, room_id=room_id)

        event = GroupMessageReceived(
            sender_id=message.sender_id,
            sender_name=await self._sender_name(sender),
            text=message.text,
            timestamp=message.created_at,
        )
        await self._rooms.broadcast(room_id, "groupMessageReceived", event.to_wire())
        return DispatchResult(ok=True, message=message, room_id=room_id)

    async def mark_seen(self, payload: MarkSeenPayload) -> int:
        """
        Mark everything the peer sent to `payload.user_id` as seen.
        """
        reader, peer = payload.user_id, payload.target_user_id
        if reader == peer:
            return 0
        try:
            conversation = await self._chats.find_direct(reader, peer)
            if conversation is None:
                return 0
            count = await self._chats.mark_seen(conversation.id, sender_id=peer)
        except Exception:
            logger.exception("Failed to mark messages seen for reader=%s peer=%s", reader, peer)
            return 0

        if count:
            event = MessagesSeen(reader_id=reader, count=count)
            await self._rooms.broadcast(direct_room_id(reader, peer), "messagesSeen", event.to_wire())
        return count

    async def _sender_name(self, user_id: str) -> str:
        try:
            user = await self._users.find_by_id(user_id)
        except Exception:
            logger.exception("Sender lookup failed for user=%s", user_id)
            return user_id
        if user is None:
            return user_id
        return user.display_name or user_id
