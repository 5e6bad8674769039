from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, Path, status

from devconnect.api.deps import get_current_user
from devconnect.core.logger import get_logger
from devconnect.models.user import User
from devconnect.schemas.chat import (
    DirectChatRead,
    GroupChatRead,
    GroupInfo,
    MessageRead,
    TargetStatus,
)

logger = get_logger(__name__)


class ChatRouter:
    """
    REST endpoints that seed a chat screen before the socket takes over.
    """

    def __init__(self, chats, users, groups, history_limit: int = 200) -> None:
        self.router = APIRouter(tags=["chat"])
        self.chats = chats
        self.users = users
        self.groups = groups
        self.history_limit = history_limit
        self._register_routes()

    async def _read_messages(self, messages) -> List[MessageRead]:
        """Attach each sender's display name; unknown senders fall back to their id."""
        names: Dict[str, str] = {}
        for sender_id in {m.sender_id for m in messages}:
            user = await self.users.find_by_id(sender_id)
            names[sender_id] = user.display_name if user is not None else sender_id
        return [
            MessageRead.model_validate(m).model_copy(update={"sender_name": names[m.sender_id]})
            for m in messages
        ]

    def _register_routes(self) -> None:
        self.router.get(
            "/chat/{target_user_id}",
            response_model=DirectChatRead,
        )(self.get_direct_chat)
        self.router.get(
            "/group-chat/{group_id}",
            response_model=GroupChatRead,
        )(self.get_group_chat)

    async def get_direct_chat(
        self,
        target_user_id: str = Path(..., min_length=1, max_length=64),
        current_user: User = Depends(get_current_user),
    ):
        """
        History with another user plus that user's presence.
        The conversation is created on first open.
        """
        if target_user_id == current_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot open a chat with yourself",
            )

        target = await self.users.find_by_id(target_user_id)
        if target is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Target user not found",
            )

        conversation = await self.chats.get_or_create_direct(current_user.id, target_user_id)
        messages = await self.chats.get_messages(conversation.id, limit=self.history_limit)
        logger.debug(
            "Loaded %s messages for conversation=%s",
            len(messages),
            conversation.id,
        )

        return DirectChatRead(
            conversation_id=conversation.id,
            participants=conversation.participants,
            messages=await self._read_messages(messages),
            target_status=TargetStatus(
                user_id=target.id,
                first_name=target.first_name,
                last_name=target.last_name,
                is_online=bool(target.is_online),
                last_seen=target.last_seen,
            ),
        )

    async def get_group_chat(
        self,
        group_id: str = Path(..., min_length=1, max_length=64),
        current_user: User = Depends(get_current_user),
    ):
        """
        Group history for a current member.
        """
        group = await self.groups.find_by_id(group_id)
        if group is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Group not found",
            )

        if not any(m.user_id == current_user.id for m in group.members):
            logger.warning("Group history denied: user %s not member of %s", current_user.id, group_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not a group member",
            )

        conversation = await self.chats.get_or_create_group(group_id)
        messages = await self.chats.get_messages(conversation.id, limit=self.history_limit)

        return GroupChatRead(
            group=GroupInfo(id=group.id, name=group.name),
            messages=await self._read_messages(messages),
        )
