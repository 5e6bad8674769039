from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from devconnect.core.db import async_session_factory
from devconnect.core.logger import get_logger
from devconnect.models.chat import Conversation, ConversationKind, Message, MessageStatus

logger = get_logger(__name__)


def sorted_pair(user_a: str, user_b: str) -> tuple:
    if user_a == user_b:
        raise ValueError("A direct conversation needs two distinct participants.")
    return tuple(sorted((user_a, user_b)))


class ChatService:
    """
    Conversation store: the durable side of direct and group chat.

    Every call runs in its own short-lived session so a long-lived socket
    never holds a transaction open.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def find_direct(self, user_a: str, user_b: str) -> Optional[Conversation]:
        low, high = sorted_pair(user_a, user_b)
        async with self._session_factory() as db:
            stmt = select(Conversation).where(
                Conversation.kind == ConversationKind.DIRECT,
                Conversation.participant_low == low,
                Conversation.participant_high == high,
            )
            res = await db.execute(stmt)
            return res.scalars().first()

    async def find_group(self, group_id: str) -> Optional[Conversation]:
        async with self._session_factory() as db:
            stmt = select(Conversation).where(
                Conversation.kind == ConversationKind.GROUP,
                Conversation.group_id == group_id,
            )
            res = await db.execute(stmt)
            return res.scalars().first()

    async def get_or_create_direct(self, user_a: str, user_b: str) -> Conversation:
        """
        Get the conversation for an unordered pair, creating it at most once.
        """
        existing = await self.find_direct(user_a, user_b)
        if existing:
            return existing

        low, high = sorted_pair(user_a, user_b)
        conversation = Conversation(
            kind=ConversationKind.DIRECT,
            participant_low=low,
            participant_high=high,
        )
        return await self._create_if_absent(
            conversation,
            lambda: self.find_direct(low, high),
        )

    async def get_or_create_group(self, group_id: str) -> Conversation:
        existing = await self.find_group(group_id)
        if existing:
            return existing

        conversation = Conversation(kind=ConversationKind.GROUP, group_id=group_id)
        return await self._create_if_absent(
            conversation,
            lambda: self.find_group(group_id),
        )

    async def _create_if_absent(
        self,
        conversation: Conversation,
        lookup: Callable[[], Awaitable[Optional[Conversation]]],
    ) -> Conversation:
        async with self._session_factory() as db:
            db.add(conversation)
            try:
                await db.commit()
            except IntegrityError:
                # another handler created it between our lookup and insert
                await db.rollback()
                existing = await lookup()
                if existing is None:
                    raise
                logger.debug("Conversation created concurrently, reusing id=%s", existing.id)
                return existing
            await db.refresh(conversation)

        logger.info(
            "Created %s conversation id=%s",
            conversation.kind.value,
            conversation.id,
        )
        return conversation

    async def append_message(
        self,
        conversation_id: int,
        sender_id: str,
        text: str,
        status: Optional[MessageStatus] = None,
    ) -> Message:
        """
        Durably append a message and return it with its store-assigned timestamp.

        Timestamps never go below the conversation's latest message.
        """
        async with self._session_factory() as db:
            res = await db.execute(
                select(func.max(Message.created_at)).where(
                    Message.conversation_id == conversation_id
                )
            )
            latest = res.scalar()
            created_at = datetime.utcnow()
            if latest is not None and latest > created_at:
                created_at = latest

            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                text=text,
                status=status,
                created_at=created_at,
            )
            db.add(message)
            await db.commit()
            await db.refresh(message)

        logger.debug(
            "Persisted message id=%s conversation=%s sender=%s",
            message.id,
            conversation_id,
            sender_id,
        )
        return message

    async def get_messages(
        self,
        conversation_id: int,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """
        Messages of a conversation in append order (oldest first).
        """
        stmt = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        if limit is not None:
            # newest `limit` messages, still returned oldest first
            stmt = (
                select(Message)
                .where(Message.conversation_id == conversation_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
            )
        async with self._session_factory() as db:
            res = await db.execute(stmt)
            messages = list(res.scalars())
        if limit is not None:
            messages.reverse()
        return messages

    async def mark_seen(self, conversation_id: int, sender_id: str) -> int:
        """
        Flip every `sent` message from `sender_id` in the conversation to `seen`.
        """
        async with self._session_factory() as db:
            res = await db.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.sender_id == sender_id,
                    Message.status == MessageStatus.SENT,
                )
                .values(status=MessageStatus.SEEN)
            )
            count = res.rowcount or 0
            await db.commit()
        logger.debug("Marked %s messages seen in conversation=%s", count, conversation_id)
        return count
