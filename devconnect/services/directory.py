from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from devconnect.core.db import async_session_factory
from devconnect.core.logger import get_logger
from devconnect.models.group import Group, GroupMember
from devconnect.models.user import User

logger = get_logger(__name__)


class UserDirectory:
    """
    Read/write access to the durable user records the realtime core needs.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, user_id: str) -> Optional[User]:
        async with self._session_factory() as db:
            return await db.get(User, user_id)

    async def update_online_status(
        self,
        user_id: str,
        is_online: bool,
        last_seen: Optional[datetime] = None,
    ) -> bool:
        """
        Mirror presence into the user record. `last_seen` is left untouched when None.
        """
        values = {"is_online": is_online}
        if last_seen is not None:
            values["last_seen"] = last_seen

        async with self._session_factory() as db:
            res = await db.execute(update(User).where(User.id == user_id).values(**values))
            updated = res.rowcount
            await db.commit()

        if not updated:
            logger.warning("Presence mirror skipped: no user with id=%s", user_id)
            return False
        return True


class GroupDirectory:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ) -> None:
        self._session_factory = session_factory

    async def find_by_id(self, group_id: str) -> Optional[Group]:
        """
        Load a group together with its member list.
        """
        async with self._session_factory() as db:
            return await db.get(Group, group_id)

    async def is_member(self, group_id: str, user_id: str) -> bool:
        async with self._session_factory() as db:
            res = await db.execute(
                select(GroupMember.id).where(
                    GroupMember.group_id == group_id,
                    GroupMember.user_id == user_id,
                )
            )
            return res.scalars().first() is not None
