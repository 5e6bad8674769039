import asyncio
from functools import partial
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Set

from devconnect.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PresenceRecord:
    user_id: str
    is_online: bool = False
    last_seen: Optional[datetime] = None
    connections: Set[Any] = field(default_factory=set)


class PresenceRegistry:
    """
    In-memory record of who is connected, mirrored into the user directory.

    The in-memory state changes immediately. The directory write runs as a
    background task, so a slow user store never holds up message handling.
    Writes for the same user are applied in the order they were issued.
    Multiple devices follow last-writer-wins, so any disconnect marks the
    user offline.
    """

    def __init__(self, users) -> None:
        self._users = users
        self._records: Dict[str, PresenceRecord] = {}
        self._pending: Set[asyncio.Task] = set()
        self._last_write: Dict[str, asyncio.Task] = {}

    def get(self, user_id: str) -> Optional[PresenceRecord]:
        return self._records.get(user_id)

    def is_online(self, user_id: str) -> bool:
        record = self._records.get(user_id)
        return bool(record and record.is_online)

    def mark_online(self, user_id: str, connection: Any = None) -> PresenceRecord:
        record = self._records.setdefault(user_id, PresenceRecord(user_id=user_id))
        record.is_online = True
        if connection is not None:
            record.connections.add(connection)

        self._mirror(user_id, True, None)
        return record

    def mark_offline(self, user_id: str, connection: Any = None) -> PresenceRecord:
        record = self._records.setdefault(user_id, PresenceRecord(user_id=user_id))
        record.is_online = False
        record.last_seen = datetime.utcnow()
        if connection is not None:
            record.connections.discard(connection)
        else:
            record.connections.clear()

        self._mirror(user_id, False, record.last_seen)
        return record

    async def flush(self, timeout: Optional[float] = None) -> None:
        """
        Wait for outstanding directory writes; cancel whatever is left after `timeout`.
        """
        if not self._pending:
            return
        _, still_running = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %s unfinished presence writes", len(still_running))
            await asyncio.wait(still_running)

    def _mirror(self, user_id: str, is_online: bool, last_seen: Optional[datetime]) -> None:
        previous = self._last_write.get(user_id)
        task = asyncio.create_task(self._write(user_id, is_online, last_seen, previous))
        self._pending.add(task)
        self._last_write[user_id] = task
        task.add_done_callback(partial(self._on_write_done, user_id, is_online))

    async def _write(
        self,
        user_id: str,
        is_online: bool,
        last_seen: Optional[datetime],
        previous: Optional[asyncio.Task],
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await self._users.update_online_status(user_id, is_online, last_seen)

    def _on_write_done(self, user_id: str, is_online: bool, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if self._last_write.get(user_id) is task:
            del self._last_write[user_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Failed to mirror presence for user=%s online=%s",
                user_id,
                is_online,
                exc_info=exc,
            )
