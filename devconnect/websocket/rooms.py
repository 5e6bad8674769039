import hashlib
from typing import Any, Dict, Set

from devconnect.core.logger import get_logger

logger = get_logger(__name__)

ROOM_KEY_SEPARATOR = "$"


def direct_room_id(user_a: str, user_b: str) -> str:
    """
    Room identifier shared by two users, independent of argument order.

    Both sides compute it on their own: sort the pair, join it and hash it.
    """
    if not user_a or not user_b:
        raise ValueError("Both user identities are required to derive a room id.")
    key = ROOM_KEY_SEPARATOR.join(sorted((user_a, user_b)))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def group_room_id(group_id: str) -> str:
    if not group_id:
        raise ValueError("Group identity is required to derive a room id.")
    return group_id


class RoomRouter:
    """
    Tracks live connections and which rooms each one has joined.

    A connection is anything with an async `send(event, data)`.
    """

    def __init__(self, groups) -> None:
        self._groups = groups
        self.active_connections: Dict[str, Set[Any]] = {}
        self._rooms_by_connection: Dict[Any, Set[str]] = {}

    def register(self, connection: Any) -> None:
        self._rooms_by_connection.setdefault(connection, set())

    def unregister(self, connection: Any) -> None:
        self.leave_all(connection)
        self._rooms_by_connection.pop(connection, None)

    def join_room(self, connection: Any, room_id: str) -> None:
        self.register(connection)
        self.active_connections.setdefault(room_id, set()).add(connection)
        self._rooms_by_connection[connection].add(room_id)
        logger.debug(
            "Connection joined room %s (connections=%s)",
            room_id,
            len(self.active_connections[room_id]),
        )

    async def join_group_room(self, connection: Any, user_id: str, group_id: str) -> bool:
        """
        Join the group's room only if `user_id` is currently a member.
        """
        try:
            allowed = await self._groups.is_member(group_id, user_id)
        except Exception:
            logger.exception("Membership lookup failed for user=%s group=%s", user_id, group_id)
            allowed = False

        if not allowed:
            logger.warning("Group join declined: user %s not member of group %s", user_id, group_id)
            return False

        self.join_room(connection, group_room_id(group_id))
        return True

    def leave_room(self, connection: Any, room_id: str) -> None:
        if room_id in self.active_connections:
            self.active_connections[room_id].discard(connection)
            if not self.active_connections[room_id]:
                del self.active_connections[room_id]
        rooms = self._rooms_by_connection.get(connection)
        if rooms is not None:
            rooms.discard(room_id)

    def leave_all(self, connection: Any) -> None:
        for room_id in list(self._rooms_by_connection.get(connection, ())):
            self.leave_room(connection, room_id)

    def connections(self, room_id: str) -> Set[Any]:
        return set(self.active_connections.get(room_id, ()))

    def rooms_of(self, connection: Any) -> Set[str]:
        return set(self._rooms_by_connection.get(connection, ()))

    async def broadcast(self, room_id: str, event: str, data: dict) -> int:
        """
        Send an event to every connection in a room. Returns how many sends succeeded.
        """
        connections = self.active_connections.get(room_id)
        if not connections:
            logger.debug("No connections to broadcast %s to for room %s", event, room_id)
            return 0

        logger.debug("Broadcasting %s to %s connections in room %s", event, len(connections), room_id)

        delivered = 0
        dead = []
        for connection in list(connections):
            try:
                if await connection.send(event, data):
                    delivered += 1
            except Exception:
                logger.exception("Error sending %s to connection in room %s", event, room_id)
                dead.append(connection)

        for connection in dead:
            self.leave_room(connection, room_id)
        return delivered

    async def broadcast_all(self, event: str, data: dict) -> int:
        """
        Send an event once to every registered connection, regardless of rooms.
        """
        delivered = 0
        for connection in list(self._rooms_by_connection):
            try:
                if await connection.send(event, data):
                    delivered += 1
            except Exception:
                logger.exception("Error sending %s to connection", event)
                self.unregister(connection)
        return delivered
