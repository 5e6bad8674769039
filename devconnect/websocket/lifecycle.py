import enum
import json
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from devconnect.core.logger import get_logger
from devconnect.schemas.chat import (
    JoinChatPayload,
    JoinGroupPayload,
    MarkSeenPayload,
    MessageAck,
    MessageFailed,
    PeerStatusChanged,
    SendGroupMessagePayload,
    SendMessagePayload,
)
from devconnect.websocket.dispatcher import FORBIDDEN, INVALID, DispatchResult
from devconnect.websocket.rooms import direct_room_id

logger = get_logger(__name__)


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class Connection:
    """
    One client's socket plus the identity it announced when joining.
    """

    def __init__(self, websocket: Any) -> None:
        self.websocket = websocket
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTED

    async def send(self, event: str, data: dict) -> bool:
        if self.state is ConnectionState.DISCONNECTED:
            return False
        await self.websocket.send_json({"event": event, "data": data})
        return True

    def __repr__(self) -> str:
        return f"<Connection user={self.user_id} state={self.state.value}>"


class ConnectionLifecycle:
    """
    Routes socket events to presence, rooms and the message dispatcher.
    """

    def __init__(self, presence, rooms, dispatcher) -> None:
        self.presence = presence
        self.rooms = rooms
        self.dispatcher = dispatcher
        self._handlers = {
            "joinChat": (JoinChatPayload, self._join_chat),
            "joinGroup": (JoinGroupPayload, self._join_group),
            "sendMessage": (SendMessagePayload, self._send_message),
            "sendGroupMessage": (SendGroupMessagePayload, self._send_group_message),
            "markSeen": (MarkSeenPayload, self._mark_seen),
        }

    async def connect(self, websocket: Any) -> Connection:
        await websocket.accept()
        connection = Connection(websocket)
        self.rooms.register(connection)
        logger.info("WebSocket connected (anonymous)")
        return connection

    async def run(self, websocket: WebSocket) -> None:
        """
        Receive loop for one socket. Events are handled one at a time, in order.
        """
        connection = await self.connect(websocket)
        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("Dropped non-JSON frame from %r", connection)
                    continue
                if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
                    logger.warning("Dropped malformed frame from %r", connection)
                    continue
                await self.handle(connection, frame["event"], frame.get("data"))
        except WebSocketDisconnect:
            logger.info("WebSocket disconnected: user=%s", connection.user_id)
        except Exception:
            logger.exception("WebSocket error for user=%s", connection.user_id)
        finally:
            await self.disconnect(connection)

    async def handle(self, connection: Connection, event: str, data: Any) -> None:
        handler = self._handlers.get(event)
        if handler is None:
            logger.warning("Ignoring unknown event %r from %r", event, connection)
            return

        model, callback = handler
        try:
            payload = model.model_validate(data if data is not None else {})
        except ValidationError as e:
            logger.warning("Invalid %s payload from %r: %s", event, connection, e.errors())
            ack_id = data.get("ackId") if isinstance(data, dict) else None
            if not isinstance(ack_id, str):
                ack_id = None
            await self._acknowledge(connection, ack_id, DispatchResult(ok=False, reason=INVALID))
            return

        await callback(connection, payload)

    async def disconnect(self, connection: Connection) -> None:
        """
        Tear down a connection; a user who had joined goes offline for everyone.
        """
        if connection.state is ConnectionState.DISCONNECTED:
            return
        connection.state = ConnectionState.DISCONNECTED
        self.rooms.unregister(connection)

        user_id = connection.user_id
        if user_id is None:
            logger.debug("Anonymous connection closed before joining")
            return

        await self._go_offline(connection, user_id)

    async def _go_offline(self, connection: Connection, user_id: str) -> None:
        record = self.presence.mark_offline(user_id, connection)
        event = PeerStatusChanged(user_id=user_id, is_online=False, last_seen=record.last_seen)
        await self.rooms.broadcast_all("peerStatusChanged", event.to_wire())
        logger.info("User %s offline since %s", user_id, record.last_seen.isoformat())

    async def _bind(self, connection: Connection, user_id: str) -> None:
        """
        Record who is on this connection. Switching identity ends the previous
        user's session: their rooms are left and they go offline.
        """
        previous = connection.user_id
        connection.user_id = user_id
        if previous is None or previous == user_id:
            return

        logger.warning("Connection rebound from user %s to user %s", previous, user_id)
        self.rooms.leave_all(connection)
        connection.state = ConnectionState.CONNECTED
        await self._go_offline(connection, previous)

    def _owns(self, connection: Connection, user_id: str) -> bool:
        # anonymous connections may send, as before any join
        return connection.user_id is None or connection.user_id == user_id

    async def _join_chat(self, connection: Connection, payload: JoinChatPayload) -> None:
        await self._bind(connection, payload.user_id)
        self.presence.mark_online(payload.user_id, connection)

        room_id = direct_room_id(payload.user_id, payload.target_user_id)
        self.rooms.join_room(connection, room_id)
        connection.state = ConnectionState.JOINED

        event = PeerStatusChanged(user_id=payload.user_id, is_online=True, last_seen=None)
        await self.rooms.broadcast(room_id, "peerStatusChanged", event.to_wire())

    async def _join_group(self, connection: Connection, payload: JoinGroupPayload) -> None:
        await self._bind(connection, payload.user_id)
        self.presence.mark_online(payload.user_id, connection)

        if await self.rooms.join_group_room(connection, payload.user_id, payload.group_id):
            connection.state = ConnectionState.JOINED

    async def _send_message(self, connection: Connection, payload: SendMessagePayload) -> None:
        if not self._owns(connection, payload.user_id):
            logger.warning("Rejected sendMessage as %s from %r", payload.user_id, connection)
            result = DispatchResult(ok=False, reason=FORBIDDEN)
        else:
            result = await self.dispatcher.send_direct(payload)
        await self._acknowledge(connection, payload.ack_id, result)

    async def _send_group_message(
        self,
        connection: Connection,
        payload: SendGroupMessagePayload,
    ) -> None:
        if not self._owns(connection, payload.user_id):
            logger.warning("Rejected sendGroupMessage as %s from %r", payload.user_id, connection)
            result = DispatchResult(ok=False, reason=FORBIDDEN)
        else:
            result = await self.dispatcher.send_group(payload)
        await self._acknowledge(connection, payload.ack_id, result)

    async def _mark_seen(self, connection: Connection, payload: MarkSeenPayload) -> None:
        if not self._owns(connection, payload.user_id):
            logger.warning("Rejected markSeen as %s from %r", payload.user_id, connection)
            return
        await self.dispatcher.mark_seen(payload)

    async def _acknowledge(
        self,
        connection: Connection,
        ack_id: Optional[str],
        result: DispatchResult,
    ) -> None:
        """
        Tell the sender what happened to its message, if it asked to know.
        """
        if not ack_id:
            return
        if result.ok:
            event, data = "messageAck", MessageAck(ack_id=ack_id, timestamp=result.message.created_at)
        else:
            event, data = "messageFailed", MessageFailed(ack_id=ack_id, reason=result.reason)
        try:
            await connection.send(event, data.to_wire())
        except Exception:
            logger.exception("Could not deliver %s for ack %s", event, ack_id)
