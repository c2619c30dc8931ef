import asyncio
import json
import uuid
from typing import Any, Dict, List, Optional

from fastapi import WebSocket

from donchat.core.presence import InMemoryPresenceRegistry, PresenceRegistry
from donchat.utils.logger import get_logger

logger = get_logger(__name__)


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class ConnectionManager:
    """
    Live WebSocket connections keyed by connection id.

    A user may hold several connections at once (one per device); rooms group
    connections, not users, so a broadcast reaches every device of every
    member. Fan-out is process-local.
    """

    def __init__(self, presence: Optional[PresenceRegistry] = None):
        self.presence = presence or InMemoryPresenceRegistry()
        # Store active sockets: {connection_id: websocket}
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, user_id: str) -> str:
        """Accept an authenticated websocket and register it for ``user_id``."""
        await websocket.accept()

        connection_id = uuid.uuid4().hex
        self.active_connections[connection_id] = websocket
        self.presence.add_connection(user_id, connection_id)
        self.presence.join(connection_id, user_room(user_id))

        logger.info(f"User {user_id} connected with connection {connection_id}")
        return connection_id

    def disconnect(self, connection_id: str) -> Optional[str]:
        self.active_connections.pop(connection_id, None)
        user_id = self.presence.remove_connection(connection_id)
        if user_id is not None:
            logger.info(f"User {user_id} disconnected ({connection_id})")
        return user_id

    def join_room(self, connection_id: str, room: str) -> None:
        self.presence.join(connection_id, room)
        logger.debug(f"Connection {connection_id} joined room {room}")

    def leave_room(self, connection_id: str, room: str) -> None:
        self.presence.leave(connection_id, room)
        logger.debug(f"Connection {connection_id} left room {room}")

    def is_online(self, user_id: str) -> bool:
        return bool(self.presence.connections_for(user_id))

    async def send_to_connection(self, connection_id: str, event: str, data: Dict[str, Any]) -> bool:
        """Send one event to one connection. Dead connections are dropped."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False

        if await self._safe_send(websocket, self._frame(event, data)):
            return True
        self.disconnect(connection_id)
        return False

    async def broadcast_to_room(
        self,
        room: str,
        event: str,
        data: Dict[str, Any],
        exclude_connection: Optional[str] = None,
    ) -> Dict[str, List[str]]:
        """Send an event to every connection in a room concurrently."""
        recipients = [
            connection_id
            for connection_id in self.presence.members_of(room)
            if connection_id != exclude_connection and connection_id in self.active_connections
        ]
        if not recipients:
            return {"sent": [], "failed": []}

        frame = self._frame(event, data)
        results = await asyncio.gather(
            *[self._safe_send(self.active_connections[connection_id], frame) for connection_id in recipients]
        )

        sent = [connection_id for connection_id, ok in zip(recipients, results) if ok]
        failed = [connection_id for connection_id, ok in zip(recipients, results) if not ok]
        for connection_id in failed:
            self.disconnect(connection_id)

        logger.debug(f"Broadcast {event} to {room}: {len(sent)} sent, {len(failed)} failed")
        return {"sent": sent, "failed": failed}

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> Dict[str, List[str]]:
        """Send an event to every device of one user."""
        return await self.broadcast_to_room(user_room(user_id), event, data)

    async def emit_to_conversation(
        self,
        conversation_id: str,
        event: str,
        data: Dict[str, Any],
        exclude_connection: Optional[str] = None,
    ) -> Dict[str, List[str]]:
        return await self.broadcast_to_room(
            conversation_room(conversation_id), event, data, exclude_connection=exclude_connection
        )

    @staticmethod
    def _frame(event: str, data: Dict[str, Any]) -> str:
        # ensure_ascii=False keeps emojis intact
        return json.dumps({"type": event, **data}, ensure_ascii=False)

    @staticmethod
    async def _safe_send(websocket: WebSocket, frame: str) -> bool:
        try:
            await websocket.send_text(frame)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
