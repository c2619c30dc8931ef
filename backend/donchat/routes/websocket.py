import json
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from donchat.core.auth import authenticate_websocket
from donchat.core.dependencies import ChatServices, get_services
from donchat.core.errors import ChatError
from donchat.core.websocket import conversation_room
from donchat.schemas.message import MarkAsReadRequest, MessageCreate
from donchat.utils.logger import get_logger, safe_repr

logger = get_logger(__name__)

router = APIRouter()


class FrameError(Exception):
    """A client frame that cannot be handled. Reported to the sender only."""

    def __init__(self, code: str, message: Optional[str] = None, details: Any = None):
        super().__init__(code)
        self.code = code
        self.message = message
        self.details = details


class ChatSocketSession:
    """One authenticated socket: routes client frames to the chat services."""

    def __init__(self, services: ChatServices, connection_id: str, user_id: str):
        self.services = services
        self.connection_id = connection_id
        self.user_id = user_id
        self.handlers: Dict[str, Callable[[dict], Awaitable[None]]] = {
            "send_message": self.handle_send_message,
            "mark_as_read": self.handle_mark_as_read,
            "join_conversation": self.handle_join_conversation,
            "leave_conversation": self.handle_leave_conversation,
            "typing_start": self.handle_typing_start,
            "typing_stop": self.handle_typing_stop,
        }
        # Event name each handler reports its failures under
        self.error_events = {
            "send_message": "MESSAGE_ERROR",
            "mark_as_read": "READ_ERROR",
            "join_conversation": "JOIN_ERROR",
        }

    @property
    def manager(self):
        return self.services.manager

    async def emit(self, event: str, data: Dict[str, Any]) -> None:
        await self.manager.send_to_connection(self.connection_id, event, data)

    async def join_user_conversations(self) -> None:
        """Join the rooms of every conversation the user is in, then greet the client."""
        conversation_ids = []
        try:
            conversations = await self.services.conversations.list_user_conversations(self.user_id)
            for conversation in conversations:
                self.manager.join_room(self.connection_id, conversation_room(conversation.id))
                conversation_ids.append(conversation.id)
        except ChatError as e:
            logger.error(f"ERROR_JOINING_USER_CONVERSATION for {self.user_id}: {e.code}")

        await self.emit("connected", {"userId": self.user_id, "conversations": conversation_ids})

    async def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"Invalid JSON from {self.user_id}: {safe_repr(raw[:200])}")
            await self.emit("ERROR", {"error": "INVALID_JSON", "message": "Frame is not valid JSON"})
            return

        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            await self.emit("ERROR", {"error": "INVALID_FRAME", "message": "Frame needs a string 'type'"})
            return

        event = frame["type"]
        handler = self.handlers.get(event)
        if handler is None:
            await self.emit("ERROR", {"error": "UNKNOWN_EVENT", "message": f"Unknown event '{event}'"})
            return

        try:
            await handler(frame)
        except FrameError as e:
            payload = {"error": e.code}
            if e.message:
                payload["message"] = e.message
            if e.details is not None:
                payload["details"] = e.details
            await self.emit("ERROR", payload)
        except ChatError as e:
            logger.info(f"{event} from {self.user_id} failed: {e.code}")
            await self.emit(self.error_events.get(event, "ERROR"), {"error": e.code, "message": e.message})
        except Exception:
            logger.exception(f"Unhandled error in {event} from {self.user_id}")
            await self.emit(self.error_events.get(event, "ERROR"), {"error": "INTERNAL_SERVER_ERROR"})

    # ===== EVENT HANDLERS =====

    async def handle_send_message(self, frame: dict) -> None:
        payload = self._validate(MessageCreate, frame)
        await self.services.delivery.send_message(
            payload.conversation_id,
            self.user_id,
            payload.content,
            payload.message_type,
            payload.metadata,
        )

    async def handle_mark_as_read(self, frame: dict) -> None:
        payload = self._validate(MarkAsReadRequest, frame)
        await self.services.delivery.mark_as_read(
            payload.conversation_id,
            payload.message_id,
            self.user_id,
            exclude_connection=self.connection_id,
        )

    async def handle_join_conversation(self, frame: dict) -> None:
        conversation_id = self._conversation_id(frame)
        await self.services.conversations.ensure_participant(conversation_id, self.user_id)
        self.manager.join_room(self.connection_id, conversation_room(conversation_id))
        logger.info(f"User {self.user_id} joined conversation: {conversation_id}")
        await self.emit("conversation_joined", {"conversationId": conversation_id})

    async def handle_leave_conversation(self, frame: dict) -> None:
        conversation_id = self._conversation_id(frame)
        self.manager.leave_room(self.connection_id, conversation_room(conversation_id))
        logger.info(f"User {self.user_id} left conversation: {conversation_id}")
        await self.emit("conversation_left", {"conversationId": conversation_id})

    async def handle_typing_start(self, frame: dict) -> None:
        await self._typing(frame, True)

    async def handle_typing_stop(self, frame: dict) -> None:
        await self._typing(frame, False)

    async def _typing(self, frame: dict, typing: bool) -> None:
        conversation_id = self._conversation_id(frame)
        # Only connections inside the room may signal into it
        if conversation_room(conversation_id) not in self.manager.presence.rooms_of(self.connection_id):
            return
        await self.services.delivery.typing(
            conversation_id, self.user_id, typing, exclude_connection=self.connection_id
        )

    @staticmethod
    def _validate(model, frame: dict):
        body = {key: value for key, value in frame.items() if key != "type"}
        if isinstance(frame.get("data"), dict):
            body = frame["data"]
        try:
            return model.model_validate(body)
        except ValidationError as e:
            raise FrameError(
                "VALIDATION_ERROR",
                "Invalid payload",
                json.loads(e.json(include_url=False, include_input=False)),
            ) from e

    @staticmethod
    def _conversation_id(frame: dict) -> str:
        data = frame.get("data")
        if isinstance(data, dict):
            frame = data
        elif isinstance(data, str) and data:
            return data

        conversation_id = frame.get("conversationId") or frame.get("conversation_id")
        if not isinstance(conversation_id, str) or not conversation_id:
            raise FrameError("VALIDATION_ERROR", "conversationId is required")
        return conversation_id


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, services: ChatServices = Depends(get_services)):
    """WebSocket endpoint for real-time messaging"""
    user_id = await authenticate_websocket(websocket, services.verifier, services.settings.cors_origins)
    if user_id is None:
        return

    connection_id = await services.manager.connect(websocket, user_id)
    session = ChatSocketSession(services, connection_id, user_id)

    try:
        await session.join_user_conversations()
        while True:
            raw = await websocket.receive_text()
            await session.handle_frame(raw)
    except WebSocketDisconnect:
        pass
    finally:
        services.manager.disconnect(connection_id)
