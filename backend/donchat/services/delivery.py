from typing import Any, Dict, Optional, Union

from donchat.core.errors import MessageNotFoundError
from donchat.core.websocket import ConnectionManager
from donchat.schemas.message import ChatMessage, MessageType
from donchat.services.message_service import MessageService
from donchat.utils.logger import get_logger

logger = get_logger(__name__)


class ChatDelivery:
    """
    Write-then-broadcast path shared by the HTTP routes and the socket hub,
    so a message sent either way produces the same events.
    """

    def __init__(self, messages: MessageService, manager: ConnectionManager):
        self.messages = messages
        self.manager = manager

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: Union[MessageType, str] = MessageType.text,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        message_id = await self.messages.send_message(
            conversation_id, sender_id, content, message_type, metadata
        )

        # Fetch by id: "newest in the conversation" can be someone else's message
        message = await self.messages.get_message(message_id)
        if message is None:
            raise MessageNotFoundError()

        payload = message.model_dump(mode="json", by_alias=True)
        # Every connection in the room, the sender's own devices included
        await self.manager.emit_to_conversation(
            conversation_id,
            "new_message",
            {"conversationId": conversation_id, "message": payload},
        )
        await self.manager.emit_to_conversation(
            conversation_id,
            "conversation_update",
            {"conversationId": conversation_id, "lastMessage": payload},
        )
        return message

    async def mark_as_read(
        self,
        conversation_id: str,
        message_id: str,
        user_id: str,
        exclude_connection: Optional[str] = None,
    ) -> bool:
        marked = await self.messages.mark_message_as_read(conversation_id, message_id, user_id)
        await self.manager.emit_to_conversation(
            conversation_id,
            "message_read",
            {"conversationId": conversation_id, "messageId": message_id, "readBy": user_id},
            exclude_connection=exclude_connection,
        )
        return marked

    async def typing(self, conversation_id: str, user_id: str, typing: bool, exclude_connection: Optional[str] = None) -> None:
        await self.manager.emit_to_conversation(
            conversation_id,
            "user_typing",
            {"conversationId": conversation_id, "userId": user_id, "typing": typing},
            exclude_connection=exclude_connection,
        )
