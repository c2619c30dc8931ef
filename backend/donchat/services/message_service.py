from typing import Any, Callable, Dict, List, Optional, Union

from donchat.core.errors import (
    ConversationAccessError,
    DocumentNotFoundError,
    InvalidCursorError,
    MessageNotFoundError,
)
from donchat.db.document_store import ErrorCallback, QueryOptions
from donchat.schemas.message import ChatMessage, MessageType
from donchat.services.base import (
    CONVERSATIONS_COLLECTION,
    MESSAGE_COLLECTION,
    ChatStoreService,
)
from donchat.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MESSAGE_LIMIT = 50


class MessageService(ChatStoreService):
    """Append, page and read-track the messages of a conversation."""

    async def send_message(
        self,
        conversation_id: str,
        sender_id: str,
        content: str,
        message_type: Union[MessageType, str] = MessageType.text,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        conversation = await self._load_conversation(conversation_id)
        if conversation is None or not conversation.has_participant(sender_id):
            raise ConversationAccessError()

        message_id = await self.store.create(
            MESSAGE_COLLECTION,
            {
                "conversationId": conversation_id,
                "senderId": sender_id,
                "content": content,
                "messageType": MessageType(message_type).value,
                "metadata": metadata,
                "readBy": [sender_id],
            },
        )

        # Not atomic with the insert above; a crash in between leaves
        # lastMessageAt stale until the next message.
        await self.store.update(
            CONVERSATIONS_COLLECTION,
            conversation_id,
            {"lastMessageAt": self.now()},
        )

        logger.info(f"Message {message_id} sent to conversation {conversation_id} by {sender_id}")
        return message_id

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        doc = await self.store.get_by_id(MESSAGE_COLLECTION, message_id)
        return ChatMessage.model_validate(doc) if doc is not None else None

    async def get_conversation_messages(
        self,
        conversation_id: str,
        limit: int = DEFAULT_MESSAGE_LIMIT,
        start_after: Optional[str] = None,
    ) -> List[ChatMessage]:
        """Newest first. ``start_after`` is the id of the last message of the previous page."""
        options = QueryOptions(
            where=[("conversationId", "==", conversation_id)],
            order_by=("createdAt", "desc"),
            limit=limit,
            start_after=start_after,
        )
        try:
            docs = await self.store.query(MESSAGE_COLLECTION, options)
        except DocumentNotFoundError as exc:
            raise InvalidCursorError() from exc
        return [ChatMessage.model_validate(doc) for doc in docs]

    async def mark_message_as_read(self, conversation_id: str, message_id: str, user_id: str) -> bool:
        """
        Add ``user_id`` to the message's read-by set.

        Returns False when the user had already read it; no write happens then.
        """
        await self.ensure_participant(conversation_id, user_id)

        message = await self.get_message(message_id)
        if message is None or message.conversation_id != conversation_id:
            raise MessageNotFoundError()

        if message.is_read_by(user_id):
            return False

        await self.store.update(
            MESSAGE_COLLECTION,
            message_id,
            {"readBy": [*message.read_by, user_id]},
        )
        return True

    async def mark_all_as_read(self, conversation_id: str, user_id: str) -> int:
        await self.ensure_participant(conversation_id, user_id)

        # One write per unread message
        unread_messages = await self._get_unread_messages(conversation_id, user_id)
        for message in unread_messages:
            await self.store.update(
                MESSAGE_COLLECTION,
                message.id,
                {"readBy": [*message.read_by, user_id]},
            )

        if unread_messages:
            logger.info(f"Marked {len(unread_messages)} messages in {conversation_id} as read for {user_id}")
        return len(unread_messages)

    async def get_unread_count(self, conversation_id: str, user_id: str) -> int:
        return len(await self._get_unread_messages(conversation_id, user_id))

    async def get_last_message(self, conversation_id: str) -> Optional[ChatMessage]:
        messages = await self.get_conversation_messages(conversation_id, limit=1)
        return messages[0] if messages else None

    async def subscribe_to_conversation(
        self,
        conversation_id: str,
        callback: Callable[[List[ChatMessage]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        """Live view of one conversation's messages, oldest first."""

        def on_change(docs: List[dict]) -> None:
            conversation_messages = sorted(
                (doc for doc in docs if doc.get("conversationId") == conversation_id),
                key=lambda doc: (doc["createdAt"], doc["id"]),
            )
            callback([ChatMessage.model_validate(doc) for doc in conversation_messages])

        def handle_error(error: Exception) -> None:
            logger.error(f"CONVERSATION_SUBSCRIPTION_ERROR {conversation_id}: {error}")
            if on_error is not None:
                on_error(error)

        return await self.store.subscribe_to_collection(MESSAGE_COLLECTION, on_change, handle_error)

    async def _get_unread_messages(self, conversation_id: str, user_id: str) -> List[ChatMessage]:
        docs = await self.store.query(
            MESSAGE_COLLECTION,
            QueryOptions(where=[("conversationId", "==", conversation_id)]),
        )
        messages = [ChatMessage.model_validate(doc) for doc in docs]
        return [message for message in messages if not message.is_read_by(user_id)]
