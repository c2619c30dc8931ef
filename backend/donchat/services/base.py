from datetime import datetime
from typing import Optional

from donchat.core.errors import AccessDeniedError
from donchat.db.document_store import DocumentStore
from donchat.schemas.conversation import Conversation

MESSAGE_COLLECTION = "chat_message"
CONVERSATIONS_COLLECTION = "conversations"


class ChatStoreService:
    """Shared plumbing for services that read conversations from the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def now(self) -> datetime:
        return self.store.now()

    async def _load_conversation(self, conversation_id: str) -> Optional[Conversation]:
        doc = await self.store.get_by_id(CONVERSATIONS_COLLECTION, conversation_id)
        return Conversation.model_validate(doc) if doc is not None else None

    async def ensure_participant(self, conversation_id: str, user_id: str) -> Conversation:
        """
        Return the conversation if ``user_id`` takes part in it.

        A missing conversation and a non-member caller both raise
        ``AccessDeniedError`` so membership cannot be discovered.
        """
        conversation = await self._load_conversation(conversation_id)
        if conversation is None or not conversation.has_participant(user_id):
            raise AccessDeniedError()
        return conversation
