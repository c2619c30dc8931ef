import asyncio
from typing import Callable, List, Optional, Sequence, Union

from donchat.core.errors import (
    AccessDeniedError,
    ConversationNotFoundError,
    InvalidParticipantCountError,
)
from donchat.db.document_store import DocumentStore, ErrorCallback, QueryOptions
from donchat.schemas.conversation import (
    Conversation,
    ConversationSummary,
    ConversationType,
    ParticipantDetail,
    ParticipantRole,
)
from donchat.services.base import CONVERSATIONS_COLLECTION, ChatStoreService
from donchat.services.message_service import MessageService
from donchat.utils.logger import get_logger

logger = get_logger(__name__)


class ConversationService(ChatStoreService):
    """Owns conversation documents: creation with direct-chat dedup, lookups and summaries."""

    def __init__(self, store: DocumentStore, messages: MessageService):
        super().__init__(store)
        self.messages = messages
        # Find-then-create for direct chats must not interleave
        self._direct_lock = asyncio.Lock()

    async def create_conversation(
        self,
        creator_id: str,
        participants: Sequence[str],
        type: Union[ConversationType, str] = ConversationType.direct,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        conversation_type = ConversationType(type)
        # Semantically a set; keep first-seen order
        members = list(dict.fromkeys(participants))

        if conversation_type == ConversationType.direct and len(members) != 2:
            raise InvalidParticipantCountError()
        if conversation_type == ConversationType.group and len(members) < 2:
            raise InvalidParticipantCountError()

        if conversation_type == ConversationType.group:
            return await self._create(creator_id, members, conversation_type, name, description)

        async with self._direct_lock:
            existing = await self._find_direct_conversation(members[0], members[1])
            if existing is not None:
                logger.info(f"Reusing direct conversation {existing.id} for {members[0]} and {members[1]}")
                return existing.id
            return await self._create(creator_id, members, conversation_type)

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        return await self._load_conversation(conversation_id)

    async def get_conversation_for_user(self, conversation_id: str, user_id: str) -> Conversation:
        conversation = await self._load_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError()
        if not conversation.has_participant(user_id):
            raise AccessDeniedError()
        return conversation

    async def list_user_conversations(self, user_id: str) -> List[Conversation]:
        docs = await self.store.query(
            CONVERSATIONS_COLLECTION,
            QueryOptions(
                where=[("participants", "array-contains", user_id)],
                order_by=("lastMessageAt", "desc"),
            ),
        )
        return [Conversation.model_validate(doc) for doc in docs]

    async def get_user_conversations(self, user_id: str) -> List[ConversationSummary]:
        """Most recently active first, each with the viewer's unread count and the last message."""
        summaries = []
        for conversation in await self.list_user_conversations(user_id):
            unread_count = await self.messages.get_unread_count(conversation.id, user_id)
            last_message = await self.messages.get_last_message(conversation.id)

            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    participant_details=conversation.participant_details,
                    last_message=last_message,
                    unread_count=unread_count,
                )
            )
        return summaries

    async def subscribe_to_user_conversations(
        self,
        user_id: str,
        callback: Callable[[List[Conversation]], None],
        on_error: Optional[ErrorCallback] = None,
    ) -> Callable[[], None]:
        def on_change(docs: List[dict]) -> None:
            conversations = [
                Conversation.model_validate(doc)
                for doc in docs
                if user_id in (doc.get("participants") or [])
            ]
            conversations.sort(key=lambda conversation: conversation.last_message_at or conversation.created_at, reverse=True)
            callback(conversations)

        def handle_error(error: Exception) -> None:
            logger.error(f"User conversations subscription error for {user_id}: {error}")
            if on_error is not None:
                on_error(error)

        return await self.store.subscribe_to_collection(CONVERSATIONS_COLLECTION, on_change, handle_error)

    async def _create(
        self,
        creator_id: str,
        members: List[str],
        conversation_type: ConversationType,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        now = self.now()
        participant_details = [
            ParticipantDetail(
                user_id=user_id,
                joined_at=now,
                role=ParticipantRole.admin if user_id == creator_id else ParticipantRole.member,
            ).model_dump(by_alias=True, exclude_none=True)
            for user_id in members
        ]

        data = {
            "participants": members,
            "participantDetails": participant_details,
            "type": conversation_type.value,
            "lastMessageAt": now,
            "isActive": True,
        }
        if conversation_type == ConversationType.group:
            data.update({"name": name, "description": description, "adminId": creator_id})

        conversation_id = await self.store.create(CONVERSATIONS_COLLECTION, data)
        logger.info(f"Created {conversation_type.value} conversation {conversation_id} by {creator_id}")
        return conversation_id

    async def _find_direct_conversation(self, user1_id: str, user2_id: str) -> Optional[Conversation]:
        candidates = await self.store.query(
            CONVERSATIONS_COLLECTION,
            QueryOptions(where=[("participants", "array-contains", user1_id)]),
        )
        for doc in candidates:
            participants = doc.get("participants") or []
            if (
                doc.get("type") == ConversationType.direct.value
                and user2_id in participants
                and len(participants) == 2
            ):
                return Conversation.model_validate(doc)
        return None
