from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi.requests import HTTPConnection
from sqlalchemy.orm import sessionmaker

from donchat.core.config import Settings
from donchat.core.presence import InMemoryPresenceRegistry, PresenceRegistry
from donchat.core.security import IdentityVerifier, build_identity_verifier
from donchat.core.websocket import ConnectionManager
from donchat.db.document_store import DocumentStore, utcnow
from donchat.services import ChatDelivery, ConversationService, MessageService


@dataclass
class ChatServices:
    """Everything a request handler needs, built once per application."""

    settings: Settings
    store: DocumentStore
    messages: MessageService
    conversations: ConversationService
    manager: ConnectionManager
    delivery: ChatDelivery
    verifier: IdentityVerifier

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        verifier: Optional[IdentityVerifier] = None,
        presence: Optional[PresenceRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "ChatServices":
        store = DocumentStore(session_factory, clock=clock)
        messages = MessageService(store)
        conversations = ConversationService(store, messages)
        manager = ConnectionManager(presence or InMemoryPresenceRegistry())
        return cls(
            settings=settings,
            store=store,
            messages=messages,
            conversations=conversations,
            manager=manager,
            delivery=ChatDelivery(messages, manager),
            verifier=verifier or build_identity_verifier(settings),
        )


def get_services(connection: HTTPConnection) -> ChatServices:
    return connection.app.state.services
