"""Shared fixtures: in-memory document store, deterministic clock, fake identity."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from donchat.core.config import Settings
from donchat.core.errors import AuthenticationError
from donchat.db.document_store import DocumentStore
from donchat.db.session import create_db_engine, create_session_factory, init_db
from donchat.main import create_app
from donchat.services import ConversationService, MessageService


class FakeClock:
    """Strictly increasing timestamps, one millisecond apart."""

    def __init__(self, start=datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self):
        self.current += timedelta(milliseconds=1)
        return self.current


class FakeVerifier:
    """Accepts tokens of the form ``token-<user id>``."""

    def verify(self, token: str) -> str:
        if not token.startswith("token-") or len(token) == len("token-"):
            raise AuthenticationError()
        return token[len("token-"):]


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer token-{user_id}"}


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
        AUTH_PROVIDER="jwt",
        SSE_KEEPALIVE_SECONDS=0.05,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings.DATABASE_URL)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(engine, clock):
    return DocumentStore(create_session_factory(engine), clock=clock)


@pytest.fixture
def message_service(store):
    return MessageService(store)


@pytest.fixture
def conversation_service(store, message_service):
    return ConversationService(store, message_service)


@pytest.fixture
def app(settings, engine, clock):
    return create_app(settings=settings, engine=engine, verifier=FakeVerifier(), clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def create_conversation(client):
    """POST /conversations as ``creator`` and return the new id."""

    def _create(creator: str, participants, type: str = "direct", **extra) -> str:
        r = client.post(
            "/api/chat/conversations",
            json={"participants": list(participants), "type": type, **extra},
            headers=auth_headers(creator),
        )
        assert r.status_code == 201, r.text
        return r.json()["data"]["conversationId"]

    return _create
