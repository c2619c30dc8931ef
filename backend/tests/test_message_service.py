"""Tests for MessageService."""

import pytest
import pytest_asyncio

from donchat.core.errors import (
    AccessDeniedError,
    ConversationAccessError,
    InvalidCursorError,
    MessageNotFoundError,
)
from donchat.schemas.message import MessageType
from donchat.services.base import MESSAGE_COLLECTION


@pytest_asyncio.fixture
async def conversation_id(conversation_service):
    return await conversation_service.create_conversation("alice", ["alice", "bob"])


@pytest.mark.asyncio
async def test_send_message_initialises_read_by_and_bumps_conversation(message_service, conversation_service, conversation_id):
    before = await conversation_service.get_conversation(conversation_id)

    message_id = await message_service.send_message(conversation_id, "alice", "Is the bike still available?")

    message = await message_service.get_message(message_id)
    assert message.conversation_id == conversation_id
    assert message.sender_id == "alice"
    assert message.message_type == MessageType.text
    assert message.read_by == ["alice"]

    after = await conversation_service.get_conversation(conversation_id)
    assert after.last_message_at > before.last_message_at


@pytest.mark.asyncio
async def test_send_message_requires_membership(message_service, store, conversation_id):
    with pytest.raises(ConversationAccessError):
        await message_service.send_message(conversation_id, "mallory", "hi")
    with pytest.raises(ConversationAccessError):
        await message_service.send_message("missing", "alice", "hi")

    assert await store.count(MESSAGE_COLLECTION) == 0


@pytest.mark.asyncio
async def test_mark_message_as_read_is_monotonic(message_service, conversation_id):
    message_id = await message_service.send_message(conversation_id, "alice", "hi")

    assert await message_service.mark_message_as_read(conversation_id, message_id, "bob") is True
    assert await message_service.mark_message_as_read(conversation_id, message_id, "bob") is False

    message = await message_service.get_message(message_id)
    assert message.read_by == ["alice", "bob"]


@pytest.mark.asyncio
async def test_mark_message_as_read_errors(message_service, conversation_service, conversation_id):
    other_id = await conversation_service.create_conversation("alice", ["alice", "carol"])
    message_id = await message_service.send_message(other_id, "alice", "hi")

    with pytest.raises(MessageNotFoundError):
        await message_service.mark_message_as_read(conversation_id, message_id, "alice")
    with pytest.raises(MessageNotFoundError):
        await message_service.mark_message_as_read(conversation_id, "missing", "bob")
    with pytest.raises(AccessDeniedError):
        await message_service.mark_message_as_read(other_id, message_id, "bob")


@pytest.mark.asyncio
async def test_unread_count_and_mark_all(message_service, conversation_id):
    for text in ("one", "two", "three"):
        await message_service.send_message(conversation_id, "alice", text)

    assert await message_service.get_unread_count(conversation_id, "bob") == 3
    assert await message_service.get_unread_count(conversation_id, "alice") == 0

    assert await message_service.mark_all_as_read(conversation_id, "bob") == 3
    assert await message_service.get_unread_count(conversation_id, "bob") == 0
    assert await message_service.mark_all_as_read(conversation_id, "bob") == 0


@pytest.mark.asyncio
async def test_mark_all_requires_membership(message_service, conversation_id):
    with pytest.raises(AccessDeniedError):
        await message_service.mark_all_as_read(conversation_id, "mallory")


@pytest.mark.asyncio
async def test_pagination_is_stable(message_service, conversation_id):
    sent = [await message_service.send_message(conversation_id, "alice", f"message {n}") for n in range(7)]

    pages = []
    cursor = None
    while True:
        page = await message_service.get_conversation_messages(conversation_id, limit=3, start_after=cursor)
        if not page:
            break
        pages.append([message.id for message in page])
        cursor = page[-1].id

    assert [len(page) for page in pages] == [3, 3, 1]
    assert [message_id for page in pages for message_id in page] == list(reversed(sent))


@pytest.mark.asyncio
async def test_invalid_cursor(message_service, conversation_id):
    await message_service.send_message(conversation_id, "alice", "hi")
    with pytest.raises(InvalidCursorError):
        await message_service.get_conversation_messages(conversation_id, start_after="missing")


@pytest.mark.asyncio
async def test_get_last_message(message_service, conversation_id):
    assert await message_service.get_last_message(conversation_id) is None

    await message_service.send_message(conversation_id, "alice", "first")
    await message_service.send_message(conversation_id, "bob", "second")

    last = await message_service.get_last_message(conversation_id)
    assert last.content == "second"


@pytest.mark.asyncio
async def test_subscribe_to_conversation(message_service, conversation_service, store, conversation_id):
    other_id = await conversation_service.create_conversation("alice", ["alice", "carol"])
    await message_service.send_message(conversation_id, "alice", "first")

    snapshots = []
    unsubscribe = await message_service.subscribe_to_conversation(conversation_id, snapshots.append)
    assert [message.content for message in snapshots[-1]] == ["first"]

    await message_service.send_message(other_id, "alice", "elsewhere")
    await message_service.send_message(conversation_id, "bob", "second")

    assert [message.content for message in snapshots[-1]] == ["first", "second"]

    unsubscribe()
    assert store.subscriber_count(MESSAGE_COLLECTION) == 0
