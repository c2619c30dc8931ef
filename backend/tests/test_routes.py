"""Tests for the HTTP routes under /api/chat."""

import asyncio
import contextlib
import json

import pytest

from conftest import auth_headers


async def read_first_event(app, path: str, user_id: str):
    """
    Call an SSE route at the ASGI level and return the response start message
    and the first ``data:`` payload, then disconnect.

    Event streams never complete, so a client that buffers the whole body
    cannot be used here.
    """
    sent: asyncio.Queue = asyncio.Queue()
    disconnected = asyncio.Event()

    async def receive():
        await disconnected.wait()
        return {"type": "http.disconnect"}

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": [
            (b"host", b"testserver"),
            (b"authorization", f"Bearer token-{user_id}".encode()),
        ],
        "client": ("testclient", 50000),
        "server": ("testserver", 80),
    }
    task = asyncio.create_task(app(scope, receive, sent.put))
    try:
        start = await asyncio.wait_for(sent.get(), timeout=5)
        while True:
            message = await asyncio.wait_for(sent.get(), timeout=5)
            body = message.get("body", b"").decode()
            if body.startswith("data: "):
                return start, json.loads(body[len("data: "):])
    finally:
        disconnected.set()
        done, _ = await asyncio.wait({task}, timeout=1)
        if not done:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


def test_requires_bearer_token(client):
    r = client.get("/api/chat/conversations")
    assert r.status_code == 401
    assert r.json() == {
        "success": False,
        "error": "AUTHENTICATION_TOKEN_REQUIRED",
        "message": "Authentication token required",
    }


def test_rejects_invalid_token(client):
    r = client.get("/api/chat/conversations", headers={"Authorization": "Bearer nonsense"})
    assert r.status_code == 401
    assert r.json()["error"] == "AUTHENTICATION_FAILED"


def test_create_conversation(client):
    r = client.post(
        "/api/chat/conversations",
        json={"participants": ["alice", "bob"], "type": "direct"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["data"]["conversationId"]


def test_create_direct_conversation_twice_returns_same_id(create_conversation):
    first = create_conversation("alice", ["alice", "bob"])
    second = create_conversation("bob", ["bob", "alice"])
    assert first == second


def test_create_conversation_invalid_participant_count(client):
    r = client.post(
        "/api/chat/conversations",
        json={"participants": ["alice", "bob", "carol"], "type": "direct"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_PARTICIPANT_COUNT"


def test_validation_errors_use_envelope(client):
    r = client.post("/api/chat/conversations", json={"participants": []}, headers=auth_headers("alice"))
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert body["error"] == "VALIDATION_ERROR"
    assert body["details"]


def test_get_conversation_access(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])

    r = client.get(f"/api/chat/conversations/{conversation_id}", headers=auth_headers("bob"))
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["id"] == conversation_id
    assert sorted(data["participants"]) == ["alice", "bob"]
    assert data["type"] == "direct"

    r = client.get(f"/api/chat/conversations/{conversation_id}", headers=auth_headers("mallory"))
    assert r.status_code == 403
    assert r.json()["error"] == "ACCESS_DENIED"

    r = client.get("/api/chat/conversations/missing", headers=auth_headers("alice"))
    assert r.status_code == 404
    assert r.json()["error"] == "CONVERSATION_NOT_FOUND"


def test_send_and_list_messages(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])

    r = client.post(
        "/api/chat/messages",
        json={"conversationId": conversation_id, "content": "¿Sigue disponible? 🚲"},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 201
    message_id = r.json()["data"]["messageId"]

    r = client.get(f"/api/chat/conversations/{conversation_id}/messages", headers=auth_headers("bob"))
    assert r.status_code == 200
    messages = r.json()["data"]
    assert [message["id"] for message in messages] == [message_id]
    assert messages[0]["content"] == "¿Sigue disponible? 🚲"
    assert messages[0]["readBy"] == ["alice"]
    assert messages[0]["messageType"] == "text"


def test_send_message_as_non_member(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    r = client.post(
        "/api/chat/messages",
        json={"conversationId": conversation_id, "content": "hi"},
        headers=auth_headers("mallory"),
    )
    assert r.status_code == 403
    assert r.json()["error"] == "CONVERSATION_NOT_FOUND_OR_USER_NOT_AUTHORIZED"


def test_send_message_rejects_bad_metadata(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    r = client.post(
        "/api/chat/messages",
        json={"conversationId": conversation_id, "content": "hi", "metadata": {"unexpected": True}},
        headers=auth_headers("alice"),
    )
    assert r.status_code == 422


def test_message_pagination(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    sent = []
    for n in range(5):
        r = client.post(
            "/api/chat/messages",
            json={"conversationId": conversation_id, "content": f"message {n}"},
            headers=auth_headers("alice"),
        )
        sent.append(r.json()["data"]["messageId"])

    url = f"/api/chat/conversations/{conversation_id}/messages"
    first = client.get(url, params={"limit": 2}, headers=auth_headers("bob")).json()["data"]
    second = client.get(url, params={"limit": 2, "startAfter": first[-1]["id"]}, headers=auth_headers("bob")).json()["data"]

    assert [message["id"] for message in first + second] == list(reversed(sent))[:4]


def test_message_listing_limits(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    url = f"/api/chat/conversations/{conversation_id}/messages"

    assert client.get(url, params={"limit": 0}, headers=auth_headers("alice")).status_code == 422
    assert client.get(url, params={"limit": 101}, headers=auth_headers("alice")).status_code == 422

    r = client.get(url, params={"startAfter": "missing"}, headers=auth_headers("alice"))
    assert r.status_code == 400
    assert r.json()["error"] == "INVALID_CURSOR"

    r = client.get(url, headers=auth_headers("mallory"))
    assert r.status_code == 403
    assert r.json()["message"] == "Access denied to conversation"


def test_mark_read_and_summaries(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    message_ids = [
        client.post(
            "/api/chat/messages",
            json={"conversationId": conversation_id, "content": text},
            headers=auth_headers("alice"),
        ).json()["data"]["messageId"]
        for text in ("one", "two", "three")
    ]

    summaries = client.get("/api/chat/conversations", headers=auth_headers("bob")).json()["data"]
    assert summaries[0]["unreadCount"] == 3
    assert summaries[0]["lastMessage"]["content"] == "three"

    r = client.post(
        "/api/chat/messages/mark-read",
        json={"conversationId": conversation_id, "messageId": message_ids[0]},
        headers=auth_headers("bob"),
    )
    assert r.status_code == 200
    assert r.json()["success"] is True

    summaries = client.get("/api/chat/conversations", headers=auth_headers("bob")).json()["data"]
    assert summaries[0]["unreadCount"] == 2

    r = client.post(f"/api/chat/conversations/{conversation_id}/mark-all-read", headers=auth_headers("bob"))
    assert r.status_code == 200
    assert r.json()["data"] == {"marked": 2}

    summaries = client.get("/api/chat/conversations", headers=auth_headers("bob")).json()["data"]
    assert summaries[0]["unreadCount"] == 0


def test_mark_read_unknown_message(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    r = client.post(
        "/api/chat/messages/mark-read",
        json={"conversationId": conversation_id, "messageId": "missing"},
        headers=auth_headers("bob"),
    )
    assert r.status_code == 404
    assert r.json()["error"] == "MESSAGE_NOT_FOUND"


def test_mark_all_read_requires_membership(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    r = client.post(f"/api/chat/conversations/{conversation_id}/mark-all-read", headers=auth_headers("mallory"))
    assert r.status_code == 403


def test_subscribe_requires_participant(client, create_conversation):
    conversation_id = create_conversation("alice", ["alice", "bob"])
    r = client.get(f"/api/chat/conversations/{conversation_id}/subscribe", headers=auth_headers("mallory"))
    assert r.status_code == 403
    assert r.json()["error"] == "ACCESS_DENIED"


def test_group_conversation_over_http(client, create_conversation):
    conversation_id = create_conversation(
        "alice", ["alice", "bob", "carol"], type="group", name="Bikes", description="Bike swaps"
    )
    data = client.get(f"/api/chat/conversations/{conversation_id}", headers=auth_headers("carol")).json()["data"]
    assert data["type"] == "group"
    assert data["name"] == "Bikes"
    assert data["adminId"] == "alice"
    roles = {detail["userId"]: detail["role"] for detail in data["participantDetails"]}
    assert roles == {"alice": "admin", "bob": "member", "carol": "member"}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "healthy"


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/chat/nowhere", headers=auth_headers("alice"))
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Not Found"}


@pytest.mark.asyncio
async def test_subscribe_to_conversation_streams_messages(app):
    services = app.state.services
    conversation_id = await services.conversations.create_conversation("alice", ["alice", "bob"])
    await services.messages.send_message(conversation_id, "alice", "hi 👋")

    start, payload = await read_first_event(app, f"/api/chat/conversations/{conversation_id}/subscribe", "bob")

    assert start["status"] == 200
    headers = {key.decode(): value.decode() for key, value in start["headers"]}
    assert headers["content-type"].startswith("text/event-stream")
    assert headers["cache-control"] == "no-cache"
    assert payload["type"] == "messages"
    assert [message["content"] for message in payload["data"]] == ["hi 👋"]


@pytest.mark.asyncio
async def test_subscribe_to_user_conversations_streams_own_conversations(app):
    services = app.state.services
    mine = await services.conversations.create_conversation("alice", ["alice", "bob"])
    await services.conversations.create_conversation("bob", ["bob", "carol"])

    start, payload = await read_first_event(app, "/api/chat/conversations/subscribe", "alice")

    assert start["status"] == 200
    assert payload["type"] == "conversations"
    assert [conversation["id"] for conversation in payload["data"]] == [mine]
