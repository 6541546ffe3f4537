from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.dependencies import TOKEN_COOKIE_NAME, create_access_token, get_message_store, get_push_notifier
from app.main import app
from app.schemas.message import ConversationSummary
from app.services.feed import get_feed
from tests.conftest import BUYER, OTHER, SELLER, FakePush, FakeStore


@pytest.fixture()
def api_store():
    return FakeStore(get_feed())


@pytest.fixture()
def api_push():
    return FakePush()


@pytest.fixture()
def client(api_store, api_push):
    app.dependency_overrides[get_message_store] = lambda: api_store
    app.dependency_overrides[get_push_notifier] = lambda: api_push
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth(user_id=BUYER):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_redis_health_not_configured(client):
    response = client.get("/api/v1/health/redis")
    assert response.status_code == 200
    assert response.json()["status"] == "not_configured"


def test_requires_authentication(client):
    assert client.get("/api/v1/messages").status_code == 401
    response = client.get("/api/v1/messages", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_send_message(client, api_store, api_push):
    response = client.post(
        "/api/v1/messages/thread",
        json={"counterpartId": SELLER, "productId": "productX", "content": " Bonjour "},
        headers=auth(),
    )

    assert response.status_code == 201
    assert response.json() == {"success": True, "threadId": f"{BUYER}:{SELLER}:productX"}
    new_message = api_store.inserted[0]
    assert new_message.sender_id == BUYER
    assert new_message.recipient_id == SELLER
    assert new_message.content == "Bonjour"
    assert [c["recipient_id"] for c in api_push.calls] == [SELLER]


def test_send_message_with_cookie_session(client, api_store):
    client.cookies.set(TOKEN_COOKIE_NAME, create_access_token({"sub": SELLER}))
    response = client.post("/api/v1/messages/thread", json={"counterpartId": BUYER, "content": "Oui"})

    assert response.status_code == 201
    assert api_store.inserted[0].sender_id == SELLER


def test_send_media_only_message(client, api_store):
    response = client.post(
        "/api/v1/messages/thread",
        json={"counterpartId": SELLER, "mediaUrl": "https://cdn.example/f.pdf", "mediaName": "facture.pdf"},
        headers=auth(),
    )

    assert response.status_code == 201
    assert "facture.pdf" in api_store.inserted[0].content


@pytest.mark.parametrize("body", [
    {"counterpartId": BUYER, "content": "moi-même"},
    {"counterpartId": SELLER, "content": "   "},
])
def test_send_rejects_invalid_messages(client, api_store, body):
    response = client.post("/api/v1/messages/thread", json=body, headers=auth())

    assert response.status_code == 400
    assert api_store.inserted == []


def test_send_reports_store_failure(client, api_store, api_push):
    api_store.fail_insert = True
    response = client.post("/api/v1/messages/thread", json={"counterpartId": SELLER, "content": "x"}, headers=auth())

    assert response.status_code == 502
    assert api_push.calls == []


def test_get_thread_returns_history_and_marks_read(client, api_store):
    incoming = api_store.add(SELLER, BUYER, "Bonjour")
    api_store.add(BUYER, SELLER, "Salut")
    api_store.add(OTHER, BUYER, "pas ici")

    response = client.get("/api/v1/messages/thread", params={"counterpart": SELLER}, headers=auth())

    assert response.status_code == 200
    body = response.json()
    assert [m["content"] for m in body] == ["Bonjour", "Salut"]
    assert [m["isMine"] for m in body] == [False, True]
    assert body[0]["threadId"] == f"{BUYER}:{SELLER}:general"
    assert api_store.get(incoming.id).is_read is True


def test_get_thread_rejects_self_conversation(client):
    response = client.get("/api/v1/messages/thread", params={"counterpart": BUYER}, headers=auth())
    assert response.status_code == 400


def test_list_conversations(client):
    store = MagicMock()
    store.list_conversations = AsyncMock(return_value=[
        ConversationSummary(
            thread_id=f"{BUYER}:{SELLER}:general",
            counterpart_id=SELLER,
            last_message="Bonjour",
            last_message_at=datetime(2026, 1, 1, 10, 0),
            unread_count=2,
        )
    ])
    app.dependency_overrides[get_message_store] = lambda: store

    response = client.get("/api/v1/messages", headers=auth())

    assert response.status_code == 200
    entry = response.json()[0]
    assert entry["counterpartId"] == SELLER
    assert entry["unreadCount"] == 2
    assert entry["lastMessage"] == "Bonjour"
    store.list_conversations.assert_awaited_once_with(BUYER)


def test_websocket_streams_snapshot_and_new_messages(client, api_store):
    api_store.add(SELLER, BUYER, "Bonjour", is_read=True)
    token = create_access_token({"sub": BUYER})

    with client.websocket_connect(f"/api/v1/messages/ws?counterpart={SELLER}&token={token}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["event"] == "thread:snapshot"
        assert snapshot["threadId"] == f"{BUYER}:{SELLER}:general"
        assert [m["content"] for m in snapshot["messages"]] == ["Bonjour"]

        ws.send_text("Il est toujours disponible ?")
        events = {e["event"]: e for e in (ws.receive_json(), ws.receive_json())}

    assert events["message:sent"]["success"] is True
    new_message = events["message:new"]["message"]
    assert new_message["content"] == "Il est toujours disponible ?"
    assert new_message["isMine"] is True


def test_websocket_rejects_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/api/v1/messages/ws?counterpart={SELLER}&token=bad") as ws:
            ws.receive_json()
