"""API tests for the HTTP facade."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from freezegun import freeze_time

from eventsocial.main import app, broadcast_store, document_store
from eventsocial.repos.documents import EVENTS, ORDERS, PUBLIC_ATTENDEES

_NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clear_stores():
    document_store.clear()
    broadcast_store.clear()
    document_store.available = True
    yield
    document_store.clear()
    broadcast_store.clear()
    document_store.available = True


@pytest.fixture(autouse=True)
def _frozen():
    with freeze_time(_NOW, real_asyncio=True) as frozen:
        yield frozen


@pytest.fixture()
def client():
    return TestClient(app)


def _seed_event(event_id: str = "ev1") -> None:
    document_store.set(
        EVENTS,
        event_id,
        {
            "title": "Rooftop Sessions",
            "startDate": _NOW + timedelta(days=1),
            "organizerId": "host",
            "venueOwnerId": "venue",
        },
    )


def _seed_holder(user_id: str, event_id: str = "ev1") -> None:
    document_store.set(
        ORDERS,
        f"order_{user_id}",
        {"userId": user_id, "eventId": event_id, "status": "confirmed", "tickets": []},
    )
    document_store.set(
        PUBLIC_ATTENDEES,
        f"att_{user_id}",
        {"userId": user_id, "eventId": event_id, "type": "purchase", "userName": user_id.title()},
    )


@pytest.fixture()
def seeded():
    _seed_event()
    _seed_holder("alice")
    _seed_holder("bob")


def _connect(client: TestClient) -> str:
    resp = client.post("/conversations", json={"sender_id": "alice", "recipient_id": "bob", "event_id": "ev1"})
    assert resp.status_code == 200
    conversation_id = resp.json()["conversation_id"]
    assert client.post(f"/conversations/{conversation_id}/accept", json={"user_id": "bob"}).status_code == 200
    return conversation_id


# ---------------------------------------------------------------------------
# Phase & entitlements
# ---------------------------------------------------------------------------


def test_phase_endpoint(client: TestClient, seeded):
    resp = client.get("/events/ev1/phase")
    assert resp.status_code == 200
    assert resp.json()["phase"] == "PRE"
    assert resp.json()["label"] == "PRE"


def test_phase_follows_wall_clock(client: TestClient, seeded, _frozen):
    _frozen.tick(timedelta(days=1, hours=1))
    assert client.get("/events/ev1/phase").json()["phase"] == "LIVE"


def test_phase_unknown_event(client: TestClient):
    assert client.get("/events/nope/phase").status_code == 404


def test_entitlement_endpoint(client: TestClient, seeded):
    resp = client.get("/events/ev1/entitlements/alice")
    assert resp.status_code == 200
    assert resp.json()["type"] == "ticket_purchased"
    assert client.get("/events/ev1/entitlements/host").json()["type"] == "host"
    assert client.get("/events/ev1/entitlements/stranger").status_code == 404


def test_entitlement_endpoint_unavailable(client: TestClient, seeded):
    document_store.available = False
    assert client.get("/events/ev1/entitlements/alice").status_code == 503


def test_chat_access_endpoint(client: TestClient, seeded):
    assert client.get("/events/ev1/chat-access", params={"user_id": "alice"}).json()["allowed"] is True
    denied = client.get("/events/ev1/chat-access", params={"user_id": "stranger"}).json()
    assert denied["allowed"] is False
    assert denied["kind"] == "denied"


def test_attendees_endpoint(client: TestClient, seeded):
    resp = client.get("/events/ev1/attendees", params={"viewer_id": "alice"})
    assert [a["user_id"] for a in resp.json()] == ["bob"]
    assert client.get("/events/ev1/attendees/count").json()["count"] == 2


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------


def test_conversation_flow(client: TestClient, seeded):
    conversation_id = _connect(client)

    sent = client.post(
        f"/conversations/{conversation_id}/messages",
        json={"sender_id": "alice", "content": "Meet at the bar?"},
    )
    assert sent.status_code == 200
    assert sent.json()["message_id"]

    messages = client.get(f"/conversations/{conversation_id}/messages", params={"viewer_id": "bob"}).json()
    assert [(m["senderId"], m["content"]) for m in messages] == [("alice", "Meet at the bar?")]

    assert client.get("/users/bob/unread").json() == {conversation_id: 1}
    assert client.post(f"/conversations/{conversation_id}/read", json={"user_id": "bob"}).status_code == 204
    assert client.get("/users/bob/unread").json() == {}

    detail = client.get(f"/conversations/{conversation_id}", params={"viewer_id": "alice"}).json()
    assert detail["status"]["chip"] == "Connected"
    assert detail["conversation"]["last_message"]["content"] == "Meet at the bar?"


def test_message_request_listing(client: TestClient, seeded):
    client.post("/conversations", json={"sender_id": "alice", "recipient_id": "bob", "event_id": "ev1"})
    requests = client.get("/users/bob/requests").json()
    assert [r["initiatedBy"] for r in requests] == ["alice"]
    assert client.get("/users/alice/requests").json() == []


def test_self_message_is_forbidden(client: TestClient, seeded):
    resp = client.post("/conversations", json={"sender_id": "alice", "recipient_id": "alice", "event_id": "ev1"})
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "You cannot message yourself"


def test_accept_unknown_conversation_is_404(client: TestClient, seeded):
    resp = client.post("/conversations/missing/accept", json={"user_id": "bob"})
    assert resp.status_code == 404


def test_store_outage_is_503(client: TestClient, seeded):
    document_store.available = False
    resp = client.post("/conversations", json={"sender_id": "alice", "recipient_id": "bob", "event_id": "ev1"})
    assert resp.status_code == 503
    assert resp.json()["detail"]["kind"] == "transient"


def test_block_then_initiate_is_forbidden(client: TestClient, seeded):
    assert client.post("/blocks", json={"blocker_id": "bob", "blocked_id": "alice"}).status_code == 200
    assert client.get("/users/bob/blocks").json() == ["alice"]
    resp = client.post("/conversations", json={"sender_id": "alice", "recipient_id": "bob", "event_id": "ev1"})
    assert resp.status_code == 403

    assert client.delete("/blocks/bob/alice").status_code == 200
    resp = client.post("/conversations", json={"sender_id": "alice", "recipient_id": "bob", "event_id": "ev1"})
    assert resp.status_code == 200


def test_save_contact(client: TestClient, seeded):
    _connect(client)
    resp = client.post(
        "/events/ev1/contacts",
        json={"user_id": "alice", "contact_user_id": "bob", "contact_name": "Bob"},
    )
    assert resp.status_code == 200
    contacts = client.get("/users/alice/contacts").json()
    assert [(c["contactUserId"], c["eventTitle"]) for c in contacts] == [("bob", "Rooftop Sessions")]


# ---------------------------------------------------------------------------
# Group chat
# ---------------------------------------------------------------------------


def test_group_chat_flow(client: TestClient, seeded):
    info = client.get("/events/ev1/chat").json()
    assert info["enabled"] is True
    assert info["participant_count"] == 2

    posted = client.post(
        "/events/ev1/chat/messages",
        json={"user_id": "alice", "user_name": "Alice", "content": "Who's going early?"},
    )
    assert posted.status_code == 200
    message_id = posted.json()["message_id"]

    reacted = client.post(f"/chat/messages/{message_id}/reactions", json={"user_id": "bob", "emoji": "🙋"})
    assert reacted.status_code == 200
    messages = client.get("/events/ev1/chat/messages").json()
    assert messages[0]["reactions"] == {"🙋": ["bob"]}

    assert client.delete(f"/chat/messages/{message_id}", params={"actor_id": "bob"}).status_code == 403
    assert client.delete(f"/chat/messages/{message_id}", params={"actor_id": "host"}).status_code == 200
    assert client.get("/events/ev1/chat/messages").json() == []


def test_group_moderation(client: TestClient, seeded):
    forbidden = client.post("/events/ev1/chat/mutes", json={"user_id": "bob", "muted_by": "alice"})
    assert forbidden.status_code == 403

    muted = client.post(
        "/events/ev1/chat/mutes",
        json={"user_id": "bob", "muted_by": "host", "duration_minutes": 15},
    )
    assert muted.status_code == 200
    post = client.post("/events/ev1/chat/messages", json={"user_id": "bob", "user_name": "Bob", "content": "hi"})
    assert post.status_code == 403

    assert client.delete("/events/ev1/chat/mutes/bob", params={"actor_id": "host"}).status_code == 200
    post = client.post("/events/ev1/chat/messages", json={"user_id": "bob", "user_name": "Bob", "content": "hi"})
    assert post.status_code == 200

    removed = client.post("/events/ev1/chat/removals", json={"user_id": "bob", "removed_by": "venue"})
    assert removed.status_code == 200
    assert client.get("/events/ev1/chat-access", params={"user_id": "bob"}).json()["allowed"] is False


def test_group_unread_counts(client: TestClient, seeded):
    client.post("/events/ev1/chat/messages", json={"user_id": "alice", "user_name": "Alice", "content": "yo"})
    counts = client.get("/users/bob/chat-unread", params={"event_ids": ["ev1"]}).json()
    assert counts == {"ev1": 1}
    client.post("/events/ev1/chat/read", json={"user_id": "bob"})
    assert client.get("/users/bob/chat-unread", params={"event_ids": ["ev1"]}).json() == {"ev1": 0}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def test_report_flow(client: TestClient, seeded):
    filed = client.post(
        "/reports",
        json={"reporter_id": "alice", "reported_id": "bob", "category": "harassment", "event_id": "ev1"},
    )
    assert filed.status_code == 200
    report_id = filed.json()["report_id"]
    assert [r["id"] for r in client.get("/reports", params={"event_id": "ev1"}).json()] == [report_id]

    resolved = client.post(f"/reports/{report_id}/resolve", json={"reviewer_id": "admin", "action": "warned"})
    assert resolved.status_code == 200
    assert client.get("/reports").json() == []
    again = client.post(f"/reports/{report_id}/resolve", json={"reviewer_id": "admin"})
    assert again.status_code == 403


def test_invalid_report_category_is_422(client: TestClient):
    resp = client.post("/reports", json={"reporter_id": "alice", "reported_id": "bob", "category": "meh"})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Typing
# ---------------------------------------------------------------------------


def test_typing_roundtrip(client: TestClient, _frozen):
    resp = client.put("/typing/dm/conv1", json={"user_id": "alice", "user_name": "Alice", "is_typing": True})
    assert resp.status_code == 204

    status = client.get("/typing/dm/conv1", params={"viewer_id": "bob"}).json()
    assert status["is_typing"] is True
    assert status["text"] == "Alice is typing..."
    assert client.get("/typing/dm/conv1", params={"viewer_id": "alice"}).json()["is_typing"] is False

    _frozen.tick(timedelta(seconds=6))
    assert client.get("/typing/dm/conv1", params={"viewer_id": "bob"}).json()["is_typing"] is False
