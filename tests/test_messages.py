# Messages HTTP API test suite: symmetric threads, ordering/pagination, read receipts,
# block gating and closed support cases.
from __future__ import annotations

from datetime import timedelta
from typing import List, Tuple

from fastapi.testclient import TestClient

from vendra.db import SessionLocal
from vendra import models


# Helper: create a user and return (access_token, user JSON)
def signup(client: TestClient, email: str, password: str = "changeme123", role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "password": password}
    if role:
        payload["role"] = role
    r = client.post("/auth/signup", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


# Convenience header for authenticated requests
def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def send(client: TestClient, token: str, recipient_id: int, content: str):
    return client.post(
        "/api/v1/messages",
        headers=auth_headers(token),
        json={"recipient_id": recipient_id, "content": content},
    )


def thread(client: TestClient, token: str, with_user_id: int, **params) -> List[dict]:
    query = "&".join(f"{k}={v}" for k, v in params.items())
    r = client.get(f"/api/v1/messages?with_user_id={with_user_id}&{query}", headers=auth_headers(token))
    assert r.status_code == 200, r.text
    return r.json()


# Both participants read the same thread, in ascending order
def test_thread_is_symmetric_and_ordered(client: TestClient):
    token_a, a = signup(client, "a@example.com")
    token_b, b = signup(client, "b@example.com")

    ids = []
    for token, other, text in ((token_a, b, "hola"), (token_b, a, "buenas"), (token_a, b, "sigue disponible?")):
        r = send(client, token, other["id"], text)
        assert r.status_code == 201, r.text
        ids.append(r.json()["id"])

    seen_by_a = thread(client, token_a, b["id"])
    seen_by_b = thread(client, token_b, a["id"])
    assert [m["id"] for m in seen_by_a] == ids
    assert seen_by_a == seen_by_b
    assert len({m["conversation_id"] for m in seen_by_a}) == 1


# since_id paginates strictly forward
def test_since_id_pagination(client: TestClient):
    token_a, a = signup(client, "p1@example.com")
    _, b = signup(client, "p2@example.com")
    ids = [send(client, token_a, b["id"], f"m{i}").json()["id"] for i in range(3)]

    page1 = thread(client, token_a, b["id"], limit=2)
    assert [m["id"] for m in page1] == ids[:2]

    page2 = thread(client, token_a, b["id"], since_id=page1[-1]["id"], limit=50)
    assert [m["id"] for m in page2] == ids[2:]


# A row committed later with an older timestamp must still be reached by the id cursor
def test_cursor_paging_reaches_rows_with_older_timestamps(client: TestClient):
    token_a, a = signup(client, "skew1@example.com")
    _, b = signup(client, "skew2@example.com")
    first = send(client, token_a, b["id"], "first").json()

    db = SessionLocal()
    try:
        stored = db.get(models.Message, first["id"])
        db.add(
            models.Message(
                conversation_id=stored.conversation_id,
                sender_id=a["id"],
                recipient_id=b["id"],
                content="second",
                created_at=stored.created_at - timedelta(seconds=1),
            )
        )
        db.commit()
    finally:
        db.close()

    seen: List[str] = []
    cursor = None
    while True:
        params = {"limit": 1} if cursor is None else {"limit": 1, "since_id": cursor}
        page = thread(client, token_a, b["id"], **params)
        if not page:
            break
        seen.extend(m["content"] for m in page)
        cursor = max(m["id"] for m in page)
    assert seen == ["first", "second"]

    # The full thread still reads in timestamp order
    assert [m["content"] for m in thread(client, token_a, b["id"])] == ["second", "first"]


def test_unread_count_and_mark_read(client: TestClient):
    token_a, a = signup(client, "r1@example.com")
    token_b, b = signup(client, "r2@example.com")
    send(client, token_a, b["id"], "uno")
    send(client, token_a, b["id"], "dos")

    r = client.get("/api/v1/messages/unread_count", headers=auth_headers(token_b))
    assert r.json()["unread"] == 2

    # Sender's own messages are never unread for the sender
    r_sender = client.get("/api/v1/messages/unread_count", headers=auth_headers(token_a))
    assert r_sender.json()["unread"] == 0

    r_read = client.post(f"/api/v1/messages/read?with_user_id={a['id']}", headers=auth_headers(token_b))
    assert r_read.status_code == 200, r_read.text
    assert r_read.json()["updated"] == 2

    r_after = client.get("/api/v1/messages/unread_count", headers=auth_headers(token_b))
    assert r_after.json()["unread"] == 0
    assert all(m["read_at"] is not None for m in thread(client, token_b, a["id"]))


def test_conversation_list_shows_other_user_and_unread(client: TestClient):
    token_a, a = signup(client, "l1@example.com")
    token_b, b = signup(client, "l2@example.com")
    send(client, token_a, b["id"], "hola")

    r = client.get("/api/v1/conversations", headers=auth_headers(token_b))
    assert r.status_code == 200, r.text
    items = r.json()
    assert len(items) == 1
    assert items[0]["other_user"]["id"] == a["id"]
    assert items[0]["unread_count"] == 1
    assert items[0]["last_message"]["content"] == "hola"
    assert items[0]["case_status"] == "open"


# A block in either direction stops messages both ways
def test_block_prevents_sending_both_directions(client: TestClient):
    token_a, a = signup(client, "blk1@example.com")
    token_b, b = signup(client, "blk2@example.com")
    assert send(client, token_a, b["id"], "antes").status_code == 201

    r_block = client.post(f"/api/v1/blocks/{b['id']}", headers=auth_headers(token_a))
    assert r_block.status_code == 200, r_block.text

    r1 = send(client, token_a, b["id"], "bloqueado")
    r2 = send(client, token_b, a["id"], "respuesta")
    assert r1.status_code == 403 and r2.status_code == 403
    assert r2.json()["detail"]["error"] == "blocked"

    # Nothing was persisted by the rejected sends
    assert len(thread(client, token_a, b["id"])) == 1


def test_send_validation(client: TestClient):
    token_a, a = signup(client, "v1@example.com")
    assert send(client, token_a, a["id"], "yo mismo").status_code == 400
    assert send(client, token_a, 9999, "nadie").status_code == 404
    assert send(client, token_a, 9999, "   ").status_code == 422


def test_history_requires_auth_and_limit_bounds(client: TestClient):
    token_a, a = signup(client, "h1@example.com")
    _, b = signup(client, "h2@example.com")
    assert client.get(f"/api/v1/messages?with_user_id={b['id']}").status_code == 401

    r_low = client.get(f"/api/v1/messages?with_user_id={b['id']}&limit=0", headers=auth_headers(token_a))
    r_high = client.get(f"/api/v1/messages?with_user_id={b['id']}&limit=101", headers=auth_headers(token_a))
    assert r_low.status_code == 422 and r_high.status_code == 422


def _message_count(conversation_id: int) -> int:
    db = SessionLocal()
    try:
        return db.query(models.Message).filter(models.Message.conversation_id == conversation_id).count()
    finally:
        db.close()


# Closing a support case stops both sides until an admin reopens it
def test_closed_support_case_rejects_messages_until_reopened(client: TestClient, make_admin):
    admin_token, admin = signup(client, "soporte@example.com")
    make_admin(admin["id"])
    user_token, user = signup(client, "cliente@example.com")

    r = client.post("/api/v1/support/messages", headers=auth_headers(user_token), json={"content": "ayuda"})
    assert r.status_code == 201, r.text
    conversation_id = r.json()["conversation_id"]

    r_close = client.post(f"/api/v1/admin/cases/{user['id']}/close", headers=auth_headers(admin_token))
    assert r_close.status_code == 200, r_close.text
    assert r_close.json()["case_status"] == "closed"
    # Request plus closing notice
    assert _message_count(conversation_id) == 2

    status = client.get(f"/api/v1/conversations/status?with_user_id={admin['id']}", headers=auth_headers(user_token))
    assert status.json()["is_closed"] is True
    assert status.json()["message"]

    r_user = client.post("/api/v1/support/messages", headers=auth_headers(user_token), json={"content": "otra vez"})
    assert r_user.status_code == 409
    r_direct = send(client, user_token, admin["id"], "directo")
    assert r_direct.status_code == 409
    r_admin = client.post(
        f"/api/v1/admin/messages/{user['id']}", headers=auth_headers(admin_token), json={"content": "hola"}
    )
    assert r_admin.status_code == 409
    assert _message_count(conversation_id) == 2

    r_reopen = client.post(f"/api/v1/admin/cases/{user['id']}/reopen", headers=auth_headers(admin_token))
    assert r_reopen.json()["case_status"] == "open"
    r_again = client.post("/api/v1/support/messages", headers=auth_headers(user_token), json={"content": "gracias"})
    assert r_again.status_code == 201, r_again.text


def test_admin_inbox_lists_support_threads(client: TestClient, make_admin):
    admin_token, admin = signup(client, "inbox-admin@example.com")
    make_admin(admin["id"])
    user_token, user = signup(client, "inbox-user@example.com")
    client.post("/api/v1/support/messages", headers=auth_headers(user_token), json={"content": "consulta"})

    r = client.get("/api/v1/admin/messages", headers=auth_headers(admin_token))
    assert r.status_code == 200, r.text
    threads = r.json()
    assert [t["user"]["id"] for t in threads] == [user["id"]]
    assert threads[0]["unread_count"] == 1

    # Another admin answers into the same thread
    other_token, other_admin = signup(client, "inbox-admin2@example.com")
    make_admin(other_admin["id"])
    # The member's unread message shows for every admin, not just the one it was addressed to
    other_inbox = client.get("/api/v1/admin/messages", headers=auth_headers(other_token)).json()
    assert other_inbox[0]["unread_count"] == 1
    r_reply = client.post(
        f"/api/v1/admin/messages/{user['id']}", headers=auth_headers(other_token), json={"content": "respuesta"}
    )
    assert r_reply.status_code == 201, r_reply.text
    assert r_reply.json()["conversation_id"] == threads[0]["conversation_id"]
