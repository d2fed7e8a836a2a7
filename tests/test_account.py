# Account deletion test suite: grace-period scheduling, cancel, and the admin cascade.
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Tuple

from fastapi.testclient import TestClient

from vendra.db import SessionLocal
from vendra import models


def signup(client: TestClient, email: str, password: str = "changeme123", role: str | None = None) -> Tuple[str, dict]:
    payload = {"email": email, "password": password}
    if role:
        payload["role"] = role
    r = client.post("/auth/signup", json=payload)
    assert r.status_code == 201, r.text
    data = r.json()
    return data["access_token"], data["user"]


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def request_deletion(client: TestClient, token: str, reason: str | None = None):
    return client.post(
        "/api/v1/account/deletion",
        headers=auth_headers(token),
        json={"reason": reason, "confirmation": "ELIMINAR"},
    )


def as_naive_utc(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def test_schedule_is_idempotent_and_sets_grace_period(client: TestClient):
    token, _ = signup(client, "leaving@example.com")
    r = request_deletion(client, token, "ya vendí")
    assert r.status_code == 201, r.text
    first = r.json()
    assert first["status"] == "pending"

    expected = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=30)
    assert abs(as_naive_utc(first["scheduled_completion_at"]) - expected) < timedelta(minutes=5)

    second = request_deletion(client, token).json()
    assert second["id"] == first["id"]

    me = client.get("/auth/me", headers=auth_headers(token)).json()
    assert me["deletion_scheduled_at"] is not None


def test_confirmation_word_required(client: TestClient):
    token, _ = signup(client, "careful@example.com")
    r = client.post("/api/v1/account/deletion", headers=auth_headers(token), json={"confirmation": "si"})
    assert r.status_code == 422


def test_cancel_is_idempotent(client: TestClient):
    token, _ = signup(client, "changed-mind@example.com")
    request_deletion(client, token)

    for _ in range(2):
        r = client.delete("/api/v1/account/deletion", headers=auth_headers(token))
        assert r.status_code == 200, r.text
        assert r.json()["deletion_scheduled_at"] is None
    assert client.get("/api/v1/account/deletion", headers=auth_headers(token)).json() is None


def test_admin_reject_clears_schedule(client: TestClient, make_admin):
    admin_token, admin = signup(client, "del-admin@example.com")
    make_admin(admin["id"])
    token, _ = signup(client, "rejected@example.com")
    req = request_deletion(client, token).json()

    r = client.post(f"/api/v1/admin/deletion-requests/{req['id']}/reject", headers=auth_headers(admin_token))
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "rejected"
    assert client.get("/auth/me", headers=auth_headers(token)).json()["deletion_scheduled_at"] is None

    again = client.post(f"/api/v1/admin/deletion-requests/{req['id']}/approve", headers=auth_headers(admin_token))
    assert again.status_code == 409


def test_admin_cannot_self_delete(client: TestClient, make_admin):
    admin_token, admin = signup(client, "stay-admin@example.com")
    make_admin(admin["id"])
    assert request_deletion(client, admin_token).status_code == 400


def _seed_user_data(user_id: int, other_id: int) -> None:
    """Rows in every table that references the user, plus some pointing at the other user."""
    db = SessionLocal()
    try:
        prop = models.Property(owner_id=user_id, title="Casa a borrar", price_cents=100, status="active")
        db.add(prop)
        db.add(models.Project(owner_id=user_id, title="Proyecto a borrar", views_count=0))
        db.flush()
        db.add(models.Favorite(user_id=other_id, property_id=prop.id))
        db.add(models.SellerApplication(user_id=user_id, status="draft", role_choice="vendedor_particular"))
        db.add(models.PushSubscription(user_id=user_id, endpoint="https://push.example.com/abc"))
        db.add(models.Review(reviewer_id=other_id, reviewed_id=user_id, rating=4))
        db.add(models.UserBlock(blocker_id=other_id, blocked_id=user_id))
        db.commit()
    finally:
        db.close()


def _count(model, *criteria) -> int:
    db = SessionLocal()
    try:
        return db.query(model).filter(*criteria).count()
    finally:
        db.close()


def test_admin_approve_cascades_everything(client: TestClient, make_admin):
    admin_token, admin = signup(client, "cascade-admin@example.com")
    make_admin(admin["id"])
    token, user = signup(client, "gone@example.com")
    other_token, other = signup(client, "stays@example.com")

    client.post(
        "/api/v1/messages",
        headers=auth_headers(other_token),
        json={"recipient_id": user["id"], "content": "hola"},
    )
    client.post(
        "/api/v1/reports",
        headers=auth_headers(other_token),
        json={"reported_user_id": user["id"], "reason": "spam"},
    )
    _seed_user_data(user["id"], other["id"])
    req = request_deletion(client, token).json()

    pending = client.get("/api/v1/admin/deletion-requests?status=pending", headers=auth_headers(admin_token)).json()
    assert [p["id"] for p in pending] == [req["id"]]

    r = client.post(f"/api/v1/admin/deletion-requests/{req['id']}/approve", headers=auth_headers(admin_token))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["request"]["status"] == "completed"
    assert body["deleted"]["users"] == 1
    assert body["deleted"]["messages"] == 1
    assert body["deleted"]["favorites"] == 1

    uid = user["id"]
    assert _count(models.User, models.User.id == uid) == 0
    assert _count(models.Property, models.Property.owner_id == uid) == 0
    assert _count(models.Project, models.Project.owner_id == uid) == 0
    assert _count(models.Message) == 0
    assert _count(models.Conversation) == 0
    assert _count(models.Report) == 0
    assert _count(models.Favorite) == 0
    assert _count(models.Review) == 0
    assert _count(models.UserBlock) == 0
    assert _count(models.SellerApplication) == 0
    assert _count(models.PushSubscription) == 0
    # The request row survives as the record of the deletion
    assert _count(models.DeletionRequest, models.DeletionRequest.status == "completed") == 1
    assert _count(models.AdminAccessLog, models.AdminAccessLog.access_type == "approve_deletion") == 1

    # The remaining user is intact and the deleted token no longer authenticates
    assert client.get("/auth/me", headers=auth_headers(other_token)).status_code == 200
    assert client.get("/auth/me", headers=auth_headers(token)).status_code == 401
