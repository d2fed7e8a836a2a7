# Report moderation test suite: submission rules, admin state machine with
# optimistic versioning, audited reads and block-on-behalf.
from __future__ import annotations

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


def setup_report(client: TestClient, make_admin) -> Tuple[str, str, dict, dict, dict]:
    """Admin, reporter and reported user with one message between them and a pending report."""
    admin_token, admin = signup(client, "mod@example.com")
    make_admin(admin["id"])
    reporter_token, reporter = signup(client, "reporter@example.com")
    _, reported = signup(client, "reported@example.com")
    client.post(
        "/api/v1/messages",
        headers=auth_headers(reporter_token),
        json={"recipient_id": reported["id"], "content": "mensaje sospechoso"},
    )
    r = client.post(
        "/api/v1/reports",
        headers=auth_headers(reporter_token),
        json={"reported_user_id": reported["id"], "reason": "fraud", "description": "pide dinero"},
    )
    assert r.status_code == 201, r.text
    return admin_token, reporter_token, reporter, reported, r.json()


def test_create_report_attaches_conversation(client: TestClient, make_admin):
    admin_token, _, _, _, report = setup_report(client, make_admin)
    assert report["status"] == "pending"
    assert report["version"] == 1
    assert report["conversation_id"] is not None

    listing = client.get("/api/v1/admin/reports?status=pending", headers=auth_headers(admin_token)).json()
    assert listing["counts"]["pending_count"] == 1
    assert listing["counts"]["total_count"] == 1
    assert listing["reports"][0]["last_message_preview"] == "mensaje sospechoso"
    assert listing["reports"][0]["reporter"]["email"] == "reporter@example.com"


def test_report_submission_rules(client: TestClient, make_admin):
    _, reporter_token, reporter, reported, _ = setup_report(client, make_admin)

    dup = client.post(
        "/api/v1/reports",
        headers=auth_headers(reporter_token),
        json={"reported_user_id": reported["id"], "reason": "spam"},
    )
    assert dup.status_code == 409

    own = client.post(
        "/api/v1/reports",
        headers=auth_headers(reporter_token),
        json={"reported_user_id": reporter["id"], "reason": "spam"},
    )
    assert own.status_code == 400

    missing = client.post(
        "/api/v1/reports",
        headers=auth_headers(reporter_token),
        json={"reported_user_id": 9999, "reason": "spam"},
    )
    assert missing.status_code == 404

    bad_reason = client.post(
        "/api/v1/reports",
        headers=auth_headers(reporter_token),
        json={"reported_user_id": reported["id"], "reason": "boring"},
    )
    assert bad_reason.status_code == 422


def test_assign_then_resolve_with_versioning(client: TestClient, make_admin):
    admin_token, _, _, _, report = setup_report(client, make_admin)
    url = f"/api/v1/admin/reports/{report['id']}"

    r = client.patch(url, headers=auth_headers(admin_token), json={"assign_to_me": True, "expected_version": 1})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "reviewing"
    assert body["version"] == 2
    assert body["assigned_admin_id"] is not None

    stale = client.patch(url, headers=auth_headers(admin_token), json={"status": "resolved", "expected_version": 1})
    assert stale.status_code == 409
    assert stale.json()["detail"] == {"error": "stale_version", "current_version": 2}

    done = client.patch(
        url,
        headers=auth_headers(admin_token),
        json={"status": "resolved", "resolution_notes": "cuenta suspendida", "expected_version": 2},
    )
    assert done.status_code == 200, done.text
    assert done.json()["resolved_at"] is not None
    assert done.json()["version"] == 3

    # Terminal reports never change again
    again = client.patch(url, headers=auth_headers(admin_token), json={"resolution_notes": "otra nota"})
    assert again.status_code == 409


def test_invalid_transitions_and_empty_update(client: TestClient, make_admin):
    admin_token, _, _, _, report = setup_report(client, make_admin)
    url = f"/api/v1/admin/reports/{report['id']}"

    assert client.patch(url, headers=auth_headers(admin_token), json={"status": "resolved"}).status_code == 400
    assert client.patch(url, headers=auth_headers(admin_token), json={}).status_code == 400
    assert client.patch("/api/v1/admin/reports/9999", headers=auth_headers(admin_token), json={}).status_code == 404

    # pending -> dismissed is allowed directly
    r = client.patch(url, headers=auth_headers(admin_token), json={"status": "dismissed"})
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "dismissed"


def test_admin_reads_are_audited(client: TestClient, make_admin):
    admin_token, _, reporter, reported, report = setup_report(client, make_admin)

    r_conv = client.get(
        f"/api/v1/admin/conversations?user_a={reporter['id']}&user_b={reported['id']}&report_id={report['id']}",
        headers=auth_headers(admin_token),
    )
    assert r_conv.status_code == 200, r_conv.text
    assert [m["content"] for m in r_conv.json()["messages"]] == ["mensaje sospechoso"]

    client.patch(
        f"/api/v1/admin/reports/{report['id']}",
        headers=auth_headers(admin_token),
        json={"status": "dismissed", "resolution_notes": "sin pruebas"},
    )

    logs = client.get(f"/api/v1/admin/reports/{report['id']}/access-logs", headers=auth_headers(admin_token))
    assert logs.status_code == 200, logs.text
    types = [row["access_type"] for row in logs.json()]
    assert types == ["view_conversation", "dismiss_report"]


def test_admin_blocks_on_behalf_of_reporter(client: TestClient, make_admin):
    admin_token, reporter_token, reporter, reported, report = setup_report(client, make_admin)

    r = client.post(f"/api/v1/admin/reports/{report['id']}/block", headers=auth_headers(admin_token))
    assert r.status_code == 200, r.text
    assert r.json()["i_blocked_them"] is True

    status = client.get(f"/api/v1/blocks/{reported['id']}/status", headers=auth_headers(reporter_token)).json()
    assert status["i_blocked_them"] is True

    blocked_send = client.post(
        "/api/v1/messages",
        headers=auth_headers(reporter_token),
        json={"recipient_id": reported["id"], "content": "otra vez"},
    )
    assert blocked_send.status_code == 403


def _count(model, *criteria) -> int:
    db = SessionLocal()
    try:
        return db.query(model).filter(*criteria).count()
    finally:
        db.close()


# The block and its audit row land together, and repeating the action writes nothing
def test_block_on_behalf_is_audited_once(client: TestClient, make_admin):
    admin_token, _, reporter, reported, report = setup_report(client, make_admin)
    pair = (models.UserBlock.blocker_id == reporter["id"], models.UserBlock.blocked_id == reported["id"])
    audit = (models.AdminAccessLog.access_type == "block_user", models.AdminAccessLog.report_id == report["id"])

    for _ in range(2):
        r = client.post(f"/api/v1/admin/reports/{report['id']}/block", headers=auth_headers(admin_token))
        assert r.status_code == 200, r.text
        assert r.json()["i_blocked_them"] is True
        assert _count(models.UserBlock, *pair) == 1
        assert _count(models.AdminAccessLog, *audit) == 1


def test_escalate_from_support(client: TestClient, make_admin):
    admin_token, admin = signup(client, "esc-admin@example.com")
    make_admin(admin["id"])
    _, user = signup(client, "esc-user@example.com")
    _, offender = signup(client, "esc-offender@example.com")

    r = client.post(
        "/api/v1/admin/reports/escalate",
        headers=auth_headers(admin_token),
        json={"user_id": user["id"], "reported_user_id": offender["id"], "reason": "harassment"},
    )
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["status"] == "reviewing"
    assert body["assigned_admin_id"] == admin["id"]
    assert body["reporter_id"] == user["id"]

    # The pair now has an open report
    dup = client.post(
        "/api/v1/admin/reports/escalate",
        headers=auth_headers(admin_token),
        json={"user_id": user["id"], "reported_user_id": offender["id"], "reason": "spam"},
    )
    assert dup.status_code == 409
