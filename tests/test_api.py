"""HTTP API tests using FastAPI's TestClient."""

import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from conftest import seed_directory
from msgguard.config import DEFAULT_RATE_LIMITS, RateLimitPolicy, Settings
from web.backend.app.main import create_app


def as_user(user_id):
    return {"X-User-Id": user_id}


def _client(tmpdir, **settings):
    app = create_app(Settings(db_path=Path(tmpdir) / "api.db", **settings))
    return TestClient(app)


@pytest.fixture
def client():
    with tempfile.TemporaryDirectory() as tmpdir:
        with _client(tmpdir) as c:
            c.portal.call(seed_directory, c.app.state.engine)
            yield c


@pytest.fixture
def thread_id(client):
    resp = client.post(
        "/api/messages/threads",
        json={"kind": "student_coach", "student_id": "stu-1", "coach_id": "coach-1"},
        headers=as_user("coach-1"),
    )
    assert resp.status_code == 200
    assert resp.json()["created"] is True
    return resp.json()["thread_id"]


def _send(client, thread_id, user_id, body):
    return client.post(
        f"/api/messages/threads/{thread_id}/messages", json={"body": body}, headers=as_user(user_id)
    )


# ---------------------------------------------------------------------------
# Meta and identity
# ---------------------------------------------------------------------------


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
    assert client.get("/").json()["name"] == "Messaging Guard API"


def test_missing_identity_is_401(client):
    resp = client.get("/api/messages/threads")
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHORIZED"


def test_unknown_profile_is_403(client):
    resp = client.get("/api/messages/threads", headers=as_user("ghost"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "PROFILE_NOT_FOUND"


def test_invalid_payload_shape(client, thread_id):
    resp = client.post(
        f"/api/messages/threads/{thread_id}/messages", json={"body": ""}, headers=as_user("coach-1")
    )
    assert resp.status_code == 422
    data = resp.json()
    assert data["code"] == "INVALID_PAYLOAD"
    assert data["details"][0]["loc"][-1] == "body"


# ---------------------------------------------------------------------------
# Threads and messages
# ---------------------------------------------------------------------------


def test_send_list_and_read(client, thread_id):
    sent = _send(client, thread_id, "coach-1", "Practice moved to 6pm")
    assert sent.status_code == 200
    message_id = sent.json()["message"]["id"]

    inbox = client.get("/api/messages/threads", headers=as_user("student-1")).json()
    assert inbox["threads"][0]["thread"]["id"] == thread_id
    assert inbox["threads"][0]["unread_count"] == 1

    page = client.get(f"/api/messages/threads/{thread_id}/messages", headers=as_user("student-1")).json()
    assert [m["body"] for m in page["messages"]] == ["Practice moved to 6pm"]
    assert page["thread"]["kind"] == "student_coach"

    resp = client.post(
        f"/api/messages/threads/{thread_id}/read",
        json={"last_read_message_id": message_id},
        headers=as_user("student-1"),
    )
    assert resp.json() == {"ok": True}
    inbox = client.get("/api/messages/threads", headers=as_user("student-1")).json()
    assert inbox["threads"][0]["unread_count"] == 0


def test_outsider_cannot_read(client, thread_id):
    resp = client.get(f"/api/messages/threads/{thread_id}/messages", headers=as_user("coach-2"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "THREAD_ACCESS_DENIED"


def test_blocked_content(client, thread_id):
    resp = client.patch(
        "/api/messages/policy",
        json={"guard_mode": "block", "sensitive_words": ["WhatsApp"]},
        headers=as_user("admin-1"),
    )
    assert resp.status_code == 200
    assert resp.json()["sensitive_words"] == ["whatsapp"]

    resp = _send(client, thread_id, "coach-1", "text me on whatsapp")
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "MESSAGE_CONTENT_BLOCKED"
    assert data["flags"] == [{"type": "keyword", "matched_value": "whatsapp"}]


def test_flagged_content_is_visible_to_moderators(client, thread_id):
    sent = _send(client, thread_id, "coach-1", "my mail is carl@example.com")
    assert sent.json()["flags"] == [{"type": "email", "matched_value": "carl@example.com"}]

    flags = client.get(f"/api/messages/threads/{thread_id}/flags", headers=as_user("admin-1"))
    assert flags.status_code == 200
    assert flags.json()[0]["flag_type"] == "email"
    assert client.get(f"/api/messages/threads/{thread_id}/flags", headers=as_user("coach-1")).status_code == 403


def test_hide_and_export(client, thread_id):
    _send(client, thread_id, "coach-1", "hello")
    assert client.post(f"/api/messages/threads/{thread_id}/hide", headers=as_user("student-1")).status_code == 200
    assert client.get("/api/messages/threads", headers=as_user("student-1")).json()["threads"] == []

    export = client.get("/api/messages/export", headers=as_user("coach-1")).json()
    assert export["user_id"] == "coach-1"
    assert export["threads"][0]["messages"][0]["body"] == "hello"


def test_coach_contact_request_is_accepted_blindly(client):
    for email in ["sol@example.com", "nobody@example.com"]:
        resp = client.post(
            "/api/messages/coach-contacts/request", json={"email": email}, headers=as_user("coach-1")
        )
        assert resp.status_code == 202
        assert resp.json() == {"ok": True}



def test_contact_request_reaches_target_through_notifications(client):
    client.post(
        "/api/messages/coach-contacts/request", json={"email": "sol@example.com"}, headers=as_user("coach-1")
    )

    notes = client.get("/api/messages/notifications", headers=as_user("solo-1"))
    assert notes.status_code == 200
    data = notes.json()
    assert data["pending_contact_requests_count"] == 1
    request = data["pending_contact_requests"][0]
    assert request["requester_name"] == "Carl Coach"

    resp = client.post(
        "/api/messages/coach-contacts/respond",
        json={"request_id": request["id"], "decision": "accept"},
        headers=as_user("solo-1"),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    data = client.get("/api/messages/notifications", headers=as_user("solo-1")).json()
    assert data["pending_contact_requests_count"] == 0
    thread = client.post(
        "/api/messages/threads",
        json={"kind": "coach_coach", "coach_user_id": "coach-1"},
        headers=as_user("solo-1"),
    )
    assert thread.status_code == 200


# ---------------------------------------------------------------------------
# Charter
# ---------------------------------------------------------------------------


def test_charter_gate(client, thread_id):
    resp = client.patch("/api/messages/policy", json={"charter_version": 2}, headers=as_user("admin-1"))
    assert resp.json()["charter_version"] == 2

    status = client.get("/api/messages/charter", headers=as_user("coach-1")).json()
    assert status["must_accept"] is True
    assert status["charter_version"] == 2

    resp = _send(client, thread_id, "coach-1", "hello")
    assert resp.status_code == 403
    assert resp.json()["code"] == "MESSAGING_CHARTER_REQUIRED"

    stale = client.post("/api/messages/charter", json={"charter_version": 1}, headers=as_user("coach-1"))
    assert stale.status_code == 409
    assert stale.json()["code"] == "CHARTER_VERSION_STALE"

    ok = client.post("/api/messages/charter", json={"charter_version": 2}, headers=as_user("coach-1"))
    assert ok.json()["must_accept"] is False
    assert _send(client, thread_id, "coach-1", "hello").status_code == 200


def test_policy_update_requires_admin(client):
    resp = client.patch("/api/messages/policy", json={"guard_mode": "off"}, headers=as_user("coach-1"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "WORKSPACE_ADMIN_REQUIRED"


def test_policy_validation_error(client):
    resp = client.patch("/api/messages/policy", json={"retention_days": 1}, headers=as_user("admin-1"))
    assert resp.status_code == 422
    assert resp.json()["code"] == "INVALID_PAYLOAD"


# ---------------------------------------------------------------------------
# Reports and suspensions
# ---------------------------------------------------------------------------


def test_report_resolve_and_freeze(client, thread_id):
    message_id = _send(client, thread_id, "coach-1", "something rude").json()["message"]["id"]

    created = client.post(
        "/api/messages/reports",
        json={"thread_id": thread_id, "message_id": message_id, "reason": "rude language"},
        headers=as_user("student-1"),
    )
    assert created.status_code == 201
    report = created.json()["report"]
    assert report["status"] == "open"
    assert [s["id"] for s in report["snapshot"]] == [message_id]

    listing = client.get("/api/messages/reports", headers=as_user("admin-1")).json()
    assert [r["id"] for r in listing["reports"]] == [report["id"]]
    assert client.get("/api/messages/reports", headers=as_user("coach-1")).status_code == 403

    updated = client.post(
        f"/api/messages/reports/{report['id']}/status",
        json={"status": "resolved", "freeze_thread": True},
        headers=as_user("admin-1"),
    ).json()["report"]
    assert updated["status"] == "resolved"
    assert updated["resolved_by"] == "admin-1"
    assert updated["frozen_at"] is not None

    for user_id in ["coach-1", "student-1"]:
        resp = _send(client, thread_id, user_id, "anyone?")
        assert resp.status_code == 403
        assert resp.json()["code"] == "THREAD_FROZEN"

    detail = client.get(f"/api/messages/reports/{report['id']}/messages", headers=as_user("admin-1")).json()
    assert [m["body"] for m in detail["messages"]] == ["something rude"]
    assert {m["user_id"] for m in detail["members"]} == {"coach-1", "student-1"}


def test_unknown_report_is_404(client):
    resp = client.post(
        "/api/messages/reports/nope/status", json={"status": "resolved"}, headers=as_user("admin-1")
    )
    assert resp.status_code == 404
    assert resp.json()["code"] == "REPORT_NOT_FOUND"


def test_suspend_and_lift(client, thread_id):
    resp = client.post(
        "/api/messages/suspensions",
        json={"user_id": "coach-1", "action": "suspend", "reason": "spam"},
        headers=as_user("admin-1"),
    )
    assert [s["user_id"] for s in resp.json()["suspensions"]] == ["coach-1"]

    blocked = _send(client, thread_id, "coach-1", "hello")
    assert blocked.status_code == 403
    assert blocked.json()["code"] == "MESSAGING_SUSPENDED"

    resp = client.post(
        "/api/messages/suspensions",
        json={"user_id": "coach-1", "action": "lift"},
        headers=as_user("admin-1"),
    )
    assert resp.json()["suspensions"] == []
    assert _send(client, thread_id, "coach-1", "hello").status_code == 200


def test_suspensions_need_moderator(client):
    resp = client.get("/api/messages/suspensions", headers=as_user("coach-1"))
    assert resp.status_code == 403
    assert resp.json()["code"] == "MODERATION_ADMIN_REQUIRED"


def test_purge(client):
    resp = client.post("/api/messages/purge", headers=as_user("admin-1"))
    assert resp.json() == {"ok": True, "redacted_messages": 0}


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------


def test_rate_limited_send_has_retry_after():
    limits = dict(DEFAULT_RATE_LIMITS)
    limits["message_send"] = RateLimitPolicy(max_requests=1, window_seconds=3600)
    with tempfile.TemporaryDirectory() as tmpdir:
        with _client(tmpdir, rate_limits=limits) as client:
            client.portal.call(seed_directory, client.app.state.engine)
            thread = client.post(
                "/api/messages/threads",
                json={"kind": "coach_coach", "coach_user_id": "coach-2"},
                headers=as_user("coach-1"),
            ).json()["thread_id"]

            assert _send(client, thread, "coach-1", "one").status_code == 200
            resp = _send(client, thread, "coach-1", "two")
            assert resp.status_code == 429
            assert resp.json()["code"] == "RATE_LIMITED"
            assert int(resp.headers["Retry-After"]) >= 1
