"""
Tests: HTTP surface (/api/v1).

Exercises every blueprint route once on the happy path plus the error
mapping: 401 without X-User-Id, 404 NotFound, 422 Validation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from docflow.models import db as _db
from docflow.models.directory import Department, User
from docflow.models.notification import Notification
from docflow.services.escalation import seed_default_policy


@pytest.fixture()
def world():
    registry = Department(name="Registry")
    legal = Department(name="Legal")
    _db.session.add_all([registry, legal])
    _db.session.flush()
    clerk = User(full_name="Clerk", department_id=registry.id)
    lawyer = User(full_name="Lawyer", department_id=legal.id)
    _db.session.add_all([clerk, lawyer])
    _db.session.commit()
    return {"registry": registry.id, "legal": legal.id, "clerk": clerk.id, "lawyer": lawyer.id}


def _headers(user_id):
    return {"X-User-Id": str(user_id), "X-Workstation": "desk-7"}


def _register(client, world, **overrides):
    payload = {
        "document_title": "Request for opinion",
        "owning_department_id": world["registry"],
        "external_party_name": "City Council",
        "delivery_method": "Email",
        "received_date": "2025-02-10",
    }
    payload.update(overrides)
    return client.post("/api/v1/incoming", json=payload, headers=_headers(world["clerk"]))


def _first_distribution(client, world, document_id):
    timeline = client.get(f"/api/v1/documents/{document_id}/timeline", headers=_headers(world["clerk"]))
    dist_ids = [e["distribution_id"] for e in timeline.get_json()["items"] if e["type"] == "distribution_log"]
    return dist_ids[0]


# ═════════════════════════════════════════════════════════════════════════════
# Intake
# ═════════════════════════════════════════════════════════════════════════════


class TestIntakeApi:
    def test_register_incoming(self, client, world):
        res = _register(client, world)
        assert res.status_code == 201
        data = res.get_json()
        assert data["incoming_number"] == "2025/000001"
        assert data["document"]["title"] == "Request for opinion"
        assert "X-Request-ID" in res.headers

    def test_register_outgoing(self, client, world):
        res = client.post("/api/v1/outgoing", json={
            "document_title": "Opinion",
            "owning_department_id": world["legal"],
            "external_party_name": "City Council",
            "issue_date": "2025-02-11",
        }, headers=_headers(world["lawyer"]))
        assert res.status_code == 201
        assert res.get_json()["outgoing_number"] == "2025/000001"

    def test_missing_actor_is_401(self, client, world):
        res = client.post("/api/v1/incoming", json={"document_title": "x"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_validation_is_422(self, client, world):
        res = _register(client, world, document_title="")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_unknown_department_is_404(self, client, world):
        res = _register(client, world, owning_department_id=999)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Distributions
# ═════════════════════════════════════════════════════════════════════════════


class TestDistributionApi:
    def test_detail_includes_sla_badge(self, client, world):
        due = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        doc_id = _register(client, world, due_at=due).get_json()["document"]["id"]
        dist_id = _first_distribution(client, world, doc_id)

        res = client.get(f"/api/v1/distributions/{dist_id}", headers=_headers(world["clerk"]))

        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "Open"
        assert body["sla"]["status"] == "DueSoon"
        assert body["sla"]["is_escalated"] is False

    def test_missing_distribution_is_404(self, client, world):
        res = client.get("/api/v1/distributions/4242", headers=_headers(world["clerk"]))
        assert res.status_code == 404

    def test_command_flow(self, client, world):
        doc_id = _register(client, world).get_json()["document"]["id"]
        dist_id = _first_distribution(client, world, doc_id)
        url = f"/api/v1/distributions/{dist_id}/commands"

        res = client.post(url, json={"type": "Assign", "user_id": world["clerk"]},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 200
        assert res.get_json()["assigned_to_user_id"] == world["clerk"]

        res = client.post(url, json={"type": "SetStatus", "status": "Closed"},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 422

        res = client.post(url, json={"type": "SetStatus", "status": "Closed", "note": "answered"},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 200
        assert res.get_json()["status"] == "Closed"

        res = client.post(url, json={"type": "SetStatus", "status": "Open", "note": "again"},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 422

        logs = client.get(f"/api/v1/distributions/{dist_id}/logs", headers=_headers(world["clerk"]))
        assert logs.get_json()["total"] == 3

    def test_sla_patch(self, client, world):
        doc_id = _register(client, world).get_json()["document"]["id"]
        dist_id = _first_distribution(client, world, doc_id)
        url = f"/api/v1/distributions/{dist_id}/sla"

        assert client.patch(url, json={}, headers=_headers(world["clerk"])).status_code == 422

        res = client.patch(url, json={"priority": 7, "due_at": "2030-01-01T00:00:00Z"},
                           headers=_headers(world["clerk"]))
        assert res.status_code == 200
        assert res.get_json()["priority"] == 7
        assert res.get_json()["sla"]["status"] == "OnTrack"

    def test_forward_and_create(self, client, world):
        doc_id = _register(client, world).get_json()["document"]["id"]
        first = _first_distribution(client, world, doc_id)

        res = client.post(f"/api/v1/documents/{doc_id}/forward",
                          json={"target_department_id": world["legal"], "note": "for opinion"},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 201
        assert res.get_json()["target_department_id"] == world["legal"]
        prev = client.get(f"/api/v1/distributions/{first}", headers=_headers(world["clerk"]))
        assert prev.get_json()["status"] == "Closed"

        res = client.post(f"/api/v1/documents/{doc_id}/distributions",
                          json={"target_department_id": world["registry"],
                                "assigned_to_user_id": world["clerk"]},
                          headers=_headers(world["clerk"]))
        assert res.status_code == 201
        assert res.get_json()["assigned_to_user_id"] == world["clerk"]

    def test_timeline(self, client, world):
        doc_id = _register(client, world).get_json()["document"]["id"]
        res = client.get(f"/api/v1/documents/{doc_id}/timeline", headers=_headers(world["clerk"]))
        assert res.status_code == 200
        types = {e["type"] for e in res.get_json()["items"]}
        assert types == {"distribution_log", "audit"}


# ═════════════════════════════════════════════════════════════════════════════
# Escalation
# ═════════════════════════════════════════════════════════════════════════════


class TestEscalationApi:
    def test_policy_missing_is_404(self, client, world):
        assert client.get("/api/v1/escalation/policy").status_code == 404

    def test_policy_view(self, client, world):
        seed_default_policy()
        res = client.get("/api/v1/escalation/policy")
        assert res.status_code == 200
        assert [lvl["level_number"] for lvl in res.get_json()["levels"]] == [1, 2, 3, 4]

    def test_manual_scan(self, client, world):
        seed_default_policy()
        past = (datetime.now(timezone.utc) - timedelta(minutes=20)).isoformat()
        doc_id = _register(client, world, due_at=past).get_json()["document"]["id"]
        dist_id = _first_distribution(client, world, doc_id)

        res = client.post("/api/v1/escalation/scan")

        assert res.status_code == 200
        assert res.get_json()["processed_count"] == 1
        detail = client.get(f"/api/v1/distributions/{dist_id}").get_json()
        assert detail["escalation_count"] == 1
        assert detail["status"] == "Escalated"


# ═════════════════════════════════════════════════════════════════════════════
# Notifications & scheduler
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationApi:
    def _seed(self, user_id, n=2):
        for i in range(n):
            _db.session.add(Notification(user_id=user_id, title=f"N{i}", body=""))
        _db.session.commit()

    def test_my_notifications(self, client, world):
        self._seed(world["clerk"])
        res = client.get("/api/v1/notifications/my", headers=_headers(world["clerk"]))
        assert res.status_code == 200
        assert res.get_json()["unread_count"] == 2
        assert len(res.get_json()["items"]) == 2

    def test_mark_read(self, client, world):
        self._seed(world["clerk"])
        ids = [n["id"] for n in client.get(
            "/api/v1/notifications/my", headers=_headers(world["clerk"])).get_json()["items"]]

        # Someone else cannot mark them
        res = client.post("/api/v1/notifications/read", json={"ids": ids}, headers=_headers(world["lawyer"]))
        assert res.get_json()["updated"] == 0

        res = client.post("/api/v1/notifications/read", json={"ids": ids[:1]}, headers=_headers(world["clerk"]))
        assert res.get_json()["updated"] == 1
        count = client.get("/api/v1/notifications/my/unread-count", headers=_headers(world["clerk"]))
        assert count.get_json()["unread_count"] == 1

        res = client.post("/api/v1/notifications/read-all", headers=_headers(world["clerk"]))
        assert res.get_json()["updated"] == 1

    def test_mark_read_requires_list(self, client, world):
        res = client.post("/api/v1/notifications/read", json={"ids": 5}, headers=_headers(world["clerk"]))
        assert res.status_code == 422


class TestSchedulerApi:
    def test_list_jobs(self, client):
        names = {j["job_name"] for j in client.get("/api/v1/scheduler/jobs").get_json()}
        assert {"escalation_scan", "sla_reminder"} <= names

    def test_run_unknown_job_is_404(self, client):
        assert client.post("/api/v1/scheduler/jobs/nope/run").status_code == 404

    def test_toggle_requires_flag(self, client):
        assert client.patch("/api/v1/scheduler/jobs/sla_reminder", json={}).status_code == 422


class TestHealth:
    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
        assert res.get_json()["checks"]["realtime"]["status"] == "skipped"

    def test_unknown_route(self, client):
        assert client.get("/api/v1/nope").status_code == 404
