"""API endpoint tests.

Tests the FastAPI endpoints against a file-backed SQLite store.
"""

from datetime import date

import pytest
from httpx import AsyncClient

from schedule_resolver.errors import StoreUnavailableError

MONDAY = "2024-05-06"
ACTOR = {"X-Actor": "manager:1"}


async def _submit(client: AsyncClient, staff_id: int, day: str = MONDAY, **extra) -> int:
    response = await client.post(
        "/api/v1/pending",
        json={
            "staff_id": staff_id,
            "date": day,
            "intervals": [{"status": "remote", "start": "13:00", "end": "18:00"}],
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["pending_id"]


class TestHealthEndpoints:
    """Test health check endpoints."""

    async def test_health_check(self, client: AsyncClient):
        """Health endpoint should return 200."""
        response = await client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["utc_offset"] == "+09:00"
        assert "timestamp" in data
        assert "local_date" in data

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_not_ready_when_database_down(
        self, client: AsyncClient, service, monkeypatch
    ):
        async def down():
            raise OSError("connection refused")

        monkeypatch.setattr(service, "ping", down)

        assert (await client.get("/ready")).status_code == 503
        assert (await client.get("/health")).json()["status"] == "degraded"

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestScheduleEndpoints:
    async def test_resolved_schedule(self, client: AsyncClient, seed, office_worker):
        await seed.monthly(office_worker, date(2024, 5, 6), "break", "12:00", "13:00")

        response = await client.get(f"/api/v1/schedules/{office_worker}/{MONDAY}")

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["date"] == MONDAY
        assert [(i["start"], i["end"], i["status"]) for i in data["intervals"]] == [
            ("09:00", "12:00", "online"),
            ("12:00", "13:00", "break"),
            ("13:00", "18:00", "online"),
        ]
        assert data["has_proposal"] is False

    async def test_schedule_with_proposal(self, client: AsyncClient, office_worker):
        await _submit(client, office_worker)

        data = (await client.get(f"/api/v1/schedules/{office_worker}/{MONDAY}")).json()

        assert data["has_proposal"] is True
        assert len(data["intervals"]) == 1
        assert data["proposed"][-1]["layer"] == "pending"

    async def test_malformed_date_is_422(self, client: AsyncClient, office_worker):
        response = await client.get(f"/api/v1/schedules/{office_worker}/2024-5-6")

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_month(self, client: AsyncClient, office_worker):
        response = await client.get(
            "/api/v1/schedules/month/2024/2", params={"staff_id": office_worker}
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["total"] == 29
        assert data["items"][0]["date"] == "2024-02-01"

    async def test_invalid_month(self, client: AsyncClient):
        response = await client.get("/api/v1/schedules/month/2024/13")
        assert response.status_code == 422

    async def test_store_outage_is_503(self, client: AsyncClient, service, monkeypatch):
        async def unavailable(*args, **kwargs):
            raise StoreUnavailableError("get_staff", "timed out after 5.0s")

        monkeypatch.setattr(service.store, "get_staff", unavailable)
        response = await client.get(f"/api/v1/schedules/1/{MONDAY}")

        assert response.status_code == 503
        assert response.json()["code"] == "STORE_UNAVAILABLE"


class TestPendingEndpoints:
    async def test_submit_and_get(self, client: AsyncClient, office_worker):
        pending_id = await _submit(client, office_worker, memo="doctor")

        response = await client.get(f"/api/v1/pending/{pending_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "pending"
        assert data["date"] == MONDAY
        assert (data["start"], data["end"]) == ("13:00", "18:00")
        assert data["memo"] == "doctor"

    async def test_submit_decimal_hours(self, client: AsyncClient, office_worker):
        response = await client.post(
            "/api/v1/pending",
            json={
                "staff_id": office_worker,
                "date": MONDAY,
                "intervals": [{"status": "Training", "start": 9.5, "end": 11}],
            },
        )
        assert response.status_code == 201, response.text
        data = (await client.get(f"/api/v1/pending/{response.json()['pending_id']}")).json()
        assert (data["status"], data["start"], data["end"]) == ("training", "09:30", "11:00")

    async def test_duplicate_is_409(self, client: AsyncClient, office_worker):
        await _submit(client, office_worker)

        response = await client.post(
            "/api/v1/pending",
            json={
                "staff_id": office_worker,
                "date": MONDAY,
                "intervals": [{"status": "off", "start": "09:00", "end": "18:00"}],
            },
        )

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_REQUEST"

    async def test_overlapping_intervals_are_422(self, client: AsyncClient, office_worker):
        response = await client.post(
            "/api/v1/pending",
            json={
                "staff_id": office_worker,
                "date": MONDAY,
                "intervals": [
                    {"status": "remote", "start": "09:00", "end": "12:00"},
                    {"status": "meeting", "start": "11:00", "end": "13:00"},
                ],
            },
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_unknown_staff_is_404(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pending",
            json={
                "staff_id": 404,
                "date": MONDAY,
                "intervals": [{"status": "remote", "start": "09:00", "end": "12:00"}],
            },
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_list_and_filter(self, client: AsyncClient, office_worker):
        await _submit(client, office_worker)
        await _submit(client, office_worker, day="2024-05-07")

        response = await client.get(
            "/api/v1/pending", params={"staff_id": office_worker, "date_from": "2024-05-07"}
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1

    async def test_approve_and_history(self, client: AsyncClient, office_worker):
        pending_id = await _submit(client, office_worker)

        response = await client.post(
            f"/api/v1/pending/{pending_id}/approve", headers=ACTOR, json={"reason": "fine"}
        )
        assert response.status_code == 200, response.text
        assert response.json()["state"] == "approved"
        assert response.json()["approved_by"] == "manager:1"

        again = await client.post(f"/api/v1/pending/{pending_id}/reject", headers=ACTOR)
        assert again.status_code == 409
        assert again.json()["code"] == "ALREADY_DECIDED"

        history = (await client.get(f"/api/v1/pending/{pending_id}/history")).json()
        assert [(e["from_state"], e["to_state"]) for e in history] == [
            ("draft", "pending"),
            ("pending", "approved"),
        ]

        schedule = (await client.get(f"/api/v1/schedules/{office_worker}/{MONDAY}")).json()
        assert schedule["intervals"][-1]["status"] == "remote"

    async def test_reject_default_reason(self, client: AsyncClient, office_worker):
        pending_id = await _submit(client, office_worker)

        response = await client.post(f"/api/v1/pending/{pending_id}/reject", headers=ACTOR)

        assert response.status_code == 200
        assert response.json()["rejection_reason"] == "Rejected"

    async def test_decision_requires_actor(self, client: AsyncClient, office_worker):
        pending_id = await _submit(client, office_worker)

        response = await client.post(f"/api/v1/pending/{pending_id}/approve")

        assert response.status_code == 400

    async def test_decide_missing_is_404(self, client: AsyncClient):
        response = await client.post("/api/v1/pending/999/approve", headers=ACTOR)
        assert response.status_code == 404

    async def test_patch(self, client: AsyncClient, office_worker):
        pending_id = await _submit(client, office_worker)

        response = await client.patch(
            f"/api/v1/pending/{pending_id}", headers=ACTOR, json={"end": "17:00"}
        )

        assert response.status_code == 200, response.text
        assert response.json()["end"] == "17:00"

    async def test_bulk_decision(self, client: AsyncClient, office_worker):
        a = await _submit(client, office_worker)
        b = await _submit(client, office_worker, day="2024-05-07")

        response = await client.post(
            "/api/v1/pending/bulk-decision",
            headers=ACTOR,
            json={"pending_ids": [a, b, 999], "decision": "approve"},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["succeeded"] == [a, b]
        assert data["failed"][0]["code"] == "NOT_FOUND"

    async def test_monthly_view(self, client: AsyncClient, office_worker):
        a = await _submit(client, office_worker)
        await client.post(f"/api/v1/pending/{a}/reject", headers=ACTOR)
        b = await _submit(client, office_worker)

        response = await client.get("/api/v1/pending/monthly/2024/5")

        assert response.status_code == 200
        assert [(i["id"], i["state"]) for i in response.json()["items"]] == [
            (a, "rejected"),
            (b, "pending"),
        ]

    async def test_reconcile(self, client: AsyncClient, seed, office_worker):
        for _ in range(2):
            await seed.adjustment(
                office_worker,
                date(2024, 5, 6),
                "remote",
                "13:00",
                "18:00",
                is_pending=True,
                pending_type="monthly-planner",
                batch_id="import-1",
            )

        anonymous = await client.post("/api/v1/pending/reconcile", json={})
        assert anonymous.status_code == 400

        dry = await client.post(
            "/api/v1/pending/reconcile", headers=ACTOR, json={"dry_run": True}
        )
        assert dry.json()["dry_run"] is True
        response = await client.post(
            "/api/v1/pending/reconcile",
            headers=ACTOR,
            json={"staff_id": office_worker, "date": MONDAY},
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["duplicate_groups"] == 1
        assert len(data["rejected"]) == 1
        again = await client.post("/api/v1/pending/reconcile", headers=ACTOR, json={})
        assert again.json()["duplicate_groups"] == 0


@pytest.mark.parametrize(
    "path",
    ["/api/v1/pending/abc", "/api/v1/schedules/abc/2024-05-06"],
)
async def test_request_validation(client: AsyncClient, path):
    response = await client.get(path)
    assert response.status_code == 422
