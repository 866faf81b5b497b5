"""HTTP-level tests for the risk gating API."""
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from riskgate.api.main import app
from riskgate.models.database import get_db, get_session_factory, utcnow
from tests.factories import build_booking, build_fleet, build_host


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_db():
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


class TestRiskAnalysisEndpoint:
    @pytest.mark.asyncio
    async def test_analysis_body(self, seed, client) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_flags=["disposable_domain", "vpn_detected"])
        await seed(host, car, booking)

        response = await client.get(f"/api/bookings/{booking.id}/risk-analysis")

        assert response.status_code == 200
        body = response.json()
        assert body["booking_code"] == booking.booking_code
        assert body["risk_score"] == 30
        assert set(body["categories"]) == {"email", "device", "session", "location", "identity"}
        assert body["categories"]["email"]["flags"] == ["disposable_domain"]
        assert body["velocity"]["tier"] == "normal"
        assert body["percentile"] == 50.0
        assert "Approve booking" in body["available_actions"]
        assert body["suggested_disposition"] == "approve"

    @pytest.mark.asyncio
    async def test_unknown_booking(self, client) -> None:
        response = await client.get("/api/bookings/bk_missing/risk-analysis")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


class TestAdminActionEndpoint:
    @pytest.mark.asyncio
    async def test_override_then_audit_log(self, seed, client) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=88)
        await seed(host, car, booking)

        response = await client.post(
            f"/api/bookings/{booking.id}/admin-actions",
            json={"action": "override_risk", "new_score": 25, "notes": "Verified guest", "admin_id": "ops-1"},
        )
        log = await client.get(f"/api/bookings/{booking.id}/audit-log")

        assert response.status_code == 200
        assert response.json()["previous_score"] == 88
        assert response.json()["new_score"] == 25
        entries = log.json()
        assert len(entries) == 1
        assert entries[0]["event"] == "risk_override"
        assert entries[0]["admin_id"] == "ops-1"

    @pytest.mark.asyncio
    async def test_bad_action(self, seed, client) -> None:
        host, car = build_fleet()
        booking = build_booking(car)
        await seed(host, car, booking)

        response = await client.post(
            f"/api/bookings/{booking.id}/admin-actions", json={"action": "nuke"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    @pytest.mark.asyncio
    async def test_missing_body_field(self, client) -> None:
        response = await client.post("/api/bookings/bk_any/admin-actions", json={})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert "action" in response.json()["message"]


class TestCreateBooking:
    def _payload(self, **overrides) -> dict:
        now = utcnow()
        values = {
            "id": "bk_api_1",
            "booking_code": "BK-API1",
            "car": {"id": "car_api", "make": "Porsche", "model": "911", "car_type": "luxury_sports", "daily_rate": 280.0},
            "host": {"id": "host_api", "name": "Dana Host", "is_verified": True},
            "guest_email": "guest@example.com",
            "device_fingerprint": "dev-api",
            "session_duration_ms": 200_000,
            "interaction_count": 25,
            "total_amount": 840.0,
            "daily_rate": 280.0,
            "number_of_days": 3,
            "start_date": (now + timedelta(days=4)).isoformat(),
            "end_date": (now + timedelta(days=7)).isoformat(),
        }
        values.update(overrides)
        return values

    @pytest.mark.asyncio
    async def test_gated_booking(self, client) -> None:
        response = await client.post("/api/bookings", json=self._payload())

        assert response.status_code == 201
        body = response.json()
        assert body["risk_score"] == 0
        assert body["requires_verification"] is True
        assert body["verification_reason"] == "exotic_vehicle"
        assert body["verification_status"] == "NOT_REQUIRED"

    @pytest.mark.asyncio
    async def test_duplicate(self, client) -> None:
        await client.post("/api/bookings", json=self._payload())
        response = await client.post("/api/bookings", json=self._payload())

        assert response.status_code == 400
        assert "already exists" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_rejects_negative_amount(self, client) -> None:
        response = await client.post("/api/bookings", json=self._payload(total_amount=-5))

        assert response.status_code == 400


class TestVerificationEndpoints:
    @pytest.mark.asyncio
    async def test_documents_decision_and_queue(self, seed, client) -> None:
        host, car = build_fleet(instant_book=False)
        booking = build_booking(car)
        await seed(host, car, booking)

        queued = await client.get("/api/verifications")
        docs = await client.post(
            f"/api/verifications/{booking.id}/documents",
            json={"license_photo_url": "https://docs.example.com/l.jpg", "selfie_photo_url": "https://docs.example.com/s.jpg"},
        )
        decision = await client.post(
            f"/api/verifications/{booking.id}/decision", json={"decision": "approve", "reviewer": "ops-3"}
        )
        approved = await client.get("/api/verifications", params={"status": "approved"})

        assert queued.json()["items"][0]["verification_reason"] == "host_approval_required"
        assert docs.json()["verification_status"] == "SUBMITTED"
        assert decision.json()["booking_id"] == booking.id
        assert decision.json()["status"] == "CONFIRMED"
        assert decision.json()["verification_status"] == "APPROVED"
        assert decision.json()["reviewed_by"] == "ops-3"
        assert approved.json()["total"] == 1
        assert approved.json()["counts"]["approved"] == 1

    @pytest.mark.asyncio
    async def test_invalid_transition_is_conflict(self, seed, client) -> None:
        host, car = build_fleet(instant_book=False)
        booking = build_booking(car)
        await seed(host, car, booking)

        response = await client.post(
            f"/api/verifications/{booking.id}/decision", json={"decision": "reject"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_trip_end_with_charges(self, seed, client) -> None:
        host, car = build_fleet(instant_book=False)
        booking = build_booking(car)
        await seed(host, car, booking)

        response = await client.post(
            f"/api/verifications/{booking.id}/trip-end",
            json={
                "start_mileage": 100,
                "end_mileage": 900,
                "damage_reported": True,
                "disputes": [{"dispute_type": "DAMAGE", "description": "Pre-existing dent"}],
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["charges"]["mileage"] == 90.0
        assert body["charges"]["damage"] == 500.0
        assert body["verification_status"] == "PENDING_CHARGES"
        assert len(body["dispute_ids"]) == 1

        queue = (await client.get("/api/verifications")).json()
        assert queue["items"][0]["verification_mode"] == "charges"
        assert queue["items"][0]["urgency"]["urgent"] is True

    @pytest.mark.asyncio
    async def test_queue_limit_bounds(self, client) -> None:
        response = await client.get("/api/verifications", params={"limit": 500})

        assert response.status_code == 400


class TestFraudAndHostEndpoints:
    @pytest.mark.asyncio
    async def test_suspicious_patterns(self, seed, client) -> None:
        host, car = build_fleet()
        start = utcnow() - timedelta(minutes=30)
        burst = [
            build_booking(
                car,
                device_fingerprint="dev-api-burst",
                guest_email=f"speedy{i}@mailinator.com",
                created_at=start + timedelta(minutes=i),
            )
            for i in range(3)
        ]
        await seed(host, car, *burst)

        response = await client.get(
            "/api/fraud/suspicious-patterns", params={"timeframe": "1d", "min_severity": "high"}
        )

        body = response.json()
        assert response.status_code == 200
        assert body["patterns"][0]["type"] == "velocity"
        assert body["patterns"][0]["severity"] == "critical"
        assert body["summary"]["critical_patterns"] == 1

    @pytest.mark.asyncio
    async def test_bad_timeframe(self, client) -> None:
        response = await client.get("/api/fraud/suspicious-patterns", params={"timeframe": "1y"})

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_background_check_flow(self, seed, client) -> None:
        host = build_host(is_verified=False)
        await seed(host)

        started = await client.post(f"/api/hosts/{host.id}/background-check")
        for stage in ("identity", "dmv", "criminal", "insurance", "credit"):
            last = await client.post(
                f"/api/hosts/{host.id}/background-check/{stage}", json={"status": "PASSED"}
            )
        fetched = await client.get(f"/api/hosts/{host.id}/background-check")

        assert started.status_code == 201
        assert started.json()["overall_status"] == "PENDING"
        assert last.json()["is_verified"] is True
        assert fetched.json()["overall_status"] == "PASSED"

    @pytest.mark.asyncio
    async def test_unknown_host(self, client) -> None:
        response = await client.get("/api/hosts/host_missing/background-check")

        assert response.status_code == 404


class TestSeedingEndpoints:
    @pytest.mark.asyncio
    async def test_generation_runs_in_background_job(self, client, monkeypatch) -> None:
        import data.generate_data as generate_data
        import riskgate.api.main as main

        generated: list[int] = []
        jobs: list = []

        def fake_generate(total: int = 200):
            generated.append(total)
            return [{"id": "bk_generated"}]

        async def capture_job(label, load):
            jobs.append((label, load))

        class RecordingPipeline:
            async def ingest_from_list(self, bookings, delay_seconds=0.0):
                return {"total": len(bookings)}

        monkeypatch.setattr(generate_data, "generate_dataset", fake_generate)
        monkeypatch.setattr(main, "_seed_store", capture_job)

        response = await client.post("/api/pipeline/generate", json={"count": 25, "seed": 3})

        assert response.status_code == 202
        assert response.json()["status"] == "started"
        assert generated == []
        assert [label for label, _ in jobs] == ["generate(seed=3)"]

        summary = await jobs[0][1](RecordingPipeline())

        assert generated == [25]
        assert summary == {"total": 1}
