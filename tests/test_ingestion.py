"""Tests for the booking intake pipeline."""
import json
import random
from datetime import timedelta

import pytest
from faker import Faker

from data.generate_data import generate_dataset
from riskgate.errors import NotFoundError
from riskgate.models.database import Booking, utcnow
from riskgate.pipeline.admin_actions import list_audit_entries
from riskgate.pipeline.ingestion import BookingIngestionPipeline


def booking_payload(**overrides) -> dict:
    now = utcnow()
    booking_id = overrides.get("id", "bk_ingest_1")
    values = {
        "id": booking_id,
        "booking_code": f"BK-{booking_id.upper()}",
        "host": {"id": "host_ingest", "name": "Riley Host", "is_verified": True},
        "car": {"id": "car_ingest", "make": "Honda", "model": "Civic", "car_type": "economy", "daily_rate": 45.0},
        "created_at": now.isoformat(),
        "guest_name": "Jo Guest",
        "guest_email": "jo@example.com",
        "device_fingerprint": "dev-ingest",
        "booking_ip_address": "192.0.2.10",
        "session_duration_ms": 240_000,
        "interaction_count": 35,
        "total_amount": 135.0,
        "daily_rate": 45.0,
        "number_of_days": 3,
        "start_date": (now + timedelta(days=5)).isoformat(),
        "end_date": (now + timedelta(days=8)).isoformat(),
    }
    values.update(overrides)
    return values


@pytest.fixture
def pipeline(session_factory) -> BookingIngestionPipeline:
    return BookingIngestionPipeline(session_factory=session_factory)


class TestProcessBooking:
    @pytest.mark.asyncio
    async def test_clean_booking(self, session_factory, pipeline) -> None:
        async with session_factory() as session:
            outcome = await pipeline.process_booking(booking_payload(), session)

        assert outcome.score.risk_score == 0
        assert outcome.status == "PENDING"
        assert outcome.gate.requires_verification is False
        assert outcome.verification_status == "NOT_REQUIRED"

        async with session_factory() as session:
            stored = await session.get(Booking, "bk_ingest_1")
        assert stored.email_domain == "example.com"
        assert stored.risk_flags == []

    @pytest.mark.asyncio
    async def test_scripted_booking_is_blocked(self, session_factory, pipeline) -> None:
        now = utcnow()
        payload = booking_payload(
            bot_signals=["headless_browser"],
            risk_flags=["vpn_detected"],
            session_duration_ms=4_000,
            interaction_count=1,
            start_date=(now + timedelta(hours=3)).isoformat(),
        )

        async with session_factory() as session:
            outcome = await pipeline.process_booking(payload, session)
            entries = await list_audit_entries(session, outcome.booking_id)

        assert outcome.score.risk_score == 90
        assert outcome.status == "BLOCKED"
        assert [e.event for e in entries] == ["booking_blocked"]
        assert pipeline.blocked_count == 1
        assert pipeline.flagged_count == 1

        async with session_factory() as session:
            stored = await session.get(Booking, outcome.booking_id)
        assert stored.flagged_for_review is True
        assert stored.risk_flags == [
            "vpn_detected",
            "bot_signal",
            "headless_browser",
            "short_session",
            "low_interaction",
        ]

    @pytest.mark.asyncio
    async def test_gate_applies_to_new_car(self, session_factory, pipeline) -> None:
        payload = booking_payload(
            car={"id": "car_lux", "make": "BMW", "model": "7 Series", "car_type": "luxury", "daily_rate": 320.0},
            total_amount=960.0,
        )

        async with session_factory() as session:
            outcome = await pipeline.process_booking(payload, session)

        assert outcome.gate.requires_verification is True
        assert outcome.gate.reason == "luxury_vehicle"
        assert pipeline.verification_count == 1

    @pytest.mark.asyncio
    async def test_documents_at_intake(self, session_factory, pipeline) -> None:
        payload = booking_payload(license_photo_url="https://docs.example.com/license.jpg")

        async with session_factory() as session:
            outcome = await pipeline.process_booking(payload, session)

        assert outcome.verification_status == "SUBMITTED"

    @pytest.mark.asyncio
    async def test_duplicate_is_skipped(self, session_factory, pipeline) -> None:
        async with session_factory() as session:
            await pipeline.process_booking(booking_payload(), session)
        async with session_factory() as session:
            second = await pipeline.process_booking(booking_payload(), session)

        assert second is None
        assert pipeline.processed_count == 1

    @pytest.mark.asyncio
    async def test_existing_car_by_id(self, session_factory, pipeline) -> None:
        async with session_factory() as session:
            await pipeline.process_booking(booking_payload(), session)

        payload = booking_payload(id="bk_ingest_2")
        del payload["car"]
        del payload["host"]
        payload["car_id"] = "car_ingest"
        async with session_factory() as session:
            outcome = await pipeline.process_booking(payload, session)

        assert outcome.gate.requires_verification is False

    @pytest.mark.asyncio
    async def test_unknown_car(self, session_factory, pipeline) -> None:
        payload = booking_payload()
        del payload["car"]
        payload["car_id"] = "car_missing"

        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await pipeline.process_booking(payload, session)


class TestBulkIngestion:
    @pytest.mark.asyncio
    async def test_summary_from_list(self, pipeline) -> None:
        bookings = [
            booking_payload(),
            booking_payload(id="bk_ingest_2", bot_signals=["webdriver_detected"], device_fingerprint=None),
            booking_payload(id="bk_ingest_3", host={"id": "host_new", "is_verified": False},
                            car={"id": "car_new", "daily_rate": 60.0}),
        ]

        summary = await pipeline.ingest_from_list(bookings)

        assert summary["total"] == 3
        assert summary["flagged"] == 1
        assert summary["blocked"] == 0
        assert summary["requiring_verification"] == 1
        assert summary["processing_time_seconds"] >= 0

    @pytest.mark.asyncio
    async def test_from_json_file(self, tmp_path, pipeline) -> None:
        path = tmp_path / "bookings.json"
        path.write_text(json.dumps([booking_payload(), booking_payload(id="bk_ingest_2")]))

        summary = await pipeline.ingest_from_json(str(path))

        assert summary["total"] == 2

    @pytest.mark.asyncio
    async def test_generated_dataset(self, session_factory, pipeline) -> None:
        random.seed(7)
        Faker.seed(7)
        bookings = generate_dataset(total=60)

        summary = await pipeline.ingest_from_list(bookings)

        assert summary["total"] == len(bookings)
        assert summary["blocked"] >= 1
        assert summary["requiring_verification"] >= 1
