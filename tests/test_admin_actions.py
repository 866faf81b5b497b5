"""Tests for operator overrides and the audit trail."""
import pytest
from sqlalchemy.exc import OperationalError

from riskgate.errors import InvalidRequestError, NotFoundError, StoreUnavailableError
from riskgate.models.database import Booking
from riskgate.pipeline.admin_actions import AdminActionProcessor, list_audit_entries
from tests.factories import build_booking, build_fleet


class FailingAuditProcessor(AdminActionProcessor):
    async def _write_audit(self, session, entry):
        raise OperationalError("INSERT INTO risk_audit_log", {}, Exception("disk I/O error"))


@pytest.fixture
def processor(session_factory) -> AdminActionProcessor:
    return AdminActionProcessor(session_factory)


async def _reload(session_factory, booking_id: str) -> Booking:
    async with session_factory() as session:
        return await session.get(Booking, booking_id)


class TestApply:
    @pytest.mark.asyncio
    async def test_override_risk(self, seed, session_factory, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=85, flagged_for_review=True)
        await seed(host, car, booking)

        result = await processor.apply(
            booking.id, "override_risk", notes="Known repeat guest", new_score=20, admin_id="ops-1"
        )

        assert result.success is True
        assert result.previous_score == 85
        assert result.new_score == 20
        assert result.event == "risk_override"
        stored = await _reload(session_factory, booking.id)
        assert stored.risk_score == 20
        assert stored.reviewed_by == "ops-1"
        assert stored.verification_notes == "Known repeat guest"

    @pytest.mark.asyncio
    async def test_whitelist_clears_review_flag(self, seed, session_factory, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=65, flagged_for_review=True)
        await seed(host, car, booking)

        result = await processor.apply(booking.id, "whitelist")

        stored = await _reload(session_factory, booking.id)
        assert stored.flagged_for_review is False
        assert stored.risk_score == 65
        assert result.previous_score == result.new_score == 65

    @pytest.mark.asyncio
    async def test_mark_false_positive(self, seed, session_factory, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=70, flagged_for_review=True, is_fraudulent=True)
        await seed(host, car, booking)

        await processor.apply(booking.id, "mark_false_positive", notes="Verified by phone")

        stored = await _reload(session_factory, booking.id)
        assert stored.is_fraudulent is False
        assert stored.flagged_for_review is False

    @pytest.mark.asyncio
    async def test_block_device_records_identifiers(self, seed, session_factory, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(
            car, risk_score=90, device_fingerprint="fp-bad", booking_ip_address="198.51.100.7"
        )
        await seed(host, car, booking)

        await processor.apply(booking.id, "block_device", admin_id="ops-2")

        async with session_factory() as session:
            entries = await list_audit_entries(session, booking.id)
        assert len(entries) == 1
        assert entries[0].event == "device_blocked"
        assert entries[0].details == {"device_fingerprint": "fp-bad", "ip": "198.51.100.7"}
        stored = await _reload(session_factory, booking.id)
        assert stored.risk_score == 90

    @pytest.mark.asyncio
    async def test_unknown_action(self, seed, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(car)
        await seed(host, car, booking)

        with pytest.raises(InvalidRequestError):
            await processor.apply(booking.id, "delete_everything")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [None, -1, 101])
    async def test_override_requires_valid_score(self, seed, processor, score) -> None:
        host, car = build_fleet()
        booking = build_booking(car)
        await seed(host, car, booking)

        with pytest.raises(InvalidRequestError):
            await processor.apply(booking.id, "override_risk", new_score=score)

    @pytest.mark.asyncio
    async def test_unknown_booking(self, processor) -> None:
        with pytest.raises(NotFoundError):
            await processor.apply("bk_missing", "whitelist")

    @pytest.mark.asyncio
    async def test_failed_audit_write_rolls_back(self, seed, session_factory) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=80)
        await seed(host, car, booking)

        with pytest.raises(StoreUnavailableError):
            await FailingAuditProcessor(session_factory).apply(
                booking.id, "override_risk", new_score=10
            )

        stored = await _reload(session_factory, booking.id)
        assert stored.risk_score == 80
        async with session_factory() as session:
            assert await list_audit_entries(session, booking.id) == []


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_entries_oldest_first(self, seed, session_factory, processor) -> None:
        host, car = build_fleet()
        booking = build_booking(car, risk_score=75)
        await seed(host, car, booking)

        await processor.apply(booking.id, "override_risk", new_score=40)
        await processor.apply(booking.id, "whitelist")
        await processor.apply(booking.id, "override_risk", new_score=15)

        async with session_factory() as session:
            entries = await list_audit_entries(session, booking.id)

        assert [e.event for e in entries] == ["risk_override", "whitelist_added", "risk_override"]
        assert [(e.previous_score, e.new_score) for e in entries] == [(75, 40), (40, 40), (40, 15)]

    @pytest.mark.asyncio
    async def test_unknown_booking(self, session) -> None:
        with pytest.raises(NotFoundError):
            await list_audit_entries(session, "bk_missing")
