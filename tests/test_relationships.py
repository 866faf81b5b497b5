"""Tests for related-booking lookups."""
from datetime import timedelta

import pytest

from riskgate.models.database import utcnow
from riskgate.pipeline.relationships import LinkerConfig, RelationshipLinker
from tests.factories import build_booking, build_fleet


class TestRelationshipLinker:
    @pytest.mark.asyncio
    async def test_lists_are_per_identifier(self, seed, session) -> None:
        host, car = build_fleet()
        now = utcnow()
        target = build_booking(
            car,
            device_fingerprint="dev-1",
            booking_ip_address="198.51.100.7",
            guest_email="guest@example.com",
        )
        same_device = build_booking(car, device_fingerprint="dev-1", created_at=now - timedelta(hours=2))
        same_ip = build_booking(car, booking_ip_address="198.51.100.7", created_at=now - timedelta(hours=1))
        same_both = build_booking(
            car,
            device_fingerprint="dev-1",
            guest_email="guest@example.com",
            created_at=now - timedelta(hours=3),
        )
        unrelated = build_booking(car, device_fingerprint="dev-2")
        await seed(host, car, target, same_device, same_ip, same_both, unrelated)

        linker = RelationshipLinker(LinkerConfig())

        by_device = await linker.find_by_device(session, target)
        by_ip = await linker.find_by_ip(session, target)
        by_email = await linker.find_by_email(session, target)

        assert [r.booking_code for r in by_device] == [same_device.booking_code, same_both.booking_code]
        assert [r.booking_code for r in by_ip] == [same_ip.booking_code]
        assert [r.booking_code for r in by_email] == [same_both.booking_code]

    @pytest.mark.asyncio
    async def test_excludes_old_bookings_and_caps_results(self, seed, session) -> None:
        host, car = build_fleet()
        now = utcnow()
        target = build_booking(car, device_fingerprint="dev-9")
        recent = [
            build_booking(car, device_fingerprint="dev-9", created_at=now - timedelta(days=i + 1))
            for i in range(12)
        ]
        stale = build_booking(car, device_fingerprint="dev-9", created_at=now - timedelta(days=45))
        await seed(host, car, target, *recent, stale)

        related = await RelationshipLinker(LinkerConfig()).find_by_device(session, target)

        assert len(related) == 10
        assert stale.booking_code not in {r.booking_code for r in related}
        assert target.booking_code not in {r.booking_code for r in related}
        created = [r.created_at for r in related]
        assert created == sorted(created, reverse=True)

    @pytest.mark.asyncio
    async def test_missing_identifier_returns_empty(self, seed, session) -> None:
        host, car = build_fleet()
        target = build_booking(car, guest_email=None)
        other = build_booking(car, guest_email=None)
        await seed(host, car, target, other)

        linker = RelationshipLinker(LinkerConfig())

        assert await linker.find_by_device(session, target) == []
        assert await linker.find_by_ip(session, target) == []
        assert await linker.find_by_email(session, target) == []
