"""Cross-booking relationship lookups.

Finds other bookings that share the device fingerprint, the booking IP or
the guest email of a given booking within a lookback window.  The three
lists are kept separate: a booking that appears under several identifiers
shows how many signals link it to the one under analysis.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import InstrumentedAttribute

from riskgate.config import Settings, settings
from riskgate.models.database import Booking, as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LinkerConfig:
    lookback_days: int = 30
    result_limit: int = 10

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> LinkerConfig:
        return cls(lookback_days=cfg.RELATED_LOOKBACK_DAYS, result_limit=cfg.RELATED_RESULT_LIMIT)


@dataclass(frozen=True, slots=True)
class RelatedBooking:
    booking_code: str
    created_at: datetime
    status: str
    total_amount: float


@dataclass(frozen=True, slots=True)
class RelatedBookings:
    by_device: list[RelatedBooking] = field(default_factory=list)
    by_ip: list[RelatedBooking] = field(default_factory=list)
    by_email: list[RelatedBooking] = field(default_factory=list)


class RelationshipLinker:
    """Per-identifier related-booking lookups.

    Each lookup is independent and takes its own session, so the caller can
    issue all three concurrently.  A missing identifier returns an empty
    list without querying.
    """

    def __init__(self, config: LinkerConfig | None = None) -> None:
        self.config = config or LinkerConfig.from_settings()

    async def find_by_device(self, session: AsyncSession, booking: Booking) -> list[RelatedBooking]:
        return await self._lookup(session, booking, Booking.device_fingerprint, booking.device_fingerprint)

    async def find_by_ip(self, session: AsyncSession, booking: Booking) -> list[RelatedBooking]:
        return await self._lookup(session, booking, Booking.booking_ip_address, booking.booking_ip_address)

    async def find_by_email(self, session: AsyncSession, booking: Booking) -> list[RelatedBooking]:
        return await self._lookup(session, booking, Booking.guest_email, booking.guest_email)

    async def _lookup(
        self,
        session: AsyncSession,
        booking: Booking,
        column: InstrumentedAttribute,
        value: str | None,
    ) -> list[RelatedBooking]:
        if not value:
            return []

        cutoff = utcnow() - timedelta(days=self.config.lookback_days)
        stmt = (
            select(
                Booking.booking_code,
                Booking.created_at,
                Booking.status,
                Booking.total_amount,
            )
            .where(
                column == value,
                Booking.id != booking.id,
                Booking.created_at >= cutoff,
            )
            .order_by(Booking.created_at.desc())
            .limit(self.config.result_limit)
        )
        try:
            rows = (await session.execute(stmt)).all()
        except Exception:
            logger.warning(
                "Related lookup on %s failed for booking %s; returning no matches",
                column.key,
                booking.id,
                exc_info=True,
            )
            return []

        return [
            RelatedBooking(
                booking_code=row.booking_code,
                created_at=as_utc(row.created_at),
                status=row.status,
                total_amount=row.total_amount,
            )
            for row in rows
        ]
