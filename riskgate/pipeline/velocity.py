"""Booking velocity across trailing time windows.

A booking counts towards the velocity of another when it shares *any* of
device fingerprint, booking IP or guest email with it.  Counts include the
booking under analysis and bookings of any status.

Tiers (first match wins, comparisons are strict):
    24h > 5   -> critical
    24h > 3   -> high
    7d  > 10  -> elevated
    30d > 20  -> elevated
    otherwise -> normal
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.config import Settings, settings
from riskgate.models.database import Booking, utcnow

logger = logging.getLogger(__name__)

WINDOWS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


class VelocityTier(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class VelocityThresholds:
    critical_24h: int = 5
    high_24h: int = 3
    elevated_7d: int = 10
    elevated_30d: int = 20

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> VelocityThresholds:
        return cls(
            critical_24h=cfg.VELOCITY_CRITICAL_24H,
            high_24h=cfg.VELOCITY_HIGH_24H,
            elevated_7d=cfg.VELOCITY_ELEVATED_7D,
            elevated_30d=cfg.VELOCITY_ELEVATED_30D,
        )


@dataclass(frozen=True, slots=True)
class VelocityResult:
    count_24h: int
    count_7d: int
    count_30d: int
    tier: VelocityTier


def classify_velocity(
    count_24h: int,
    count_7d: int,
    count_30d: int,
    thresholds: VelocityThresholds | None = None,
) -> VelocityTier:
    t = thresholds or VelocityThresholds()
    if count_24h > t.critical_24h:
        return VelocityTier.CRITICAL
    if count_24h > t.high_24h:
        return VelocityTier.HIGH
    if count_7d > t.elevated_7d:
        return VelocityTier.ELEVATED
    if count_30d > t.elevated_30d:
        return VelocityTier.ELEVATED
    return VelocityTier.NORMAL


class VelocityAnalyzer:
    """Counts identifier-linked bookings per window and assigns a tier."""

    def __init__(self, thresholds: VelocityThresholds | None = None) -> None:
        self.thresholds = thresholds or VelocityThresholds.from_settings()

    @staticmethod
    def _identifier_filter(booking: Booking):
        clauses = []
        if booking.device_fingerprint:
            clauses.append(Booking.device_fingerprint == booking.device_fingerprint)
        if booking.booking_ip_address:
            clauses.append(Booking.booking_ip_address == booking.booking_ip_address)
        if booking.guest_email:
            clauses.append(Booking.guest_email == booking.guest_email)
        return or_(*clauses) if clauses else None

    async def count_window(self, session: AsyncSession, booking: Booking, window: str) -> int:
        """Count linked bookings created within *window*; zero on failure."""
        identifier_filter = self._identifier_filter(booking)
        if identifier_filter is None:
            return 0

        cutoff = utcnow() - WINDOWS[window]
        stmt = (
            select(func.count())
            .select_from(Booking)
            .where(identifier_filter, Booking.created_at >= cutoff)
        )
        try:
            count: int = await session.scalar(stmt) or 0
        except Exception:
            logger.warning(
                "Velocity count (%s) failed for booking %s; using 0",
                window,
                booking.id,
                exc_info=True,
            )
            return 0
        return count

    def build_result(self, count_24h: int, count_7d: int, count_30d: int) -> VelocityResult:
        tier = classify_velocity(count_24h, count_7d, count_30d, self.thresholds)
        logger.debug(
            "Velocity: 24h=%d 7d=%d 30d=%d tier=%s",
            count_24h,
            count_7d,
            count_30d,
            tier.value,
        )
        return VelocityResult(count_24h=count_24h, count_7d=count_7d, count_30d=count_30d, tier=tier)
