"""Historical comparison of a composite score against recent bookings.

The comparator pulls the most recent non-null, non-zero composite scores of
other non-cancelled bookings and reports where the current score falls in
that population.  Below the minimum sample size it returns a neutral result
(50th percentile, never anomalous) flagged ``insufficient_history``.

Anomaly cutoff: the score is anomalous when its percentile rank is in the
top or bottom tail (>= 95th or <= 5th by default) or when it deviates from
the sample mean by at least two population standard deviations.
"""

from __future__ import annotations

import logging
import statistics
from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.config import Settings, settings
from riskgate.models.database import Booking

logger = logging.getLogger(__name__)

NEUTRAL_PERCENTILE = 50.0


@dataclass(frozen=True, slots=True)
class ComparatorConfig:
    sample_size: int = 100
    min_samples: int = 11
    anomaly_percentile: float = 95.0
    std_deviations: float = 2.0

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> ComparatorConfig:
        return cls(
            sample_size=cfg.HISTORICAL_SAMPLE_SIZE,
            min_samples=cfg.HISTORICAL_MIN_SAMPLES,
            anomaly_percentile=cfg.ANOMALY_PERCENTILE,
            std_deviations=cfg.ANOMALY_STD_DEVIATIONS,
        )


@dataclass(frozen=True, slots=True)
class HistoricalComparison:
    """Position of a score within the historical population.

    Attributes:
        percentile: Mid-rank percentile in [0, 100].
        is_anomaly: Whether the score sits in an extreme tail.
        sample_size: Number of historical scores compared against.
        mean: Sample mean, ``None`` for the neutral result.
        std_dev: Population standard deviation, ``None`` for the neutral result.
        z_score: Deviation of the score from the mean in standard deviations.
        insufficient_history: ``True`` when the neutral result was returned.
    """

    percentile: float
    is_anomaly: bool
    sample_size: int
    mean: float | None = None
    std_dev: float | None = None
    z_score: float | None = None
    insufficient_history: bool = False

    @classmethod
    def neutral(cls, sample_size: int = 0) -> HistoricalComparison:
        return cls(
            percentile=NEUTRAL_PERCENTILE,
            is_anomaly=False,
            sample_size=sample_size,
            insufficient_history=True,
        )


class HistoricalComparator:
    """Computes percentile rank and anomaly status for a composite score."""

    def __init__(self, config: ComparatorConfig | None = None) -> None:
        self.config = config or ComparatorConfig.from_settings()

    def compare(self, score: float, sample: Sequence[float]) -> HistoricalComparison:
        """Compare *score* against *sample*.

        Pure and total: any computation error yields the neutral result.
        """
        n = len(sample)
        if n < self.config.min_samples:
            return HistoricalComparison.neutral(sample_size=n)

        try:
            below = sum(1 for s in sample if s < score)
            equal = sum(1 for s in sample if s == score)
            percentile = (below + 0.5 * equal) / n * 100

            mean = statistics.fmean(sample)
            std_dev = statistics.pstdev(sample)
            z_score = (score - mean) / std_dev if std_dev > 0 else 0.0
        except (ArithmeticError, TypeError, ValueError, statistics.StatisticsError):
            logger.warning("Historical comparison failed for score %s", score, exc_info=True)
            return HistoricalComparison.neutral(sample_size=n)

        upper = self.config.anomaly_percentile
        lower = 100.0 - upper
        is_anomaly = (
            percentile >= upper
            or percentile <= lower
            or abs(z_score) >= self.config.std_deviations
        )
        return HistoricalComparison(
            percentile=round(percentile, 1),
            is_anomaly=is_anomaly,
            sample_size=n,
            mean=round(mean, 2),
            std_dev=round(std_dev, 2),
            z_score=round(z_score, 2),
        )

    async def fetch_sample(self, session: AsyncSession, booking_id: str) -> list[int]:
        stmt = (
            select(Booking.risk_score)
            .where(
                Booking.id != booking_id,
                Booking.status != "CANCELLED",
                Booking.risk_score.is_not(None),
                Booking.risk_score > 0,
            )
            .order_by(Booking.created_at.desc())
            .limit(self.config.sample_size)
        )
        result = await session.scalars(stmt)
        return list(result.all())

    async def analyze(
        self,
        session: AsyncSession,
        booking_id: str,
        score: float,
    ) -> HistoricalComparison:
        """Fetch the sample and compare; degrades to neutral on any failure."""
        try:
            sample = await self.fetch_sample(session, booking_id)
        except Exception:
            logger.warning(
                "Historical sample fetch failed for booking %s; using neutral result",
                booking_id,
                exc_info=True,
            )
            return HistoricalComparison.neutral()
        comparison = self.compare(score, sample)
        logger.debug(
            "Historical comparison for %s: percentile=%.1f anomaly=%s n=%d",
            booking_id,
            comparison.percentile,
            comparison.is_anomaly,
            comparison.sample_size,
        )
        return comparison
