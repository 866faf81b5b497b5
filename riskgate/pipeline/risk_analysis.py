"""Risk analysis for a single booking.

Loads the booking, scores its flags, then fans out the historical sample
fetch, the three relationship lookups and the three velocity counts
concurrently, each on its own session.  Once every read is back the
recommendation engine combines the results.

Subcomponents degrade on their own (neutral comparison, empty lists, zero
counts).  Only a failed primary read, a missing booking or a timeout of the
whole fan-out aborts the analysis.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.config import settings
from riskgate.errors import AnalysisTimeoutError, NotFoundError, StoreUnavailableError
from riskgate.models.database import Booking
from riskgate.pipeline.category_scorer import CategoryBreakdown, CategoryScorer
from riskgate.pipeline.historical import HistoricalComparator, HistoricalComparison
from riskgate.pipeline.recommendations import (
    AVAILABLE_ACTIONS,
    OVERRIDE_OPTIONS,
    RecommendationEngine,
    RecommendationInput,
    RecommendationResult,
)
from riskgate.pipeline.relationships import RelatedBookings, RelationshipLinker
from riskgate.pipeline.risk_scorer import risk_level
from riskgate.pipeline.velocity import VelocityAnalyzer, VelocityResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RiskAnalysis:
    booking_id: str
    booking_code: str
    risk_score: int
    risk_level: str
    requires_manual_review: bool
    categories: CategoryBreakdown
    historical: HistoricalComparison
    related: RelatedBookings
    velocity: VelocityResult
    recommendations: RecommendationResult
    available_actions: list[str] = field(default_factory=lambda: list(AVAILABLE_ACTIONS))
    override_options: list[str] = field(default_factory=lambda: list(OVERRIDE_OPTIONS))


def composite_score(booking: Booking, categories: CategoryBreakdown) -> int:
    """Stored score when present, otherwise the capped category sum."""
    score = booking.risk_score if booking.risk_score is not None else categories.total
    return max(0, min(100, int(score)))


class RiskAnalysisService:
    """Computes the full risk report for a booking.

    Args:
        session_factory: Factory used to open one session per concurrent read.
        timeout_seconds: Upper bound on the fan-out; exceeding it fails the
            whole analysis rather than returning a partial report.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        scorer: CategoryScorer | None = None,
        comparator: HistoricalComparator | None = None,
        linker: RelationshipLinker | None = None,
        velocity: VelocityAnalyzer | None = None,
        recommender: RecommendationEngine | None = None,
        review_threshold: int | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.scorer = scorer or CategoryScorer()
        self.comparator = comparator or HistoricalComparator()
        self.linker = linker or RelationshipLinker()
        self.velocity = velocity or VelocityAnalyzer()
        self.recommender = recommender or RecommendationEngine()
        self.review_threshold = (
            review_threshold if review_threshold is not None else settings.MANUAL_REVIEW_THRESHOLD
        )
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.ANALYSIS_TIMEOUT_SECONDS
        )

    async def load_booking(self, booking_id: str) -> Booking:
        try:
            async with self.session_factory() as session:
                booking = await session.get(Booking, booking_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Could not load booking {booking_id}") from exc
        if booking is None:
            raise NotFoundError(f"Booking '{booking_id}' not found")
        return booking

    async def _read(self, reader: Callable[..., Awaitable[T]], *args: Any) -> T:
        async with self.session_factory() as session:
            return await reader(session, *args)

    async def analyze(self, booking_id: str) -> RiskAnalysis:
        booking = await self.load_booking(booking_id)
        categories = self.scorer.score(booking)
        score = composite_score(booking, categories)

        fan_out = asyncio.gather(
            self._read(self.comparator.analyze, booking.id, score),
            self._read(self.linker.find_by_device, booking),
            self._read(self.linker.find_by_ip, booking),
            self._read(self.linker.find_by_email, booking),
            self._read(self.velocity.count_window, booking, "24h"),
            self._read(self.velocity.count_window, booking, "7d"),
            self._read(self.velocity.count_window, booking, "30d"),
        )
        try:
            (
                historical,
                by_device,
                by_ip,
                by_email,
                count_24h,
                count_7d,
                count_30d,
            ) = await asyncio.wait_for(fan_out, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Risk analysis for %s timed out after %.1fs", booking_id, self.timeout_seconds
            )
            raise AnalysisTimeoutError(
                f"Risk analysis for booking '{booking_id}' did not finish in time"
            ) from exc

        related = RelatedBookings(by_device=by_device, by_ip=by_ip, by_email=by_email)
        velocity = self.velocity.build_result(count_24h, count_7d, count_30d)

        recommendations = self.recommender.evaluate(
            RecommendationInput(
                score=score,
                email_flags=categories.email.flags,
                device_flags=categories.device.flags,
                session_flags=categories.session.flags,
                location_flags=categories.location.flags,
                identity_flags=categories.identity.flags,
                velocity_tier=velocity.tier,
                is_anomaly=historical.is_anomaly,
                license_verified=bool(booking.license_verified),
                selfie_verified=bool(booking.selfie_verified),
                session_duration_ms=booking.session_duration_ms,
            )
        )

        analysis = RiskAnalysis(
            booking_id=booking.id,
            booking_code=booking.booking_code,
            risk_score=score,
            risk_level=risk_level(score),
            requires_manual_review=score >= self.review_threshold or bool(booking.flagged_for_review),
            categories=categories,
            historical=historical,
            related=related,
            velocity=velocity,
            recommendations=recommendations,
        )
        logger.info(
            "Risk analysis for %s: score=%d level=%s velocity=%s disposition=%s",
            booking.booking_code,
            score,
            analysis.risk_level,
            velocity.tier.value,
            recommendations.disposition.value,
        )
        return analysis
