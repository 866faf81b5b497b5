"""Suspicious pattern endpoint for fraud operators."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.models.database import get_db
from riskgate.pipeline.patterns import SuspiciousPatternDetector
from riskgate.schemas.schemas import PatternReportResponse, PatternResponse

fraud_router = APIRouter(prefix="/api/fraud", tags=["fraud"])


@fraud_router.get("/suspicious-patterns", response_model=PatternReportResponse)
async def get_suspicious_patterns(
    timeframe: str = Query(default="7d", description="1d, 7d or 30d"),
    min_severity: str = Query(default="low", description="low, medium, high or critical"),
    pattern_type: str | None = Query(
        default=None,
        description="velocity, device_cluster, email_pattern or identity_farming",
    ),
    db: AsyncSession = Depends(get_db),
) -> PatternReportResponse:
    """Scan recent bookings for coordinated activity.

    Args:
        timeframe: Lookback window.
        min_severity: Lowest severity to include.
        pattern_type: Restrict results to one detector.
        db: Async database session dependency.

    Returns:
        Patterns ordered by severity then confidence, with a summary.
    """
    report = await SuspiciousPatternDetector().detect(
        db, timeframe=timeframe, min_severity=min_severity, pattern_type=pattern_type
    )
    return PatternReportResponse(
        patterns=[PatternResponse.model_validate(p) for p in report.patterns],
        timeframe=report.timeframe,
        summary=report.summary,
    )
