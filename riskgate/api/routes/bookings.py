"""Booking risk endpoints: analysis, admin actions, audit trail and intake."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.errors import InvalidRequestError
from riskgate.models.database import get_db, get_session_factory
from riskgate.pipeline.admin_actions import AdminActionProcessor, list_audit_entries
from riskgate.pipeline.ingestion import BookingIngestionPipeline
from riskgate.pipeline.risk_analysis import RiskAnalysis, RiskAnalysisService
from riskgate.schemas.schemas import (
    AdminActionRequest,
    AdminActionResponse,
    AuditEntryResponse,
    BookingCreate,
    BookingCreateResponse,
    CategoryScoreResponse,
    HistoricalResponse,
    RecommendationResponse,
    RelatedBookingsResponse,
    RiskAnalysisResponse,
    VelocityResponse,
)

logger = logging.getLogger(__name__)

bookings_router = APIRouter(prefix="/api/bookings", tags=["bookings"])


def _analysis_response(analysis: RiskAnalysis) -> RiskAnalysisResponse:
    result = analysis.recommendations
    return RiskAnalysisResponse(
        booking_id=analysis.booking_id,
        booking_code=analysis.booking_code,
        risk_score=analysis.risk_score,
        risk_level=analysis.risk_level,
        percentile=analysis.historical.percentile,
        is_anomaly=analysis.historical.is_anomaly,
        requires_manual_review=analysis.requires_manual_review,
        categories={
            name: CategoryScoreResponse.model_validate(score)
            for name, score in analysis.categories.as_dict().items()
        },
        historical=HistoricalResponse.model_validate(analysis.historical),
        related=RelatedBookingsResponse.model_validate(analysis.related),
        velocity=VelocityResponse(
            count_24h=analysis.velocity.count_24h,
            count_7d=analysis.velocity.count_7d,
            count_30d=analysis.velocity.count_30d,
            tier=analysis.velocity.tier.value,
        ),
        recommendations=[
            RecommendationResponse(
                rule=r.rule, action=r.action, reason=r.reason, priority=r.priority.value
            )
            for r in result.recommendations
        ],
        recommendation_priority=result.priority.value if result.priority is not None else None,
        suggested_disposition=result.disposition.value,
        available_actions=list(analysis.available_actions),
        override_options=list(analysis.override_options),
    )


@bookings_router.get("/{booking_id}/risk-analysis", response_model=RiskAnalysisResponse)
async def get_risk_analysis(
    booking_id: str,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> RiskAnalysisResponse:
    """Compute the full risk report for a booking.

    Args:
        booking_id: Booking identifier.
        session_factory: Factory used to open one session per concurrent read.

    Returns:
        Category breakdown, historical comparison, related bookings,
        velocity and recommendations.

    Raises:
        NotFoundError: 404 if the booking does not exist.
        StoreUnavailableError: 503 if the primary read fails, 504 on timeout.
    """
    analysis = await RiskAnalysisService(session_factory).analyze(booking_id)
    return _analysis_response(analysis)


@bookings_router.post("/{booking_id}/admin-actions", response_model=AdminActionResponse)
async def apply_admin_action(
    booking_id: str,
    body: AdminActionRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AdminActionResponse:
    """Apply an operator override and record it in the audit trail.

    Raises:
        InvalidRequestError: 400 for unknown actions or a bad score.
        NotFoundError: 404 if the booking does not exist.
        StoreUnavailableError: 503 if the transaction was rolled back.
    """
    result = await AdminActionProcessor(session_factory).apply(
        booking_id,
        body.action,
        notes=body.notes,
        new_score=body.new_score,
        admin_id=body.admin_id,
    )
    return AdminActionResponse.model_validate(result)


@bookings_router.get("/{booking_id}/audit-log", response_model=list[AuditEntryResponse])
async def get_audit_log(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
) -> list[AuditEntryResponse]:
    entries = await list_audit_entries(db, booking_id)
    return [AuditEntryResponse.model_validate(entry) for entry in entries]


@bookings_router.post("", response_model=BookingCreateResponse, status_code=201)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
) -> BookingCreateResponse:
    """Screen a new booking, evaluate the verification gate and persist it.

    Args:
        body: Booking payload with its car and host.
        db: Async database session dependency.

    Returns:
        The screening score, the resulting statuses and the gate decision.

    Raises:
        InvalidRequestError: 400 if a booking with the same id exists.
    """
    pipeline = BookingIngestionPipeline()
    outcome = await pipeline.process_booking(body.model_dump(), db)
    if outcome is None:
        raise InvalidRequestError(f"Booking '{body.id}' already exists")

    return BookingCreateResponse(
        booking_id=outcome.booking_id,
        risk_score=outcome.score.risk_score,
        risk_level=outcome.score.risk_level,
        triggered_rules=outcome.score.triggered_rules,
        flags=outcome.score.flags,
        status=outcome.status,
        verification_status=outcome.verification_status,
        requires_verification=outcome.gate.requires_verification,
        verification_reason=outcome.gate.reason,
        requires_manual_review=outcome.score.requires_manual_review,
    )
