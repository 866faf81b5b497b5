"""Verification queue and lifecycle endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.models.database import get_db
from riskgate.pipeline.verification_gate import ChargeBreakdown
from riskgate.pipeline.verification_workflow import (
    DisputeInput,
    QueueItem,
    TripEndInput,
    VerificationWorkflow,
)
from riskgate.schemas.schemas import (
    ChargeBreakdownResponse,
    DecisionRequest,
    DocumentsRequest,
    QueueCountsResponse,
    QueueItemResponse,
    TripEndRequest,
    TripEndResponse,
    UrgencyResponse,
    VerificationQueueResponse,
    VerificationStatusResponse,
)

logger = logging.getLogger(__name__)

verifications_router = APIRouter(prefix="/api/verifications", tags=["verifications"])


def _charges(charges: ChargeBreakdown | None) -> ChargeBreakdownResponse | None:
    if charges is None:
        return None
    return ChargeBreakdownResponse(
        mileage=charges.mileage,
        fuel=charges.fuel,
        late=charges.late,
        damage=charges.damage,
        cleaning=charges.cleaning,
        total=charges.total,
    )


def _queue_item(item: QueueItem) -> QueueItemResponse:
    booking = item.booking
    car = f"{booking.car.make} {booking.car.model}" if booking.car is not None else None
    return QueueItemResponse(
        booking_id=booking.id,
        booking_code=booking.booking_code,
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        car=car,
        total_amount=booking.total_amount,
        risk_score=booking.risk_score,
        verification_status=booking.verification_status,
        verification_mode=item.verification_mode,
        verification_reason=item.reason,
        charges=_charges(item.charges),
        charge_status=item.charge_status,
        pending_amount=item.pending_amount,
        urgency=UrgencyResponse(
            open_dispute=item.urgency.open_dispute,
            failed_charge=item.urgency.failed_charge,
            large_pending_amount=item.urgency.large_pending_amount,
            urgent=item.urgency.urgent,
        ),
        documents_submitted_at=booking.documents_submitted_at,
        created_at=booking.created_at,
    )


@verifications_router.get("", response_model=VerificationQueueResponse)
async def get_verification_queue(
    status: str = Query(default="pending", description="pending, approved, rejected, completed or all"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> VerificationQueueResponse:
    """List bookings that need, or have had, operator verification.

    Urgent entries (open dispute, failed charge, large pending amount) sort
    first.  Aggregate counts always cover the whole queue.
    """
    result = await VerificationWorkflow().list_queue(db, status=status, page=page, limit=limit)
    counts = result.counts
    return VerificationQueueResponse(
        items=[_queue_item(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        counts=QueueCountsResponse(
            pending_documents=counts.pending_documents,
            pending_charges=counts.pending_charges,
            approved=counts.approved,
            rejected=counts.rejected,
            completed=counts.completed,
            disputed=counts.disputed,
            failed_charges=counts.failed_charges,
        ),
    )


@verifications_router.post("/{booking_id}/documents", response_model=VerificationStatusResponse)
async def submit_documents(
    booking_id: str,
    body: DocumentsRequest,
    db: AsyncSession = Depends(get_db),
) -> VerificationStatusResponse:
    booking = await VerificationWorkflow().record_documents(
        db, booking_id, body.license_photo_url, body.selfie_photo_url
    )
    return VerificationStatusResponse.model_validate(booking)


@verifications_router.post("/{booking_id}/trip-end", response_model=TripEndResponse)
async def end_trip(
    booking_id: str,
    body: TripEndRequest,
    db: AsyncSession = Depends(get_db),
) -> TripEndResponse:
    """Record the end of a trip and derive post-trip charges.

    Args:
        booking_id: Booking identifier.
        body: Return readings and any guest disputes.
        db: Async database session dependency.

    Returns:
        The charge breakdown and the booking's new verification status.
    """
    data = TripEndInput(
        end_mileage=body.end_mileage,
        fuel_level_end=body.fuel_level_end,
        actual_end_time=body.actual_end_time,
        damage_reported=body.damage_reported,
        damage_description=body.damage_description,
        start_mileage=body.start_mileage,
        fuel_level_start=body.fuel_level_start,
        disputes=[DisputeInput(d.dispute_type, d.description) for d in body.disputes],
    )
    result = await VerificationWorkflow().end_trip(db, booking_id, data)
    return TripEndResponse(
        booking_id=result.booking_id,
        charges=_charges(result.charges),
        charge_id=result.charge_id,
        verification_status=result.verification_status,
        dispute_ids=result.dispute_ids,
    )


@verifications_router.post("/{booking_id}/decision", response_model=VerificationStatusResponse)
async def decide(
    booking_id: str,
    body: DecisionRequest,
    db: AsyncSession = Depends(get_db),
) -> VerificationStatusResponse:
    """Apply an operator decision to a booking's verification.

    Raises:
        InvalidRequestError: 400 for unknown decisions or missing charges.
        InvalidTransitionError: 409 when the decision is not allowed from
            the current status.
    """
    booking = await VerificationWorkflow().decide(
        db,
        booking_id,
        body.decision,
        reviewer=body.reviewer,
        notes=body.notes,
        waive_percentage=body.waive_percentage,
    )
    return VerificationStatusResponse.model_validate(booking)
