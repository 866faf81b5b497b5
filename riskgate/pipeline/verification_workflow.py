"""Verification workflow: documents, trip end, operator decisions and the queue.

Moves bookings through the verification lifecycle defined in
``verification_gate`` and records every decision in the audit log.  The
queue lists bookings that need an operator: those matching the gate
predicate plus any booking with post-trip charges to review.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from riskgate.config import Settings, settings
from riskgate.errors import InvalidRequestError, NotFoundError, StoreUnavailableError
from riskgate.models.database import Booking, Car, Dispute, TripCharge, as_utc, utcnow
from riskgate.pipeline.admin_actions import make_audit_entry
from riskgate.pipeline.verification_gate import (
    ChargeBreakdown,
    ChargeRates,
    GateDecision,
    VerificationGate,
    VerificationStatus,
    charges_for_booking,
    is_terminal,
    transition,
)

logger = logging.getLogger(__name__)

CHARGE_STATES: frozenset[str] = frozenset(
    {VerificationStatus.PENDING_CHARGES.value, VerificationStatus.DISPUTE_REVIEW.value}
)

STATUS_FILTERS: dict[str, frozenset[str] | None] = {
    "pending": frozenset(
        {
            VerificationStatus.NOT_REQUIRED.value,
            VerificationStatus.SUBMITTED.value,
            VerificationStatus.PENDING_CHARGES.value,
            VerificationStatus.DISPUTE_REVIEW.value,
        }
    ),
    "approved": frozenset({VerificationStatus.APPROVED.value}),
    "rejected": frozenset({VerificationStatus.REJECTED.value}),
    "completed": frozenset({VerificationStatus.COMPLETED.value}),
    "all": None,
}

DISPUTE_TYPES: frozenset[str] = frozenset(
    {"MILEAGE", "FUEL", "LATE_RETURN", "DAMAGE", "CLEANING", "OTHER"}
)


class Decision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    APPROVE_CHARGES = "approve_charges"
    WAIVE = "waive"
    PARTIAL_WAIVE = "partial_waive"
    REVIEW_DISPUTE = "review_dispute"


DECISION_EVENTS: dict[Decision, str] = {
    Decision.APPROVE: "booking_approved",
    Decision.REJECT: "booking_rejected",
    Decision.APPROVE_CHARGES: "charges_approved",
    Decision.WAIVE: "charges_waived",
    Decision.PARTIAL_WAIVE: "charges_partially_waived",
    Decision.REVIEW_DISPUTE: "dispute_review_started",
}

CHARGE_DECISIONS: frozenset[Decision] = frozenset(
    {Decision.APPROVE_CHARGES, Decision.WAIVE, Decision.PARTIAL_WAIVE, Decision.REVIEW_DISPUTE}
)


@dataclass(frozen=True, slots=True)
class DisputeInput:
    dispute_type: str
    description: str


@dataclass(frozen=True, slots=True)
class TripEndInput:
    end_mileage: int | None = None
    fuel_level_end: str | None = None
    actual_end_time: datetime | None = None
    damage_reported: bool = False
    damage_description: str | None = None
    start_mileage: int | None = None
    fuel_level_start: str | None = None
    disputes: list[DisputeInput] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class TripEndResult:
    booking_id: str
    charges: ChargeBreakdown
    charge_id: str | None
    verification_status: str
    dispute_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class UrgencyFlags:
    open_dispute: bool = False
    failed_charge: bool = False
    large_pending_amount: bool = False

    @property
    def urgent(self) -> bool:
        return self.open_dispute or self.failed_charge or self.large_pending_amount


@dataclass(frozen=True, slots=True)
class QueueItem:
    booking: Booking
    verification_mode: str
    reason: str
    charges: ChargeBreakdown | None
    charge_status: str | None
    pending_amount: float
    urgency: UrgencyFlags


@dataclass(frozen=True, slots=True)
class QueueCounts:
    pending_documents: int = 0
    pending_charges: int = 0
    approved: int = 0
    rejected: int = 0
    completed: int = 0
    disputed: int = 0
    failed_charges: int = 0


@dataclass(frozen=True, slots=True)
class QueuePage:
    items: list[QueueItem]
    total: int
    page: int
    limit: int
    counts: QueueCounts


def latest_charge(booking: Booking) -> TripCharge | None:
    charges = list(booking.trip_charges or [])
    if not charges:
        return None
    return max(charges, key=lambda c: as_utc(c.created_at))


def recorded_breakdown(charge: TripCharge) -> ChargeBreakdown:
    return ChargeBreakdown(
        mileage=charge.mileage_charge,
        fuel=charge.fuel_charge,
        late=charge.late_charge,
        damage=charge.damage_charge,
        cleaning=charge.cleaning_charge,
    )


def _booking_query():
    return select(Booking).options(
        selectinload(Booking.car).selectinload(Car.host),
        selectinload(Booking.trip_charges),
        selectinload(Booking.disputes),
    )


class VerificationWorkflow:
    """Drives documents, trip end and decisions for the verification queue.

    Args:
        gate: Gate used for queue membership and reasons.
        rates: Rates used to derive post-trip charges.
    """

    def __init__(
        self,
        gate: VerificationGate | None = None,
        rates: ChargeRates | None = None,
        cfg: Settings = settings,
    ) -> None:
        self.gate = gate or VerificationGate()
        self.rates = rates or ChargeRates.from_settings(cfg)
        self.large_pending_threshold = cfg.LARGE_PENDING_CHARGE_THRESHOLD
        self.scan_limit = cfg.QUEUE_SCAN_LIMIT

    async def load(self, session: AsyncSession, booking_id: str) -> Booking:
        try:
            booking = await session.scalar(_booking_query().where(Booking.id == booking_id))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Could not load booking {booking_id}") from exc
        if booking is None:
            raise NotFoundError(f"Booking '{booking_id}' not found")
        return booking

    async def _commit(self, session: AsyncSession, what: str) -> None:
        try:
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("%s failed and was rolled back: %s", what, exc)
            raise StoreUnavailableError(f"{what} failed") from exc

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def record_documents(
        self,
        session: AsyncSession,
        booking_id: str,
        license_photo_url: str | None,
        selfie_photo_url: str | None,
    ) -> Booking:
        """Store the guest's documents and move the booking to ``SUBMITTED``."""
        if not license_photo_url and not selfie_photo_url:
            raise InvalidRequestError("At least one document URL is required")

        booking = await self.load(session, booking_id)
        if booking.verification_status != VerificationStatus.SUBMITTED.value:
            transition(booking, VerificationStatus.SUBMITTED)

        if license_photo_url:
            booking.license_photo_url = license_photo_url
        if selfie_photo_url:
            booking.selfie_photo_url = selfie_photo_url
        booking.documents_submitted_at = utcnow()

        session.add(
            make_audit_entry(
                booking,
                action="record_documents",
                event="documents_submitted",
                previous_score=booking.risk_score,
                details={
                    "license": booking.license_photo_url is not None,
                    "selfie": booking.selfie_photo_url is not None,
                },
            )
        )
        await self._commit(session, f"Document submission for {booking_id}")
        return booking

    # ------------------------------------------------------------------
    # Trip end
    # ------------------------------------------------------------------

    async def end_trip(
        self,
        session: AsyncSession,
        booking_id: str,
        data: TripEndInput,
    ) -> TripEndResult:
        """Record the trip end, derive charges and update the lifecycle.

        Non-zero charges create a ``TripCharge`` (``DISPUTED`` when the
        guest raised disputes) and move the booking to ``PENDING_CHARGES``.
        Zero charges complete the booking unless it is flagged for review.
        Terminal bookings keep their status; the charges are still recorded.
        """
        for dispute in data.disputes:
            if dispute.dispute_type.upper() not in DISPUTE_TYPES:
                raise InvalidRequestError(f"Unknown dispute type '{dispute.dispute_type}'")

        booking = await self.load(session, booking_id)
        if booking.trip_ended_at is not None:
            raise InvalidRequestError(f"Trip for booking '{booking_id}' has already ended")

        now = utcnow()
        if data.start_mileage is not None:
            booking.start_mileage = data.start_mileage
        if data.fuel_level_start is not None:
            booking.fuel_level_start = data.fuel_level_start
        booking.end_mileage = data.end_mileage
        booking.fuel_level_end = data.fuel_level_end
        booking.actual_end_time = data.actual_end_time or now
        booking.damage_reported = data.damage_reported
        booking.damage_description = data.damage_description
        booking.trip_status = "COMPLETED"
        booking.trip_ended_at = now
        booking.status = "COMPLETED"

        charges = charges_for_booking(booking, self.rates)
        charge: TripCharge | None = None
        if charges.total > 0:
            charge = TripCharge(
                id=str(uuid4()),
                booking_id=booking.id,
                mileage_charge=charges.mileage,
                fuel_charge=charges.fuel,
                late_charge=charges.late,
                damage_charge=charges.damage,
                cleaning_charge=charges.cleaning,
                total_charges=charges.total,
                charge_status="DISPUTED" if data.disputes else "PENDING",
                disputed_at=now if data.disputes else None,
                dispute_notes="; ".join(d.description for d in data.disputes) or None,
                created_at=now,
            )
            session.add(charge)
            booking.trip_charges.append(charge)

        dispute_ids: list[str] = []
        for item in data.disputes:
            dispute = Dispute(
                id=str(uuid4()),
                booking_id=booking.id,
                dispute_type=item.dispute_type.upper(),
                description=item.description,
                status="OPEN",
                created_at=now,
            )
            session.add(dispute)
            booking.disputes.append(dispute)
            dispute_ids.append(dispute.id)

        booking.pending_charges_amount = charges.total
        status = VerificationStatus(booking.verification_status)
        if is_terminal(status):
            logger.info(
                "Booking %s is %s; trip charges recorded without status change",
                booking_id,
                status.value,
            )
        elif charges.total > 0:
            if status not in (VerificationStatus.PENDING_CHARGES, VerificationStatus.DISPUTE_REVIEW):
                transition(booking, VerificationStatus.PENDING_CHARGES)
        elif not booking.flagged_for_review:
            transition(booking, VerificationStatus.COMPLETED)

        session.add(
            make_audit_entry(
                booking,
                action="end_trip",
                event="trip_ended",
                previous_score=booking.risk_score,
                details={
                    "charges": _breakdown_dict(charges),
                    "disputes": len(dispute_ids),
                    "verification_status": booking.verification_status,
                },
            )
        )
        await self._commit(session, f"Trip end for {booking_id}")
        logger.info(
            "Trip ended for %s: charges=%.2f status=%s",
            booking_id,
            charges.total,
            booking.verification_status,
        )
        return TripEndResult(
            booking_id=booking.id,
            charges=charges,
            charge_id=charge.id if charge is not None else None,
            verification_status=booking.verification_status,
            dispute_ids=dispute_ids,
        )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def decide(
        self,
        session: AsyncSession,
        booking_id: str,
        decision: str,
        reviewer: str | None = None,
        notes: str | None = None,
        waive_percentage: float | None = None,
    ) -> Booking:
        """Apply an operator decision.

        Pre-trip decisions (``approve``, ``reject``) act on submitted
        documents.  Post-trip decisions act on the latest charge record.

        Raises:
            InvalidRequestError: Unknown decision, missing charge record or
                waive percentage outside 1-100.
            InvalidTransitionError: The decision is not allowed from the
                booking's current status.
        """
        try:
            parsed = Decision(decision)
        except ValueError:
            allowed = ", ".join(d.value for d in Decision)
            raise InvalidRequestError(
                f"Unknown decision '{decision}'; expected one of: {allowed}"
            ) from None

        if parsed is Decision.PARTIAL_WAIVE and (
            waive_percentage is None or not 1 <= waive_percentage <= 100
        ):
            raise InvalidRequestError("partial_waive requires waive_percentage between 1 and 100")

        booking = await self.load(session, booking_id)
        charge = latest_charge(booking)
        if parsed in CHARGE_DECISIONS and charge is None:
            raise InvalidRequestError(f"Booking '{booking_id}' has no trip charges to decide on")

        now = utcnow()
        details: dict[str, Any] = {}

        if parsed is Decision.APPROVE:
            transition(booking, VerificationStatus.APPROVED)
            booking.status = "CONFIRMED"
            booking.license_verified = booking.license_photo_url is not None
            booking.selfie_verified = booking.selfie_photo_url is not None
        elif parsed is Decision.REJECT:
            transition(booking, VerificationStatus.REJECTED)
            if booking.trip_ended_at is None:
                booking.status = "CANCELLED"
        elif parsed is Decision.APPROVE_CHARGES:
            transition(booking, VerificationStatus.COMPLETED)
            charge.charge_status = "APPROVED"
            details["approved_amount"] = charge.total_charges
        elif parsed is Decision.WAIVE:
            transition(booking, VerificationStatus.COMPLETED)
            charge.charge_status = "FULLY_WAIVED"
            charge.waived_amount = charge.total_charges
            charge.waive_reason = notes
            charge.waived_by = reviewer
            charge.waived_at = now
            booking.pending_charges_amount = 0.0
            details["waived_amount"] = charge.total_charges
        elif parsed is Decision.PARTIAL_WAIVE:
            transition(booking, VerificationStatus.COMPLETED)
            waived = round(charge.total_charges * waive_percentage / 100, 2)
            charge.charge_status = "PARTIALLY_WAIVED"
            charge.waived_amount = waived
            charge.waive_reason = notes
            charge.waived_by = reviewer
            charge.waived_at = now
            booking.pending_charges_amount = round(charge.total_charges - waived, 2)
            details.update(waive_percentage=waive_percentage, waived_amount=waived)
        elif parsed is Decision.REVIEW_DISPUTE:
            transition(booking, VerificationStatus.DISPUTE_REVIEW)
            charge.charge_status = "UNDER_REVIEW"
            for dispute in booking.disputes:
                if dispute.status == "OPEN":
                    dispute.status = "UNDER_REVIEW"
                    dispute.reviewed_by = reviewer
                    dispute.review_started_at = now

        booking.reviewed_by = reviewer
        booking.reviewed_at = now
        if notes:
            booking.verification_notes = notes

        session.add(
            make_audit_entry(
                booking,
                action=parsed.value,
                event=DECISION_EVENTS[parsed],
                notes=notes,
                previous_score=booking.risk_score,
                admin_id=reviewer,
                details=details,
            )
        )
        await self._commit(session, f"Decision {parsed.value} for {booking_id}")
        logger.info("Decision %s applied to %s by %s", parsed.value, booking_id, reviewer)
        return booking

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def queue_item(self, booking: Booking, decision: GateDecision) -> QueueItem:
        charge = latest_charge(booking)
        in_charge_state = booking.verification_status in CHARGE_STATES
        if charge is not None:
            charges: ChargeBreakdown | None = recorded_breakdown(charge)
        elif booking.trip_ended_at is not None:
            charges = charges_for_booking(booking, self.rates)
        else:
            charges = None

        if booking.pending_charges_amount is not None:
            pending = booking.pending_charges_amount
        else:
            pending = charges.total if charges is not None else 0.0

        has_charges = charges is not None and charges.total > 0
        if in_charge_state or (booking.trip_ended_at is not None and has_charges):
            mode = "charges"
        else:
            mode = "documents"
        urgency = UrgencyFlags(
            open_dispute=any(d.status in ("OPEN", "UNDER_REVIEW") for d in booking.disputes),
            failed_charge=any(c.charge_status == "FAILED" for c in booking.trip_charges),
            large_pending_amount=pending > self.large_pending_threshold,
        )
        return QueueItem(
            booking=booking,
            verification_mode=mode,
            reason=decision.reason or "post_trip_charges",
            charges=charges,
            charge_status=charge.charge_status if charge is not None else None,
            pending_amount=pending,
            urgency=urgency,
        )

    def in_queue(self, booking: Booking, decision: GateDecision) -> bool:
        return (
            decision.requires_verification
            or booking.verification_status in CHARGE_STATES
            or bool(booking.trip_charges)
        )

    async def list_queue(
        self,
        session: AsyncSession,
        status: str = "pending",
        page: int = 1,
        limit: int = 20,
    ) -> QueuePage:
        """List bookings awaiting or past verification.

        Aggregate counts cover the whole queue regardless of *status*.
        """
        if status not in STATUS_FILTERS:
            allowed = ", ".join(STATUS_FILTERS)
            raise InvalidRequestError(f"Unknown status filter '{status}'; expected one of: {allowed}")
        if page < 1 or limit < 1:
            raise InvalidRequestError("page and limit must be positive")

        stmt = _booking_query().order_by(Booking.created_at.desc()).limit(self.scan_limit)
        try:
            bookings = list((await session.scalars(stmt)).all())
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Could not load the verification queue") from exc

        queue: list[QueueItem] = []
        for booking in bookings:
            decision = self.gate.evaluate_booking(booking)
            if self.in_queue(booking, decision):
                queue.append(self.queue_item(booking, decision))

        counts = _count(queue)
        wanted = STATUS_FILTERS[status]
        selected = [q for q in queue if wanted is None or q.booking.verification_status in wanted]
        selected.sort(key=lambda q: not q.urgency.urgent)

        start = (page - 1) * limit
        logger.debug("Verification queue: %d of %d match %s", len(selected), len(queue), status)
        return QueuePage(
            items=selected[start : start + limit],
            total=len(selected),
            page=page,
            limit=limit,
            counts=counts,
        )


def _count(queue: list[QueueItem]) -> QueueCounts:
    statuses = [q.booking.verification_status for q in queue]
    return QueueCounts(
        pending_documents=sum(
            1
            for s in statuses
            if s in (VerificationStatus.NOT_REQUIRED.value, VerificationStatus.SUBMITTED.value)
        ),
        pending_charges=statuses.count(VerificationStatus.PENDING_CHARGES.value),
        approved=statuses.count(VerificationStatus.APPROVED.value),
        rejected=statuses.count(VerificationStatus.REJECTED.value),
        completed=statuses.count(VerificationStatus.COMPLETED.value),
        disputed=sum(
            1
            for q in queue
            if q.booking.verification_status == VerificationStatus.DISPUTE_REVIEW.value
            or q.urgency.open_dispute
        ),
        failed_charges=sum(1 for q in queue if q.urgency.failed_charge),
    )


def _breakdown_dict(charges: ChargeBreakdown) -> dict[str, float]:
    return {
        "mileage": charges.mileage,
        "fuel": charges.fuel,
        "late": charges.late,
        "damage": charges.damage,
        "cleaning": charges.cleaning,
        "total": charges.total,
    }
