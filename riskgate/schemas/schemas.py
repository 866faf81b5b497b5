"""Pydantic v2 schemas for request validation and response serialization.

This module defines all data transfer objects (DTOs) used across the
rental risk gating API:

- ``RiskAnalysisResponse``      -- full risk report for one booking.
- ``AdminActionRequest``        -- request body for POST /bookings/{id}/admin-actions.
- ``AdminActionResponse``       -- outcome of an admin action.
- ``AuditEntryResponse``        -- one row of a booking's audit trail.
- ``BookingCreate``             -- incoming booking payload with its car and host.
- ``BookingCreateResponse``     -- screening and gate outcome for a new booking.
- ``DocumentsRequest``          -- guest document submission.
- ``TripEndRequest``            -- end-of-trip readings and disputes.
- ``DecisionRequest``           -- operator decision on a verification.
- ``VerificationQueueResponse`` -- paginated verification queue with counts.
- ``PatternReportResponse``     -- suspicious pattern scan results.
- ``BackgroundCheckResponse``   -- host background check stages.

All models use ``from __future__ import annotations`` for deferred evaluation
of type hints, enabling forward references within the same module.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Structured error body returned for every failed request.

    Attributes:
        error: Taxonomy code, e.g. ``not_found`` or ``invalid_request``.
        message: Human-readable description.
    """

    error: str
    message: str


# ---------------------------------------------------------------------------
# Risk analysis
# ---------------------------------------------------------------------------


class CategoryScoreResponse(BaseModel):
    score: int = Field(..., ge=0, le=100, description="Category subscore in [0, 100].")
    flags: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class HistoricalResponse(BaseModel):
    percentile: float
    is_anomaly: bool
    sample_size: int
    mean: float | None = None
    std_dev: float | None = None
    z_score: float | None = None
    insufficient_history: bool = False

    model_config = ConfigDict(from_attributes=True)


class RelatedBookingResponse(BaseModel):
    booking_code: str
    created_at: datetime
    status: str
    total_amount: float

    model_config = ConfigDict(from_attributes=True)


class RelatedBookingsResponse(BaseModel):
    """Related bookings, one list per shared identifier.

    Attributes:
        by_device: Bookings sharing the device fingerprint, newest first.
        by_ip: Bookings sharing the booking IP, newest first.
        by_email: Bookings sharing the guest email, newest first.
    """

    by_device: list[RelatedBookingResponse]
    by_ip: list[RelatedBookingResponse]
    by_email: list[RelatedBookingResponse]

    model_config = ConfigDict(from_attributes=True)


class VelocityResponse(BaseModel):
    count_24h: int
    count_7d: int
    count_30d: int
    tier: str = Field(..., description="normal, elevated, high or critical.")

    model_config = ConfigDict(from_attributes=True)


class RecommendationResponse(BaseModel):
    rule: str
    action: str
    reason: str
    priority: str

    model_config = ConfigDict(from_attributes=True)


class RiskAnalysisResponse(BaseModel):
    """Full risk report returned by ``GET /api/bookings/{id}/risk-analysis``.

    Attributes:
        risk_score: Composite score in [0, 100].
        risk_level: ``low`` (<30), ``medium`` (<50), ``high`` (<70) or
            ``critical`` (>=70).
        percentile: Position of the score among recent bookings.
        is_anomaly: Whether the score is a statistical outlier.
        requires_manual_review: Score at or above the review threshold, or
            the booking is already flagged.
        categories: Subscores keyed by ``email``, ``device``, ``session``,
            ``location`` and ``identity``.
        historical: Full historical comparison.
        related: Related bookings by device, IP and email.
        velocity: Window counts and velocity tier.
        recommendations: Fired recommendation rules in table order.
        recommendation_priority: Highest priority among recommendations,
            null when none fired.
        suggested_disposition: Advisory ``approve``, ``reject`` or ``review``.
        available_actions: Fixed list of actions offered to the operator.
        override_options: Fixed list of override options.
    """

    booking_id: str
    booking_code: str
    risk_score: int = Field(..., ge=0, le=100)
    risk_level: str
    percentile: float
    is_anomaly: bool
    requires_manual_review: bool
    categories: dict[str, CategoryScoreResponse]
    historical: HistoricalResponse
    related: RelatedBookingsResponse
    velocity: VelocityResponse
    recommendations: list[RecommendationResponse]
    recommendation_priority: str | None = None
    suggested_disposition: str
    available_actions: list[str]
    override_options: list[str]


# ---------------------------------------------------------------------------
# Admin actions and audit
# ---------------------------------------------------------------------------


class AdminActionRequest(BaseModel):
    """Request body schema for ``POST /api/bookings/{id}/admin-actions``.

    Attributes:
        action: One of ``override_risk``, ``whitelist``,
            ``mark_false_positive``, ``block_device``.  Unknown names are
            rejected with ``invalid_request``.
        notes: Free-text operator notes, stored in the audit trail.
        new_score: Replacement score, required for ``override_risk``.
        admin_id: Identifier of the operator applying the action.
    """

    action: str = Field(..., description="override_risk, whitelist, mark_false_positive or block_device.")
    notes: str | None = None
    new_score: int | None = Field(default=None, description="Required for override_risk; 0-100.")
    admin_id: str | None = None


class AdminActionResponse(BaseModel):
    success: bool
    booking_id: str
    action: str
    event: str
    previous_score: int | None = None
    new_score: int | None = None
    audit_id: str

    model_config = ConfigDict(from_attributes=True)


class AuditEntryResponse(BaseModel):
    id: str
    booking_id: str
    action: str
    event: str
    notes: str | None = None
    previous_score: int | None = None
    new_score: int | None = None
    admin_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Booking intake
# ---------------------------------------------------------------------------


class HostPayload(BaseModel):
    id: str
    name: str
    email: str | None = None
    is_verified: bool = False


class CarPayload(BaseModel):
    id: str
    make: str
    model: str
    car_type: str = "economy"
    daily_rate: float = Field(..., gt=0)
    instant_book: bool = True


class BookingCreate(BaseModel):
    """Schema for creating or ingesting a new booking.

    Used both as the FastAPI request body for ``POST /api/bookings`` and as
    the validated shape of the synthetic data produced by
    ``data/generate_data.py``.

    Attributes:
        id: Unique identifier sourced from the commerce flow.
        booking_code: Human-readable booking reference.
        car: The booked car; upserted on first sight.
        host: The car's host; upserted on first sight.
        risk_flags: Flags already computed by upstream signal producers.
        bot_signals: Automation signals reported by the client, if any.
        session_duration_ms: Booking session length; null when no
            telemetry was captured.
        license_photo_url: Driver license document, when submitted with the
            booking.  Its presence moves the booking to ``SUBMITTED``.
    """

    id: str
    booking_code: str
    car: CarPayload
    host: HostPayload
    created_at: datetime | None = None
    status: str = "PENDING"

    guest_name: str | None = None
    guest_email: str | None = None
    email_domain: str | None = None

    risk_flags: list[str] = Field(default_factory=list)
    bot_signals: list[str] = Field(default_factory=list)
    device_fingerprint: str | None = None
    booking_ip_address: str | None = None
    booking_country: str | None = None
    booking_city: str | None = None
    session_duration_ms: int | None = Field(default=None, ge=0)
    interaction_count: int | None = Field(default=None, ge=0)
    copy_paste_used: bool = False
    validation_error_count: int = Field(default=0, ge=0)
    phone_verified: bool = False
    email_verified: bool = False
    license_verified: bool = False
    selfie_verified: bool = False
    license_photo_url: str | None = None
    selfie_photo_url: str | None = None

    total_amount: float = Field(..., ge=0)
    daily_rate: float = Field(..., ge=0)
    number_of_days: int = Field(..., ge=1)
    start_date: datetime | None = None
    end_date: datetime | None = None
    start_mileage: int | None = Field(default=None, ge=0)
    fuel_level_start: str | None = None


class BookingCreateResponse(BaseModel):
    booking_id: str
    risk_score: int
    risk_level: str
    triggered_rules: list[str]
    flags: list[str]
    status: str
    verification_status: str
    requires_verification: bool
    verification_reason: str | None = None
    requires_manual_review: bool


# ---------------------------------------------------------------------------
# Verification workflow
# ---------------------------------------------------------------------------


class DocumentsRequest(BaseModel):
    license_photo_url: str | None = None
    selfie_photo_url: str | None = None


class DisputePayload(BaseModel):
    dispute_type: str = Field(
        default="OTHER",
        description="MILEAGE, FUEL, LATE_RETURN, DAMAGE, CLEANING or OTHER.",
    )
    description: str


class TripEndRequest(BaseModel):
    """End-of-trip readings.

    Attributes:
        end_mileage: Odometer reading at return.
        fuel_level_end: One of ``Full``, ``3/4``, ``1/2``, ``1/4``, ``Empty``.
        actual_end_time: Return time; defaults to now.
        damage_reported: Adds the flat damage charge when true.
        start_mileage: Start odometer, when not captured at booking time.
        fuel_level_start: Start fuel level, when not captured at booking time.
        disputes: Disputes the guest raised at return.
    """

    end_mileage: int | None = Field(default=None, ge=0)
    fuel_level_end: str | None = None
    actual_end_time: datetime | None = None
    damage_reported: bool = False
    damage_description: str | None = None
    start_mileage: int | None = Field(default=None, ge=0)
    fuel_level_start: str | None = None
    disputes: list[DisputePayload] = Field(default_factory=list)


class ChargeBreakdownResponse(BaseModel):
    mileage: float
    fuel: float
    late: float
    damage: float
    cleaning: float
    total: float


class TripEndResponse(BaseModel):
    booking_id: str
    charges: ChargeBreakdownResponse
    charge_id: str | None = None
    verification_status: str
    dispute_ids: list[str] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    """Operator decision on a verification.

    Attributes:
        decision: ``approve`` or ``reject`` for document review;
            ``approve_charges``, ``waive``, ``partial_waive`` or
            ``review_dispute`` for post-trip charges.
        reviewer: Operator identifier.
        notes: Free-text notes stored on the booking and in the audit log.
        waive_percentage: Required for ``partial_waive``; 1-100.
    """

    decision: str
    reviewer: str | None = None
    notes: str | None = None
    waive_percentage: float | None = None


class VerificationStatusResponse(BaseModel):
    booking_id: str = Field(..., validation_alias="id")
    status: str
    verification_status: str
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    verification_notes: str | None = None
    pending_charges_amount: float | None = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class UrgencyResponse(BaseModel):
    open_dispute: bool
    failed_charge: bool
    large_pending_amount: bool
    urgent: bool


class QueueItemResponse(BaseModel):
    booking_id: str
    booking_code: str
    guest_name: str | None = None
    guest_email: str | None = None
    car: str | None = None
    total_amount: float
    risk_score: int | None = None
    verification_status: str
    verification_mode: str = Field(..., description="documents or charges.")
    verification_reason: str
    charges: ChargeBreakdownResponse | None = None
    charge_status: str | None = None
    pending_amount: float
    urgency: UrgencyResponse
    documents_submitted_at: datetime | None = None
    created_at: datetime


class QueueCountsResponse(BaseModel):
    pending_documents: int
    pending_charges: int
    approved: int
    rejected: int
    completed: int
    disputed: int
    failed_charges: int


class VerificationQueueResponse(BaseModel):
    items: list[QueueItemResponse]
    total: int
    page: int
    limit: int
    counts: QueueCountsResponse


# ---------------------------------------------------------------------------
# Fraud patterns
# ---------------------------------------------------------------------------


class PatternResponse(BaseModel):
    type: str
    severity: str
    confidence: int
    booking_ids: list[str]
    description: str
    details: dict[str, Any]
    first_seen: datetime
    last_seen: datetime
    occurrences: int

    model_config = ConfigDict(from_attributes=True)


class PatternReportResponse(BaseModel):
    patterns: list[PatternResponse]
    timeframe: str
    summary: dict[str, Any]

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Host background checks
# ---------------------------------------------------------------------------


class BackgroundStageResponse(BaseModel):
    stage: str
    status: str
    notes: str | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class BackgroundCheckResponse(BaseModel):
    host_id: str
    is_verified: bool
    overall_status: str
    stages: list[BackgroundStageResponse]


class StageUpdateRequest(BaseModel):
    status: str = Field(..., description="PASSED or FAILED.")
    notes: str | None = None
