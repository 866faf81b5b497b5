"""Verification gate: predicate, lifecycle state machine and charge derivation.

A booking requires verification when any gate predicate holds.  Predicates
are checked in a fixed order and the first match is reported as the
verification reason:

    1. host_approval_required -- car is not instant-bookable
    2. luxury_vehicle         -- daily rate >= luxury threshold
    3. exotic_vehicle         -- car type in the exotic set
    4. high_value_booking     -- booking total >= high-value threshold
    5. unverified_host        -- host not platform-verified
    6. extended_rental        -- trip length >= long-trip day count

Lifecycle::

    NOT_REQUIRED -> SUBMITTED | PENDING_CHARGES | COMPLETED
    SUBMITTED    -> APPROVED | REJECTED | PENDING_CHARGES | COMPLETED
    APPROVED     -> PENDING_CHARGES | COMPLETED
    PENDING_CHARGES <-> DISPUTE_REVIEW
    PENDING_CHARGES -> COMPLETED | REJECTED
    DISPUTE_REVIEW  -> COMPLETED

APPROVED closes the pre-trip document review only.  The trip end still
moves it on, to PENDING_CHARGES when charges are owed and to COMPLETED
otherwise.  REJECTED and COMPLETED are terminal.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from riskgate.config import Settings, settings
from riskgate.errors import InvalidTransitionError
from riskgate.models.database import Booking, as_utc

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    NOT_REQUIRED = "NOT_REQUIRED"
    SUBMITTED = "SUBMITTED"
    PENDING_CHARGES = "PENDING_CHARGES"
    DISPUTE_REVIEW = "DISPUTE_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


TERMINAL_STATES: frozenset[VerificationStatus] = frozenset(
    {VerificationStatus.REJECTED, VerificationStatus.COMPLETED}
)

TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.NOT_REQUIRED: frozenset(
        {
            VerificationStatus.SUBMITTED,
            VerificationStatus.PENDING_CHARGES,
            VerificationStatus.COMPLETED,
        }
    ),
    VerificationStatus.SUBMITTED: frozenset(
        {
            VerificationStatus.APPROVED,
            VerificationStatus.REJECTED,
            VerificationStatus.PENDING_CHARGES,
            VerificationStatus.COMPLETED,
        }
    ),
    VerificationStatus.PENDING_CHARGES: frozenset(
        {
            VerificationStatus.DISPUTE_REVIEW,
            VerificationStatus.COMPLETED,
            VerificationStatus.REJECTED,
        }
    ),
    VerificationStatus.DISPUTE_REVIEW: frozenset(
        {VerificationStatus.PENDING_CHARGES, VerificationStatus.COMPLETED}
    ),
    VerificationStatus.APPROVED: frozenset(
        {VerificationStatus.PENDING_CHARGES, VerificationStatus.COMPLETED}
    ),
    VerificationStatus.REJECTED: frozenset(),
    VerificationStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True, slots=True)
class VerificationThresholds:
    """Gate thresholds, read only at evaluation time."""

    luxury_daily_rate: float = 300.0
    high_value_total: float = 2500.0
    long_trip_days: int = 14
    exotic_car_types: frozenset[str] = field(
        default_factory=lambda: frozenset({"exotic", "supercar", "luxury_sports"})
    )

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> VerificationThresholds:
        return cls(
            luxury_daily_rate=cfg.LUXURY_DAILY_RATE_THRESHOLD,
            high_value_total=cfg.HIGH_VALUE_TOTAL_THRESHOLD,
            long_trip_days=cfg.LONG_TRIP_DAYS,
            exotic_car_types=frozenset(t.lower() for t in cfg.EXOTIC_CAR_TYPES),
        )


@dataclass(frozen=True, slots=True)
class GateInput:
    instant_book: bool
    daily_rate: float
    car_type: str
    total_amount: float
    host_verified: bool
    number_of_days: int


@dataclass(frozen=True, slots=True)
class GateDecision:
    requires_verification: bool
    reason: str | None = None


GatePredicate = tuple[str, Callable[[GateInput, VerificationThresholds], bool]]

GATE_PREDICATES: tuple[GatePredicate, ...] = (
    ("host_approval_required", lambda g, t: not g.instant_book),
    ("luxury_vehicle", lambda g, t: g.daily_rate >= t.luxury_daily_rate),
    ("exotic_vehicle", lambda g, t: (g.car_type or "").lower() in t.exotic_car_types),
    ("high_value_booking", lambda g, t: g.total_amount >= t.high_value_total),
    ("unverified_host", lambda g, t: not g.host_verified),
    ("extended_rental", lambda g, t: g.number_of_days >= t.long_trip_days),
)


def gate_input_for(booking: Booking) -> GateInput:
    """Build the gate input from a booking with ``car`` and ``car.host`` loaded."""
    car = booking.car
    host = car.host if car is not None else None
    return GateInput(
        instant_book=bool(car.instant_book) if car is not None else False,
        daily_rate=car.daily_rate if car is not None else booking.daily_rate,
        car_type=car.car_type if car is not None else "",
        total_amount=booking.total_amount or 0.0,
        host_verified=bool(host.is_verified) if host is not None else False,
        number_of_days=booking.number_of_days or 0,
    )


class VerificationGate:
    """Evaluates the gate predicate and drives status transitions."""

    def __init__(self, thresholds: VerificationThresholds | None = None) -> None:
        self.thresholds = thresholds or VerificationThresholds.from_settings()

    def evaluate(self, gate_input: GateInput) -> GateDecision:
        for reason, predicate in GATE_PREDICATES:
            if predicate(gate_input, self.thresholds):
                return GateDecision(requires_verification=True, reason=reason)
        return GateDecision(requires_verification=False)

    def evaluate_booking(self, booking: Booking) -> GateDecision:
        return self.evaluate(gate_input_for(booking))


def can_transition(current: str | VerificationStatus, target: str | VerificationStatus) -> bool:
    return VerificationStatus(target) in TRANSITIONS[VerificationStatus(current)]


def is_terminal(status: str | VerificationStatus) -> bool:
    return VerificationStatus(status) in TERMINAL_STATES


def transition(booking: Booking, target: VerificationStatus) -> None:
    """Move *booking* to *target*, enforcing the lifecycle.

    Raises:
        InvalidTransitionError: The move is not allowed from the current
            state, or *target* is ``COMPLETED`` while the booking is still
            flagged for review.
    """
    current = VerificationStatus(booking.verification_status)
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"Booking {booking.id} cannot move from {current.value} to {target.value}"
        )
    if target is VerificationStatus.COMPLETED and booking.flagged_for_review:
        raise InvalidTransitionError(
            f"Booking {booking.id} is flagged for review and cannot be completed"
        )
    booking.verification_status = target.value
    logger.info("Booking %s verification %s -> %s", booking.id, current.value, target.value)


# ---------------------------------------------------------------------------
# Post-trip charge derivation
# ---------------------------------------------------------------------------

FUEL_QUARTERS: dict[str, int] = {
    "full": 4,
    "3/4": 3,
    "1/2": 2,
    "1/4": 1,
    "empty": 0,
}


@dataclass(frozen=True, slots=True)
class ChargeRates:
    included_miles_per_day: int = 200
    mileage_rate: float = 0.45
    fuel_quarter_rate: float = 75.0
    late_hourly_rate: float = 25.0
    damage_base: float = 500.0

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> ChargeRates:
        return cls(
            included_miles_per_day=cfg.INCLUDED_MILES_PER_DAY,
            mileage_rate=cfg.MILEAGE_RATE,
            fuel_quarter_rate=cfg.FUEL_QUARTER_TANK_RATE,
            late_hourly_rate=cfg.LATE_RETURN_HOURLY_RATE,
            damage_base=cfg.DAMAGE_BASE_CHARGE,
        )


@dataclass(frozen=True, slots=True)
class ChargeBreakdown:
    mileage: float = 0.0
    fuel: float = 0.0
    late: float = 0.0
    damage: float = 0.0
    cleaning: float = 0.0

    @property
    def total(self) -> float:
        return round(self.mileage + self.fuel + self.late + self.damage + self.cleaning, 2)


def fuel_quarters(level: str | None) -> int | None:
    if level is None:
        return None
    return FUEL_QUARTERS.get(level.strip().lower())


def compute_trip_charges(
    *,
    number_of_days: int,
    start_mileage: int | None,
    end_mileage: int | None,
    fuel_level_start: str | None,
    fuel_level_end: str | None,
    scheduled_end: datetime | None,
    actual_end: datetime | None,
    damage_reported: bool,
    rates: ChargeRates | None = None,
) -> ChargeBreakdown:
    """Derive post-trip charges from odometer, fuel and return-time deltas.

    Components with missing inputs contribute nothing.
    """
    r = rates or ChargeRates()

    mileage = 0.0
    if start_mileage is not None and end_mileage is not None:
        allowance = max(number_of_days, 1) * r.included_miles_per_day
        overage = max(0, (end_mileage - start_mileage) - allowance)
        mileage = round(overage * r.mileage_rate, 2)

    fuel = 0.0
    start_q, end_q = fuel_quarters(fuel_level_start), fuel_quarters(fuel_level_end)
    if start_q is not None and end_q is not None:
        fuel = max(0, start_q - end_q) * r.fuel_quarter_rate

    late = 0.0
    if scheduled_end is not None and actual_end is not None:
        overdue_seconds = (as_utc(actual_end) - as_utc(scheduled_end)).total_seconds()
        if overdue_seconds > 0:
            late = math.ceil(overdue_seconds / 3600) * r.late_hourly_rate

    damage = r.damage_base if damage_reported else 0.0

    return ChargeBreakdown(mileage=mileage, fuel=float(fuel), late=float(late), damage=damage)


def charges_for_booking(booking: Booking, rates: ChargeRates | None = None) -> ChargeBreakdown:
    return compute_trip_charges(
        number_of_days=booking.number_of_days or 1,
        start_mileage=booking.start_mileage,
        end_mileage=booking.end_mileage,
        fuel_level_start=booking.fuel_level_start,
        fuel_level_end=booking.fuel_level_end,
        scheduled_end=booking.end_date,
        actual_end=booking.actual_end_time,
        damage_reported=bool(booking.damage_reported),
        rates=rates,
    )
