"""Booking ingestion pipeline.

This module provides the ``BookingIngestionPipeline`` class that orchestrates
the full lifecycle of an incoming booking: host and car upsert, persistence,
screening, risk scoring, verification gating and the audit entry written
for blocked bookings.

Supported ingestion sources:
    - a JSON array stored in a file (``ingest_from_json``)
    - bookings already held in memory (``ingest_from_list``)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.errors import NotFoundError
from riskgate.models.database import Booking, Car, Host, async_session, utcnow
from riskgate.pipeline.admin_actions import make_audit_entry
from riskgate.pipeline.risk_scorer import RiskScorer, ScoreResult
from riskgate.pipeline.rules_engine import RulesEngine, ScreeningInput
from riskgate.pipeline.verification_gate import (
    GateDecision,
    VerificationGate,
    VerificationStatus,
    transition,
)

logger = logging.getLogger(__name__)

BOOKING_FIELDS: tuple[str, ...] = (
    "guest_name",
    "guest_email",
    "email_domain",
    "device_fingerprint",
    "booking_ip_address",
    "booking_country",
    "booking_city",
    "session_duration_ms",
    "interaction_count",
    "copy_paste_used",
    "validation_error_count",
    "phone_verified",
    "email_verified",
    "license_verified",
    "selfie_verified",
    "license_photo_url",
    "selfie_photo_url",
    "total_amount",
    "daily_rate",
    "number_of_days",
    "start_date",
    "end_date",
    "start_mileage",
    "fuel_level_start",
    "is_fraudulent",
)

DATETIME_FIELDS: tuple[str, ...] = ("created_at", "start_date", "end_date")


@dataclass(frozen=True, slots=True)
class BookingOutcome:
    booking_id: str
    score: ScoreResult
    gate: GateDecision
    status: str
    verification_status: str


def _parse_datetime(value: Any) -> datetime | None:
    """Normalise ISO strings to timezone-aware UTC datetimes."""
    if value is None or isinstance(value, datetime):
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class BookingIngestionPipeline:
    """End-to-end booking intake.

    Accepts raw booking dictionaries, persists them with their host and car,
    screens them, evaluates the verification gate and blocks bookings whose
    screening score reaches the block threshold.

    Args:
        session_factory: Factory used by the bulk ingestion entry points.

    Attributes:
        processed_count: Running total of successfully processed bookings.
        flagged_count: Running total of bookings flagged for manual review.
        blocked_count: Running total of blocked bookings.
        verification_count: Running total of bookings the gate sent to review.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] = async_session,
        rules_engine: RulesEngine | None = None,
        scorer: RiskScorer | None = None,
        gate: VerificationGate | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.rules_engine = rules_engine or RulesEngine()
        self.scorer = scorer or RiskScorer()
        self.gate = gate or VerificationGate()
        self.processed_count: int = 0
        self.flagged_count: int = 0
        self.blocked_count: int = 0
        self.verification_count: int = 0

    async def _upsert_host(self, session: AsyncSession, data: dict[str, Any]) -> Host:
        host = await session.get(Host, data["id"])
        if host is None:
            host = Host(
                id=data["id"],
                name=data.get("name") or data["id"],
                email=data.get("email"),
                is_verified=bool(data.get("is_verified", False)),
            )
            session.add(host)
        return host

    async def _resolve_car(self, session: AsyncSession, booking_data: dict[str, Any]) -> Car:
        car_data: dict[str, Any] | None = booking_data.get("car")
        if car_data is None:
            car = await session.get(Car, booking_data.get("car_id"))
            if car is None:
                raise NotFoundError(f"Unknown car '{booking_data.get('car_id')}'")
            await session.refresh(car, ["host"])
            return car

        host = await self._upsert_host(session, booking_data["host"])
        car = await session.get(Car, car_data["id"])
        if car is not None:
            await session.refresh(car, ["host"])
            return car
        car = Car(
            id=car_data["id"],
            host_id=host.id,
            make=car_data.get("make", "Unknown"),
            model=car_data.get("model", "Unknown"),
            car_type=car_data.get("car_type", "economy"),
            daily_rate=float(car_data["daily_rate"]),
            instant_book=bool(car_data.get("instant_book", True)),
        )
        session.add(car)
        car.host = host
        return car

    async def process_booking(
        self,
        booking_data: dict[str, Any],
        session: AsyncSession,
    ) -> BookingOutcome | None:
        """Process a single booking through the intake pipeline.

        Steps:
            1. Deduplicate -- skip if ``id`` already exists.
            2. Upsert the host and car.
            3. Screen the booking signals and compute the risk score.
            4. Persist the booking, blocked when the score demands it.
            5. Evaluate the verification gate and record submitted documents.

        Args:
            booking_data: Raw booking dictionary.
            session: Active async database session.

        Returns:
            A ``BookingOutcome`` on success, or ``None`` when the booking
            was skipped as a duplicate.
        """
        booking_id: str = booking_data.get("id", "")

        # --- 1. Duplicate check -------------------------------------------
        existing = await session.scalar(select(Booking.id).where(Booking.id == booking_id))
        if existing is not None:
            logger.warning("Duplicate booking %s -- skipping", booking_id)
            return None

        # --- 2. Host and car ----------------------------------------------
        car = await self._resolve_car(session, booking_data)

        # --- 3. Screening -------------------------------------------------
        for key in DATETIME_FIELDS:
            if key in booking_data:
                booking_data[key] = _parse_datetime(booking_data[key])
        created_at = booking_data.get("created_at") or utcnow()

        screening = ScreeningInput(
            booking_code=booking_data.get("booking_code", booking_id),
            device_fingerprint=booking_data.get("device_fingerprint"),
            session_duration_ms=booking_data.get("session_duration_ms"),
            interaction_count=booking_data.get("interaction_count"),
            total_amount=float(booking_data.get("total_amount") or 0.0),
            start_date=booking_data.get("start_date"),
            bot_signals=tuple(booking_data.get("bot_signals") or ()),
            booked_at=created_at,
        )
        score_result = self.scorer.calculate(self.rules_engine.evaluate_all(screening))

        flags = list(booking_data.get("risk_flags") or [])
        flags.extend(f for f in score_result.flags if f not in flags)

        # --- 4. Persist ---------------------------------------------------
        email = booking_data.get("guest_email")
        fields = {k: booking_data[k] for k in BOOKING_FIELDS if booking_data.get(k) is not None}
        if "email_domain" not in fields and email and "@" in email:
            fields["email_domain"] = email.rsplit("@", 1)[1].lower()

        booking = Booking(
            id=booking_id,
            booking_code=screening.booking_code,
            car_id=car.id,
            status="BLOCKED" if score_result.should_block else booking_data.get("status", "PENDING"),
            created_at=created_at,
            risk_score=score_result.risk_score,
            risk_flags=flags,
            flagged_for_review=score_result.requires_manual_review,
            verification_status=VerificationStatus.NOT_REQUIRED.value,
            **fields,
        )
        booking.car = car
        session.add(booking)

        # --- 5. Gate and documents ----------------------------------------
        gate = self.gate.evaluate_booking(booking)
        if booking.license_photo_url or booking.selfie_photo_url:
            transition(booking, VerificationStatus.SUBMITTED)
            booking.documents_submitted_at = created_at

        if score_result.should_block:
            session.add(
                make_audit_entry(
                    booking,
                    action="screening",
                    event="booking_blocked",
                    notes="; ".join(score_result.triggered_rules),
                    details={"breakdown": score_result.breakdown},
                )
            )
            self.blocked_count += 1
            logger.warning(
                "Booking %s BLOCKED -- score %d, rules %s",
                booking_id,
                score_result.risk_score,
                score_result.triggered_rules,
            )

        if score_result.requires_manual_review:
            self.flagged_count += 1
        if gate.requires_verification:
            self.verification_count += 1

        await session.commit()
        self.processed_count += 1
        return BookingOutcome(
            booking_id=booking_id,
            score=score_result,
            gate=gate,
            status=booking.status,
            verification_status=booking.verification_status,
        )

    async def ingest_from_json(
        self,
        file_path: str,
        delay_seconds: float = 0.0,
    ) -> dict[str, Any]:
        """Ingest bookings from a JSON file.

        The file must contain a JSON array of booking objects at the top
        level.

        Args:
            file_path: File holding a JSON array of bookings.
            delay_seconds: Artificial delay between bookings to simulate
                real-time arrival.

        Returns:
            A summary dictionary with keys ``total``, ``flagged``,
            ``blocked``, ``requiring_verification`` and
            ``processing_time_seconds``.
        """
        path = Path(file_path)
        logger.info("Loading bookings from %s", path.resolve())

        with path.open("r", encoding="utf-8") as fh:
            bookings: list[dict[str, Any]] = json.load(fh)

        return await self._ingest(bookings, delay_seconds)

    async def ingest_from_list(
        self,
        bookings: list[dict[str, Any]],
        delay_seconds: float = 0.0,
    ) -> dict[str, Any]:
        """Ingest bookings from an in-memory list.

        Args:
            bookings: List of booking dictionaries.
            delay_seconds: Artificial delay between bookings.

        Returns:
            The same summary ``ingest_from_json`` returns.
        """
        return await self._ingest(bookings, delay_seconds)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _ingest(
        self,
        bookings: list[dict[str, Any]],
        delay_seconds: float,
    ) -> dict[str, Any]:
        total = len(bookings)
        logger.info("Starting ingestion of %d bookings", total)
        start_time = time.perf_counter()

        for idx, booking_data in enumerate(bookings, start=1):
            booking_id = booking_data.get("id", "UNKNOWN")
            async with self.session_factory() as session:
                outcome = await self.process_booking(booking_data, session)

            if outcome is not None:
                logger.info(
                    "Processing [%d/%d] %s | Score: %d | Status: %s | Gate: %s",
                    idx,
                    total,
                    booking_id,
                    outcome.score.risk_score,
                    outcome.status,
                    outcome.gate.reason or "not required",
                )
            else:
                logger.info("Processing [%d/%d] %s | SKIPPED (duplicate)", idx, total, booking_id)

            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)

        elapsed = time.perf_counter() - start_time
        summary: dict[str, Any] = {
            "total": self.processed_count,
            "flagged": self.flagged_count,
            "blocked": self.blocked_count,
            "requiring_verification": self.verification_count,
            "processing_time_seconds": round(elapsed, 4),
        }
        logger.info("Ingestion complete: %s", summary)
        return summary
