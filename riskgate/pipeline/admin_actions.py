"""Operator overrides applied to a booking's risk state.

Every action mutates the booking and writes an audit entry in one
transaction.  If either half fails both are rolled back and the caller
receives ``StoreUnavailableError``; the audit entry always carries the
score the booking had before the action ran.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from riskgate.errors import InvalidRequestError, NotFoundError, StoreUnavailableError
from riskgate.models.database import Booking, RiskAuditEntry, utcnow

logger = logging.getLogger(__name__)


class AdminAction(str, Enum):
    OVERRIDE_RISK = "override_risk"
    WHITELIST = "whitelist"
    MARK_FALSE_POSITIVE = "mark_false_positive"
    BLOCK_DEVICE = "block_device"


ACTION_EVENTS: dict[AdminAction, str] = {
    AdminAction.OVERRIDE_RISK: "risk_override",
    AdminAction.WHITELIST: "whitelist_added",
    AdminAction.MARK_FALSE_POSITIVE: "false_positive_marked",
    AdminAction.BLOCK_DEVICE: "device_blocked",
}


@dataclass(frozen=True, slots=True)
class AdminActionResult:
    success: bool
    booking_id: str
    action: str
    event: str
    previous_score: int | None
    new_score: int | None
    audit_id: str


def make_audit_entry(
    booking: Booking,
    *,
    action: str,
    event: str,
    notes: str | None = None,
    previous_score: int | None = None,
    admin_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> RiskAuditEntry:
    """Build an audit row for *booking*; ``new_score`` is its current score."""
    return RiskAuditEntry(
        id=str(uuid4()),
        booking_id=booking.id,
        action=action,
        event=event,
        notes=notes,
        previous_score=previous_score,
        new_score=booking.risk_score,
        admin_id=admin_id,
        details=details or {},
        created_at=utcnow(),
    )


def parse_action(action: str) -> AdminAction:
    try:
        return AdminAction(action)
    except ValueError:
        allowed = ", ".join(a.value for a in AdminAction)
        raise InvalidRequestError(f"Unknown action '{action}'; expected one of: {allowed}") from None


class AdminActionProcessor:
    """Applies ``override_risk``, ``whitelist``, ``mark_false_positive`` and
    ``block_device`` to a booking.

    Usage::

        processor = AdminActionProcessor(async_session)
        result = await processor.apply("bk_1", "override_risk", notes="ok", new_score=20)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def apply(
        self,
        booking_id: str,
        action: str,
        notes: str | None = None,
        new_score: int | None = None,
        admin_id: str | None = None,
    ) -> AdminActionResult:
        """Apply *action* to the booking.

        Raises:
            InvalidRequestError: Unknown action, or ``override_risk`` without
                a score in [0, 100].
            NotFoundError: The booking does not exist.
            StoreUnavailableError: The transaction failed and was rolled back.
        """
        parsed = parse_action(action)
        if parsed is AdminAction.OVERRIDE_RISK:
            if new_score is None:
                raise InvalidRequestError("override_risk requires new_score")
            if not 0 <= new_score <= 100:
                raise InvalidRequestError(f"new_score must be between 0 and 100, got {new_score}")

        event = ACTION_EVENTS[parsed]
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    booking = await session.get(Booking, booking_id, with_for_update=True)
                    if booking is None:
                        raise NotFoundError(f"Booking '{booking_id}' not found")

                    previous_score = booking.risk_score
                    details = self._mutate(booking, parsed, notes, new_score, admin_id)
                    entry = make_audit_entry(
                        booking,
                        action=parsed.value,
                        event=event,
                        notes=notes,
                        previous_score=previous_score,
                        admin_id=admin_id,
                        details=details,
                    )
                    await self._write_audit(session, entry)
        except SQLAlchemyError as exc:
            logger.error("Admin action %s on %s rolled back: %s", parsed.value, booking_id, exc)
            raise StoreUnavailableError(
                f"Could not apply {parsed.value} to booking '{booking_id}'"
            ) from exc

        logger.info(
            "Admin action %s applied to %s (score %s -> %s)",
            parsed.value,
            booking_id,
            previous_score,
            entry.new_score,
        )
        return AdminActionResult(
            success=True,
            booking_id=booking_id,
            action=parsed.value,
            event=event,
            previous_score=previous_score,
            new_score=entry.new_score,
            audit_id=entry.id,
        )

    @staticmethod
    def _mutate(
        booking: Booking,
        action: AdminAction,
        notes: str | None,
        new_score: int | None,
        admin_id: str | None,
    ) -> dict[str, Any]:
        if action is AdminAction.BLOCK_DEVICE:
            # The block list itself lives outside this service.
            return {
                "device_fingerprint": booking.device_fingerprint,
                "ip": booking.booking_ip_address,
            }

        if action is AdminAction.OVERRIDE_RISK:
            booking.risk_score = new_score
        elif action is AdminAction.WHITELIST:
            booking.flagged_for_review = False
        elif action is AdminAction.MARK_FALSE_POSITIVE:
            booking.is_fraudulent = False
            booking.flagged_for_review = False

        if notes:
            booking.verification_notes = notes
        booking.reviewed_by = admin_id
        booking.reviewed_at = utcnow()
        return {}

    async def _write_audit(self, session: AsyncSession, entry: RiskAuditEntry) -> None:
        session.add(entry)
        await session.flush()


async def list_audit_entries(session: AsyncSession, booking_id: str) -> list[RiskAuditEntry]:
    """Audit trail for a booking, oldest first."""
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking '{booking_id}' not found")
    stmt = (
        select(RiskAuditEntry)
        .where(RiskAuditEntry.booking_id == booking_id)
        .order_by(RiskAuditEntry.created_at.asc())
    )
    return list((await session.scalars(stmt)).all())
