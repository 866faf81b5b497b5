"""Staged host background checks.

A check consists of one record per stage.  Stages are advanced
independently by whatever scheduler or task queue runs the external
provider calls; this module only records outcomes.  A host becomes
platform-verified exactly when every stage has passed, and loses the
flag as soon as any stage fails.
"""

from __future__ import annotations

import logging
from enum import Enum
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.errors import InvalidRequestError, NotFoundError, StoreUnavailableError
from riskgate.models.database import Host, HostBackgroundCheck, utcnow

logger = logging.getLogger(__name__)


class CheckStage(str, Enum):
    IDENTITY = "identity"
    DMV = "dmv"
    CRIMINAL = "criminal"
    INSURANCE = "insurance"
    CREDIT = "credit"


class StageStatus(str, Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


async def _get_host(session: AsyncSession, host_id: str) -> Host:
    host = await session.get(Host, host_id)
    if host is None:
        raise NotFoundError(f"Host '{host_id}' not found")
    return host


async def list_stages(session: AsyncSession, host_id: str) -> list[HostBackgroundCheck]:
    await _get_host(session, host_id)
    rows = await session.scalars(
        select(HostBackgroundCheck).where(HostBackgroundCheck.host_id == host_id)
    )
    order = {stage.value: i for i, stage in enumerate(CheckStage)}
    return sorted(rows.all(), key=lambda r: order.get(r.stage, len(order)))


def overall_status(stages: list[HostBackgroundCheck]) -> str:
    statuses = {s.status for s in stages}
    if not stages:
        return "NOT_STARTED"
    if StageStatus.FAILED.value in statuses:
        return StageStatus.FAILED.value
    if statuses == {StageStatus.PASSED.value} and len(stages) == len(CheckStage):
        return StageStatus.PASSED.value
    return StageStatus.PENDING.value


async def start_background_check(session: AsyncSession, host_id: str) -> list[HostBackgroundCheck]:
    """Create the pending stage records; existing stages are left untouched."""
    await _get_host(session, host_id)
    existing = {s.stage for s in await list_stages(session, host_id)}
    for stage in CheckStage:
        if stage.value not in existing:
            session.add(
                HostBackgroundCheck(
                    id=str(uuid4()),
                    host_id=host_id,
                    stage=stage.value,
                    status=StageStatus.PENDING.value,
                    created_at=utcnow(),
                )
            )
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise StoreUnavailableError(f"Could not start background check for {host_id}") from exc

    logger.info("Background check started for host %s", host_id)
    return await list_stages(session, host_id)


async def advance_stage(
    session: AsyncSession,
    host_id: str,
    stage: str,
    status: str,
    notes: str | None = None,
) -> list[HostBackgroundCheck]:
    """Record the outcome of one stage and refresh the host's verified flag."""
    try:
        parsed_stage = CheckStage(stage)
        parsed_status = StageStatus(status.upper())
    except ValueError:
        raise InvalidRequestError(f"Invalid stage '{stage}' or status '{status}'") from None
    if parsed_status is StageStatus.PENDING:
        raise InvalidRequestError("A stage can only be advanced to PASSED or FAILED")

    host = await _get_host(session, host_id)
    record = await session.scalar(
        select(HostBackgroundCheck).where(
            HostBackgroundCheck.host_id == host_id,
            HostBackgroundCheck.stage == parsed_stage.value,
        )
    )
    if record is None:
        raise NotFoundError(
            f"Background check stage '{parsed_stage.value}' not started for host '{host_id}'"
        )

    record.status = parsed_status.value
    record.notes = notes
    record.updated_at = utcnow()
    await session.flush()

    stages = await list_stages(session, host_id)
    host.is_verified = overall_status(stages) == StageStatus.PASSED.value
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise StoreUnavailableError(f"Could not advance background check for {host_id}") from exc

    logger.info(
        "Host %s background stage %s -> %s (verified=%s)",
        host_id,
        parsed_stage.value,
        parsed_status.value,
        host.is_verified,
    )
    return stages
