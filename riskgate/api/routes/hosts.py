"""Host background check endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from riskgate.models.database import Host, HostBackgroundCheck, get_db
from riskgate.pipeline.background_check import (
    advance_stage,
    list_stages,
    overall_status,
    start_background_check,
)
from riskgate.schemas.schemas import (
    BackgroundCheckResponse,
    BackgroundStageResponse,
    StageUpdateRequest,
)

hosts_router = APIRouter(prefix="/api/hosts", tags=["hosts"])


async def _response(
    db: AsyncSession, host_id: str, stages: list[HostBackgroundCheck]
) -> BackgroundCheckResponse:
    host = await db.get(Host, host_id)
    return BackgroundCheckResponse(
        host_id=host_id,
        is_verified=bool(host.is_verified),
        overall_status=overall_status(stages),
        stages=[BackgroundStageResponse.model_validate(s) for s in stages],
    )


@hosts_router.post("/{host_id}/background-check", response_model=BackgroundCheckResponse, status_code=201)
async def start_check(host_id: str, db: AsyncSession = Depends(get_db)) -> BackgroundCheckResponse:
    """Open every background check stage for a host; repeat calls are no-ops."""
    stages = await start_background_check(db, host_id)
    return await _response(db, host_id, stages)


@hosts_router.get("/{host_id}/background-check", response_model=BackgroundCheckResponse)
async def get_check(host_id: str, db: AsyncSession = Depends(get_db)) -> BackgroundCheckResponse:
    stages = await list_stages(db, host_id)
    return await _response(db, host_id, stages)


@hosts_router.post("/{host_id}/background-check/{stage}", response_model=BackgroundCheckResponse)
async def update_stage(
    host_id: str,
    stage: str,
    body: StageUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> BackgroundCheckResponse:
    """Record a stage outcome; the host is verified once every stage passes."""
    stages = await advance_stage(db, host_id, stage, body.status, body.notes)
    return await _response(db, host_id, stages)
