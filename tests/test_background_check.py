"""Tests for staged host background checks."""
import pytest

from riskgate.errors import InvalidRequestError, NotFoundError
from riskgate.models.database import Host
from riskgate.pipeline.background_check import (
    CheckStage,
    advance_stage,
    list_stages,
    overall_status,
    start_background_check,
)
from tests.factories import build_host


async def _new_host(seed, **overrides) -> Host:
    host = build_host(is_verified=False, **overrides)
    await seed(host)
    return host


class TestStartBackgroundCheck:
    @pytest.mark.asyncio
    async def test_creates_pending_stages(self, seed, session) -> None:
        host = await _new_host(seed)

        stages = await start_background_check(session, host.id)

        assert [s.stage for s in stages] == [stage.value for stage in CheckStage]
        assert {s.status for s in stages} == {"PENDING"}
        assert overall_status(stages) == "PENDING"

    @pytest.mark.asyncio
    async def test_restart_keeps_progress(self, seed, session) -> None:
        host = await _new_host(seed)
        await start_background_check(session, host.id)
        await advance_stage(session, host.id, "identity", "passed")

        stages = await start_background_check(session, host.id)

        assert len(stages) == len(CheckStage)
        assert stages[0].status == "PASSED"

    @pytest.mark.asyncio
    async def test_unknown_host(self, session) -> None:
        with pytest.raises(NotFoundError):
            await start_background_check(session, "host_missing")

    @pytest.mark.asyncio
    async def test_not_started(self, seed, session) -> None:
        host = await _new_host(seed)

        assert overall_status(await list_stages(session, host.id)) == "NOT_STARTED"


class TestAdvanceStage:
    @pytest.mark.asyncio
    async def test_all_passed_verifies_host(self, seed, session_factory) -> None:
        host = await _new_host(seed)
        async with session_factory() as session:
            await start_background_check(session, host.id)
            for stage in CheckStage:
                stages = await advance_stage(session, host.id, stage.value, "PASSED")

        assert overall_status(stages) == "PASSED"
        async with session_factory() as session:
            assert (await session.get(Host, host.id)).is_verified is True

    @pytest.mark.asyncio
    async def test_partial_progress_is_not_verified(self, seed, session_factory) -> None:
        host = await _new_host(seed)
        async with session_factory() as session:
            await start_background_check(session, host.id)
            await advance_stage(session, host.id, "identity", "PASSED")
            stages = await advance_stage(session, host.id, "dmv", "PASSED")

        assert overall_status(stages) == "PENDING"
        async with session_factory() as session:
            assert (await session.get(Host, host.id)).is_verified is False

    @pytest.mark.asyncio
    async def test_failure_revokes_verification(self, seed, session_factory) -> None:
        host = await _new_host(seed)
        async with session_factory() as session:
            await start_background_check(session, host.id)
            for stage in CheckStage:
                await advance_stage(session, host.id, stage.value, "PASSED")
            stages = await advance_stage(
                session, host.id, "criminal", "FAILED", notes="Record found on re-check"
            )

        assert overall_status(stages) == "FAILED"
        assert next(s for s in stages if s.stage == "criminal").notes == "Record found on re-check"
        async with session_factory() as session:
            assert (await session.get(Host, host.id)).is_verified is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "stage, status",
        [("horoscope", "PASSED"), ("dmv", "MAYBE"), ("dmv", "PENDING")],
    )
    async def test_invalid_input(self, seed, session, stage, status) -> None:
        host = await _new_host(seed)
        await start_background_check(session, host.id)

        with pytest.raises(InvalidRequestError):
            await advance_stage(session, host.id, stage, status)

    @pytest.mark.asyncio
    async def test_stage_not_started(self, seed, session) -> None:
        host = await _new_host(seed)

        with pytest.raises(NotFoundError):
            await advance_stage(session, host.id, "dmv", "PASSED")
