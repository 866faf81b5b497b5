"""Pytest configuration and fixtures for the risk gating tests.

Every test gets its own SQLite file under ``tmp_path`` so tests never share
state and can run concurrent reads through separate sessions.
"""
import pytest
import pytest_asyncio

from riskgate.models.database import build_engine, build_session_factory, create_tables


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Async engine bound to a fresh database with all tables created."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/riskgate_test.db")
    await create_tables(bind=test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as db:
        yield db


@pytest.fixture
def seed(session_factory):
    """Persist ORM objects in one transaction and return them."""

    async def _seed(*objects):
        async with session_factory() as db:
            db.add_all(objects)
            await db.commit()
        return objects

    return _seed
