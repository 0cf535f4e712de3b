"""
Integration tests for the database lifecycle helpers.

Tests cover:
- Table creation for fresh installs
- Unit-of-work sessions committing on success and rolling back on error
"""

import pytest
import pytest_asyncio
from sqlalchemy import func, insert, inspect, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core import database
from db.models import Device

devices_table = Device.__table__


@pytest_asyncio.fixture
async def bound_database(engine_factory, monkeypatch):
    """Points the module level engine and session factory at a test engine."""
    engine = engine_factory()
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(
        database,
        "AsyncSessionLocal",
        async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False),
    )
    await database.init_db()
    yield engine
    await engine.dispose()


async def count_devices(engine) -> int:
    async with engine.connect() as conn:
        return (await conn.execute(select(func.count()).select_from(devices_table))).scalar_one()


def device_row(device_id: str) -> dict:
    return {"id": device_id, "name": "OpenBox S4", "brand": "OpenBox", "model": "S4"}


class TestInitDb:

    @pytest.mark.asyncio
    async def test_creates_tables(self, bound_database):
        async with bound_database.connect() as conn:
            tables = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

        assert {"devices", "problems", "diagnostic_steps", "tv_interface_marks"} <= set(tables)

    @pytest.mark.asyncio
    async def test_is_repeatable(self, bound_database):
        await database.init_db()
        assert await count_devices(bound_database) == 0


class TestGetSession:

    @pytest.mark.asyncio
    async def test_commits_on_success(self, bound_database):
        sessions = database.get_session()
        session = await sessions.__anext__()
        await session.execute(insert(devices_table).values(**device_row("dev-commit")))

        with pytest.raises(StopAsyncIteration):
            await sessions.__anext__()

        assert await count_devices(bound_database) == 1

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, bound_database):
        sessions = database.get_session()
        session = await sessions.__anext__()
        await session.execute(insert(devices_table).values(**device_row("dev-rollback")))

        with pytest.raises(ValueError, match="boom"):
            await sessions.athrow(ValueError("boom"))

        assert await count_devices(bound_database) == 0
