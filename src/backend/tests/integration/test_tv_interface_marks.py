"""
Integration tests for TV interface marks.

Tests cover:
- Mark creation with defaults, JSON text input and validation
- Listing with filters, display order and context columns
- Step lookups and deletes
- Reordering and statistics
- The simplified repository on a table missing the optional columns

These tests run against a real test database.
"""

import pytest
import pytest_asyncio
from sqlalchemy import Column, DateTime, MetaData, String, Table, Text, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

from db.models import (
    MARK_OPTIONAL_COLUMNS,
    Device,
    DiagnosticStep,
    JSONType,
    Problem,
    Remote,
    TVInterface,
    TVInterfaceMark,
)
from repositories.tv_interface_mark_repository import (
    TVInterfaceMarkRepository,
    TVInterfaceMarkSimplifiedRepository,
)
from tests.factories import DeviceFactory, ProblemFactory, StepFactory, TVInterfaceFactory


@pytest_asyncio.fixture
async def tv_interface(db_session, sample_device) -> dict:
    return await TVInterfaceFactory.create(db_session, sample_device["id"])


@pytest_asyncio.fixture
async def step(db_session, sample_problem) -> dict:
    return await StepFactory.create(db_session, sample_problem["id"], title="Нажмите OK")


def mark_data(tv_interface_id: str, **overrides) -> dict:
    data = {"tv_interface_id": tv_interface_id, "name": "Кнопка", "position": {"x": 100, "y": 200}}
    data.update(overrides)
    return data


class TestCreateMark:
    """Tests for TVInterfaceMarkRepository.create()."""

    @pytest.mark.asyncio
    async def test_defaults_and_context(self, db_session, tv_interface, step):
        mark = await TVInterfaceMarkRepository.create(
            db_session, mark_data(tv_interface["id"], step_id=step["id"])
        )

        assert mark["id"].startswith("tim_")
        assert mark["mark_type"] == "point"
        assert mark["size"] == {"width": 20, "height": 20}
        assert mark["opacity"] == 0.8
        assert mark["is_active"] is True
        assert mark["tv_interface_name"] == tv_interface["name"]
        assert mark["tv_interface_type"] == "home"
        assert mark["step_title"] == "Нажмите OK"
        assert mark["step_number"] == 1

    @pytest.mark.asyncio
    async def test_json_text_input(self, db_session, tv_interface):
        mark = await TVInterfaceMarkRepository.create(
            db_session,
            mark_data(tv_interface["id"], position='{"x": 5, "y": 6}', tags='["menu"]'),
        )

        assert mark["position"] == {"x": 5, "y": 6}
        assert mark["tags"] == ["menu"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides,message",
        [
            ({"tv_interface_id": None}, "TV interface ID обязателен"),
            ({"name": "  "}, "Название отметки обязательно"),
            ({"position": None}, "Позиция отметки обязательна"),
            ({"shape": "star"}, "Недопустимое значение shape"),
            ({"tv_interface_id": "missing"}, "TV интерфейс не найден"),
            ({"step_id": "missing"}, "Шаг не найден"),
        ],
    )
    async def test_rejected(self, db_session, tv_interface, overrides, message):
        data = mark_data(tv_interface["id"])
        data.update(overrides)

        with pytest.raises(ValueError, match=message):
            await TVInterfaceMarkRepository.create(db_session, data)


class TestMarkQueries:
    """Tests for listing, step lookups and statistics."""

    @pytest_asyncio.fixture
    async def marks(self, db_session, tv_interface, step):
        zone = await TVInterfaceMarkRepository.create(
            db_session, mark_data(tv_interface["id"], name="Зона", mark_type="zone", display_order=2)
        )
        linked = await TVInterfaceMarkRepository.create(
            db_session, mark_data(tv_interface["id"], name="Шаг", step_id=step["id"], display_order=1)
        )
        hidden = await TVInterfaceMarkRepository.create(
            db_session, mark_data(tv_interface["id"], name="Скрытая", is_visible=False, display_order=0)
        )
        return {"zone": zone, "linked": linked, "hidden": hidden}

    @pytest.mark.asyncio
    async def test_display_order(self, db_session, tv_interface, marks):
        rows = await TVInterfaceMarkRepository.get_by_tv_interface_id(db_session, tv_interface["id"])
        assert [row["name"] for row in rows] == ["Скрытая", "Шаг", "Зона"]

    @pytest.mark.asyncio
    async def test_filters(self, db_session, tv_interface, marks):
        visible = await TVInterfaceMarkRepository.get_by_tv_interface_id(
            db_session, tv_interface["id"], is_visible=True
        )
        zones = await TVInterfaceMarkRepository.get_by_tv_interface_id(
            db_session, tv_interface["id"], mark_type="zone"
        )

        assert {row["name"] for row in visible} == {"Шаг", "Зона"}
        assert [row["id"] for row in zones] == [marks["zone"]["id"]]

    @pytest.mark.asyncio
    async def test_by_step(self, db_session, step, marks):
        rows = await TVInterfaceMarkRepository.get_by_step_id(db_session, step["id"])
        assert [row["id"] for row in rows] == [marks["linked"]["id"]]

    @pytest.mark.asyncio
    async def test_reorder_is_zero_based(self, db_session, tv_interface, marks):
        order = [marks["zone"]["id"], marks["hidden"]["id"], marks["linked"]["id"]]

        assert await TVInterfaceMarkRepository.reorder(db_session, tv_interface["id"], order) is True

        rows = await TVInterfaceMarkRepository.get_by_tv_interface_id(db_session, tv_interface["id"])
        assert [(row["id"], row["display_order"]) for row in rows] == list(zip(order, [0, 1, 2]))

    @pytest.mark.asyncio
    async def test_update(self, db_session, marks):
        updated = await TVInterfaceMarkRepository.update(
            db_session, marks["zone"]["id"], {"name": " Новая зона ", "opacity": 0, "id": "ignored"}
        )

        assert updated["id"] == marks["zone"]["id"]
        assert updated["name"] == "Новая зона"
        assert updated["opacity"] == 0

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_enum(self, db_session, marks):
        with pytest.raises(ValueError, match="Недопустимое значение priority"):
            await TVInterfaceMarkRepository.update(db_session, marks["zone"]["id"], {"priority": "urgent"})

    @pytest.mark.asyncio
    async def test_update_missing(self, db_session):
        with pytest.raises(ValueError, match="Отметка не найдена"):
            await TVInterfaceMarkRepository.update(db_session, "missing", {"name": "X"})

    @pytest.mark.asyncio
    async def test_stats(self, db_session, marks):
        stats = await TVInterfaceMarkRepository.get_stats(db_session)

        assert stats["total"] == 3
        assert stats["active"] == 3
        assert stats["visible"] == 2
        assert stats["points"] == 2
        assert stats["zones"] == 1
        assert stats["interfaces_with_marks"] == 1
        assert stats["steps_with_marks"] == 1

    @pytest.mark.asyncio
    async def test_deletes(self, db_session, tv_interface, step, marks):
        assert await TVInterfaceMarkRepository.delete_by_step_id(db_session, step["id"]) == 1
        assert await TVInterfaceMarkRepository.delete_by_tv_interface_id(db_session, tv_interface["id"]) == 2
        assert await TVInterfaceMarkRepository.get_by_tv_interface_id(db_session, tv_interface["id"]) == []


# ============================================================================
# Lagging schema: tv_interface_marks created before the extended migration
# ============================================================================

def baseline_marks_table(metadata: MetaData) -> Table:
    return Table(
        TVInterfaceMark.__tablename__,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("tv_interface_id", String(64), nullable=False),
        Column("name", String(255), nullable=False),
        Column("description", Text),
        Column("position", JSONType),
        Column("color", String(50)),
        Column("created_at", DateTime, nullable=False),
        Column("updated_at", DateTime, nullable=False),
    )


@pytest_asyncio.fixture
async def lagging_session(engine_factory):
    """Session on a database whose marks table has only the baseline columns."""
    engine = engine_factory()
    full_tables = [model.__table__ for model in (Device, Problem, DiagnosticStep, Remote, TVInterface)]
    legacy_metadata = MetaData()
    baseline_marks_table(legacy_metadata)

    async with engine.begin() as conn:
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.create_all(sync_conn, tables=full_tables))
        await conn.run_sync(legacy_metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(legacy_metadata.drop_all)
        await conn.run_sync(lambda sync_conn: SQLModel.metadata.drop_all(sync_conn, tables=full_tables))
    await engine.dispose()


class TestSimplifiedRepositoryOnLaggingSchema:
    """TVInterfaceMarkSimplifiedRepository against the baseline columns only."""

    @pytest_asyncio.fixture
    async def interface_and_step(self, lagging_session):
        device = await DeviceFactory.create(lagging_session)
        problem = await ProblemFactory.create(lagging_session, device_id=device["id"])
        step = await StepFactory.create(lagging_session, problem["id"])
        interface = await TVInterfaceFactory.create(lagging_session, device["id"])
        return interface, step

    @pytest.mark.asyncio
    async def test_capabilities_resolved(self, lagging_session, capabilities):
        caps = await capabilities.resolve(lagging_session, "tv_interface_marks")

        assert caps.missing(MARK_OPTIONAL_COLUMNS) == list(MARK_OPTIONAL_COLUMNS)
        assert caps.has("position")

    @pytest.mark.asyncio
    async def test_create_writes_baseline_columns(self, lagging_session, interface_and_step):
        interface, step = interface_and_step

        mark = await TVInterfaceMarkSimplifiedRepository.create(
            lagging_session, mark_data(interface["id"], step_id=step["id"], mark_type="zone")
        )

        assert mark["name"] == "Кнопка"
        assert mark["position"] == {"x": 100, "y": 200}
        assert mark["tv_interface_name"] == interface["name"]
        assert "step_id" not in mark
        assert "mark_type" not in mark

        stored = (
            await lagging_session.execute(select(baseline_marks_table(MetaData())))
        ).mappings().all()
        assert [row["id"] for row in stored] == [mark["id"]]

    @pytest.mark.asyncio
    async def test_step_queries_degrade(self, lagging_session, interface_and_step):
        interface, step = interface_and_step
        await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        assert await TVInterfaceMarkSimplifiedRepository.get_by_step_id(lagging_session, step["id"]) == []
        assert await TVInterfaceMarkSimplifiedRepository.delete_by_step_id(lagging_session, step["id"]) == 0

    @pytest.mark.asyncio
    async def test_list_ignores_missing_filters(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        first = await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))
        second = await TVInterfaceMarkSimplifiedRepository.create(
            lagging_session, mark_data(interface["id"], name="Вторая")
        )

        rows = await TVInterfaceMarkSimplifiedRepository.get_by_tv_interface_id(
            lagging_session, interface["id"], is_active=True, mark_type="zone"
        )

        assert [row["id"] for row in rows] == [first["id"], second["id"]]

    @pytest.mark.asyncio
    async def test_reorder_is_noop(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        mark = await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        assert await TVInterfaceMarkSimplifiedRepository.reorder(lagging_session, interface["id"], [mark["id"]])

    @pytest.mark.asyncio
    async def test_update_skips_missing_columns(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        mark = await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        updated = await TVInterfaceMarkSimplifiedRepository.update(
            lagging_session, mark["id"], {"color": "#ff0000", "is_visible": False}
        )

        assert updated["color"] == "#ff0000"
        assert "is_visible" not in updated

    @pytest.mark.asyncio
    async def test_stats_on_present_columns(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        stats = await TVInterfaceMarkSimplifiedRepository.get_stats(lagging_session)

        assert stats == {"total": 1, "interfaces_with_marks": 1}

    @pytest.mark.asyncio
    async def test_delete_by_tv_interface(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        deleted = await TVInterfaceMarkSimplifiedRepository.delete_by_tv_interface_id(
            lagging_session, interface["id"]
        )

        assert deleted == 1

    @pytest.mark.asyncio
    async def test_generic_reads(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        mark = await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        active = await TVInterfaceMarkSimplifiedRepository.get_active(lagging_session)
        page, total = await TVInterfaceMarkSimplifiedRepository.find_paginated(lagging_session, per_page=10)
        found = await TVInterfaceMarkSimplifiedRepository.find_one(lagging_session, {"id": mark["id"]})

        assert [row["id"] for row in active] == [mark["id"]]
        assert [row["id"] for row in page] == [mark["id"]]
        assert total == 1
        assert found["position"] == {"x": 100, "y": 200}
        assert await TVInterfaceMarkSimplifiedRepository.count(lagging_session) == 1
        assert await TVInterfaceMarkSimplifiedRepository.get_archived(lagging_session) == []

    @pytest.mark.asyncio
    async def test_archiving_not_supported(self, lagging_session, interface_and_step):
        interface, _ = interface_and_step
        mark = await TVInterfaceMarkSimplifiedRepository.create(lagging_session, mark_data(interface["id"]))

        with pytest.raises(ValueError, match="не поддерживает архивирование"):
            await TVInterfaceMarkSimplifiedRepository.soft_delete(lagging_session, mark["id"])
        with pytest.raises(ValueError, match="не поддерживает архивирование"):
            await TVInterfaceMarkSimplifiedRepository.restore(lagging_session, mark["id"])

        assert (await TVInterfaceMarkSimplifiedRepository.get_by_id(lagging_session, mark["id"]))["id"] == mark["id"]
