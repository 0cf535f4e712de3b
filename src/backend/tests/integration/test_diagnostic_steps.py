"""
Integration tests for diagnostic step numbering.

Tests cover:
- Appending with automatic numbering
- Inserting between steps (with clamped positions)
- Deleting with gap closing
- Reordering all-or-nothing
- Order validation and repair
- Step duplication
- Archiving and restoring steps
- Step search

These tests run against a real test database.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import DiagnosticStep
from repositories.diagnostic_step_repository import DiagnosticStepRepository
from tests.factories import ProblemFactory, StepFactory

steps_table = DiagnosticStep.__table__


async def numbering(db: AsyncSession, problem_id: str) -> list:
    rows = await DiagnosticStepRepository.find_by_problem(db, problem_id, is_active=True)
    return [(row["title"], row["step_number"]) for row in rows]


class TestCreateWithAutoNumber:
    """Tests for appending steps."""

    @pytest.mark.asyncio
    async def test_numbers_are_sequential(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 2", 2), ("Шаг 3", 3)]

    @pytest.mark.asyncio
    async def test_device_taken_from_problem(self, db_session, sample_device, problem_with_steps):
        step = problem_with_steps["steps"][0]
        assert step["device_id"] == sample_device["id"]

    @pytest.mark.asyncio
    async def test_unknown_problem_rejected(self, db_session):
        with pytest.raises(ValueError, match="Проблема не найдена"):
            await DiagnosticStepRepository.create_with_auto_number(
                db_session, {"problem_id": "missing", "title": "Шаг"}
            )


class TestInsertStep:
    """Tests for inserting a step between existing steps."""

    @pytest.mark.asyncio
    async def test_insert_in_the_middle(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]

        inserted = await DiagnosticStepRepository.insert_step(
            db_session, problem_id, 1, {"title": "Новый"}
        )

        assert inserted["step_number"] == 2
        assert await numbering(db_session, problem_id) == [
            ("Шаг 1", 1),
            ("Новый", 2),
            ("Шаг 2", 3),
            ("Шаг 3", 4),
        ]

    @pytest.mark.asyncio
    async def test_position_past_end_appends(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]

        inserted = await DiagnosticStepRepository.insert_step(
            db_session, problem_id, 99, {"title": "Последний"}
        )

        assert inserted["step_number"] == 4

    @pytest.mark.asyncio
    async def test_negative_position_inserts_first(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]

        await DiagnosticStepRepository.insert_step(db_session, problem_id, -5, {"title": "Первый"})

        assert (await numbering(db_session, problem_id))[0] == ("Первый", 1)


class TestDeleteWithReorder:
    """Tests for deleting a step and closing the gap."""

    @pytest.mark.asyncio
    async def test_gap_is_closed(self, db_session, problem_with_steps):
        """Steps 1, 2, 3 with step 2 deleted become 1, 2."""
        problem_id = problem_with_steps["problem"]["id"]
        middle = problem_with_steps["steps"][1]

        deleted = await DiagnosticStepRepository.delete_with_reorder(db_session, middle["id"])

        assert deleted["id"] == middle["id"]
        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 3", 2)]
        assert await DiagnosticStepRepository.find_by_id(db_session, middle["id"]) is None

    @pytest.mark.asyncio
    async def test_missing_step(self, db_session):
        with pytest.raises(ValueError, match="Шаг не найден"):
            await DiagnosticStepRepository.delete_with_reorder(db_session, "missing")


class TestReorderSteps:
    """Tests for reordering the steps of a problem."""

    @pytest.mark.asyncio
    async def test_reorder(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        first, second, third = (step["id"] for step in problem_with_steps["steps"])

        reordered = await DiagnosticStepRepository.reorder_steps(db_session, problem_id, [third, first, second])

        assert [row["id"] for row in reordered] == [third, first, second]
        assert [row["step_number"] for row in reordered] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_incomplete_order_rejected(self, db_session, problem_with_steps):
        """A partial id list fails and leaves numbering untouched."""
        problem_id = problem_with_steps["problem"]["id"]
        first, second, _ = (step["id"] for step in problem_with_steps["steps"])

        with pytest.raises(ValueError):
            await DiagnosticStepRepository.reorder_steps(db_session, problem_id, [second, first])

        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 2", 2), ("Шаг 3", 3)]

    @pytest.mark.asyncio
    async def test_foreign_step_rejected(self, db_session, sample_device, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        other = await ProblemFactory.create(db_session, device_id=sample_device["id"])
        ids = [step["id"] for step in problem_with_steps["steps"]]

        with pytest.raises(ValueError):
            await DiagnosticStepRepository.reorder_steps(db_session, other["id"], ids)
        with pytest.raises(ValueError):
            await DiagnosticStepRepository.reorder_steps(db_session, problem_id, ids[:2] + ["missing"])


class TestStepOrderValidation:
    """Tests for validate_step_order() and fix_step_numbering()."""

    @pytest.mark.asyncio
    async def test_valid_order(self, db_session, problem_with_steps):
        report = await DiagnosticStepRepository.validate_step_order(
            db_session, problem_with_steps["problem"]["id"]
        )
        assert report == {"is_valid": True, "duplicates": [], "gaps": []}

    @pytest.mark.asyncio
    async def test_detect_and_fix_broken_numbering(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        third = problem_with_steps["steps"][2]
        await db_session.execute(
            update(steps_table).where(steps_table.c.id == third["id"]).values(step_number=2)
        )
        await db_session.commit()

        report = await DiagnosticStepRepository.validate_step_order(db_session, problem_id)
        assert report["is_valid"] is False
        assert report["duplicates"] == [{"step_number": 2, "count": 2}]
        assert report["gaps"] == [3]

        changed = await DiagnosticStepRepository.fix_step_numbering(db_session, problem_id)

        assert len(changed) == 1
        assert (await DiagnosticStepRepository.validate_step_order(db_session, problem_id))["is_valid"]


class TestDuplicateStep:
    """Tests for copying a step."""

    @pytest.mark.asyncio
    async def test_copy_appended_with_suffix(self, db_session, problem_with_steps):
        original = problem_with_steps["steps"][0]

        copy = await DiagnosticStepRepository.duplicate(db_session, original["id"])

        assert copy["id"] != original["id"]
        assert copy["title"] == "Шаг 1 (копия)"
        assert copy["step_number"] == 4
        assert copy["problem_id"] == original["problem_id"]

    @pytest.mark.asyncio
    async def test_archived_step_copy_is_active(self, db_session, problem_with_steps):
        last = problem_with_steps["steps"][2]
        await DiagnosticStepRepository.soft_delete(db_session, last["id"])

        copy = await DiagnosticStepRepository.duplicate(db_session, last["id"])

        assert copy["is_active"] is True
        assert copy["step_number"] == 3


class TestArchivedSteps:
    """Archived steps leave the active numbering dense."""

    @pytest.mark.asyncio
    async def test_append_after_archiving_last(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        await DiagnosticStepRepository.soft_delete(db_session, problem_with_steps["steps"][2]["id"])

        appended = await DiagnosticStepRepository.create_with_auto_number(
            db_session, {"problem_id": problem_id, "title": "Новый"}
        )

        assert appended["step_number"] == 3
        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 2", 2), ("Новый", 3)]

    @pytest.mark.asyncio
    async def test_insert_past_end_after_archiving(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        await DiagnosticStepRepository.soft_delete(db_session, problem_with_steps["steps"][2]["id"])

        inserted = await DiagnosticStepRepository.insert_step(db_session, problem_id, 99, {"title": "Новый"})

        assert inserted["step_number"] == 3
        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 2", 2), ("Новый", 3)]

    @pytest.mark.asyncio
    async def test_archiving_middle_closes_gap(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        middle = problem_with_steps["steps"][1]

        archived = await DiagnosticStepRepository.soft_delete(db_session, middle["id"])

        assert archived["is_active"] is False
        assert await numbering(db_session, problem_id) == [("Шаг 1", 1), ("Шаг 3", 2)]
        assert (await DiagnosticStepRepository.validate_step_order(db_session, problem_id))["is_valid"]
        assert [row["id"] for row in await DiagnosticStepRepository.get_archived(db_session)] == [middle["id"]]

    @pytest.mark.asyncio
    async def test_restore_appends(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        first = problem_with_steps["steps"][0]
        await DiagnosticStepRepository.soft_delete(db_session, first["id"])

        restored = await DiagnosticStepRepository.restore(db_session, first["id"])

        assert restored["is_active"] is True
        assert await numbering(db_session, problem_id) == [("Шаг 2", 1), ("Шаг 3", 2), ("Шаг 1", 3)]

    @pytest.mark.asyncio
    async def test_deleting_archived_step_keeps_numbering(self, db_session, problem_with_steps):
        problem_id = problem_with_steps["problem"]["id"]
        first = problem_with_steps["steps"][0]
        await DiagnosticStepRepository.soft_delete(db_session, first["id"])

        await DiagnosticStepRepository.delete_with_reorder(db_session, first["id"])

        assert await numbering(db_session, problem_id) == [("Шаг 2", 1), ("Шаг 3", 2)]


class TestStepSearch:
    """Tests for search() on the substring fallback."""

    @pytest.mark.asyncio
    async def test_search(self, db_session, sample_device, problem_with_steps):
        problem = problem_with_steps["problem"]
        reset = await StepFactory.create(db_session, problem["id"], title="Factory reset")

        rows = await DiagnosticStepRepository.search(db_session, "reset")

        assert [row["id"] for row in rows] == [reset["id"]]
        assert rows[0]["problem_title"] == problem["title"]
        assert rows[0]["device_name"] == sample_device["name"]
        assert rows[0]["rank"] == 0.0

    @pytest.mark.asyncio
    async def test_archived_steps_not_found(self, db_session, problem_with_steps):
        step = await StepFactory.create(db_session, problem_with_steps["problem"]["id"], title="Factory reset")
        await DiagnosticStepRepository.soft_delete(db_session, step["id"])

        assert await DiagnosticStepRepository.search(db_session, "reset") == []
