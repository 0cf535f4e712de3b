"""
Diagnostic step repository.

Active steps of a problem are numbered 1..n without gaps or duplicates.
Every operation that changes numbering runs in a single transaction:
create with auto number, insert between steps, reorder, delete with gap
closing and the numbering repair.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from core.json_fields import decode_input, load_json
from db.enums import StepResult
from db.models import (
    Device,
    DiagnosticSession,
    DiagnosticStep,
    Problem,
    Remote,
    SessionStep,
    TVInterface,
    utc_now,
)
from repositories.base_repository import BaseRepository, DeletionCheck
from repositories.search import text_search

logger = logging.getLogger(__name__)

problems = Problem.__table__
devices = Device.__table__
remotes = Remote.__table__
tv_interfaces = TVInterface.__table__
sessions = DiagnosticSession.__table__
session_steps = SessionStep.__table__

COPY_SUFFIX = " (копия)"


class DiagnosticStepRepository(BaseRepository[DiagnosticStep]):
    """Repository for the ordered steps of a problem's diagnostic flow."""

    model = DiagnosticStep
    json_fields = {
        "button_position": None,
        "tv_area_position": None,
        "tv_area_rect": None,
        "media": [],
        "next_step_conditions": [],
        "validation_rules": [],
        "metadata": {},
    }
    search_fields = ("title", "description", "instruction")
    default_sort = "step_number"

    @classmethod
    def prepare_for_insert(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return super().prepare_for_insert(decode_input(data, cls.json_fields))

    @classmethod
    def prepare_for_update(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        return super().prepare_for_update(decode_input(data, cls.json_fields))

    # ------------------------------------------------------------------
    # Internal helpers (no commit)
    # ------------------------------------------------------------------

    @classmethod
    async def _next_step_number(cls, db: AsyncSession, problem_id: str) -> int:
        steps = cls.table
        current_max = await cls._scalar(
            db,
            select(func.max(steps.c.step_number)).where(
                steps.c.problem_id == problem_id, steps.c.is_active.is_(True)
            ),
        )
        return int(current_max) + 1

    @classmethod
    async def _problem_device_id(cls, db: AsyncSession, problem_id: str) -> Optional[str]:
        row = (
            await db.execute(select(problems.c.id, problems.c.device_id).where(problems.c.id == problem_id))
        ).first()
        if row is None:
            raise ValueError("Проблема не найдена")
        return row.device_id

    @classmethod
    async def _shift(cls, db: AsyncSession, problem_id: str, after_step_number: int, delta: int) -> int:
        """Move every active step numbered above ``after_step_number`` by ``delta``."""
        steps = cls.table
        result = await db.execute(
            update(steps)
            .where(
                steps.c.problem_id == problem_id,
                steps.c.is_active.is_(True),
                steps.c.step_number > after_step_number,
            )
            .values(step_number=steps.c.step_number + delta, updated_at=utc_now())
        )
        return result.rowcount

    @classmethod
    async def _active_step_ids(cls, db: AsyncSession, problem_id: str) -> List[str]:
        steps = cls.table
        result = await db.execute(
            select(steps.c.id)
            .where(steps.c.problem_id == problem_id, steps.c.is_active.is_(True))
            .order_by(steps.c.step_number.asc(), steps.c.created_at.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @classmethod
    @critical_database_operation("получение шагов проблемы")
    async def find_by_problem(
        cls, db: AsyncSession, problem_id: str, *, is_active: Optional[bool] = None
    ) -> List[dict]:
        """Steps of a problem in order, with remote and TV interface names."""
        steps = cls.table
        stmt = (
            select(
                steps,
                remotes.c.name.label("remote_name"),
                remotes.c.manufacturer.label("remote_manufacturer"),
                remotes.c.model.label("remote_model"),
                tv_interfaces.c.name.label("tv_interface_name"),
                tv_interfaces.c.type.label("tv_interface_type"),
            )
            .select_from(
                steps.outerjoin(remotes, steps.c.remote_id == remotes.c.id).outerjoin(
                    tv_interfaces, steps.c.tv_interface_id == tv_interfaces.c.id
                )
            )
            .where(steps.c.problem_id == problem_id)
            .order_by(steps.c.step_number.asc())
        )
        if is_active is not None:
            stmt = stmt.where(steps.c.is_active == is_active)
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("получение шага с деталями")
    async def find_by_id_with_details(cls, db: AsyncSession, step_id: str) -> Optional[dict]:
        """
        Step with its problem, device, remote and TV interface.

        Includes the remote image and TV screenshot so a wizard can render
        the step from a single row.
        """
        steps = cls.table
        stmt = (
            select(
                steps,
                problems.c.title.label("problem_title"),
                problems.c.device_id.label("problem_device_id"),
                devices.c.name.label("device_name"),
                devices.c.brand.label("device_brand"),
                remotes.c.name.label("remote_name"),
                remotes.c.manufacturer.label("remote_manufacturer"),
                remotes.c.image_data.label("remote_image_data"),
                remotes.c.dimensions.label("remote_dimensions"),
                tv_interfaces.c.name.label("tv_interface_name"),
                tv_interfaces.c.type.label("tv_interface_type"),
                tv_interfaces.c.screenshot_data.label("tv_screenshot_data"),
            )
            .select_from(
                steps.outerjoin(problems, steps.c.problem_id == problems.c.id)
                .outerjoin(devices, steps.c.device_id == devices.c.id)
                .outerjoin(remotes, steps.c.remote_id == remotes.c.id)
                .outerjoin(tv_interfaces, steps.c.tv_interface_id == tv_interfaces.c.id)
            )
            .where(steps.c.id == step_id)
        )
        row = await cls._fetch_one(db, stmt)
        if row is not None:
            row["remote_dimensions"] = load_json(row["remote_dimensions"])
        return row

    @classmethod
    @critical_database_operation("поиск шагов")
    async def search(
        cls,
        db: AsyncSession,
        term: str,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        """Full-text search over title, description and instruction of active steps."""
        steps = cls.table
        condition, rank = text_search(
            db, [steps.c.title, steps.c.description, steps.c.instruction], term
        )
        stmt = (
            select(
                steps,
                problems.c.title.label("problem_title"),
                devices.c.name.label("device_name"),
                devices.c.brand.label("device_brand"),
                rank.label("rank"),
            )
            .select_from(
                steps.outerjoin(problems, steps.c.problem_id == problems.c.id).outerjoin(
                    devices, steps.c.device_id == devices.c.id
                )
            )
            .where(steps.c.is_active.is_(True), condition)
            .order_by(rank.desc(), steps.c.step_number.asc())
            .limit(limit or settings.diagnostics.search_limit)
            .offset(offset)
        )
        rows = await cls._fetch_all(db, stmt)
        for row in rows:
            row["rank"] = float(row["rank"] or 0)
        return rows

    @classmethod
    @critical_database_operation("получение статистики использования шага")
    async def get_usage_stats(cls, db: AsyncSession, step_id: str) -> Dict[str, Any]:
        """Execution counts and time spent on a step across all sessions."""
        row = (
            await db.execute(
                select(
                    func.count().label("total_executions"),
                    func.count(case((session_steps.c.completed.is_(True), 1))).label(
                        "successful_executions"
                    ),
                    func.count(case((session_steps.c.result == StepResult.FAILURE.value, 1))).label(
                        "failed_executions"
                    ),
                    func.count(case((session_steps.c.result == StepResult.SKIPPED.value, 1))).label(
                        "skipped_executions"
                    ),
                    func.avg(session_steps.c.time_spent).label("avg_time_spent"),
                    func.min(session_steps.c.time_spent).label("min_time_spent"),
                    func.max(session_steps.c.time_spent).label("max_time_spent"),
                ).where(session_steps.c.step_id == step_id)
            )
        ).mappings().one()

        total = int(row["total_executions"] or 0)
        successful = int(row["successful_executions"] or 0)
        return {
            "total_executions": total,
            "successful_executions": successful,
            "failed_executions": int(row["failed_executions"] or 0),
            "skipped_executions": int(row["skipped_executions"] or 0),
            "avg_time_spent": round(float(row["avg_time_spent"])) if row["avg_time_spent"] is not None else None,
            "min_time_spent": row["min_time_spent"],
            "max_time_spent": row["max_time_spent"],
            "success_rate": round(successful / total * 100) if total else 0,
        }

    @classmethod
    @critical_database_operation("проверка возможности удаления шага")
    async def can_delete(cls, db: AsyncSession, step_id: str) -> DeletionCheck:
        """Blocks only while unfinished sessions have recorded progress on the step."""
        if not await cls._get(db, step_id):
            return DeletionCheck(False, "Шаг не найден")

        active_sessions = await cls._scalar(
            db,
            select(func.count(func.distinct(sessions.c.id)))
            .select_from(session_steps.join(sessions, session_steps.c.session_id == sessions.c.id))
            .where(
                session_steps.c.step_id == step_id,
                sessions.c.is_active.is_(True),
                sessions.c.end_time.is_(None),
            ),
        )
        if active_sessions > 0:
            return DeletionCheck(
                False,
                f"Невозможно удалить шаг, используемый в {active_sessions} активных сессиях диагностики",
            )
        return DeletionCheck(True)

    @classmethod
    async def _neighbour(cls, db: AsyncSession, step_id: str, delta: int) -> Optional[dict]:
        steps = cls.table
        current = steps.alias("current_step")
        stmt = (
            select(steps)
            .select_from(
                steps.join(
                    current,
                    and_(
                        current.c.problem_id == steps.c.problem_id,
                        steps.c.step_number == current.c.step_number + delta,
                    ),
                )
            )
            .where(
                current.c.id == step_id,
                current.c.is_active.is_(True),
                steps.c.is_active.is_(True),
            )
        )
        return await cls._fetch_one(db, stmt)

    @classmethod
    @critical_database_operation("получение следующего шага")
    async def get_next_step(cls, db: AsyncSession, step_id: str) -> Optional[dict]:
        return await cls._neighbour(db, step_id, 1)

    @classmethod
    @critical_database_operation("получение предыдущего шага")
    async def get_previous_step(cls, db: AsyncSession, step_id: str) -> Optional[dict]:
        return await cls._neighbour(db, step_id, -1)

    @classmethod
    @critical_database_operation("проверка порядка шагов")
    async def validate_step_order(cls, db: AsyncSession, problem_id: str) -> Dict[str, Any]:
        """
        Report duplicate and missing step numbers among active steps.

        Returns:
            {"is_valid": bool, "duplicates": [{"step_number", "count"}], "gaps": [int]}
        """
        steps = cls.table
        active = and_(steps.c.problem_id == problem_id, steps.c.is_active.is_(True))
        result = await db.execute(
            select(steps.c.step_number, func.count().label("count"))
            .where(active)
            .group_by(steps.c.step_number)
            .having(func.count() > 1)
            .order_by(steps.c.step_number)
        )
        duplicates = [dict(row) for row in result.mappings().all()]

        numbers = (
            await db.execute(select(steps.c.step_number).where(active).distinct())
        ).scalars().all()
        total = await cls._scalar(db, select(func.count()).select_from(steps).where(active))
        gaps = sorted(set(range(1, total + 1)) - set(numbers))

        return {"is_valid": not duplicates and not gaps, "duplicates": duplicates, "gaps": gaps}

    # ------------------------------------------------------------------
    # Numbering changes (one transaction each)
    # ------------------------------------------------------------------

    @classmethod
    @transactional_database_operation("создание шага с автонумерацией")
    async def create_with_auto_number(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Append a step to the end of its problem.

        ``device_id`` is taken from the problem when not supplied.

        Raises:
            ValueError: If the problem does not exist
        """
        problem_id = data.get("problem_id")
        device_id = await cls._problem_device_id(db, problem_id)
        step = dict(data)
        step["step_number"] = await cls._next_step_number(db, problem_id)
        if not step.get("device_id"):
            step["device_id"] = device_id
        return await cls._insert(db, step)

    @classmethod
    @transactional_database_operation("переупорядочивание шагов")
    async def reorder_steps(cls, db: AsyncSession, problem_id: str, step_ids: Sequence[str]) -> List[dict]:
        """
        Number the active steps of a problem in the order of ``step_ids``.

        Raises:
            ValueError: If ``step_ids`` is not exactly the problem's active steps
        """
        active_ids = await cls._active_step_ids(db, problem_id)
        if len(step_ids) != len(active_ids) or set(step_ids) != set(active_ids):
            raise ValueError("Порядок шагов должен содержать все активные шаги проблемы")

        steps = cls.table
        now = utc_now()
        for index, step_id in enumerate(step_ids, start=1):
            await db.execute(
                update(steps)
                .where(steps.c.id == step_id, steps.c.problem_id == problem_id)
                .values(step_number=index, updated_at=now)
            )
        logger.info(f"Reordered {len(step_ids)} steps of problem {problem_id}")
        return await cls._fetch_all(
            db,
            select(steps)
            .where(steps.c.problem_id == problem_id, steps.c.is_active.is_(True))
            .order_by(steps.c.step_number.asc()),
        )

    @classmethod
    @transactional_database_operation("вставка шага")
    async def insert_step(
        cls, db: AsyncSession, problem_id: str, after_step_number: int, data: Dict[str, Any]
    ) -> dict:
        """
        Insert a step right after ``after_step_number``.

        Later steps move up by one. A position past the end appends; zero or
        less inserts at the front.
        """
        device_id = await cls._problem_device_id(db, problem_id)
        last_number = await cls._next_step_number(db, problem_id) - 1
        position = max(0, min(after_step_number, last_number))

        await cls._shift(db, problem_id, position, 1)
        step = {**data, "problem_id": problem_id, "step_number": position + 1}
        if not step.get("device_id"):
            step["device_id"] = device_id
        return await cls._insert(db, step)

    @classmethod
    @transactional_database_operation("удаление шага с переупорядочиванием")
    async def delete_with_reorder(cls, db: AsyncSession, step_id: str) -> dict:
        """
        Hard-delete a step and close the gap it leaves among active steps.

        Raises:
            ValueError: If the step does not exist
        """
        step = await cls._get(db, step_id)
        if step is None:
            raise ValueError("Шаг не найден")

        steps = cls.table
        await db.execute(delete(steps).where(steps.c.id == step_id))
        moved = 0
        if step["is_active"]:
            moved = await cls._shift(db, step["problem_id"], step["step_number"], -1)
        logger.info(f"Deleted step {step_id} of problem {step['problem_id']}, renumbered {moved} steps")
        return step

    @classmethod
    @transactional_database_operation("архивирование шага")
    async def soft_delete(cls, db: AsyncSession, step_id: str) -> Optional[dict]:
        """Archive a step; later active steps move down to close the gap."""
        step = await cls._get(db, step_id)
        if step is None or not step["is_active"]:
            return step
        archived = await cls._update(db, step_id, {"is_active": False})
        await cls._shift(db, step["problem_id"], step["step_number"], -1)
        return archived

    @classmethod
    @transactional_database_operation("восстановление шага")
    async def restore(cls, db: AsyncSession, step_id: str) -> Optional[dict]:
        """Bring an archived step back as the last active step of its problem."""
        step = await cls._get(db, step_id)
        if step is None or step["is_active"]:
            return step
        step_number = await cls._next_step_number(db, step["problem_id"])
        return await cls._update(db, step_id, {"is_active": True, "step_number": step_number})

    @classmethod
    @transactional_database_operation("дублирование шага")
    async def duplicate(
        cls, db: AsyncSession, step_id: str, target_problem_id: Optional[str] = None
    ) -> dict:
        """
        Copy a step to the end of its problem or of ``target_problem_id``.

        Raises:
            ValueError: If the step or the target problem does not exist
        """
        original = await cls._get(db, step_id)
        if original is None:
            raise ValueError("Шаг не найден")

        problem_id = target_problem_id or original["problem_id"]
        copy = {key: value for key, value in original.items() if key not in ("id", "created_at", "updated_at")}
        if target_problem_id and target_problem_id != original["problem_id"]:
            copy["device_id"] = await cls._problem_device_id(db, target_problem_id)
        copy.update(
            problem_id=problem_id,
            step_number=await cls._next_step_number(db, problem_id),
            is_active=True,
            title=f"{original['title']}{COPY_SUFFIX}",
        )
        return await cls._insert(db, copy)

    @classmethod
    @transactional_database_operation("исправление нумерации шагов")
    async def fix_step_numbering(cls, db: AsyncSession, problem_id: str) -> List[dict]:
        """
        Renumber active steps 1..n keeping (step_number, created_at) order.

        Returns:
            Rows whose number changed
        """
        steps = cls.table
        result = await db.execute(
            select(steps.c.id, steps.c.step_number)
            .where(steps.c.problem_id == problem_id, steps.c.is_active.is_(True))
            .order_by(steps.c.step_number.asc(), steps.c.created_at.asc())
        )
        changed = []
        now = utc_now()
        for index, row in enumerate(result.all(), start=1):
            if row.step_number == index:
                continue
            await db.execute(
                update(steps).where(steps.c.id == row.id).values(step_number=index, updated_at=now)
            )
            changed.append(await cls._get(db, row.id))

        if changed:
            logger.warning(f"Fixed numbering of {len(changed)} steps of problem {problem_id}")
        return changed
