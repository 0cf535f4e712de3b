"""
Problem repository.

A problem belongs to a device and owns an ordered list of diagnostic steps.
Publishing requires at least one active step; duplication copies the problem
together with all of its steps in one transaction.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import Integer, and_, case, cast, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from db.enums import ProblemCategory, ProblemStatus
from db.models import Device, DiagnosticSession, DiagnosticStep, Problem, utc_now
from repositories.base_repository import BaseRepository, DeletionCheck, count_where
from repositories.diagnostic_step_repository import DiagnosticStepRepository
from repositories.search import text_search

logger = logging.getLogger(__name__)

devices = Device.__table__
steps = DiagnosticStep.__table__
sessions = DiagnosticSession.__table__

COPY_SUFFIX = " (копия)"


class ProblemRepository(BaseRepository[Problem]):
    """Repository for support problems."""

    model = Problem
    json_fields = {"metadata": {}, "tags": []}
    search_fields = ("title", "description")

    @classmethod
    def _device_columns(cls, *extra: str) -> list:
        columns = [
            devices.c.name.label("device_name"),
            devices.c.brand.label("device_brand"),
            devices.c.model.label("device_model"),
            devices.c.color.label("device_color"),
        ]
        columns.extend(devices.c[name].label(f"device_{name}") for name in extra)
        return columns

    @classmethod
    def _detail_counters(cls) -> list:
        problems = cls.table
        own_steps = steps.c.problem_id == problems.c.id
        own_sessions = and_(sessions.c.problem_id == problems.c.id, sessions.c.is_active.is_(True))
        return [
            count_where(steps, own_steps).label("steps_count"),
            count_where(steps, own_steps, steps.c.is_active.is_(True)).label("active_steps_count"),
            count_where(sessions, own_sessions).label("sessions_count"),
            count_where(sessions, own_sessions, sessions.c.success.is_(True)).label(
                "successful_sessions_count"
            ),
        ]

    @classmethod
    def _detail_select(cls, *device_extra: str):
        problems = cls.table
        return select(
            problems, *cls._device_columns(*device_extra), *cls._detail_counters()
        ).select_from(problems.outerjoin(devices, problems.c.device_id == devices.c.id))

    @classmethod
    @critical_database_operation("получение проблем с деталями")
    async def find_all_with_details(
        cls,
        db: AsyncSession,
        filters: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        """
        List problems with device info and step/session counters.

        Args:
            db: Database session
            filters: device_id, category, status, is_active, search
            limit: Page size (default from pagination settings)
            offset: Rows to skip

        Returns:
            Problems ordered by priority, then newest first
        """
        problems = cls.table
        filters = filters or {}
        conditions = []
        for key in ("device_id", "category", "status"):
            if filters.get(key):
                conditions.append(problems.c[key] == filters[key])
        if filters.get("is_active") is not None:
            conditions.append(problems.c.is_active == filters["is_active"])
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            conditions.append(or_(problems.c.title.ilike(pattern), problems.c.description.ilike(pattern)))

        stmt = cls._detail_select()
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = (
            stmt.order_by(problems.c.priority.desc(), problems.c.created_at.desc())
            .limit(limit or settings.pagination.default_page_size)
            .offset(offset)
        )
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("получение проблемы с деталями")
    async def find_by_id_with_details(cls, db: AsyncSession, problem_id: str) -> Optional[dict]:
        """Problem with device info, counters and average successful duration."""
        problems = cls.table
        avg_completion_time = (
            select(func.avg(sessions.c.duration))
            .where(
                sessions.c.problem_id == problems.c.id,
                sessions.c.is_active.is_(True),
                sessions.c.success.is_(True),
            )
            .scalar_subquery()
            .label("avg_completion_time")
        )
        stmt = cls._detail_select("status").add_columns(avg_completion_time).where(
            problems.c.id == problem_id
        )
        row = await cls._fetch_one(db, stmt)
        if row and row["avg_completion_time"] is not None:
            row["avg_completion_time"] = round(float(row["avg_completion_time"]))
        return row

    @classmethod
    async def find_by_device(
        cls, db: AsyncSession, device_id: str, *, status: Optional[str] = None, **options
    ) -> List[dict]:
        """Active problems of a device."""
        filters = {"device_id": device_id, "is_active": True, "status": status}
        return await cls.find_all_with_details(db, filters, **options)

    @classmethod
    async def find_by_category(
        cls, db: AsyncSession, category: str, *, device_id: Optional[str] = None, **options
    ) -> List[dict]:
        """Active problems of a category, optionally for one device."""
        filters = {"category": category, "is_active": True, "device_id": device_id}
        return await cls.find_all_with_details(db, filters, **options)

    @classmethod
    @critical_database_operation("поиск проблем")
    async def search(
        cls,
        db: AsyncSession,
        term: str,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        """Full-text search over title and description of active problems."""
        problems = cls.table
        condition, rank = text_search(db, [problems.c.title, problems.c.description], term)
        stmt = (
            cls._detail_select()
            .add_columns(rank.label("rank"))
            .where(problems.c.is_active.is_(True), condition)
            .order_by(rank.desc(), problems.c.priority.desc())
            .limit(limit or settings.diagnostics.search_limit)
            .offset(offset)
        )
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("получение популярных проблем")
    async def get_popular(cls, db: AsyncSession, limit: Optional[int] = None) -> List[dict]:
        """Published problems ranked by completions and success rate."""
        problems = cls.table
        stmt = (
            cls._detail_select()
            .where(
                problems.c.is_active.is_(True),
                problems.c.status == ProblemStatus.PUBLISHED.value,
            )
            .order_by(problems.c.completed_count.desc(), problems.c.success_rate.desc())
            .limit(limit or settings.diagnostics.popular_limit)
        )
        return await cls._fetch_all(db, stmt)

    @classmethod
    async def _copy_steps(
        cls,
        db: AsyncSession,
        source_problem_id: str,
        target_problem_id: str,
        target_device_id: Optional[str],
    ) -> int:
        result = await db.execute(
            select(steps).where(steps.c.problem_id == source_problem_id).order_by(steps.c.step_number)
        )
        source_steps = result.mappings().all()
        for step in source_steps:
            copy = {key: value for key, value in step.items() if key not in ("id", "created_at", "updated_at")}
            copy["problem_id"] = target_problem_id
            copy["device_id"] = target_device_id or step["device_id"]
            await db.execute(
                DiagnosticStepRepository.build_insert_query(DiagnosticStepRepository.prepare_for_insert(copy))
            )
        return len(source_steps)

    @classmethod
    @transactional_database_operation("дублирование проблемы")
    async def duplicate(
        cls, db: AsyncSession, problem_id: str, target_device_id: Optional[str] = None
    ) -> dict:
        """
        Copy a problem and all of its steps.

        The copy is a draft titled ``"<title> (копия)"`` with zeroed counters.

        Raises:
            ValueError: If the problem does not exist
        """
        original = (
            await db.execute(select(cls.table).where(cls.table.c.id == problem_id))
        ).mappings().first()
        if original is None:
            raise ValueError("Проблема не найдена")

        copy = {key: value for key, value in original.items() if key not in ("id", "created_at", "updated_at")}
        copy.update(
            title=f"{original['title']}{COPY_SUFFIX}",
            device_id=target_device_id or original["device_id"],
            status=ProblemStatus.DRAFT.value,
            completed_count=0,
            success_rate=0,
        )
        duplicated = await cls._insert(db, copy)
        copied_steps = await cls._copy_steps(db, problem_id, duplicated["id"], target_device_id)
        logger.info(f"Problem {problem_id} duplicated as {duplicated['id']} with {copied_steps} steps")
        return duplicated

    @classmethod
    def success_rate_expression(cls):
        """Percent of completed active sessions of the problem that succeeded."""
        problems = cls.table
        finished = and_(
            sessions.c.problem_id == problems.c.id,
            sessions.c.is_active.is_(True),
            sessions.c.end_time.isnot(None),
        )
        rate = (
            select(
                cast(
                    func.round(
                        func.count(case((sessions.c.success.is_(True), 1))) * 100.0
                        / func.nullif(func.count(), 0)
                    ),
                    Integer,
                )
            )
            .where(finished)
            .scalar_subquery()
        )
        return func.coalesce(rate, 0)

    @classmethod
    async def _update_stats(cls, db: AsyncSession, problem_id: str, increment_completed: bool = False):
        problems = cls.table
        values = {"success_rate": cls.success_rate_expression(), "updated_at": utc_now()}
        if increment_completed:
            values["completed_count"] = problems.c.completed_count + 1
        await db.execute(update(problems).where(problems.c.id == problem_id).values(**values))
        return await cls._get(db, problem_id)

    @classmethod
    @transactional_database_operation("обновление статистики проблемы")
    async def update_stats(
        cls, db: AsyncSession, problem_id: str, *, increment_completed: bool = False
    ) -> Optional[dict]:
        """
        Recompute ``success_rate`` from the problem's sessions.

        Args:
            db: Database session
            problem_id: Problem to refresh
            increment_completed: Also add one to ``completed_count``
        """
        return await cls._update_stats(db, problem_id, increment_completed)

    @classmethod
    @critical_database_operation("проверка возможности удаления проблемы")
    async def can_delete(cls, db: AsyncSession, problem_id: str) -> DeletionCheck:
        """Blocks on active sessions, then on existing active steps."""
        if not await cls._get(db, problem_id):
            return DeletionCheck(False, "Проблема не найдена")

        active_sessions = await cls._scalar(
            db,
            select(func.count()).select_from(sessions).where(
                sessions.c.problem_id == problem_id,
                sessions.c.is_active.is_(True),
                sessions.c.end_time.is_(None),
            ),
        )
        if active_sessions > 0:
            return DeletionCheck(
                False,
                f"Невозможно удалить проблему с {active_sessions} активными сессиями диагностики",
            )

        steps_count = await cls._scalar(
            db,
            select(func.count()).select_from(steps).where(
                steps.c.problem_id == problem_id, steps.c.is_active.is_(True)
            ),
        )
        if steps_count > 0:
            return DeletionCheck(
                False,
                f"Проблема содержит {steps_count} диагностических шагов. Сначала удалите их.",
                "Можно архивировать проблему вместо удаления",
            )

        return DeletionCheck(True)

    @classmethod
    @critical_database_operation("получение статистики проблем")
    async def get_stats(cls, db: AsyncSession) -> Dict[str, Any]:
        problems = cls.table

        def _count_if(condition):
            return func.count(case((condition, 1)))

        row = (
            await db.execute(
                select(
                    func.count().label("total"),
                    _count_if(problems.c.is_active.is_(True)).label("active"),
                    _count_if(problems.c.status == ProblemStatus.PUBLISHED.value).label("published"),
                    _count_if(problems.c.status == ProblemStatus.DRAFT.value).label("draft"),
                    _count_if(problems.c.category == ProblemCategory.CRITICAL.value).label("critical"),
                    _count_if(problems.c.category == ProblemCategory.MODERATE.value).label("moderate"),
                    _count_if(problems.c.category == ProblemCategory.MINOR.value).label("minor"),
                    func.avg(problems.c.success_rate).label("avg_success_rate"),
                    func.sum(problems.c.completed_count).label("total_completions"),
                )
            )
        ).mappings().one()
        stats = {key: int(row[key] or 0) for key in row.keys() if key != "avg_success_rate"}
        stats["avg_success_rate"] = round(float(row["avg_success_rate"] or 0))
        return stats

    @classmethod
    @transactional_database_operation("публикация проблемы")
    async def publish(cls, db: AsyncSession, problem_id: str) -> Optional[dict]:
        """
        Publish an active problem.

        Raises:
            ValueError: If the problem has no active steps
        """
        active_steps = await cls._scalar(
            db,
            select(func.count()).select_from(steps).where(
                steps.c.problem_id == problem_id, steps.c.is_active.is_(True)
            ),
        )
        if active_steps == 0:
            raise ValueError("Невозможно опубликовать проблему без диагностических шагов")
        return await cls._set_status(db, problem_id, ProblemStatus.PUBLISHED)

    @classmethod
    @transactional_database_operation("снятие проблемы с публикации")
    async def unpublish(cls, db: AsyncSession, problem_id: str) -> Optional[dict]:
        """Return an active problem to draft."""
        return await cls._set_status(db, problem_id, ProblemStatus.DRAFT)

    @classmethod
    async def _set_status(cls, db: AsyncSession, problem_id: str, status: ProblemStatus) -> Optional[dict]:
        problems = cls.table
        result = await db.execute(
            update(problems)
            .where(problems.c.id == problem_id, problems.c.is_active.is_(True))
            .values(status=status.value, updated_at=utc_now())
        )
        if result.rowcount == 0:
            return None
        return await cls._get(db, problem_id)
