"""
Device repository.

Devices own problems, remotes and TV interfaces. Besides the generic row
operations this adds counters for list views, search, popularity ranking,
display ordering and the deletion guard.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from db.enums import DeviceStatus, ProblemStatus
from db.models import Device, DiagnosticSession, Problem, Remote, TVInterface, utc_now
from repositories.base_repository import BaseRepository, DeletionCheck, count_where
from repositories.search import text_search

logger = logging.getLogger(__name__)

problems = Problem.__table__
remotes = Remote.__table__
sessions = DiagnosticSession.__table__
tv_interfaces = TVInterface.__table__


class DeviceRepository(BaseRepository[Device]):
    """Repository for set-top box devices."""

    model = Device
    search_fields = ("name", "brand", "model", "description")

    @classmethod
    def _problem_counters(cls) -> list:
        devices = cls.table
        owned = problems.c.device_id == devices.c.id
        linked = and_(owned, problems.c.is_active.is_(True))
        return [
            count_where(problems, owned).label("problems_count"),
            count_where(
                problems, linked, problems.c.status == ProblemStatus.PUBLISHED.value
            ).label("published_problems_count"),
            count_where(problems, linked).label("active_problems_count"),
        ]

    @classmethod
    def _remote_counters(cls) -> list:
        devices = cls.table
        linked = and_(remotes.c.device_id == devices.c.id, remotes.c.is_active.is_(True))
        return [
            count_where(remotes, linked).label("remotes_count"),
            count_where(remotes, linked, remotes.c.is_default.is_(True)).label("default_remotes_count"),
        ]

    @classmethod
    @critical_database_operation("получение устройств со статистикой")
    async def find_all_with_stats(
        cls,
        db: AsyncSession,
        filters: Optional[Dict[str, Any]] = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[dict]:
        """
        List devices with problem and remote counters.

        Ordered by ``order_index`` then newest first.
        """
        devices = cls.table
        stmt = select(devices, *cls._problem_counters(), *cls._remote_counters())
        clauses = cls.build_where_clauses(filters)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        stmt = stmt.order_by(devices.c.order_index.asc(), devices.c.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("получение устройства со статистикой")
    async def find_by_id_with_stats(cls, db: AsyncSession, device_id: str) -> Optional[dict]:
        """Single device with the same counters as ``find_all_with_stats``."""
        devices = cls.table
        stmt = select(devices, *cls._problem_counters(), *cls._remote_counters()).where(
            devices.c.id == device_id
        )
        return await cls._fetch_one(db, stmt)

    @classmethod
    @critical_database_operation("поиск устройств")
    async def search(
        cls,
        db: AsyncSession,
        term: str,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[dict]:
        """Full-text search over name, brand and description of active devices."""
        devices = cls.table
        condition, rank = text_search(
            db, [devices.c.name, devices.c.brand, devices.c.description], term
        )
        problems_count = count_where(
            problems, problems.c.device_id == devices.c.id, problems.c.is_active.is_(True)
        ).label("problems_count")
        stmt = (
            select(devices, problems_count, rank.label("rank"))
            .where(devices.c.is_active.is_(True), condition)
            .order_by(rank.desc(), devices.c.order_index.asc())
            .limit(limit or settings.diagnostics.search_limit)
            .offset(offset)
        )
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("получение популярных устройств")
    async def get_popular(cls, db: AsyncSession, limit: Optional[int] = None) -> List[dict]:
        """Active devices ranked by completions of their published problems."""
        devices = cls.table
        published = and_(
            problems.c.device_id == devices.c.id,
            problems.c.is_active.is_(True),
            problems.c.status == ProblemStatus.PUBLISHED.value,
        )
        total_completions = (
            select(func.coalesce(func.sum(problems.c.completed_count), 0))
            .where(published)
            .scalar_subquery()
            .label("total_completions")
        )
        avg_success_rate = (
            select(func.coalesce(func.avg(problems.c.success_rate), 0))
            .where(published)
            .scalar_subquery()
            .label("avg_success_rate")
        )
        problems_count = count_where(problems, published).label("problems_count")
        stmt = (
            select(devices, problems_count, total_completions, avg_success_rate)
            .where(devices.c.is_active.is_(True))
            .order_by(total_completions.desc(), problems_count.desc())
            .limit(limit or settings.diagnostics.popular_limit)
        )
        rows = await cls._fetch_all(db, stmt)
        for row in rows:
            row["avg_success_rate"] = float(row["avg_success_rate"] or 0)
        return rows

    @classmethod
    @transactional_database_operation("обновление порядка устройств")
    async def update_order(cls, db: AsyncSession, device_ids: Sequence[str]) -> List[dict]:
        """
        Set ``order_index`` to each device's 1-based position in ``device_ids``.

        All positions are written in one transaction. Unknown ids are skipped.
        """
        devices = cls.table
        now = utc_now()
        updated = []
        for index, device_id in enumerate(device_ids, start=1):
            result = await db.execute(
                update(devices)
                .where(devices.c.id == device_id)
                .values(order_index=index, updated_at=now)
            )
            if result.rowcount:
                updated.append({"id": device_id, "order_index": index})
        return updated

    @classmethod
    @critical_database_operation("проверка возможности удаления устройства")
    async def can_delete(cls, db: AsyncSession, device_id: str) -> DeletionCheck:
        """
        Check whether a device can be hard-deleted.

        Blocks, in order: active diagnostic sessions, published problems,
        any active problems, any active remotes.
        """
        if not await cls._get(db, device_id):
            return DeletionCheck(False, "Устройство не найдено")

        active_sessions = await cls._scalar(
            db,
            select(func.count()).select_from(sessions).where(
                sessions.c.device_id == device_id,
                sessions.c.is_active.is_(True),
                sessions.c.end_time.is_(None),
            ),
        )
        if active_sessions > 0:
            return DeletionCheck(
                False,
                f"Невозможно удалить устройство с {active_sessions} активными сессиями диагностики",
            )

        problem_counts = (
            await db.execute(
                select(
                    func.count().label("total"),
                    func.count(
                        case((problems.c.status == ProblemStatus.PUBLISHED.value, 1))
                    ).label("published"),
                ).where(problems.c.device_id == device_id, problems.c.is_active.is_(True))
            )
        ).mappings().one()

        if problem_counts["published"] > 0:
            return DeletionCheck(
                False,
                f"Невозможно удалить устройство с {problem_counts['published']} опубликованными проблемами",
            )
        if problem_counts["total"] > 0:
            return DeletionCheck(
                False,
                f"Устройство содержит {problem_counts['total']} проблем. Сначала удалите или переместите их.",
                "Можно архивировать устройство вместо удаления",
            )

        remotes_count = await cls._scalar(
            db,
            select(func.count()).select_from(remotes).where(
                remotes.c.device_id == device_id, remotes.c.is_active.is_(True)
            ),
        )
        if remotes_count > 0:
            return DeletionCheck(
                False,
                f"Устройство содержит {remotes_count} пультов. Сначала удалите или переместите их.",
                "Можно архивировать устройство вместо удаления",
            )

        return DeletionCheck(True)

    @classmethod
    @critical_database_operation("получение статистики устройств")
    async def get_stats(cls, db: AsyncSession) -> Dict[str, int]:
        """Counts of devices by activity flag and status."""
        devices = cls.table
        row = (
            await db.execute(
                select(
                    func.count().label("total"),
                    func.count(case((devices.c.is_active.is_(True), 1))).label("active"),
                    func.count(case((devices.c.status == DeviceStatus.ACTIVE.value, 1))).label("working"),
                    func.count(case((devices.c.status == DeviceStatus.MAINTENANCE.value, 1))).label("maintenance"),
                    func.count(case((devices.c.status == DeviceStatus.INACTIVE.value, 1))).label("inactive"),
                )
            )
        ).mappings().one()
        return {key: int(value or 0) for key, value in row.items()}

    @classmethod
    @critical_database_operation("получение устройств для админ-панели")
    async def get_for_admin(
        cls,
        db: AsyncSession,
        filters: Optional[Dict[str, Any]] = None,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> List[dict]:
        """
        Devices with every counter the admin list shows.

        Filters: search (name, brand, model), status, is_active.
        """
        devices = cls.table
        filters = filters or {}
        conditions = []
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            conditions.append(
                or_(
                    devices.c.name.ilike(pattern),
                    devices.c.brand.ilike(pattern),
                    devices.c.model.ilike(pattern),
                )
            )
        if filters.get("status"):
            conditions.append(devices.c.status == filters["status"])
        if filters.get("is_active") is not None:
            conditions.append(devices.c.is_active == filters["is_active"])

        device_problems = problems.c.device_id == devices.c.id
        last_session = (
            select(func.max(sessions.c.start_time))
            .where(sessions.c.device_id == devices.c.id, sessions.c.is_active.is_(True))
            .scalar_subquery()
            .label("last_diagnostic_session")
        )
        stmt = (
            select(
                devices,
                count_where(problems, device_problems).label("problems_count"),
                count_where(
                    problems, device_problems, problems.c.status == ProblemStatus.PUBLISHED.value
                ).label("published_problems_count"),
                count_where(
                    remotes, remotes.c.device_id == devices.c.id, remotes.c.is_active.is_(True)
                ).label("remotes_count"),
                count_where(
                    tv_interfaces,
                    tv_interfaces.c.device_id == devices.c.id,
                    tv_interfaces.c.is_active.is_(True),
                ).label("tv_interfaces_count"),
                last_session,
            )
            .order_by(devices.c.order_index.asc(), devices.c.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        if conditions:
            stmt = stmt.where(and_(*conditions))
        return await cls._fetch_all(db, stmt)
