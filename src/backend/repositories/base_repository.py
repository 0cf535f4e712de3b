"""
Base repository with generic row operations.

Provides reusable database operations that are inherited by the entity
repositories. Statements are built with SQLAlchemy Core on the model's table
and rows are returned as plain dictionaries with JSON fields decoded.

Usage:
    class DeviceRepository(BaseRepository[Device]):
        model = Device

    device = await DeviceRepository.create(db, {"name": "OpenBox S4"})
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from sqlalchemy import Table, and_, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select
from sqlmodel import SQLModel

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from core.ids import IdGenerator, default_id_generator
from core.json_fields import decode_fields
from db.models import utc_now

logger = logging.getLogger(__name__)

# Type variable for the model class
ModelType = TypeVar("ModelType", bound=SQLModel)

@dataclass
class DeletionCheck:
    """Answer of a ``can_delete`` check."""

    can_delete: bool
    reason: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


def dialect_name(db: AsyncSession) -> str:
    """Name of the SQL dialect behind the session (``postgresql``, ``sqlite``)."""
    return db.get_bind().dialect.name


def count_where(table: Table, *conditions):
    """Correlated ``SELECT count(*)`` usable as a column expression."""
    return select(func.count()).select_from(table).where(*conditions).scalar_subquery()


class BaseRepository(Generic[ModelType]):
    """
    Generic repository providing common row operations.

    Subclasses set ``model``; ``table`` and ``table_name`` are derived from it.
    ``id_generator`` and ``json_fields`` can be overridden per table.
    """

    model: ClassVar[Type[ModelType]] = None
    table: ClassVar[Table] = None
    table_name: ClassVar[str] = None
    id_generator: ClassVar[IdGenerator] = default_id_generator
    json_fields: ClassVar[Dict[str, Any]] = {"metadata": {}}
    search_fields: ClassVar[Tuple[str, ...]] = ()
    default_sort: ClassVar[str] = "created_at"

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if cls.model is not None:
            cls.table = cls.model.__table__
            cls.table_name = cls.table.name

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    @classmethod
    def prepare_for_insert(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add id, timestamps and the active flag to a new row.

        Args:
            data: Column values supplied by the caller

        Returns:
            New dictionary ready for INSERT
        """
        now = utc_now()
        prepared = dict(data)
        if not prepared.get("id"):
            prepared["id"] = cls.id_generator()
        prepared.setdefault("created_at", now)
        prepared.setdefault("updated_at", now)
        if prepared.get("is_active") is None:
            prepared["is_active"] = True
        return prepared

    @classmethod
    def prepare_for_update(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Drop immutable columns and refresh ``updated_at``."""
        prepared = {key: value for key, value in data.items() if key not in ("id", "created_at")}
        prepared["updated_at"] = utc_now()
        return prepared

    # ------------------------------------------------------------------
    # Statement builders
    # ------------------------------------------------------------------

    @classmethod
    def build_insert_query(cls, data: Dict[str, Any], table: Optional[Table] = None):
        """Build a bound INSERT for one row."""
        return insert(table if table is not None else cls.table).values(**data)

    @classmethod
    def build_update_query(cls, id_value: str, data: Dict[str, Any], table: Optional[Table] = None):
        """Build a bound UPDATE of one row by id."""
        target = table if table is not None else cls.table
        return update(target).where(target.c.id == id_value).values(**data)

    @classmethod
    def build_where_clauses(cls, filters: Optional[Dict[str, Any]], table: Optional[Table] = None) -> list:
        """
        Translate generic filters into WHERE clauses.

        Supported keys: id, is_active, status, created_after, created_before,
        search (with optional search_fields).
        """
        target = table if table is not None else cls.table
        filters = filters or {}
        clauses = []

        if filters.get("id") is not None:
            clauses.append(target.c.id == filters["id"])
        if filters.get("is_active") is not None and "is_active" in target.c:
            clauses.append(target.c.is_active == filters["is_active"])
        if filters.get("status") is not None and "status" in target.c:
            clauses.append(target.c.status == filters["status"])
        if filters.get("created_after") is not None:
            clauses.append(target.c.created_at >= filters["created_after"])
        if filters.get("created_before") is not None:
            clauses.append(target.c.created_at <= filters["created_before"])

        search = filters.get("search")
        if search:
            fields = filters.get("search_fields") or cls.search_fields
            pattern = f"%{search}%"
            conditions = [target.c[field].ilike(pattern) for field in fields if field in target.c]
            if conditions:
                clauses.append(or_(*conditions))

        return clauses

    @classmethod
    def resolve_sort(cls, sort_by: Optional[str], sort_order: Optional[str], table: Optional[Table] = None):
        """Return an ORDER BY expression; unknown columns fall back to the default sort."""
        target = table if table is not None else cls.table
        column_name = sort_by if sort_by and sort_by in target.c else cls.default_sort
        column = target.c[column_name]
        return column.asc() if (sort_order or "DESC").upper() == "ASC" else column.desc()

    @classmethod
    def build_select_query(
        cls,
        filters: Optional[Dict[str, Any]] = None,
        *,
        sort_by: Optional[str] = None,
        sort_order: str = "DESC",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        table: Optional[Table] = None,
    ) -> Select:
        """
        Build a SELECT with filters, sorting and pagination.

        Offset is only applied together with a limit.
        """
        target = table if table is not None else cls.table
        stmt = select(target)

        clauses = cls.build_where_clauses(filters, target)
        if clauses:
            stmt = stmt.where(and_(*clauses))

        stmt = stmt.order_by(cls.resolve_sort(sort_by, sort_order, target))

        if limit:
            stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)

        return stmt

    # ------------------------------------------------------------------
    # Row mapping and internal helpers (no commit)
    # ------------------------------------------------------------------

    @classmethod
    def to_dict(cls, row: Any) -> Optional[dict]:
        """Convert a result mapping to a dict with JSON fields decoded."""
        if row is None:
            return None
        return decode_fields(row, cls.json_fields, only_present=True)

    @classmethod
    def _restrict(cls, target, data: Dict[str, Any]) -> Dict[str, Any]:
        """Keep only the values whose column exists on ``target``."""
        dropped = [key for key in data if key not in target.c]
        if dropped:
            logger.debug(f"Columns missing in {cls.table_name}, not written: {dropped}")
        return {key: value for key, value in data.items() if key in target.c}

    @classmethod
    async def _projection(cls, db: AsyncSession):
        """Table the generic operations read and write; overridden where columns may be missing."""
        return cls.table

    @classmethod
    async def _fetch_one(cls, db: AsyncSession, stmt) -> Optional[dict]:
        result = await db.execute(stmt)
        return cls.to_dict(result.mappings().first())

    @classmethod
    async def _fetch_all(cls, db: AsyncSession, stmt) -> List[dict]:
        result = await db.execute(stmt)
        return [cls.to_dict(row) for row in result.mappings().all()]

    @classmethod
    async def _scalar(cls, db: AsyncSession, stmt, default: Any = 0) -> Any:
        result = await db.execute(stmt)
        value = result.scalar()
        return default if value is None else value

    @classmethod
    async def _get(cls, db: AsyncSession, id_value: str) -> Optional[dict]:
        target = await cls._projection(db)
        return await cls._fetch_one(db, select(target).where(target.c.id == id_value))

    @classmethod
    async def _insert(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        target = await cls._projection(db)
        prepared = cls._restrict(target, cls.prepare_for_insert(data))
        await db.execute(cls.build_insert_query(prepared, table=target))
        return await cls._get(db, prepared["id"])

    @classmethod
    async def _update(cls, db: AsyncSession, id_value: str, data: Dict[str, Any]) -> Optional[dict]:
        target = await cls._projection(db)
        prepared = cls._restrict(target, cls.prepare_for_update(data))
        result = await db.execute(cls.build_update_query(id_value, prepared, table=target))
        if result.rowcount == 0:
            return None
        return await cls._get(db, id_value)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    @classmethod
    @transactional_database_operation("создание записи")
    async def create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Insert a new row.

        Args:
            db: Database session
            data: Column values

        Returns:
            The stored row
        """
        return await cls._insert(db, data)

    @classmethod
    @critical_database_operation("поиск записи по ID")
    async def find_by_id(cls, db: AsyncSession, id_value: str) -> Optional[dict]:
        """Find a single row by id, or None."""
        return await cls._get(db, id_value)

    @classmethod
    @critical_database_operation("получение списка записей")
    async def find_all(
        cls,
        db: AsyncSession,
        filters: Optional[Dict[str, Any]] = None,
        *,
        sort_by: Optional[str] = None,
        sort_order: str = "DESC",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[dict]:
        """
        Find rows matching generic filters.

        Args:
            db: Database session
            filters: See ``build_where_clauses``
            sort_by: Column to sort by (default ``created_at``)
            sort_order: ``ASC`` or ``DESC``
            limit: Maximum number of rows
            offset: Rows to skip (only with limit)

        Returns:
            List of rows
        """
        stmt = cls.build_select_query(
            filters,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=limit,
            offset=offset,
            table=await cls._projection(db),
        )
        return await cls._fetch_all(db, stmt)

    @classmethod
    @critical_database_operation("поиск записи")
    async def find_one(cls, db: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> Optional[dict]:
        """Find the first row matching filters."""
        stmt = cls.build_select_query(filters, limit=1, table=await cls._projection(db))
        return await cls._fetch_one(db, stmt)

    @classmethod
    @critical_database_operation("постраничная выборка")
    async def find_paginated(
        cls,
        db: AsyncSession,
        filters: Optional[Dict[str, Any]] = None,
        *,
        page: int = 1,
        per_page: Optional[int] = None,
        sort_by: Optional[str] = None,
        sort_order: str = "DESC",
    ) -> Tuple[List[dict], int]:
        """
        Find one page of rows plus the total count.

        ``per_page`` defaults to the configured page size and is capped at
        ``max_page_size``.

        Returns:
            Tuple of (rows, total)
        """
        page = max(page, 1)
        per_page = min(per_page or settings.pagination.default_page_size, settings.pagination.max_page_size)
        total = await cls._count(db, filters)
        stmt = cls.build_select_query(
            filters,
            sort_by=sort_by,
            sort_order=sort_order,
            limit=per_page,
            offset=(page - 1) * per_page,
            table=await cls._projection(db),
        )
        return await cls._fetch_all(db, stmt), total

    @classmethod
    @transactional_database_operation("обновление записи")
    async def update_by_id(cls, db: AsyncSession, id_value: str, data: Dict[str, Any]) -> Optional[dict]:
        """Update a row by id; returns the updated row or None if missing."""
        return await cls._update(db, id_value, data)

    @classmethod
    async def _supports_archiving(cls, db: AsyncSession) -> bool:
        return "is_active" in (await cls._projection(db)).c

    @classmethod
    async def _require_archiving(cls, db: AsyncSession) -> None:
        if not await cls._supports_archiving(db):
            raise ValueError(f"Таблица {cls.table_name} не поддерживает архивирование")

    @classmethod
    @transactional_database_operation("архивирование записи")
    async def soft_delete(cls, db: AsyncSession, id_value: str) -> Optional[dict]:
        """
        Mark a row inactive.

        Raises:
            ValueError: If the table has no is_active column
        """
        await cls._require_archiving(db)
        return await cls._update(db, id_value, {"is_active": False})

    @classmethod
    @transactional_database_operation("удаление записи")
    async def delete(cls, db: AsyncSession, id_value: str) -> bool:
        """Hard-delete a row; True when a row was removed."""
        result = await db.execute(delete(cls.table).where(cls.table.c.id == id_value))
        return result.rowcount > 0

    @classmethod
    @transactional_database_operation("восстановление записи")
    async def restore(cls, db: AsyncSession, id_value: str) -> Optional[dict]:
        """Mark an archived row active again."""
        await cls._require_archiving(db)
        return await cls._update(db, id_value, {"is_active": True})

    @classmethod
    @critical_database_operation("проверка существования записи")
    async def exists(cls, db: AsyncSession, id_value: str) -> bool:
        stmt = select(func.count()).select_from(cls.table).where(cls.table.c.id == id_value)
        return await cls._scalar(db, stmt) > 0

    @classmethod
    async def _count(cls, db: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> int:
        target = await cls._projection(db)
        stmt = select(func.count()).select_from(target)
        clauses = cls.build_where_clauses(filters, target)
        if clauses:
            stmt = stmt.where(and_(*clauses))
        return await cls._scalar(db, stmt)

    @classmethod
    @critical_database_operation("подсчет записей")
    async def count(cls, db: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count rows; honours the is_active and status filters."""
        filters = filters or {}
        return await cls._count(
            db, {key: filters.get(key) for key in ("is_active", "status")}
        )

    @classmethod
    async def get_active(cls, db: AsyncSession, **options) -> List[dict]:
        """Active rows; accepts the ``find_all`` keyword options."""
        return await cls.find_all(db, {"is_active": True}, **options)

    @classmethod
    async def get_archived(cls, db: AsyncSession, **options) -> List[dict]:
        """Archived (soft-deleted) rows; none where the table cannot archive."""
        if not await cls._supports_archiving(db):
            return []
        return await cls.find_all(db, {"is_active": False}, **options)

    # ------------------------------------------------------------------
    # Bulk operations (one transaction each)
    # ------------------------------------------------------------------

    @classmethod
    @transactional_database_operation("массовое создание записей")
    async def bulk_create(cls, db: AsyncSession, items: Sequence[Dict[str, Any]]) -> List[dict]:
        """Insert all rows or none."""
        return [await cls._insert(db, item) for item in items]

    @classmethod
    @transactional_database_operation("массовое обновление записей")
    async def bulk_update(cls, db: AsyncSession, updates: Sequence[Dict[str, Any]]) -> List[dict]:
        """
        Apply ``[{"id": ..., "data": {...}}, ...]`` all-or-nothing.

        Raises:
            ValueError: If an id matches no row; the whole batch is rolled back
        """
        results = []
        for item in updates:
            row = await cls._update(db, item["id"], item.get("data", {}))
            if row is None:
                raise ValueError(f"Запись {item['id']} не найдена")
            results.append(row)
        return results

    @staticmethod
    def cutoff(**delta) -> datetime:
        """UTC timestamp ``timedelta(**delta)`` ago."""
        return utc_now() - timedelta(**delta)
