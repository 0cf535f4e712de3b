"""
TV interface repository.

TV interfaces are device screenshots that steps and marks point at. The
``clickable_areas`` and ``highlight_areas`` columns may be missing where the
extended schema migration has not run yet, so every statement is built on a
projection of the table limited to the columns the schema capabilities
report. List queries leave large screenshots out of the result.
"""
import logging
from typing import Any, ClassVar, Dict, List, Optional

from sqlalchemy import case, func, null, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import TableClause

from core.config import settings
from core.decorators import critical_database_operation, transactional_database_operation
from core.json_fields import decode_fields, decode_input
from core.schema_capabilities import SchemaCapabilities, schema_capabilities
from db.enums import TVInterfaceType, enum_values
from db.models import Device, TVInterface
from repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)

devices = Device.__table__

AREA_COLUMNS = ("clickable_areas", "highlight_areas")
COPY_SUFFIX = " (копия)"
EDITABLE_FIELDS = (
    "name",
    "description",
    "type",
    "device_id",
    "screenshot_url",
    "screenshot_data",
    "clickable_areas",
    "highlight_areas",
    "is_active",
)


class TVInterfaceRepository(BaseRepository[TVInterface]):
    """Repository for TV interface screenshots."""

    model = TVInterface
    json_fields = {"clickable_areas": [], "highlight_areas": []}
    search_fields = ("name", "description")
    capabilities: ClassVar[SchemaCapabilities] = schema_capabilities

    @classmethod
    def to_dict(cls, row: Any) -> Optional[dict]:
        # Area columns read as empty lists where the schema lacks them
        if row is None:
            return None
        return decode_fields(row, cls.json_fields)

    @classmethod
    async def _projection(cls, db: AsyncSession) -> TableClause:
        caps = await cls.capabilities.resolve(db, cls.table_name)
        return caps.project(cls.table)

    @classmethod
    def _device_columns(cls) -> list:
        return [
            devices.c.name.label("device_name"),
            devices.c.brand.label("device_brand"),
            devices.c.model.label("device_model"),
        ]

    @classmethod
    def validate_data(cls, data: Dict[str, Any], is_update: bool = False) -> List[str]:
        """Return error messages for missing required fields or an unknown type."""
        errors = []
        if not is_update or "name" in data:
            if not (data.get("name") or "").strip():
                errors.append("Название интерфейса обязательно")
        if not is_update and not data.get("type"):
            errors.append("Тип интерфейса обязателен")
        types = enum_values(TVInterfaceType)
        if data.get("type") and data["type"] not in types:
            errors.append(f"Тип интерфейса должен быть одним из: {', '.join(types)}")
        if not is_update and not data.get("device_id"):
            errors.append("Устройство обязательно для выбора")
        return errors

    @classmethod
    def _log_screenshot(cls, interface_id: str, data: Dict[str, Any]) -> None:
        screenshot = data.get("screenshot_data")
        if screenshot:
            size = len(screenshot)
            logger.info(
                f"TV interface {interface_id} screenshot payload: {size} bytes ({size / 1024 / 1024:.2f} MB)"
            )

    @classmethod
    async def _ensure_device(cls, db: AsyncSession, device_id: str) -> None:
        found = await cls._scalar(db, select(devices.c.id).where(devices.c.id == device_id), default=None)
        if found is None:
            raise ValueError("Выбранное устройство не найдено")

    @classmethod
    async def _fetch_by_id(cls, db: AsyncSession, interface_id: str) -> Optional[dict]:
        tv = await cls._projection(db)
        stmt = (
            select(tv, *cls._device_columns())
            .select_from(tv.outerjoin(devices, tv.c.device_id == devices.c.id))
            .where(tv.c.id == interface_id)
        )
        return await cls._fetch_one(db, stmt)

    @classmethod
    async def _create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        errors = cls.validate_data(data)
        if errors:
            raise ValueError("; ".join(errors))
        await cls._ensure_device(db, data["device_id"])

        data = decode_input(data, AREA_COLUMNS)
        row = {
            "name": data["name"].strip(),
            "description": (data.get("description") or "").strip(),
            "type": data["type"],
            "device_id": data["device_id"],
            "screenshot_url": data.get("screenshot_url"),
            "screenshot_data": data.get("screenshot_data"),
            "clickable_areas": data.get("clickable_areas") or [],
            "highlight_areas": data.get("highlight_areas") or [],
            "is_active": data.get("is_active", True),
        }
        created = await cls._insert(db, row)
        cls._log_screenshot(created["id"], row)
        return await cls._fetch_by_id(db, created["id"])

    @classmethod
    @transactional_database_operation("создание TV интерфейса")
    async def create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Create a TV interface for an existing device.

        Raises:
            ValueError: On missing name, type or device, an unknown type,
                or a device that does not exist
        """
        return await cls._create(db, data)

    @classmethod
    @transactional_database_operation("обновление TV интерфейса")
    async def update(cls, db: AsyncSession, interface_id: str, data: Dict[str, Any]) -> dict:
        """
        Update the editable fields present in ``data``.

        Raises:
            ValueError: If the interface or a newly referenced device does not
                exist, or the data is invalid
        """
        existing = await cls._get(db, interface_id)
        if existing is None:
            raise ValueError("TV интерфейс не найден")
        errors = cls.validate_data(data, is_update=True)
        if errors:
            raise ValueError("; ".join(errors))
        if data.get("device_id") and data["device_id"] != existing["device_id"]:
            await cls._ensure_device(db, data["device_id"])

        changes = {key: value for key, value in decode_input(data, AREA_COLUMNS).items() if key in EDITABLE_FIELDS}
        if "name" in changes:
            changes["name"] = changes["name"].strip()
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip()

        await cls._update(db, interface_id, changes)
        cls._log_screenshot(interface_id, changes)
        return await cls._fetch_by_id(db, interface_id)

    @classmethod
    @critical_database_operation("получение TV интерфейсов")
    async def get_all(cls, db: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> List[dict]:
        """
        List TV interfaces with device info, newest first.

        Screenshots larger than the configured threshold are replaced by
        ``None``; ``screenshot_data_size`` and ``has_screenshot_data`` are
        always present.

        Filters: device_id, is_active, type, search, limit, offset.
        """
        filters = filters or {}
        tv = await cls._projection(db)
        size = func.length(tv.c.screenshot_data)
        threshold = settings.diagnostics.screenshot_list_threshold

        stmt = (
            select(
                *[col for col in tv.c if col.name != "screenshot_data"],
                case((size > threshold, null()), else_=tv.c.screenshot_data).label("screenshot_data"),
                func.coalesce(size, 0).label("screenshot_data_size"),
                *cls._device_columns(),
            )
            .select_from(tv.outerjoin(devices, tv.c.device_id == devices.c.id))
            .order_by(tv.c.created_at.desc())
        )
        if filters.get("device_id"):
            stmt = stmt.where(tv.c.device_id == filters["device_id"])
        if filters.get("is_active") is not None:
            stmt = stmt.where(tv.c.is_active == filters["is_active"])
        if filters.get("type"):
            stmt = stmt.where(tv.c.type == filters["type"])
        if filters.get("search"):
            pattern = f"%{filters['search']}%"
            stmt = stmt.where(or_(tv.c.name.ilike(pattern), tv.c.description.ilike(pattern)))
        if filters.get("limit"):
            stmt = stmt.limit(int(filters["limit"]))
            if filters.get("offset"):
                stmt = stmt.offset(int(filters["offset"]))

        rows = await cls._fetch_all(db, stmt)
        for row in rows:
            row["screenshot_data_size"] = int(row["screenshot_data_size"] or 0)
            row["has_screenshot_data"] = row["screenshot_data_size"] > 0
        return rows

    @classmethod
    async def get_by_device_id(cls, db: AsyncSession, device_id: str) -> List[dict]:
        """Active interfaces of a device, listed like ``get_all``."""
        return await cls.get_all(db, {"device_id": device_id, "is_active": True})

    @classmethod
    @critical_database_operation("получение TV интерфейса")
    async def get_by_id(cls, db: AsyncSession, interface_id: str) -> Optional[dict]:
        """Full interface including the screenshot, with device info."""
        return await cls._fetch_by_id(db, interface_id)

    @classmethod
    @critical_database_operation("получение TV интерфейса без скриншота")
    async def get_by_id_lightweight(cls, db: AsyncSession, interface_id: str) -> Optional[dict]:
        """Interface without screenshot bytes; reports their size instead."""
        tv = await cls._projection(db)
        size = func.coalesce(func.length(tv.c.screenshot_data), 0).label("screenshot_data_size")
        stmt = (
            select(*[col for col in tv.c if col.name != "screenshot_data"], size, *cls._device_columns())
            .select_from(tv.outerjoin(devices, tv.c.device_id == devices.c.id))
            .where(tv.c.id == interface_id)
        )
        row = await cls._fetch_one(db, stmt)
        if row is not None:
            row["screenshot_data_size"] = int(row["screenshot_data_size"] or 0)
            row["has_screenshot_data"] = row["screenshot_data_size"] > 0
        return row

    @classmethod
    @transactional_database_operation("переключение статуса TV интерфейса")
    async def toggle_status(cls, db: AsyncSession, interface_id: str) -> dict:
        """
        Flip ``is_active``.

        Raises:
            ValueError: If the interface does not exist
        """
        existing = await cls._get(db, interface_id)
        if existing is None:
            raise ValueError("TV интерфейс не найден")
        await cls._update(db, interface_id, {"is_active": not existing["is_active"]})
        return await cls._fetch_by_id(db, interface_id)

    @classmethod
    @transactional_database_operation("дублирование TV интерфейса")
    async def duplicate(cls, db: AsyncSession, interface_id: str, new_name: Optional[str] = None) -> dict:
        """
        Copy an interface; the copy starts inactive.

        Raises:
            ValueError: If the interface does not exist
        """
        original = await cls._get(db, interface_id)
        if original is None:
            raise ValueError("TV интерфейс не найден")
        copy = {key: original.get(key) for key in EDITABLE_FIELDS}
        copy.update(name=new_name or f"{original['name']}{COPY_SUFFIX}", is_active=False)
        return await cls._create(db, copy)

    @classmethod
    @critical_database_operation("получение статистики TV интерфейсов")
    async def get_stats(cls, db: AsyncSession) -> Dict[str, int]:
        tv = cls.table
        row = (
            await db.execute(
                select(
                    func.count().label("total"),
                    func.count(case((tv.c.is_active.is_(True), 1))).label("active"),
                    func.count(case((tv.c.is_active.is_(False), 1))).label("inactive"),
                    func.count(func.distinct(tv.c.device_id)).label("devices_with_interfaces"),
                    func.count(case((tv.c.screenshot_data.isnot(None), 1))).label("with_screenshots"),
                )
            )
        ).mappings().one()
        return {key: int(value or 0) for key, value in row.items()}
