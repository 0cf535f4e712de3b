"""
Remote control repository.

A remote is either bound to a device or shared (``device_id == "universal"``).
Each device with remotes should have exactly one default: the first remote
created for a device becomes its default, ``get_default_for_device`` promotes
the most used remote when none is marked, and ``set_as_default`` switches the
default inside one transaction.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import critical_database_operation, transactional_database_operation
from core.json_fields import decode_input, load_json
from db.enums import RemoteLayout, enum_values
from db.models import Device, Remote, utc_now
from repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)

devices = Device.__table__

UNIVERSAL_DEVICE = "universal"
COPY_SUFFIX = " (копия)"


class RemoteRepository(BaseRepository[Remote]):
    """Repository for remote control layouts."""

    model = Remote
    json_fields = {"dimensions": None, "buttons": [], "zones": [], "metadata": {}}
    search_fields = ("name", "manufacturer", "model")

    @classmethod
    def validate_data(cls, data: Dict[str, Any], is_update: bool = False) -> List[str]:
        """
        Check remote data and return a list of error messages.

        JSON fields may be given as text; they are decoded before checking.
        """
        errors = []
        data = decode_input(data, cls.json_fields)

        if not is_update:
            if not data.get("name"):
                errors.append("Название пульта обязательно")
            if not data.get("manufacturer"):
                errors.append("Производитель обязателен")
            if not data.get("model"):
                errors.append("Модель обязательна")

        layouts = enum_values(RemoteLayout)
        if data.get("layout") and data["layout"] not in layouts:
            errors.append(f"Layout должен быть одним из: {', '.join(layouts)}")

        dimensions = data.get("dimensions")
        if dimensions:
            if not isinstance(dimensions, dict):
                errors.append("Dimensions должен быть объектом")
            elif not dimensions.get("width") or not dimensions.get("height"):
                errors.append("Dimensions должен содержать width и height")

        if data.get("buttons") and not isinstance(data["buttons"], list):
            errors.append("Buttons должен быть массивом")
        if data.get("zones") and not isinstance(data["zones"], list):
            errors.append("Zones должен быть массивом")

        return errors

    @classmethod
    def format_response(cls, data: Union[dict, List[dict], None]) -> Union[dict, List[dict], None]:
        """
        Decode JSON fields of one row or a list of rows.

        Accepts JSON text or already decoded values, so applying it twice is
        harmless.
        """
        if isinstance(data, list):
            return [cls.format_response(item) for item in data]
        if not data:
            return data

        formatted = dict(data)
        for field, default in cls.json_fields.items():
            formatted[field] = load_json(formatted.get(field), default)
        try:
            formatted["usage_count"] = int(formatted.get("usage_count") or 0)
        except (TypeError, ValueError):
            formatted["usage_count"] = 0
        return formatted

    @classmethod
    async def _active_count(cls, db: AsyncSession, device_id: str) -> int:
        remotes = cls.table
        return await cls._scalar(
            db,
            select(func.count()).select_from(remotes).where(
                remotes.c.device_id == device_id, remotes.c.is_active.is_(True)
            ),
        )

    @classmethod
    async def _create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        errors = cls.validate_data(data)
        if errors:
            raise ValueError("; ".join(errors))

        remote = decode_input(data, cls.json_fields)
        device_id = remote.get("device_id")
        if device_id and device_id != UNIVERSAL_DEVICE and await cls._active_count(db, device_id) == 0:
            remote["is_default"] = True
            logger.info(f"First remote of device {device_id} becomes its default")
        return cls.format_response(await cls._insert(db, remote))

    @classmethod
    @transactional_database_operation("создание пульта")
    async def create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Create a remote.

        The first active remote of a device is made its default.

        Raises:
            ValueError: If the data fails validation
        """
        return await cls._create(db, data)

    @classmethod
    @transactional_database_operation("обновление пульта")
    async def update_by_id(cls, db: AsyncSession, remote_id: str, data: Dict[str, Any]) -> Optional[dict]:
        errors = cls.validate_data(data, is_update=True)
        if errors:
            raise ValueError("; ".join(errors))
        return cls.format_response(await cls._update(db, remote_id, decode_input(data, cls.json_fields)))

    @classmethod
    @critical_database_operation("получение пультов устройства")
    async def get_by_device(cls, db: AsyncSession, device_id: str) -> List[dict]:
        """Active remotes of a device, default first, then most used."""
        remotes = cls.table
        stmt = (
            select(remotes)
            .where(remotes.c.device_id == device_id, remotes.c.is_active.is_(True))
            .order_by(remotes.c.is_default.desc(), remotes.c.usage_count.desc(), remotes.c.name)
        )
        return cls.format_response(await cls._fetch_all(db, stmt))

    @classmethod
    @transactional_database_operation("получение пульта по умолчанию")
    async def get_default_for_device(cls, db: AsyncSession, device_id: str) -> Optional[dict]:
        """
        Default remote of a device.

        When no active remote is marked default, the most used one (oldest on
        ties) is marked and returned.
        """
        remotes = cls.table
        active = and_(remotes.c.device_id == device_id, remotes.c.is_active.is_(True))

        explicit = await cls._fetch_one(
            db, select(remotes).where(active, remotes.c.is_default.is_(True)).limit(1)
        )
        if explicit:
            return cls.format_response(explicit)

        candidate = await cls._fetch_one(
            db,
            select(remotes)
            .where(active)
            .order_by(remotes.c.usage_count.desc(), remotes.c.created_at.asc())
            .limit(1),
        )
        if candidate is None:
            return None

        logger.info(f"Promoting remote {candidate['id']} to default of device {device_id}")
        return cls.format_response(await cls._update(db, candidate["id"], {"is_default": True}))

    @classmethod
    @transactional_database_operation("установка пульта по умолчанию")
    async def set_as_default(cls, db: AsyncSession, remote_id: str, device_id: str) -> dict:
        """
        Make ``remote_id`` the only default remote of ``device_id``.

        Raises:
            ValueError: If the remote does not belong to the device
        """
        remotes = cls.table
        remote = await cls._get(db, remote_id)
        if remote is None or remote["device_id"] != device_id:
            raise ValueError("Пульт не найден для указанного устройства")

        now = utc_now()
        await db.execute(
            update(remotes)
            .where(remotes.c.device_id == device_id, remotes.c.is_default.is_(True))
            .values(is_default=False, updated_at=now)
        )
        await db.execute(
            update(remotes).where(remotes.c.id == remote_id).values(is_default=True, updated_at=now)
        )
        return cls.format_response(await cls._get(db, remote_id))

    @classmethod
    @transactional_database_operation("увеличение счетчика использования пульта")
    async def increment_usage(cls, db: AsyncSession, remote_id: str) -> Optional[dict]:
        """Add one to ``usage_count`` of an active remote and stamp ``last_used``."""
        remotes = cls.table
        now = utc_now()
        result = await db.execute(
            update(remotes)
            .where(remotes.c.id == remote_id, remotes.c.is_active.is_(True))
            .values(usage_count=remotes.c.usage_count + 1, last_used=now, updated_at=now)
        )
        if result.rowcount == 0:
            return None
        usage_count = await cls._scalar(db, select(remotes.c.usage_count).where(remotes.c.id == remote_id))
        return {"id": remote_id, "usage_count": usage_count}

    @classmethod
    @transactional_database_operation("дублирование пульта")
    async def duplicate(
        cls, db: AsyncSession, remote_id: str, new_data: Optional[Dict[str, Any]] = None
    ) -> dict:
        """
        Copy a remote as a non-default remote with zero usage.

        ``new_data`` overrides copied values, e.g. another ``device_id``.

        Raises:
            ValueError: If the remote does not exist
        """
        original = await cls._get(db, remote_id)
        if original is None:
            raise ValueError("Пульт для дублирования не найден")

        new_data = new_data or {}
        copy = {key: value for key, value in original.items() if key not in ("id", "created_at", "updated_at")}
        copy.update(
            name=f"{original['name']}{COPY_SUFFIX}",
            is_default=False,
            usage_count=0,
            last_used=None,
        )
        copy.update(new_data)
        return await cls._create(db, copy)

    @classmethod
    @critical_database_operation("получение статистики использования пультов")
    async def get_usage_stats(cls, db: AsyncSession, device_id: Optional[str] = None) -> Dict[str, Any]:
        """Counts and usage figures of active remotes, optionally for one device."""
        remotes = cls.table
        conditions = [remotes.c.is_active.is_(True)]
        if device_id:
            conditions.append(remotes.c.device_id == device_id)
        row = (
            await db.execute(
                select(
                    func.count().label("total_remotes"),
                    func.count(case((remotes.c.is_default.is_(True), 1))).label("default_remotes"),
                    func.avg(remotes.c.usage_count).label("avg_usage"),
                    func.max(remotes.c.usage_count).label("max_usage"),
                    func.count(case((remotes.c.last_used > cls.cutoff(days=30), 1))).label("recently_used"),
                ).where(and_(*conditions))
            )
        ).mappings().one()
        return {
            "total_remotes": int(row["total_remotes"] or 0),
            "default_remotes": int(row["default_remotes"] or 0),
            "avg_usage": float(row["avg_usage"] or 0),
            "max_usage": int(row["max_usage"] or 0),
            "recently_used": int(row["recently_used"] or 0),
        }

    @classmethod
    @critical_database_operation("поиск пультов")
    async def search(
        cls,
        db: AsyncSession,
        term: Optional[str] = None,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[dict]:
        """
        Case-insensitive search over name, manufacturer and model.

        Filters: device_id, layout, manufacturer, limit.
        """
        remotes = cls.table
        filters = filters or {}
        stmt = (
            select(remotes, devices.c.name.label("device_name"))
            .select_from(remotes.outerjoin(devices, remotes.c.device_id == devices.c.id))
            .where(remotes.c.is_active.is_(True))
        )
        if term:
            pattern = f"%{term}%"
            stmt = stmt.where(
                or_(
                    remotes.c.name.ilike(pattern),
                    remotes.c.manufacturer.ilike(pattern),
                    remotes.c.model.ilike(pattern),
                )
            )
        for key in ("device_id", "layout", "manufacturer"):
            if filters.get(key):
                stmt = stmt.where(remotes.c[key] == filters[key])

        stmt = stmt.order_by(remotes.c.usage_count.desc(), remotes.c.name)
        if filters.get("limit"):
            stmt = stmt.limit(filters["limit"])
        return cls.format_response(await cls._fetch_all(db, stmt))
