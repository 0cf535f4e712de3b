"""
TV interface mark repositories.

Marks are positioned annotations over a TV interface screenshot, optionally
tied to a diagnostic step.

``TVInterfaceMarkRepository`` works on the full table. The simplified variant
serves deployments where the extended marks migration has not run: only the
baseline columns are guaranteed, so statements are built on the columns the
schema capabilities report and step related queries degrade to empty results.
"""
import logging
from typing import Any, ClassVar, Dict, List, Optional, Sequence

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.decorators import (
    critical_database_operation,
    database_transaction,
    safe_database_query,
    transactional_database_operation,
)
from core.ids import IdGenerator
from core.json_fields import decode_fields, decode_input
from core.schema_capabilities import SchemaCapabilities, schema_capabilities
from db.enums import MarkAnimation, MarkPriority, MarkShape, MarkType, enum_values
from db.models import DiagnosticStep, TVInterface, TVInterfaceMark, utc_now
from repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)

tv_interfaces = TVInterface.__table__
steps = DiagnosticStep.__table__

DEFAULT_COLOR = "#3b82f6"
DEFAULT_SIZE = {"width": 20, "height": 20}

ENUM_FIELDS = {
    "mark_type": MarkType,
    "shape": MarkShape,
    "animation": MarkAnimation,
    "priority": MarkPriority,
}

EDITABLE_FIELDS = (
    "step_id",
    "name",
    "description",
    "mark_type",
    "shape",
    "position",
    "size",
    "coordinates",
    "color",
    "background_color",
    "border_color",
    "border_width",
    "opacity",
    "is_clickable",
    "is_highlightable",
    "click_action",
    "hover_action",
    "action_value",
    "action_description",
    "expected_result",
    "hint_text",
    "tooltip_text",
    "warning_text",
    "animation",
    "animation_duration",
    "animation_delay",
    "display_order",
    "priority",
    "is_active",
    "is_visible",
    "metadata",
    "tags",
)

JSON_INPUT_FIELDS = ("position", "size", "coordinates", "metadata", "tags")


def _or_default(data: Dict[str, Any], key: str, default: Any) -> Any:
    value = data.get(key)
    return default if value is None else value


class TVInterfaceMarkRepository(BaseRepository[TVInterfaceMark]):
    """Repository for marks on TV interfaces with the full column set."""

    model = TVInterfaceMark
    id_generator = IdGenerator(prefix="tim_")
    json_fields = {
        "position": {},
        "size": DEFAULT_SIZE,
        "coordinates": None,
        "metadata": {},
        "tags": [],
    }

    @classmethod
    def normalize_mark_data(cls, mark: Any) -> Optional[dict]:
        """Decode the JSON fields of a mark row, falling back to safe defaults."""
        if mark is None:
            return None
        return decode_fields(mark, cls.json_fields, only_present=True)

    @classmethod
    def to_dict(cls, row: Any) -> Optional[dict]:
        return cls.normalize_mark_data(row)

    @classmethod
    def validate_enums(cls, data: Dict[str, Any]) -> None:
        """
        Raises:
            ValueError: If an enum field holds an unknown value
        """
        for field, enum_cls in ENUM_FIELDS.items():
            value = data.get(field)
            if value is not None and value not in enum_values(enum_cls):
                raise ValueError(
                    f"Недопустимое значение {field}: {value}. Допустимо: {', '.join(enum_values(enum_cls))}"
                )

    @classmethod
    def build_mark_data(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        """Full column values of a new mark with defaults filled in."""
        return {
            "tv_interface_id": data["tv_interface_id"],
            "step_id": data.get("step_id") or None,
            "name": data["name"].strip(),
            "description": (data.get("description") or "").strip(),
            "mark_type": data.get("mark_type") or MarkType.POINT.value,
            "shape": data.get("shape") or MarkShape.CIRCLE.value,
            "position": data["position"],
            "size": data.get("size") or dict(DEFAULT_SIZE),
            "coordinates": data.get("coordinates"),
            "color": data.get("color") or DEFAULT_COLOR,
            "background_color": data.get("background_color"),
            "border_color": data.get("border_color") or DEFAULT_COLOR,
            "border_width": _or_default(data, "border_width", 2),
            "opacity": _or_default(data, "opacity", 0.8),
            "is_clickable": data.get("is_clickable") is not False,
            "is_highlightable": data.get("is_highlightable") is not False,
            "click_action": data.get("click_action"),
            "hover_action": data.get("hover_action"),
            "action_value": data.get("action_value"),
            "action_description": data.get("action_description"),
            "expected_result": data.get("expected_result"),
            "hint_text": data.get("hint_text"),
            "tooltip_text": data.get("tooltip_text"),
            "warning_text": data.get("warning_text"),
            "animation": data.get("animation") or MarkAnimation.NONE.value,
            "animation_duration": _or_default(data, "animation_duration", 1000),
            "animation_delay": _or_default(data, "animation_delay", 0),
            "display_order": _or_default(data, "display_order", 0),
            "priority": data.get("priority") or MarkPriority.NORMAL.value,
            "is_active": data.get("is_active") is not False,
            "is_visible": data.get("is_visible") is not False,
            "metadata": data.get("metadata") or {},
            "tags": data.get("tags") or [],
        }

    # ------------------------------------------------------------------
    # Internal helpers (no commit)
    # ------------------------------------------------------------------

    @classmethod
    def _with_context(cls, marks):
        """Select marks with their TV interface and, when linkable, step."""
        columns = [
            marks,
            tv_interfaces.c.name.label("tv_interface_name"),
            tv_interfaces.c.type.label("tv_interface_type"),
        ]
        joined = marks.outerjoin(tv_interfaces, marks.c.tv_interface_id == tv_interfaces.c.id)
        if "step_id" in marks.c:
            columns += [steps.c.title.label("step_title"), steps.c.step_number.label("step_number")]
            joined = joined.outerjoin(steps, marks.c.step_id == steps.c.id)
        return select(*columns).select_from(joined)

    @classmethod
    def _ordering(cls, marks) -> list:
        if "display_order" in marks.c:
            return [marks.c.display_order.asc(), marks.c.created_at.asc()]
        return [marks.c.created_at.asc()]

    @classmethod
    async def _get(cls, db: AsyncSession, id_value: str) -> Optional[dict]:
        marks = await cls._projection(db)
        return await cls._fetch_one(db, cls._with_context(marks).where(marks.c.id == id_value))

    @classmethod
    async def _ensure_exists(cls, db: AsyncSession, target, id_value: str, message: str) -> None:
        found = await cls._scalar(db, select(target.c.id).where(target.c.id == id_value), default=None)
        if found is None:
            raise ValueError(message)

    @classmethod
    async def _marks_for_step(cls, db: AsyncSession, step_id: str) -> List[dict]:
        marks = await cls._projection(db)
        if "step_id" not in marks.c:
            logger.info(f"{cls.table_name} has no step_id column, no marks for step {step_id}")
            return []
        stmt = cls._with_context(marks).where(marks.c.step_id == step_id)
        if "is_active" in marks.c:
            stmt = stmt.where(marks.c.is_active.is_(True))
        return await cls._fetch_all(db, stmt.order_by(*cls._ordering(marks)))

    @classmethod
    async def _delete_for_step(cls, db: AsyncSession, step_id: str) -> int:
        marks = await cls._projection(db)
        if "step_id" not in marks.c:
            logger.info(f"{cls.table_name} has no step_id column, nothing to delete for step {step_id}")
            return 0
        result = await db.execute(delete(marks).where(marks.c.step_id == step_id))
        return result.rowcount

    @classmethod
    async def _stats(cls, db: AsyncSession) -> Dict[str, int]:
        marks = await cls._projection(db)
        fields = [func.count().label("total")]
        if "is_active" in marks.c:
            fields.append(func.count(case((marks.c.is_active.is_(True), 1))).label("active"))
        if "is_visible" in marks.c:
            fields.append(func.count(case((marks.c.is_visible.is_(True), 1))).label("visible"))
        if "mark_type" in marks.c:
            for label, mark_type in (("points", MarkType.POINT), ("zones", MarkType.ZONE), ("areas", MarkType.AREA)):
                fields.append(func.count(case((marks.c.mark_type == mark_type.value, 1))).label(label))
        fields.append(func.count(func.distinct(marks.c.tv_interface_id)).label("interfaces_with_marks"))
        if "step_id" in marks.c:
            fields.append(func.count(func.distinct(marks.c.step_id)).label("steps_with_marks"))

        row = (await db.execute(select(*fields).select_from(marks))).mappings().one()
        return {key: int(value or 0) for key, value in row.items()}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @classmethod
    @critical_database_operation("получение отметок TV интерфейса")
    async def get_by_tv_interface_id(
        cls,
        db: AsyncSession,
        tv_interface_id: str,
        *,
        is_active: Optional[bool] = None,
        is_visible: Optional[bool] = None,
        mark_type: Optional[str] = None,
        step_id: Optional[str] = None,
    ) -> List[dict]:
        """
        Marks of a TV interface in display order.

        Filters on columns missing from the table are ignored.
        """
        marks = await cls._projection(db)
        stmt = cls._with_context(marks).where(marks.c.tv_interface_id == tv_interface_id)
        optional_filters = {
            "is_active": is_active,
            "is_visible": is_visible,
            "mark_type": mark_type,
            "step_id": step_id,
        }
        for name, value in optional_filters.items():
            if value is not None and name in marks.c:
                stmt = stmt.where(marks.c[name] == value)
        return await cls._fetch_all(db, stmt.order_by(*cls._ordering(marks)))

    @classmethod
    @critical_database_operation("получение отметок шага")
    async def get_by_step_id(cls, db: AsyncSession, step_id: str) -> List[dict]:
        """Active marks linked to a diagnostic step."""
        return await cls._marks_for_step(db, step_id)

    @classmethod
    @critical_database_operation("получение отметки")
    async def get_by_id(cls, db: AsyncSession, mark_id: str) -> Optional[dict]:
        return await cls._get(db, mark_id)

    @classmethod
    @critical_database_operation("получение статистики отметок")
    async def get_stats(cls, db: AsyncSession) -> Dict[str, int]:
        """Mark counters; only columns present in the table are aggregated."""
        return await cls._stats(db)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @classmethod
    @transactional_database_operation("создание отметки")
    async def create(cls, db: AsyncSession, data: Dict[str, Any]) -> dict:
        """
        Create a mark on an existing TV interface.

        Raises:
            ValueError: On a missing interface id, name or position, an unknown
                enum value, or a TV interface or step that does not exist
        """
        data = decode_input(data, JSON_INPUT_FIELDS)
        if not data.get("tv_interface_id"):
            raise ValueError("TV interface ID обязателен")
        if not (data.get("name") or "").strip():
            raise ValueError("Название отметки обязательно")
        if not isinstance(data.get("position"), dict):
            raise ValueError("Позиция отметки обязательна")
        cls.validate_enums(data)

        await cls._ensure_exists(db, tv_interfaces, data["tv_interface_id"], "TV интерфейс не найден")
        if data.get("step_id"):
            await cls._ensure_exists(db, steps, data["step_id"], "Шаг не найден")

        created = await cls._insert(db, cls.build_mark_data(data))
        logger.info(f"Created mark {created['id']} on TV interface {data['tv_interface_id']}")
        return created

    @classmethod
    @transactional_database_operation("обновление отметки")
    async def update(cls, db: AsyncSession, mark_id: str, data: Dict[str, Any]) -> dict:
        """
        Update the editable fields present in ``data``.

        Raises:
            ValueError: If the mark does not exist or an enum value is unknown
        """
        if await cls._get(db, mark_id) is None:
            raise ValueError("Отметка не найдена")

        changes = {
            key: value
            for key, value in decode_input(data, JSON_INPUT_FIELDS).items()
            if key in EDITABLE_FIELDS
        }
        cls.validate_enums(changes)
        if "name" in changes:
            changes["name"] = (changes["name"] or "").strip()
        if "description" in changes:
            changes["description"] = (changes["description"] or "").strip()
        return await cls._update(db, mark_id, changes)

    @classmethod
    @transactional_database_operation("удаление отметок TV интерфейса")
    async def delete_by_tv_interface_id(cls, db: AsyncSession, tv_interface_id: str) -> int:
        marks = await cls._projection(db)
        result = await db.execute(delete(marks).where(marks.c.tv_interface_id == tv_interface_id))
        return result.rowcount

    @classmethod
    @transactional_database_operation("удаление отметок шага")
    async def delete_by_step_id(cls, db: AsyncSession, step_id: str) -> int:
        return await cls._delete_for_step(db, step_id)

    @classmethod
    @transactional_database_operation("изменение порядка отметок")
    async def reorder(cls, db: AsyncSession, tv_interface_id: str, mark_ids: Sequence[str]) -> bool:
        """
        Set ``display_order`` to each mark's 0-based position in ``mark_ids``.

        Without a ``display_order`` column this is a no-op.
        """
        marks = await cls._projection(db)
        if "display_order" not in marks.c:
            logger.info(f"{cls.table_name} has no display_order column, reorder skipped")
            return True

        now = utc_now()
        for index, mark_id in enumerate(mark_ids):
            await db.execute(
                update(marks)
                .where(and_(marks.c.id == mark_id, marks.c.tv_interface_id == tv_interface_id))
                .values(display_order=index, updated_at=now)
            )
        return True


class TVInterfaceMarkSimplifiedRepository(TVInterfaceMarkRepository):
    """
    Marks repository for tables that may lack the optional columns.

    Optional columns (mark_type, shape, size, is_active, is_visible,
    display_order, metadata, tags, step_id) are read and written only when
    the schema capabilities report them. Step lookups return empty results
    instead of raising.
    """

    json_fields = {
        "position": {"x": 0, "y": 0},
        "size": DEFAULT_SIZE,
        "coordinates": None,
        "metadata": {},
        "tags": [],
    }
    capabilities: ClassVar[SchemaCapabilities] = schema_capabilities

    @classmethod
    async def _projection(cls, db: AsyncSession):
        caps = await cls.capabilities.resolve(db, cls.table_name)
        return caps.project(cls.table)

    @classmethod
    @safe_database_query("получение отметок шага", default_return=[])
    async def get_by_step_id(cls, db: AsyncSession, step_id: str) -> List[dict]:
        return await cls._marks_for_step(db, step_id)

    @classmethod
    @safe_database_query("удаление отметок шага", default_return=0)
    @database_transaction("удаление отметок шага")
    async def delete_by_step_id(cls, db: AsyncSession, step_id: str) -> int:
        return await cls._delete_for_step(db, step_id)

    @classmethod
    @safe_database_query(
        "получение статистики отметок",
        default_return={"total": 0, "active": 0, "visible": 0, "interfaces_with_marks": 0},
    )
    async def get_stats(cls, db: AsyncSession) -> Dict[str, int]:
        return await cls._stats(db)
