"""
Database models for the ANT Support diagnostic CMS.

Tables:
- devices, problems, diagnostic_steps: authored diagnostic content
- diagnostic_sessions, session_steps: end-user diagnostic runs
- remotes, tv_interfaces, tv_interface_marks: remote layouts and annotated screens

Repositories work on ``Model.__table__`` with SQLAlchemy Core, so the column
definitions here (types, python-side defaults) are what every insert sees.
JSON-valued columns are native JSON (JSONB on PostgreSQL).
"""

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel

from db.enums import (
    DeviceStatus,
    MarkAnimation,
    MarkPriority,
    MarkShape,
    MarkType,
    ProblemCategory,
    ProblemStatus,
    RemoteLayout,
    StepResult,
    TVInterfaceType,
)


def utc_now() -> datetime:
    """
    Get current time in UTC (timezone-naive) for database storage.

    All timestamps are stored in UTC without timezone info; conversion to the
    viewer's timezone happens in the presentation layer.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


def json_column(name: Optional[str] = None, default: Any = None) -> Column:
    """Build a nullable JSON column with an optional python-side default factory."""
    args = (name, JSONType) if name else (JSONType,)
    if default is None:
        return Column(*args, nullable=True)
    return Column(*args, nullable=True, default=default)


def _empty_dict() -> dict:
    return {}


def _empty_list() -> list:
    return []


def _default_mark_size() -> dict:
    return {"width": 20, "height": 20}


class TableModel(SQLModel):
    """Base table model with common functionality."""

    pass


class Device(TableModel, table=True):
    """Set-top box model that problems and remotes are authored for."""

    __tablename__ = "devices"
    __table_args__ = (
        Index("ix_devices_active_order", "is_active", "order_index"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    brand: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    model: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    logo_url: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    color: str = Field(
        default="from-blue-500 to-blue-600",
        sa_column=Column(String(100), nullable=False, default="from-blue-500 to-blue-600"),
    )
    order_index: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    status: str = Field(
        default=DeviceStatus.ACTIVE.value,
        sa_column=Column(String(20), nullable=False, default=DeviceStatus.ACTIVE.value),
    )
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class Problem(TableModel, table=True):
    """Support problem with a guided diagnostic flow."""

    __tablename__ = "problems"
    __table_args__ = (
        Index("ix_problems_device_status", "device_id", "status"),
        Index("ix_problems_category", "category"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    device_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("devices.id", ondelete="CASCADE"), nullable=True),
    )
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    category: str = Field(
        default=ProblemCategory.OTHER.value,
        sa_column=Column(String(20), nullable=False, default=ProblemCategory.OTHER.value),
    )
    icon: str = Field(default="HelpCircle", sa_column=Column(String(100), nullable=False, default="HelpCircle"))
    color: str = Field(
        default="from-blue-500 to-blue-600",
        sa_column=Column(String(100), nullable=False, default="from-blue-500 to-blue-600"),
    )
    tags: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    priority: int = Field(default=1, sa_column=Column(Integer, nullable=False, default=1))
    estimated_time: int = Field(default=5, sa_column=Column(Integer, nullable=False, default=5))
    difficulty: str = Field(default="beginner", sa_column=Column(String(20), nullable=False, default="beginner"))
    success_rate: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    completed_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    status: str = Field(
        default=ProblemStatus.DRAFT.value,
        sa_column=Column(String(20), nullable=False, default=ProblemStatus.DRAFT.value),
    )
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class DiagnosticStep(TableModel, table=True):
    """
    One step of a problem's diagnostic flow.

    ``step_number`` is kept dense and 1-based per problem by the step
    repository. No unique constraint is declared because renumbering shifts
    rows one UPDATE at a time.
    """

    __tablename__ = "diagnostic_steps"
    __table_args__ = (
        Index("ix_diagnostic_steps_problem_number", "problem_id", "step_number"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    problem_id: str = Field(
        sa_column=Column(String(64), ForeignKey("problems.id", ondelete="CASCADE"), nullable=False),
    )
    device_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    step_number: int = Field(sa_column=Column(Integer, nullable=False))
    title: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    instruction: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    estimated_time: int = Field(default=30, sa_column=Column(Integer, nullable=False, default=30))
    highlight_remote_button: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    highlight_tv_area: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    tv_interface_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("tv_interfaces.id", ondelete="SET NULL"), nullable=True),
    )
    remote_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("remotes.id", ondelete="SET NULL"), nullable=True),
    )
    action_type: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    button_position: Optional[dict] = Field(default=None, sa_column=json_column())
    tv_area_position: Optional[dict] = Field(default=None, sa_column=json_column())
    tv_area_rect: Optional[dict] = Field(default=None, sa_column=json_column())
    hint: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    warning_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    success_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    media: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    next_step_conditions: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    validation_rules: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class DiagnosticSession(TableModel, table=True):
    """A single end-user run through a problem's steps."""

    __tablename__ = "diagnostic_sessions"
    __table_args__ = (
        Index("ix_diagnostic_sessions_problem_end", "problem_id", "end_time"),
        Index("ix_diagnostic_sessions_device_end", "device_id", "end_time"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    device_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("devices.id", ondelete="SET NULL"), nullable=True),
    )
    problem_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("problems.id", ondelete="SET NULL"), nullable=True),
    )
    user_id: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    session_id: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True))
    start_time: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now),
    )
    end_time: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    total_steps: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    completed_steps: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    success: Optional[bool] = Field(default=None, sa_column=Column(Boolean, nullable=True))
    duration: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    error_steps: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    feedback: Optional[dict] = Field(default=None, sa_column=json_column())
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class SessionStep(TableModel, table=True):
    """Progress of one diagnostic step inside a session."""

    __tablename__ = "session_steps"
    __table_args__ = (
        Index("ix_session_steps_session_step", "session_id", "step_id"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    session_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("diagnostic_sessions.id", ondelete="CASCADE"), nullable=False
        ),
    )
    step_id: str = Field(sa_column=Column(String(64), nullable=False))
    step_number: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    completed: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    result: str = Field(
        default=StepResult.SUCCESS.value,
        sa_column=Column(String(20), nullable=False, default=StepResult.SUCCESS.value),
    )
    time_spent: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    user_input: Optional[dict] = Field(default=None, sa_column=json_column())
    errors: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    started_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class Remote(TableModel, table=True):
    """
    Remote-control layout.

    ``device_id`` is either a device id or the literal ``"universal"``, so it
    carries no foreign key.
    """

    __tablename__ = "remotes"
    __table_args__ = (
        Index("ix_remotes_device_default", "device_id", "is_default"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    device_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    manufacturer: str = Field(sa_column=Column(String(255), nullable=False))
    model: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    layout: str = Field(
        default=RemoteLayout.STANDARD.value,
        sa_column=Column(String(20), nullable=False, default=RemoteLayout.STANDARD.value),
    )
    color_scheme: str = Field(default="dark", sa_column=Column(String(50), nullable=False, default="dark"))
    image_url: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    image_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    svg_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    dimensions: Optional[dict] = Field(default=None, sa_column=json_column())
    buttons: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    zones: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    is_default: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    usage_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_used: Optional[datetime] = Field(default=None, sa_column=Column(DateTime, nullable=True))
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class TVInterface(TableModel, table=True):
    """
    Screenshot of a TV screen for a device.

    ``clickable_areas`` and ``highlight_areas`` were added by a later migration
    and may be missing in older deployments.
    """

    __tablename__ = "tv_interfaces"
    __table_args__ = (
        Index("ix_tv_interfaces_device_active", "device_id", "is_active"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    device_id: str = Field(
        sa_column=Column(String(64), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False),
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    type: str = Field(
        default=TVInterfaceType.HOME.value,
        sa_column=Column(String(20), nullable=False, default=TVInterfaceType.HOME.value),
    )
    screenshot_url: Optional[str] = Field(default=None, sa_column=Column(String(500), nullable=True))
    screenshot_data: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    clickable_areas: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    highlight_areas: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


class TVInterfaceMark(TableModel, table=True):
    """
    Positioned annotation over a TV interface screenshot.

    Only the baseline columns (id, tv_interface_id, name, description,
    position, color, created_at, updated_at) are guaranteed to exist in every
    deployment; the rest arrived with the extended marks migration.
    """

    __tablename__ = "tv_interface_marks"
    __table_args__ = (
        Index("ix_tv_interface_marks_interface_order", "tv_interface_id", "display_order"),
        Index("ix_tv_interface_marks_step", "step_id"),
    )

    id: str = Field(sa_column=Column(String(64), primary_key=True))
    tv_interface_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("tv_interfaces.id", ondelete="CASCADE"), nullable=False
        ),
    )
    step_id: Optional[str] = Field(
        default=None,
        sa_column=Column(String(64), ForeignKey("diagnostic_steps.id", ondelete="SET NULL"), nullable=True),
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    mark_type: str = Field(
        default=MarkType.POINT.value,
        sa_column=Column(String(20), nullable=True, default=MarkType.POINT.value),
    )
    shape: str = Field(
        default=MarkShape.CIRCLE.value,
        sa_column=Column(String(20), nullable=True, default=MarkShape.CIRCLE.value),
    )
    position: Optional[dict] = Field(default=None, sa_column=json_column(default=_empty_dict))
    size: Optional[dict] = Field(default=None, sa_column=json_column(default=_default_mark_size))
    coordinates: Optional[dict] = Field(default=None, sa_column=json_column())
    color: str = Field(default="#3b82f6", sa_column=Column(String(50), nullable=True, default="#3b82f6"))
    background_color: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    border_color: Optional[str] = Field(default=None, sa_column=Column(String(50), nullable=True))
    border_width: int = Field(default=2, sa_column=Column(Integer, nullable=True, default=2))
    opacity: float = Field(default=0.8, sa_column=Column(Float, nullable=True, default=0.8))
    is_clickable: bool = Field(default=True, sa_column=Column(Boolean, nullable=True, default=True))
    is_highlightable: bool = Field(default=True, sa_column=Column(Boolean, nullable=True, default=True))
    click_action: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    hover_action: Optional[str] = Field(default=None, sa_column=Column(String(100), nullable=True))
    action_value: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    action_description: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    expected_result: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    hint_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    tooltip_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    warning_text: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    animation: str = Field(
        default=MarkAnimation.NONE.value,
        sa_column=Column(String(20), nullable=True, default=MarkAnimation.NONE.value),
    )
    animation_duration: int = Field(default=1000, sa_column=Column(Integer, nullable=True, default=1000))
    animation_delay: int = Field(default=0, sa_column=Column(Integer, nullable=True, default=0))
    display_order: int = Field(default=0, sa_column=Column(Integer, nullable=True, default=0))
    priority: str = Field(
        default=MarkPriority.NORMAL.value,
        sa_column=Column(String(20), nullable=True, default=MarkPriority.NORMAL.value),
    )
    is_visible: bool = Field(default=True, sa_column=Column(Boolean, nullable=True, default=True))
    metadata_: Optional[dict] = Field(default=None, sa_column=json_column("metadata", _empty_dict))
    tags: Optional[list] = Field(default=None, sa_column=json_column(default=_empty_list))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=True, default=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime, nullable=False, default=utc_now, server_default=text("CURRENT_TIMESTAMP")),
    )


MARK_BASELINE_COLUMNS = (
    "id",
    "tv_interface_id",
    "name",
    "description",
    "position",
    "color",
    "created_at",
    "updated_at",
)

MARK_OPTIONAL_COLUMNS = (
    "mark_type",
    "shape",
    "size",
    "is_active",
    "is_visible",
    "display_order",
    "metadata",
    "tags",
    "step_id",
)
