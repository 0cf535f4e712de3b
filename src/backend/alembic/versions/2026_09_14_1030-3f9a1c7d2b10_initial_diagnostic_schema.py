"""initial_diagnostic_schema

Revision ID: 3f9a1c7d2b10
Revises:
Create Date: 2026-09-14 10:30:00.000000+00:00

Creates the diagnostic content and session tables. tv_interface_marks gets
only its baseline columns here; the optional columns arrive in
8c4e2a6f1d35_extend_tv_interface_marks.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "3f9a1c7d2b10"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    ]


def _is_active():
    return sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true"))


def upgrade() -> None:
    """Create diagnostic tables"""
    op.create_table(
        "devices",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("brand", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("model", sa.String(length=255), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("logo_url", sa.String(length=500), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=False, server_default="from-blue-500 to-blue-600"),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _is_active(),
        *_timestamps(),
    )
    op.create_index("ix_devices_active_order", "devices", ["is_active", "order_index"])

    op.create_table(
        "problems",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=20), nullable=False, server_default="other"),
        sa.Column("icon", sa.String(length=100), nullable=False, server_default="HelpCircle"),
        sa.Column("color", sa.String(length=100), nullable=False, server_default="from-blue-500 to-blue-600"),
        sa.Column("tags", JSON_TYPE, nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("estimated_time", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("difficulty", sa.String(length=20), nullable=False, server_default="beginner"),
        sa.Column("success_rate", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_problems_device_status", "problems", ["device_id", "status"])
    op.create_index("ix_problems_category", "problems", ["category"])

    op.create_table(
        "remotes",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("manufacturer", sa.String(length=255), nullable=False),
        sa.Column("model", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("layout", sa.String(length=20), nullable=False, server_default="standard"),
        sa.Column("color_scheme", sa.String(length=50), nullable=False, server_default="dark"),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("image_data", sa.Text(), nullable=True),
        sa.Column("svg_data", sa.Text(), nullable=True),
        sa.Column("dimensions", JSON_TYPE, nullable=True),
        sa.Column("buttons", JSON_TYPE, nullable=True),
        sa.Column("zones", JSON_TYPE, nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_used", sa.DateTime(), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _is_active(),
        *_timestamps(),
    )
    op.create_index("ix_remotes_device_default", "remotes", ["device_id", "is_default"])

    op.create_table(
        "tv_interfaces",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="home"),
        sa.Column("screenshot_url", sa.String(length=500), nullable=True),
        sa.Column("screenshot_data", sa.Text(), nullable=True),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_tv_interfaces_device_active", "tv_interfaces", ["device_id", "is_active"])

    op.create_table(
        "diagnostic_steps",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("problem_id", sa.String(length=64), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=True),
        sa.Column("step_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("instruction", sa.Text(), nullable=True),
        sa.Column("estimated_time", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("highlight_remote_button", sa.String(length=100), nullable=True),
        sa.Column("highlight_tv_area", sa.String(length=100), nullable=True),
        sa.Column("tv_interface_id", sa.String(length=64), nullable=True),
        sa.Column("remote_id", sa.String(length=64), nullable=True),
        sa.Column("action_type", sa.String(length=50), nullable=True),
        sa.Column("button_position", JSON_TYPE, nullable=True),
        sa.Column("tv_area_position", JSON_TYPE, nullable=True),
        sa.Column("tv_area_rect", JSON_TYPE, nullable=True),
        sa.Column("hint", sa.Text(), nullable=True),
        sa.Column("warning_text", sa.Text(), nullable=True),
        sa.Column("success_text", sa.Text(), nullable=True),
        sa.Column("media", JSON_TYPE, nullable=True),
        sa.Column("next_step_conditions", JSON_TYPE, nullable=True),
        sa.Column("validation_rules", JSON_TYPE, nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["problem_id"], ["problems.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tv_interface_id"], ["tv_interfaces.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["remote_id"], ["remotes.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_diagnostic_steps_problem_number", "diagnostic_steps", ["problem_id", "step_number"])

    op.create_table(
        "diagnostic_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("device_id", sa.String(length=64), nullable=True),
        sa.Column("problem_id", sa.String(length=64), nullable=True),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("session_id", sa.String(length=255), nullable=True),
        sa.Column("start_time", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("end_time", sa.DateTime(), nullable=True),
        sa.Column("total_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_steps", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("error_steps", JSON_TYPE, nullable=True),
        sa.Column("feedback", JSON_TYPE, nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["device_id"], ["devices.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["problem_id"], ["problems.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_diagnostic_sessions_problem_end", "diagnostic_sessions", ["problem_id", "end_time"])
    op.create_index("ix_diagnostic_sessions_device_end", "diagnostic_sessions", ["device_id", "end_time"])

    op.create_table(
        "session_steps",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column("step_id", sa.String(length=64), nullable=False),
        sa.Column("step_number", sa.Integer(), nullable=True),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("result", sa.String(length=20), nullable=False, server_default="success"),
        sa.Column("time_spent", sa.Integer(), nullable=True),
        sa.Column("user_input", JSON_TYPE, nullable=True),
        sa.Column("errors", JSON_TYPE, nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        _is_active(),
        *_timestamps(),
        sa.ForeignKeyConstraint(["session_id"], ["diagnostic_sessions.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_session_steps_session_step", "session_steps", ["session_id", "step_id"])

    op.create_table(
        "tv_interface_marks",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("tv_interface_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("position", JSON_TYPE, nullable=True),
        sa.Column("color", sa.String(length=50), nullable=True, server_default="#3b82f6"),
        *_timestamps(),
        sa.ForeignKeyConstraint(["tv_interface_id"], ["tv_interfaces.id"], ondelete="CASCADE"),
    )


def downgrade() -> None:
    """Drop diagnostic tables"""
    op.drop_table("tv_interface_marks")
    op.drop_index("ix_session_steps_session_step", table_name="session_steps")
    op.drop_table("session_steps")
    op.drop_index("ix_diagnostic_sessions_device_end", table_name="diagnostic_sessions")
    op.drop_index("ix_diagnostic_sessions_problem_end", table_name="diagnostic_sessions")
    op.drop_table("diagnostic_sessions")
    op.drop_index("ix_diagnostic_steps_problem_number", table_name="diagnostic_steps")
    op.drop_table("diagnostic_steps")
    op.drop_index("ix_tv_interfaces_device_active", table_name="tv_interfaces")
    op.drop_table("tv_interfaces")
    op.drop_index("ix_remotes_device_default", table_name="remotes")
    op.drop_table("remotes")
    op.drop_index("ix_problems_category", table_name="problems")
    op.drop_index("ix_problems_device_status", table_name="problems")
    op.drop_table("problems")
    op.drop_index("ix_devices_active_order", table_name="devices")
    op.drop_table("devices")
