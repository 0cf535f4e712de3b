"""extend_tv_interface_marks

Revision ID: 8c4e2a6f1d35
Revises: 3f9a1c7d2b10
Create Date: 2026-09-28 14:15:00.000000+00:00

Adds the optional mark columns (type, shape, style, actions, animation,
ordering, visibility, step link) and the area columns of tv_interfaces.
Deployments that have not applied this revision are served by
TVInterfaceMarkSimplifiedRepository.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "8c4e2a6f1d35"
down_revision = "3f9a1c7d2b10"
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

MARK_COLUMNS = [
    sa.Column("step_id", sa.String(length=64), nullable=True),
    sa.Column("mark_type", sa.String(length=20), nullable=True, server_default="point"),
    sa.Column("shape", sa.String(length=20), nullable=True, server_default="circle"),
    sa.Column("size", JSON_TYPE, nullable=True),
    sa.Column("coordinates", JSON_TYPE, nullable=True),
    sa.Column("background_color", sa.String(length=50), nullable=True),
    sa.Column("border_color", sa.String(length=50), nullable=True),
    sa.Column("border_width", sa.Integer(), nullable=True, server_default="2"),
    sa.Column("opacity", sa.Float(), nullable=True, server_default="0.8"),
    sa.Column("is_clickable", sa.Boolean(), nullable=True, server_default=sa.text("true")),
    sa.Column("is_highlightable", sa.Boolean(), nullable=True, server_default=sa.text("true")),
    sa.Column("click_action", sa.String(length=100), nullable=True),
    sa.Column("hover_action", sa.String(length=100), nullable=True),
    sa.Column("action_value", sa.Text(), nullable=True),
    sa.Column("action_description", sa.Text(), nullable=True),
    sa.Column("expected_result", sa.Text(), nullable=True),
    sa.Column("hint_text", sa.Text(), nullable=True),
    sa.Column("tooltip_text", sa.Text(), nullable=True),
    sa.Column("warning_text", sa.Text(), nullable=True),
    sa.Column("animation", sa.String(length=20), nullable=True, server_default="none"),
    sa.Column("animation_duration", sa.Integer(), nullable=True, server_default="1000"),
    sa.Column("animation_delay", sa.Integer(), nullable=True, server_default="0"),
    sa.Column("display_order", sa.Integer(), nullable=True, server_default="0"),
    sa.Column("priority", sa.String(length=20), nullable=True, server_default="normal"),
    sa.Column("is_visible", sa.Boolean(), nullable=True, server_default=sa.text("true")),
    sa.Column("metadata", JSON_TYPE, nullable=True),
    sa.Column("tags", JSON_TYPE, nullable=True),
    sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.text("true")),
]


def upgrade() -> None:
    """Add optional mark columns and TV interface areas"""
    for column in MARK_COLUMNS:
        op.add_column("tv_interface_marks", column)

    op.create_foreign_key(
        "fk_tv_interface_marks_step_id",
        "tv_interface_marks",
        "diagnostic_steps",
        ["step_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index(
        "ix_tv_interface_marks_interface_order",
        "tv_interface_marks",
        ["tv_interface_id", "display_order"],
    )
    op.create_index("ix_tv_interface_marks_step", "tv_interface_marks", ["step_id"])

    op.add_column("tv_interfaces", sa.Column("clickable_areas", JSON_TYPE, nullable=True))
    op.add_column("tv_interfaces", sa.Column("highlight_areas", JSON_TYPE, nullable=True))


def downgrade() -> None:
    """Remove optional mark columns and TV interface areas"""
    op.drop_column("tv_interfaces", "highlight_areas")
    op.drop_column("tv_interfaces", "clickable_areas")

    op.drop_index("ix_tv_interface_marks_step", table_name="tv_interface_marks")
    op.drop_index("ix_tv_interface_marks_interface_order", table_name="tv_interface_marks")
    op.drop_constraint("fk_tv_interface_marks_step_id", "tv_interface_marks", type_="foreignkey")
    for column in reversed(MARK_COLUMNS):
        op.drop_column("tv_interface_marks", column.name)
