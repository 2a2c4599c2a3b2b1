"""designs catalog and order design snapshots

Revision ID: 0002_design_snapshots
Revises: 0001_initial
Create Date: 2026-10-20 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0002_design_snapshots"
down_revision = "0001_initial"
branch_labels = None
depends_on = None


def _order_snapshot_columns() -> list[sa.Column]:
    return [
        sa.Column("design_title", sa.String(length=255)),
        sa.Column("design_description", sa.Text()),
        sa.Column("design_image_url", sa.String(length=500)),
        sa.Column("design_video_url", sa.String(length=500)),
        sa.Column("design_type", sa.String(length=16)),
        sa.Column("design_source", sa.String(length=16)),
        sa.Column("design_tags", sa.JSON()),
        sa.Column("design_color", sa.String(length=100)),
        sa.Column("design_author_id", sa.String(length=64)),
        sa.Column("design_author_name", sa.String(length=255)),
    ]


def upgrade() -> None:
    op.create_table(
        "designs",
        sa.Column("design_id", sa.String(length=36), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("image_url", sa.String(length=500), nullable=False),
        sa.Column("video_url", sa.String(length=500)),
        sa.Column("design_type", sa.String(length=16), nullable=False, server_default="basic"),
        sa.Column("source", sa.String(length=16), nullable=False),
        sa.Column("tags", sa.JSON()),
        sa.Column("color", sa.String(length=100)),
        sa.Column("author_id", sa.String(length=64)),
        sa.Column("author_name", sa.String(length=255)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    with op.batch_alter_table("orders") as batch_op:
        for column in _order_snapshot_columns():
            batch_op.add_column(column)


def downgrade() -> None:
    with op.batch_alter_table("orders") as batch_op:
        for column in reversed(_order_snapshot_columns()):
            batch_op.drop_column(column.name)
    op.drop_table("designs")
