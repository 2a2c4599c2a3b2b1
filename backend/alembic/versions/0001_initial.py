"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "provider_services",
        sa.Column("service_id", sa.String(length=36), primary_key=True),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_provider_services_provider", "provider_services", ["provider_id"])

    op.create_table(
        "service_designs",
        sa.Column("service_design_id", sa.String(length=36), primary_key=True),
        sa.Column(
            "service_id",
            sa.String(length=36),
            sa.ForeignKey("provider_services.service_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("design_id", sa.String(length=36), nullable=False),
        sa.Column("custom_price_cents", sa.Integer()),
        sa.Column("additional_minutes", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("service_id", "design_id", name="uq_service_designs_pair"),
    )

    op.create_table(
        "time_slots",
        sa.Column("slot_id", sa.String(length=36), primary_key=True),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("order_id", sa.String(length=36)),
        sa.Column("notes", sa.String(length=500)),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            # ORM-managed updated_at (no database trigger).
            nullable=False,
        ),
        sa.CheckConstraint("start_time < end_time", name="ck_time_slots_window"),
    )
    op.create_index("ix_time_slots_provider_date", "time_slots", ["provider_id", "work_date", "start_time"])
    op.create_index("ix_time_slots_order_id", "time_slots", ["order_id"])

    op.create_table(
        "orders",
        sa.Column("order_id", sa.String(length=36), primary_key=True),
        sa.Column("client_id", sa.String(length=64), nullable=False),
        sa.Column("provider_id", sa.String(length=64), nullable=False),
        sa.Column("service_id", sa.String(length=36), nullable=False),
        sa.Column("design_id", sa.String(length=36)),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("slot_id", sa.String(length=36)),
        sa.Column("requested_date_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("proposed_date_time", sa.DateTime(timezone=True)),
        sa.Column("confirmed_date_time", sa.DateTime(timezone=True)),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("client_notes", sa.Text()),
        sa.Column("provider_notes", sa.Text()),
        sa.Column("decline_reason", sa.String(length=500)),
        sa.Column("provider_response_at", sa.DateTime(timezone=True)),
        sa.Column("respond_by_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_by", sa.String(length=16)),
        sa.Column("rating", sa.Integer()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            # ORM-managed updated_at (no database trigger).
            nullable=False,
        ),
        sa.CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_orders_rating"),
    )
    op.create_index("ix_orders_status_deadline", "orders", ["status", "respond_by_deadline"])
    op.create_index("ix_orders_client_created", "orders", ["client_id", "created_at"])
    op.create_index("ix_orders_provider_created", "orders", ["provider_id", "created_at"])
    op.create_index("ix_orders_slot_id", "orders", ["slot_id"])

    op.create_table(
        "outbox_events",
        sa.Column("event_id", sa.String(length=36), primary_key=True),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=False),
        sa.Column("dedupe_key", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_outbox_status_next_attempt", "outbox_events", ["status", "next_attempt_at"])
    op.create_index("ix_outbox_dedupe", "outbox_events", ["dedupe_key"], unique=True)

    op.create_table(
        "job_heartbeats",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("runner_id", sa.String(length=128)),
        sa.Column("last_heartbeat", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_success_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.String(length=128)),
        sa.Column("last_error_at", sa.DateTime(timezone=True)),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("job_heartbeats")
    op.drop_index("ix_outbox_dedupe", table_name="outbox_events")
    op.drop_index("ix_outbox_status_next_attempt", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_orders_slot_id", table_name="orders")
    op.drop_index("ix_orders_provider_created", table_name="orders")
    op.drop_index("ix_orders_client_created", table_name="orders")
    op.drop_index("ix_orders_status_deadline", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_time_slots_order_id", table_name="time_slots")
    op.drop_index("ix_time_slots_provider_date", table_name="time_slots")
    op.drop_table("time_slots")
    op.drop_table("service_designs")
    op.drop_index("ix_provider_services_provider", table_name="provider_services")
    op.drop_table("provider_services")
