from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.domain.orders.statuses import OrderStatus
from marketplace.infra.db import Base


class Order(Base):
    __tablename__ = "orders"

    order_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    service_id: Mapped[str] = mapped_column(String(36), nullable=False)
    design_id: Mapped[str | None] = mapped_column(String(36))
    # Copy of the chosen design at booking time; catalog edits never reach it.
    design_title: Mapped[str | None] = mapped_column(String(255))
    design_description: Mapped[str | None] = mapped_column(Text)
    design_image_url: Mapped[str | None] = mapped_column(String(500))
    design_video_url: Mapped[str | None] = mapped_column(String(500))
    design_type: Mapped[str | None] = mapped_column(String(16))
    design_source: Mapped[str | None] = mapped_column(String(16))
    design_tags: Mapped[list | None] = mapped_column(JSON)
    design_color: Mapped[str | None] = mapped_column(String(100))
    design_author_id: Mapped[str | None] = mapped_column(String(64))
    design_author_name: Mapped[str | None] = mapped_column(String(255))
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=OrderStatus.PENDING.value)
    slot_id: Mapped[str | None] = mapped_column(String(36))
    requested_date_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    proposed_date_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_date_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    client_notes: Mapped[str | None] = mapped_column(Text)
    provider_notes: Mapped[str | None] = mapped_column(Text)
    decline_reason: Mapped[str | None] = mapped_column(String(500))
    provider_response_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    respond_by_deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_by: Mapped[str | None] = mapped_column(String(16))
    rating: Mapped[int | None] = mapped_column(Integer)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("rating IS NULL OR (rating >= 1 AND rating <= 5)", name="ck_orders_rating"),
        Index("ix_orders_status_deadline", "status", "respond_by_deadline"),
        Index("ix_orders_client_created", "client_id", "created_at"),
        Index("ix_orders_provider_created", "provider_id", "created_at"),
        Index("ix_orders_slot_id", "slot_id"),
    )

    @property
    def design_snapshot(self) -> dict | None:
        if self.design_id is None or self.design_title is None:
            return None
        return {
            "design_id": self.design_id,
            "title": self.design_title,
            "description": self.design_description,
            "image_url": self.design_image_url,
            "video_url": self.design_video_url,
            "type": self.design_type,
            "source": self.design_source,
            "tags": self.design_tags,
            "color": self.design_color,
            "author_id": self.design_author_id,
            "author_name": self.design_author_name,
        }
