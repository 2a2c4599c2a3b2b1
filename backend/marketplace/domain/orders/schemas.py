from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class OrderCreateRequest(BaseModel):
    provider_id: str = Field(min_length=1, max_length=64)
    service_id: str = Field(min_length=1, max_length=36)
    slot_id: str = Field(min_length=1, max_length=36)
    design_id: str | None = Field(default=None, max_length=36)
    description: str | None = Field(default=None, max_length=2000)
    client_notes: str | None = Field(default=None, max_length=2000)


class ConfirmOrderRequest(BaseModel):
    provider_notes: str | None = Field(default=None, max_length=2000)


class ProposeTimeRequest(BaseModel):
    new_slot_id: str = Field(min_length=1, max_length=36)
    provider_notes: str | None = Field(default=None, max_length=2000)


class DeclineOrderRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class CompleteOrderRequest(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    provider_notes: str | None = Field(default=None, max_length=2000)


class DesignSnapshotResponse(BaseModel):
    design_id: str
    title: str
    description: str | None = None
    image_url: str | None = None
    video_url: str | None = None
    type: str | None = None
    source: str | None = None
    tags: list[str] | None = None
    color: str | None = None
    author_id: str | None = None
    author_name: str | None = None


class OrderResponse(BaseModel):
    order_id: str
    client_id: str
    provider_id: str
    service_id: str
    design_id: str | None = None
    design_snapshot: DesignSnapshotResponse | None = None
    status: str
    slot_id: str | None = None
    requested_date_time: datetime
    proposed_date_time: datetime | None = None
    confirmed_date_time: datetime | None = None
    price_cents: int
    duration_minutes: int
    description: str | None = None
    client_notes: str | None = None
    provider_notes: str | None = None
    decline_reason: str | None = None
    provider_response_at: datetime | None = None
    respond_by_deadline: datetime
    completed_at: datetime | None = None
    completed_by: str | None = None
    rating: int | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class OrderListResponse(BaseModel):
    items: list[OrderResponse]
    pagination: Pagination
