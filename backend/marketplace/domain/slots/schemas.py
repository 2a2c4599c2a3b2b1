from __future__ import annotations

import datetime as dt
from datetime import date, datetime, time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

CreatableStatus = Literal["available", "blocked"]


class TimeSlotResponse(BaseModel):
    slot_id: str
    provider_id: str
    work_date: date
    start_time: time
    end_time: time
    status: str
    order_id: str | None = None
    notes: str | None = None
    version: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleDayResponse(BaseModel):
    date: dt.date
    slots: list[TimeSlotResponse]

    model_config = ConfigDict(from_attributes=True)


class SlotCreateRequest(BaseModel):
    work_date: date
    start_time: time
    end_time: time
    status: CreatableStatus = "available"
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_window(self) -> "SlotCreateRequest":
        if self.start_time >= self.end_time:
            raise ValueError("end_time must be later than start_time")
        return self


class SlotUpdateRequest(BaseModel):
    start_time: time | None = None
    end_time: time | None = None
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_window(self) -> "SlotUpdateRequest":
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValueError("end_time must be later than start_time")
        return self
