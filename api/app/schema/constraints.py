"""Quiet hours, rate limit, and opt-out schemas."""

from __future__ import annotations

from datetime import datetime, time
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.automation import DeliveryChannel, TriggerEvent
from app.schema.base import ORMModel, Timestamped


class QuietHoursUpsert(BaseModel):
    """Quiet hours keyed by supplier; a null supplier sets the global default."""
    supplier_id: UUID | None = None
    start_time: time
    end_time: time
    timezone: str = "UTC"
    days_of_week: list[int] = Field(default_factory=lambda: list(range(7)))
    is_active: bool = True

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone {value!r}") from exc
        return value

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

    @model_validator(mode="after")
    def _non_empty_window(self) -> "QuietHoursUpsert":
        if self.start_time == self.end_time:
            raise ValueError("start_time and end_time must differ")
        return self


class QuietHoursRead(Timestamped):
    supplier_id: UUID | None = None
    start_time: time
    end_time: time
    timezone: str
    days_of_week: list[int]
    is_active: bool


class RateLimitUpsert(BaseModel):
    """Per-channel caps keyed by (supplier, channel)."""
    supplier_id: UUID | None = None
    channel: DeliveryChannel
    max_per_hour: int = Field(ge=0)
    max_per_day: int = Field(ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _hour_within_day(self) -> "RateLimitUpsert":
        if self.max_per_hour > self.max_per_day:
            raise ValueError("max_per_hour cannot exceed max_per_day")
        return self


class RateLimitRead(Timestamped):
    supplier_id: UUID | None = None
    channel: DeliveryChannel
    max_per_hour: int
    max_per_day: int
    is_active: bool


class OptOutCreate(BaseModel):
    """Consent withdrawal; ``user_id`` defaults to the caller."""
    user_id: UUID | None = None
    supplier_id: UUID | None = None
    channel: DeliveryChannel
    automation_type: TriggerEvent | None = None
    reason: str | None = Field(default=None, max_length=500)


class OptOutRead(ORMModel):
    id: UUID
    user_id: UUID
    supplier_id: UUID | None = None
    channel: DeliveryChannel
    automation_type: str | None = None
    reason: str | None = None
    opted_out_at: datetime
