"""Notification schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.schema.base import ORMModel, strip_required


class NotificationCreate(BaseModel):
    """Server-side fanout payload for a single user."""
    user_id: UUID
    type: str = Field(max_length=64)
    title: str = Field(max_length=255)
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    action_url: str | None = None
    priority: str = "normal"

    @field_validator("type", "title", "message")
    @classmethod
    def _required_text(cls, value: str) -> str:
        return strip_required(value)


class NotificationRead(ORMModel):
    id: UUID
    user_id: UUID
    type: str
    title: str
    message: str
    payload: dict[str, Any]
    action_url: str | None = None
    priority: str
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class UnreadCount(BaseModel):
    count: int


class MarkAllReadResult(BaseModel):
    updated: int


class NotificationCategories(BaseModel):
    leads: bool = True
    quotes: bool = True
    orders: bool = True
    reviews: bool = True


class NotificationPreferencesRead(ORMModel):
    """Saved preferences, or the defaults when the user never saved any."""
    user_id: UUID
    email_opt_in: bool
    push_opt_in: bool
    categories: NotificationCategories
    system: bool
    orders: bool
    marketing: bool
    updated_at: datetime | None = None


class NotificationPreferencesUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    model_config = {"extra": "forbid"}

    email_opt_in: bool | None = None
    push_opt_in: bool | None = None
    categories: dict[str, bool] | None = None
    system: bool | None = None
    orders: bool | None = None
    marketing: bool | None = None

    @field_validator("categories")
    @classmethod
    def _known_categories(cls, value: dict[str, bool] | None) -> dict[str, bool] | None:
        if value is None:
            return value
        unknown = set(value) - set(NotificationCategories.model_fields)
        if unknown:
            raise ValueError(f"unknown categories: {', '.join(sorted(unknown))}")
        return value
