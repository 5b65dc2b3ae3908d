"""Automation rule and job schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.automation import DeliveryChannel, EntityKind, EntityRef, JobStatus, TriggerEvent
from app.schema.base import ORMModel, Timestamped, strip_required


class AutomationRuleCreate(BaseModel):
    """Payload for creating an automation rule."""
    supplier_id: UUID | None = None
    name: str = Field(max_length=200)
    description: str | None = Field(default=None, max_length=500)
    trigger_event: TriggerEvent
    trigger_conditions: dict[str, Any] | None = None
    delay_hours: int = Field(default=0, ge=0)
    channel: DeliveryChannel
    template_id: str | None = None
    message_template: dict[str, Any] | None = None
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def _name_required(cls, value: str) -> str:
        return strip_required(value)


class AutomationRuleUpdate(BaseModel):
    """Payload for updating an automation rule."""
    name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=500)
    trigger_event: TriggerEvent | None = None
    trigger_conditions: dict[str, Any] | None = None
    delay_hours: int | None = Field(default=None, ge=0)
    channel: DeliveryChannel | None = None
    template_id: str | None = None
    message_template: dict[str, Any] | None = None
    is_active: bool | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str | None) -> str | None:
        return None if value is None else strip_required(value)


class AutomationToggle(BaseModel):
    is_active: bool


class AutomationRuleRead(Timestamped):
    """Automation rule representation."""
    supplier_id: UUID | None = None
    name: str
    description: str | None = None
    trigger_event: TriggerEvent
    trigger_conditions: dict[str, Any] | None = None
    delay_hours: int
    channel: DeliveryChannel
    template_id: str | None = None
    message_template: dict[str, Any] | None = None
    is_active: bool
    created_by: UUID | None = None


class EntityRefSchema(BaseModel):
    """Tagged entity reference carried by trigger events."""
    kind: Literal["lead", "quote", "order"]
    id: UUID

    def to_ref(self) -> EntityRef:
        return EntityRef(kind=EntityKind(self.kind), id=self.id)


class TriggerEntity(EntityRefSchema):
    """Entity that fired a business event, with the attributes rules match against."""
    supplier_id: UUID | None = None
    recipient_user_id: UUID | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class TriggerEventPayload(BaseModel):
    trigger_event: TriggerEvent
    entity: TriggerEntity
    include_templates: bool = False


class ManualTriggerPayload(BaseModel):
    entity: TriggerEntity


class AutomationJobRead(ORMModel):
    """Automation job with its rule snapshot."""
    id: UUID
    automation_id: UUID
    entity_type: EntityKind
    entity_id: UUID
    recipient_user_id: UUID | None = None
    supplier_id: UUID | None = None
    automation_name: str
    trigger_event: TriggerEvent
    channel: DeliveryChannel
    scheduled_for: datetime
    executed_at: datetime | None = None
    not_before: datetime | None = None
    status: JobStatus
    delivery_log: dict[str, Any] | None = None
    error_message: str | None = None
    created_at: datetime


class AutomationJobStats(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0


class AutomationAnalytics(BaseModel):
    """Delivery outcome summary over a trailing window."""
    days: int
    total_sent: int
    total_failed: int
    success_rate: float
    by_channel: dict[str, int]
    by_trigger: dict[str, int]


class ExecutorRunSummary(BaseModel):
    scanned: int = 0
    sent: int = 0
    failed: int = 0
    cancelled: int = 0
    deferred: int = 0
    skipped: int = 0
