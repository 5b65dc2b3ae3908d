"""Communication automation rules and the jobs they schedule."""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base_class import Base
from app.db.types import JSON_COMPATIBLE, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [e.value for e in enum_cls]


class TriggerEvent(str, enum.Enum):
    """Business events that can fire automation rules."""
    LEAD_NEW = "lead_new"
    QUOTE_SENT_NO_OPEN = "quote_sent_no_open"
    QUOTE_VIEWED_NO_ACCEPT = "quote_viewed_no_accept"
    PAYMENT_DUE = "payment_due"
    ORDER_COMPLETED_REVIEW = "order_completed_review"


class DeliveryChannel(str, enum.Enum):
    EMAIL = "email"
    SMS = "sms"
    NOTIFICATION = "notification"
    WHATSAPP = "whatsapp"


class JobStatus(str, enum.Enum):
    """Lifecycle states for automation jobs."""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EntityKind(str, enum.Enum):
    LEAD = "lead"
    QUOTE = "quote"
    ORDER = "order"


@dataclass(frozen=True, slots=True)
class EntityRef:
    """Tagged reference to the lead, quote, or order a job was created for."""
    kind: EntityKind
    id: uuid.UUID

    def __post_init__(self) -> None:
        if not isinstance(self.kind, EntityKind):
            object.__setattr__(self, "kind", EntityKind(self.kind))
        if not isinstance(self.id, uuid.UUID):
            object.__setattr__(self, "id", uuid.UUID(str(self.id)))


TRIGGER_EVENT_TYPE = Enum(TriggerEvent, name="automation_trigger_event", values_callable=_enum_values)
CHANNEL_TYPE = Enum(DeliveryChannel, name="automation_channel", values_callable=_enum_values)


class CommunicationAutomation(Base):
    """Rule: when an event fires, after a delay, send a message on a channel."""

    __tablename__ = "communication_automations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500))
    trigger_event: Mapped[TriggerEvent] = mapped_column(
        TRIGGER_EVENT_TYPE,
        nullable=False,
        index=True,
    )
    trigger_conditions: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    delay_hours: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    channel: Mapped[DeliveryChannel] = mapped_column(
        CHANNEL_TYPE,
        nullable=False,
    )
    template_id: Mapped[str | None] = mapped_column(String(120))
    message_template: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class AutomationJob(Base):
    """One scheduled firing of a rule for a specific entity.

    Jobs snapshot the rule fields they need at creation and hold the rule id
    without a foreign key, so deleting or editing a rule never changes a job
    that is already in flight.
    """

    __tablename__ = "automation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    automation_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    entity_type: Mapped[EntityKind] = mapped_column(
        Enum(EntityKind, name="automation_entity_kind", values_callable=_enum_values),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    recipient_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)

    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    automation_name: Mapped[str] = mapped_column(String(200), nullable=False)
    trigger_event: Mapped[TriggerEvent] = mapped_column(
        TRIGGER_EVENT_TYPE,
        nullable=False,
    )
    channel: Mapped[DeliveryChannel] = mapped_column(
        CHANNEL_TYPE,
        nullable=False,
    )
    template_id: Mapped[str | None] = mapped_column(String(120))
    message_template: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    context: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)

    scheduled_for: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    executed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    # Mirrors delivery_log["not_before"] so the due scan can filter deferred jobs in SQL.
    not_before: Mapped[datetime | None] = mapped_column(UTCDateTime, index=True)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="automation_job_status", values_callable=_enum_values),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )
    delivery_log: Mapped[dict | None] = mapped_column(JSON_COMPATIBLE)
    error_message: Mapped[str | None] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)

    @validates("scheduled_for")
    def _freeze_scheduled_for(self, key: str, value: datetime) -> datetime:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError("scheduled_for is immutable once set")
        return value

    @property
    def entity(self) -> EntityRef:
        return EntityRef(kind=self.entity_type, id=self.entity_id)
