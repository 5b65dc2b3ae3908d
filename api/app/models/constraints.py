"""Delivery constraint records: quiet hours, rate limits, and opt-outs."""

from __future__ import annotations

import uuid
from datetime import datetime, time, timezone

from sqlalchemy import Boolean, ForeignKey, Integer, String, Time, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base_class import Base
from app.db.types import JSON_COMPATIBLE, UTCDateTime
from app.models.automation import CHANNEL_TYPE, DeliveryChannel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuietHoursConfig(Base):
    """Window during which no deliveries fire; one row per supplier (null = global)."""

    __tablename__ = "quiet_hours_config"
    __table_args__ = (UniqueConstraint("supplier_id", name="uq_quiet_hours_supplier"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"))
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), default="UTC", nullable=False)
    # 0 = Sunday ... 6 = Saturday; the day on which the window starts.
    days_of_week: Mapped[list[int]] = mapped_column(JSON_COMPATIBLE, default=lambda: list(range(7)), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class RateLimitConfig(Base):
    """Per-channel send caps over rolling hour/day windows."""

    __tablename__ = "rate_limits_config"
    __table_args__ = (UniqueConstraint("supplier_id", "channel", name="uq_rate_limits_supplier_channel"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"))
    channel: Mapped[DeliveryChannel] = mapped_column(CHANNEL_TYPE, nullable=False)
    max_per_hour: Mapped[int] = mapped_column(Integer, nullable=False)
    max_per_day: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class CommunicationOptOut(Base):
    """Append-only record of a user withdrawing consent.

    A null ``supplier_id`` covers every supplier and a null ``automation_type``
    covers every trigger event on the channel.
    """

    __tablename__ = "communication_opt_outs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    supplier_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("suppliers.id", ondelete="CASCADE"), index=True
    )
    channel: Mapped[DeliveryChannel] = mapped_column(CHANNEL_TYPE, nullable=False)
    automation_type: Mapped[str | None] = mapped_column(String(64))
    reason: Mapped[str | None] = mapped_column(String(500))
    opted_out_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
