"""In-app notification rows pushed to users in realtime."""

from __future__ import annotations

import typing
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base_class import Base
from app.db.types import JSON_COMPATIBLE, UTCDateTime

if typing.TYPE_CHECKING:  # pragma: no cover
    from app.models.user import User


class Notification(Base):
    """Immediate alert for a user; only the read markers change after insert."""

    __tablename__ = "notifications"
    __table_args__ = (Index("ix_notifications_user_created", "user_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON_COMPATIBLE, default=dict, nullable=False)
    action_url: Mapped[str | None] = mapped_column(String(500))
    priority: Mapped[str] = mapped_column(String(16), default="normal", nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="notifications")


DEFAULT_CATEGORIES: dict[str, bool] = {"leads": True, "quotes": True, "orders": True, "reviews": True}


class NotificationPreference(Base):
    """Per-user delivery opt-ins; one row per user, created on first save."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    email_opt_in: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    push_opt_in: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    categories: Mapped[dict] = mapped_column(
        JSON_COMPATIBLE, default=lambda: dict(DEFAULT_CATEGORIES), nullable=False
    )
    system: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    orders: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    marketing: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
