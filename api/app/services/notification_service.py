"""In-app notification storage and realtime fanout.

Invariants:
- Users only ever read or mark their own notifications.
- Marking as read is idempotent; already-read rows are left untouched.
- Realtime events are published after the commit that produced them.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.models.notification import DEFAULT_CATEGORIES, Notification, NotificationPreference
from app.models.user import User
from app.schema.notification import NotificationCreate, NotificationPreferencesUpdate, NotificationRead
from app.services.realtime import realtime_broker
from app.utils.datetime import utcnow

logger = logging.getLogger("app.services.notifications")

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


def topic_for(user_id: uuid.UUID | str) -> str:
    return f"notifications:{user_id}"


def _record(notification: Notification) -> dict[str, Any]:
    return NotificationRead.model_validate(notification).model_dump(mode="json")


async def list_notifications(
    session: AsyncSession,
    *,
    user: User,
    type: str | None = None,
    unread: bool = False,
    limit: int = DEFAULT_LIST_LIMIT,
) -> list[Notification]:
    """Return the user's notifications, newest first."""
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    stmt = (
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    if type:
        stmt = stmt.where(Notification.type == type)
    if unread:
        stmt = stmt.where(Notification.read_at.is_(None))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def unread_count(session: AsyncSession, *, user: User) -> int:
    result = await session.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user.id,
            Notification.read_at.is_(None),
        )
    )
    return int(result.scalar_one())


async def create_notification(
    session: AsyncSession, payload: NotificationCreate, *, commit: bool = True
) -> Notification:
    """Insert a notification and publish it on the recipient's topic.

    With ``commit=False`` the caller owns the transaction and must call
    ``publish_insert`` once it has committed.
    """
    notification = Notification(
        user_id=payload.user_id,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        payload=payload.payload,
        action_url=payload.action_url,
        priority=payload.priority,
    )
    session.add(notification)
    if not commit:
        await session.flush()
        return notification
    await session.commit()
    await session.refresh(notification)
    await publish_insert(notification)
    return notification


async def publish_insert(notification: Notification) -> None:
    await realtime_broker.publish(topic_for(notification.user_id), "INSERT", _record(notification))


async def mark_read(session: AsyncSession, *, user: User, notification_id: uuid.UUID) -> Notification:
    """Mark one notification as read; a no-op when it already is."""
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.user_id != user.id:
        raise NotFoundError("Notification not found")
    if notification.read_at is not None:
        return notification
    notification.is_read = True
    notification.read_at = utcnow()
    await session.commit()
    await session.refresh(notification)
    await realtime_broker.publish(topic_for(user.id), "UPDATE", _record(notification))
    return notification


async def mark_all_read(session: AsyncSession, *, user: User) -> int:
    """Mark every unread notification for the user as read and return the count."""
    now = utcnow()
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read_at.is_(None))
        .values(is_read=True, read_at=now)
    )
    await session.commit()
    updated = result.rowcount or 0
    if updated:
        await realtime_broker.publish(
            topic_for(user.id), "UPDATE", {"user_id": str(user.id), "read_at": now.isoformat(), "updated": updated}
        )
    logger.info("Marked %d notifications read for %s", updated, user.id)
    return updated


def _default_preferences(user_id: uuid.UUID) -> NotificationPreference:
    return NotificationPreference(
        user_id=user_id,
        email_opt_in=True,
        push_opt_in=True,
        categories=dict(DEFAULT_CATEGORIES),
        system=True,
        orders=True,
        marketing=False,
    )


async def get_preferences(session: AsyncSession, *, user: User) -> NotificationPreference:
    """Return the user's saved preferences, or unsaved defaults."""
    preferences = await session.get(NotificationPreference, user.id)
    return preferences or _default_preferences(user.id)


async def upsert_preferences(
    session: AsyncSession, *, user: User, payload: NotificationPreferencesUpdate
) -> NotificationPreference:
    """Apply the supplied fields, creating the row on first save."""
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    preferences = await session.get(NotificationPreference, user.id)
    if preferences is None:
        preferences = _default_preferences(user.id)
        session.add(preferences)
    categories = changes.pop("categories", None)
    if categories:
        preferences.categories = {**DEFAULT_CATEGORIES, **(preferences.categories or {}), **categories}
    for field, value in changes.items():
        setattr(preferences, field, value)
    await session.commit()
    await session.refresh(preferences)
    logger.info("Saved notification preferences for %s", user.id)
    return preferences
