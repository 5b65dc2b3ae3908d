"""In-app notification endpoints and the realtime event stream."""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db, require_admin
from app.core.config import settings
from app.models.user import User
from app.schema.notification import (
    MarkAllReadResult,
    NotificationCreate,
    NotificationPreferencesRead,
    NotificationPreferencesUpdate,
    NotificationRead,
    UnreadCount,
)
from app.services import notification_service
from app.services.realtime import realtime_broker
from app.utils.timeouts import bounded

router = APIRouter()


@router.get("", response_model=list[NotificationRead])
async def list_notifications(
    type: str | None = None,
    unread: bool = False,
    limit: int = Query(default=notification_service.DEFAULT_LIST_LIMIT, ge=1, le=notification_service.MAX_LIST_LIMIT),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[NotificationRead]:
    """List the caller's notifications, newest first."""
    rows = await bounded(
        notification_service.list_notifications(session, user=current_user, type=type, unread=unread, limit=limit),
        operation="list notifications",
    )
    return [NotificationRead.model_validate(row) for row in rows]


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> UnreadCount:
    count = await bounded(notification_service.unread_count(session, user=current_user), operation="unread count")
    return UnreadCount(count=count)


@router.get("/preferences", response_model=NotificationPreferencesRead)
async def get_notification_preferences(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationPreferencesRead:
    preferences = await bounded(
        notification_service.get_preferences(session, user=current_user), operation="load notification preferences"
    )
    return NotificationPreferencesRead.model_validate(preferences)


@router.put("/preferences", response_model=NotificationPreferencesRead)
async def update_notification_preferences(
    payload: NotificationPreferencesUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationPreferencesRead:
    """Save the supplied preference fields; category flags merge into the stored set."""
    preferences = await bounded(
        notification_service.upsert_preferences(session, user=current_user, payload=payload),
        operation="save notification preferences",
    )
    return NotificationPreferencesRead.model_validate(preferences)


@router.post("/read-all", response_model=MarkAllReadResult)
async def mark_all_read(
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> MarkAllReadResult:
    updated = await bounded(notification_service.mark_all_read(session, user=current_user), operation="mark all read")
    return MarkAllReadResult(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> NotificationRead:
    """Mark a notification read; repeating the call is harmless."""
    notification = await bounded(
        notification_service.mark_read(session, user=current_user, notification_id=notification_id),
        operation="mark notification read",
    )
    return NotificationRead.model_validate(notification)


@router.post("", response_model=NotificationRead, status_code=status.HTTP_201_CREATED)
async def create_notification(
    payload: NotificationCreate,
    session: AsyncSession = Depends(get_db),
    _: User = Depends(require_admin),
) -> NotificationRead:
    notification = await bounded(notification_service.create_notification(session, payload), operation="create notification")
    return NotificationRead.model_validate(notification)


async def _event_stream(user: User, *, heartbeat: float, idle_timeout: float) -> AsyncIterator[str]:
    """Yield SSE frames for the user's topic until the stream goes idle.

    The subscription is keyed per user, so reconnecting replaces the stale
    stream instead of stacking a second one.
    """
    topic = notification_service.topic_for(user.id)
    async with realtime_broker.listen(topic, key=f"{user.id}:notifications") as subscription:
        yield f"event: ready\ndata: {json.dumps({'topic': topic})}\n\n"
        last_event = time.monotonic()
        while not subscription.closed:
            remaining = idle_timeout - (time.monotonic() - last_event)
            if remaining <= 0:
                break
            event = await subscription.get(timeout=min(heartbeat, remaining))
            if event is None:
                if not subscription.closed:
                    yield ": keepalive\n\n"
                continue
            last_event = time.monotonic()
            yield event.to_sse()
            await asyncio.sleep(0)


@router.get("/stream")
async def stream_notifications(
    idle_timeout: float | None = Query(default=None, gt=0),
    current_user: User = Depends(get_current_user),
) -> StreamingResponse:
    """Server-Sent Events feed of the caller's notification changes."""
    idle = min(idle_timeout or settings.realtime_idle_timeout_seconds, settings.realtime_idle_timeout_seconds)
    heartbeat = min(settings.realtime_heartbeat_seconds, idle)
    return StreamingResponse(
        _event_stream(current_user, heartbeat=heartbeat, idle_timeout=idle),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
