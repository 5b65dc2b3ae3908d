"""Cached notification state kept fresh by realtime events and periodic refetch."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Literal

from pydantic import ValidationError as PydanticValidationError

from app.client.api_client import CommsClient
from app.client.realtime import RealtimeChannel, StreamEvent
from app.core.errors import CommsError
from app.schema.notification import NotificationRead

logger = logging.getLogger("app.client.observer")

ObserverState = Literal["loading", "empty", "error", "ready"]
ToastCallback = Callable[[NotificationRead], Awaitable[None] | None]


class NotificationObserver:
    """Track the caller's notifications and unread count.

    ``state`` is ``loading`` until the first fetch finishes, then ``error`` if
    the latest fetch failed, ``empty`` when there is nothing to show, and
    ``ready`` otherwise. Any change event invalidates the cache and triggers a
    refetch; ``INSERT`` events also fire ``on_toast``. Fetch failures are
    logged and recorded on ``error``; they never propagate to the caller.
    """

    def __init__(
        self,
        client: CommsClient,
        *,
        on_toast: ToastCallback | None = None,
        refetch_interval: float | None = None,
        limit: int | None = None,
        stream_params: dict[str, Any] | None = None,
    ) -> None:
        self.client = client
        self.on_toast = on_toast
        self.refetch_interval = (
            refetch_interval if refetch_interval is not None else client.settings.refetch_interval_seconds
        )
        self.limit = limit
        self.notifications: list[NotificationRead] = []
        self.unread_count = 0
        self.error: CommsError | None = None
        self.refreshes = 0
        self._loaded = False
        self._lock = asyncio.Lock()
        self.channel = RealtimeChannel(
            client.http,
            self._handle_event,
            params=stream_params,
            max_backoff=client.settings.reconnect_max_backoff_seconds,
        )
        self._poller: asyncio.Task[None] | None = None

    @property
    def state(self) -> ObserverState:
        if not self._loaded:
            return "loading"
        if self.error is not None:
            return "error"
        if not self.notifications:
            return "empty"
        return "ready"

    async def start(self) -> None:
        await self.refresh()
        self.channel.start()
        if self.refetch_interval and self._poller is None:
            self._poller = asyncio.create_task(self._poll(), name="notifications:refetch")

    async def refresh(self) -> None:
        async with self._lock:
            try:
                notifications = await self.client.list_notifications(limit=self.limit)
                unread = await self.client.unread_count()
            except CommsError as exc:
                logger.warning("Notification refetch failed (%s): %s", exc.code, exc.message)
                self.error = exc
            else:
                self.notifications = notifications
                self.unread_count = unread
                self.error = None
            finally:
                self._loaded = True
                self.refreshes += 1

    async def close(self) -> None:
        poller, self._poller = self._poller, None
        if poller is not None:
            poller.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await poller
        await self.channel.close()

    async def __aenter__(self) -> "NotificationObserver":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.refetch_interval)
            await self.refresh()

    async def _handle_event(self, event: StreamEvent) -> None:
        if event.event not in {"INSERT", "UPDATE", "DELETE"}:
            return
        if event.event == "INSERT" and self.on_toast is not None:
            await self._toast(event)
        await self.refresh()

    async def _toast(self, event: StreamEvent) -> None:
        try:
            notification = NotificationRead.model_validate(event.record)
        except PydanticValidationError as exc:
            logger.warning("Ignoring malformed notification event %s: %s", event.id, exc)
            return
        result = self.on_toast(notification)
        if inspect.isawaitable(result):
            await result
