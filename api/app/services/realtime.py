"""Realtime change broadcasting for per-user topics.

Invariants:
- A subscription is an owned resource: whoever subscribes must ``close()`` it.
- At most one live subscription exists per subscriber key; subscribing again
  with the same key closes the previous one.
- Publishing never raises into the caller; delivery is best effort and clients
  refetch as a fallback.
"""

from __future__ import annotations

import abc
import asyncio
import contextlib
import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from redis import asyncio as aioredis

from app.core.config import settings
from app.services.task_queue import task_queue

logger = logging.getLogger("app.services.realtime")

CHANNEL_PREFIX = "realtime:"
SUBSCRIPTION_QUEUE_SIZE = 256


@dataclass(slots=True)
class ChangeEvent:
    """Row-level change pushed to subscribers."""
    topic: str
    event_type: str
    table: str
    record: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        return cls(**json.loads(raw))

    def to_sse(self) -> str:
        """Format the event as a Server-Sent Events message."""
        data = json.dumps(
            {"table": self.table, "record": self.record, "timestamp": self.timestamp}, default=str
        )
        return f"id: {self.id}\nevent: {self.event_type}\ndata: {data}\n\n"


class Subscription(abc.ABC):
    """Scoped handle on a topic; release it with ``close()``."""

    def __init__(self, broker: "RealtimeBroker", topic: str, key: str | None) -> None:
        self.topic = topic
        self.key = key
        self._broker = broker
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abc.abstractmethod
    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        """Wait for the next event; None on timeout or once closed."""

    async def _release(self) -> None:
        return None

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._release()
        self._broker._forget(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ChangeEvent]:
        while not self._closed:
            event = await self.get(timeout=1.0)
            if event is not None:
                yield event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class MemorySubscription(Subscription):
    """In-process subscription fed directly by ``publish``."""

    def __init__(self, broker: "RealtimeBroker", topic: str, key: str | None) -> None:
        super().__init__(broker, topic, key)
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=SUBSCRIPTION_QUEUE_SIZE)

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        if self._closed:
            return None
        try:
            if timeout is None:
                return await self.queue.get()
            return await asyncio.wait_for(self.queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def offer(self, event: ChangeEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Realtime queue full for %s; dropping event %s", self.topic, event.id)


class RedisSubscription(Subscription):
    """Subscription backed by Redis pub/sub so worker-published events arrive."""

    def __init__(self, broker: "RealtimeBroker", topic: str, key: str | None) -> None:
        super().__init__(broker, topic, key)
        self._client = aioredis.from_url(settings.redis_url)
        self._pubsub = self._client.pubsub()

    async def start(self) -> None:
        await self._pubsub.subscribe(CHANNEL_PREFIX + self.topic)

    async def get(self, timeout: float | None = None) -> ChangeEvent | None:
        if self._closed:
            return None
        message = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout or 1.0)
        if not message or message.get("type") != "message":
            return None
        try:
            return ChangeEvent.from_json(message["data"])
        except (TypeError, ValueError) as exc:
            logger.warning("Dropping malformed realtime payload on %s: %s", self.topic, exc)
            return None

    async def _release(self) -> None:
        try:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        finally:
            await self._client.aclose()


class RealtimeBroker:
    """Fan out change events to topic subscribers, via Redis when available."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, set[Subscription]] = {}
        self._keyed: dict[str, Subscription] = {}

    @property
    def uses_redis(self) -> bool:
        return task_queue.enabled and task_queue.connection is not None

    async def subscribe(self, topic: str, *, key: str | None = None) -> Subscription:
        """Open a subscription, replacing any live one registered under ``key``."""
        if key is not None:
            previous = self._keyed.get(key)
            if previous is not None and not previous.closed:
                logger.info("Replacing realtime subscription %s on %s", key, previous.topic)
                await previous.close()
        if self.uses_redis:
            subscription: Subscription = RedisSubscription(self, topic, key)
            await subscription.start()
        else:
            subscription = MemorySubscription(self, topic, key)
        self._subscriptions.setdefault(topic, set()).add(subscription)
        if key is not None:
            self._keyed[key] = subscription
        return subscription

    @contextlib.asynccontextmanager
    async def listen(self, topic: str, *, key: str | None = None) -> AsyncIterator[Subscription]:
        """Subscribe for the duration of a block and always release."""
        subscription = await self.subscribe(topic, key=key)
        try:
            yield subscription
        finally:
            await subscription.close()

    def _forget(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions.get(subscription.topic)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.topic, None)
        if subscription.key is not None and self._keyed.get(subscription.key) is subscription:
            self._keyed.pop(subscription.key, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))

    async def publish(
        self, topic: str, event_type: str, record: dict[str, Any], *, table: str = "notifications"
    ) -> ChangeEvent:
        """Broadcast a change; failures are logged, never raised."""
        event = ChangeEvent(topic=topic, event_type=event_type, table=table, record=record)
        if self.uses_redis:
            try:
                await asyncio.to_thread(task_queue.connection.publish, CHANNEL_PREFIX + topic, event.to_json())
            except Exception as exc:  # pragma: no cover - network/redis specific
                logger.warning("Realtime publish to Redis failed for %s: %s", topic, exc)
            return event
        for subscription in list(self._subscriptions.get(topic, ())):
            if isinstance(subscription, MemorySubscription):
                subscription.offer(event)
        return event


realtime_broker = RealtimeBroker()
