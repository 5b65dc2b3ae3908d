"""Per-channel delivery metrics and circuit breaking."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, DefaultDict, TypeVar

logger = logging.getLogger("app.services.delivery_monitor")

T = TypeVar("T")


class CircuitOpenError(Exception):
    """Raised when a channel circuit is open and deliveries are paused."""

    def __init__(self, channel: str, remaining: float) -> None:
        super().__init__(f"{channel} circuit open for {remaining:.2f}s")
        self.channel = channel
        self.remaining = remaining


@dataclass
class CircuitBreakerState:
    """Track per-channel failure streaks and cooldown windows."""
    threshold: int = 5
    base_backoff_seconds: float = 30.0
    max_backoff_seconds: float = 600.0
    failure_streak: int = 0
    open_until: float = 0.0
    current_backoff: float = field(init=False)
    opened_count: int = 0

    def __post_init__(self) -> None:
        self.current_backoff = self.base_backoff_seconds

    def can_call(self) -> bool:
        return time.monotonic() >= self.open_until

    def remaining_cooldown(self) -> float:
        if self.can_call():
            return 0.0
        return self.open_until - time.monotonic()

    def record_success(self) -> None:
        self.failure_streak = 0
        self.open_until = 0.0
        self.current_backoff = self.base_backoff_seconds

    def record_failure(self) -> None:
        """Advance the streak and open the circuit once it hits the threshold."""
        self.failure_streak += 1
        if self.failure_streak < self.threshold:
            return
        self.open_until = time.monotonic() + self.current_backoff
        self.failure_streak = 0
        self.opened_count += 1
        self.current_backoff = min(self.current_backoff * 2, self.max_backoff_seconds)

    def snapshot(self) -> dict[str, Any]:
        return {
            "failure_streak": self.failure_streak,
            "remaining_cooldown": round(self.remaining_cooldown(), 2),
            "current_backoff": self.current_backoff,
            "opened_count": self.opened_count,
        }


@dataclass
class ChannelMetrics:
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    paused: int = 0
    last_latency_ms: float | None = None
    last_error: str | None = None


class DeliveryMonitor:
    """Wrap provider calls with metrics and a per-channel circuit breaker."""

    def __init__(self, *, circuit_threshold: int = 5, base_backoff_seconds: float = 30.0) -> None:
        self._metrics: DefaultDict[str, ChannelMetrics] = defaultdict(ChannelMetrics)
        self._circuits: DefaultDict[str, CircuitBreakerState] = defaultdict(
            lambda: CircuitBreakerState(threshold=circuit_threshold, base_backoff_seconds=base_backoff_seconds)
        )
        self._lock = asyncio.Lock()

    def allow_call(self, channel: str) -> bool:
        return self._circuits[channel].can_call()

    async def track(
        self,
        channel: str,
        func: Callable[[], Awaitable[T]],
        *,
        context: dict[str, Any] | None = None,
    ) -> T:
        """Run a delivery, recording latency and failures.

        Raises ``CircuitOpenError`` without calling ``func`` while the channel
        is cooling down.
        """
        context = context or {}
        async with self._lock:
            circuit = self._circuits[channel]
            metrics = self._metrics[channel]
            if not circuit.can_call():
                metrics.paused += 1
                remaining = circuit.remaining_cooldown()
                logger.warning(
                    json.dumps(
                        {
                            "event": "delivery_circuit_open",
                            "channel": channel,
                            "remaining_cooldown": round(remaining, 2),
                            "context": context,
                        }
                    )
                )
                raise CircuitOpenError(channel, remaining)
            metrics.attempted += 1

        start = time.monotonic()
        try:
            result = await func()
        except Exception as exc:  # noqa: BLE001
            latency_ms = (time.monotonic() - start) * 1000
            async with self._lock:
                metrics = self._metrics[channel]
                metrics.failed += 1
                metrics.last_latency_ms = latency_ms
                metrics.last_error = str(exc)[:200]
                self._circuits[channel].record_failure()
                payload = {
                    "event": "delivery_failure",
                    "channel": channel,
                    "error": str(exc)[:200],
                    "latency_ms": round(latency_ms, 2),
                    "context": context,
                    "circuit": self._circuits[channel].snapshot(),
                }
            logger.warning(json.dumps(payload))
            raise

        latency_ms = (time.monotonic() - start) * 1000
        async with self._lock:
            metrics = self._metrics[channel]
            metrics.delivered += 1
            metrics.last_latency_ms = latency_ms
            metrics.last_error = None
            self._circuits[channel].record_success()
        logger.info(
            json.dumps(
                {
                    "event": "delivery_success",
                    "channel": channel,
                    "latency_ms": round(latency_ms, 2),
                    "context": context,
                }
            )
        )
        return result

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            return {
                channel: {
                    "attempted": metrics.attempted,
                    "delivered": metrics.delivered,
                    "failed": metrics.failed,
                    "paused": metrics.paused,
                    "last_latency_ms": metrics.last_latency_ms,
                    "last_error": metrics.last_error,
                    "circuit": self._circuits[channel].snapshot(),
                }
                for channel, metrics in self._metrics.items()
            }

    def reset(self) -> None:
        self._metrics.clear()
        self._circuits.clear()


delivery_monitor = DeliveryMonitor()
