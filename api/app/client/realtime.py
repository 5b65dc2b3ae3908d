"""Server-Sent Events subscription with reconnect for the notification stream.

Invariants:
- A ``RealtimeChannel`` owns at most one open stream; ``close()`` releases it.
- Dropped streams reconnect with exponential backoff; a stream that delivered
  frames resets the backoff.
- Terminal errors (auth, not found) stop the channel instead of retrying.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, stop_never, wait_exponential

from app.core.errors import CommsError, error_for_response

logger = logging.getLogger("app.client.realtime")

EventCallback = Callable[["StreamEvent"], Awaitable[None] | None]


class StreamDropped(Exception):
    """The server closed the stream before it delivered anything."""


@dataclass(slots=True)
class StreamEvent:
    event: str
    data: dict[str, Any] = field(default_factory=dict)
    id: str | None = None

    @property
    def record(self) -> dict[str, Any]:
        return self.data.get("record") or {}


def parse_sse_frame(lines: list[str]) -> StreamEvent | None:
    """Build an event from the lines of one SSE frame; comments yield None."""
    event_name = "message"
    event_id: str | None = None
    data_lines: list[str] = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event_name = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            event_id = value
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        data = json.loads(raw)
    except ValueError:
        data = {"raw": raw}
    if not isinstance(data, dict):
        data = {"value": data}
    return StreamEvent(event=event_name, data=data, id=event_id)


def _should_reconnect(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TransportError, StreamDropped)):
        return True
    return isinstance(exc, CommsError) and exc.retryable


def _log_reconnect(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(
        "Realtime stream dropped (%s); reconnect attempt %s in %.1fs",
        exc,
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


class RealtimeChannel:
    """Keep one SSE connection open and hand each event to ``on_event``."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        on_event: EventCallback,
        *,
        path: str = "/notifications/stream",
        params: dict[str, Any] | None = None,
        max_backoff: float = 30.0,
        initial_backoff: float = 0.5,
        max_attempts: int | None = None,
    ) -> None:
        self._http = http
        self._on_event = on_event
        self.path = path
        self.params = params or {}
        self.max_backoff = max_backoff
        self.initial_backoff = initial_backoff
        self.max_attempts = max_attempts
        self.connected = asyncio.Event()
        self.error: BaseException | None = None
        self.connections = 0
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._closed:
            raise RuntimeError("RealtimeChannel is closed")
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"realtime:{self.path}")

    async def close(self) -> None:
        self._closed = True
        self.connected.clear()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def wait(self) -> None:
        """Block until the channel stops on its own (terminal error or attempts exhausted)."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def __aenter__(self) -> "RealtimeChannel":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _run(self) -> None:
        try:
            while not self._closed:
                await self._connect_with_backoff()
        except Exception as exc:  # noqa: BLE001
            self.error = exc
            logger.warning("Realtime channel %s stopped: %s", self.path, exc)
        finally:
            self.connected.clear()

    async def _connect_with_backoff(self) -> None:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts) if self.max_attempts else stop_never,
            wait=wait_exponential(multiplier=self.initial_backoff, max=self.max_backoff),
            retry=retry_if_exception(_should_reconnect),
            before_sleep=_log_reconnect,
            reraise=True,
        ):
            with attempt:
                await self._consume()

    async def _consume(self) -> None:
        frames = 0
        timeout = httpx.Timeout(self._http.timeout.connect, read=None)
        async with self._http.stream("GET", self.path, params=self.params, timeout=timeout) as response:
            if response.status_code >= 400:
                await response.aread()
                try:
                    payload = response.json()
                except ValueError:
                    payload = None
                raise error_for_response(response.status_code, payload)

            self.connections += 1
            self.connected.set()
            buffer: list[str] = []
            async for line in response.aiter_lines():
                if line:
                    buffer.append(line)
                    continue
                frames += 1
                event = parse_sse_frame(buffer)
                buffer = []
                if event is not None:
                    await self._dispatch(event)
        self.connected.clear()
        if frames == 0 and not self._closed:
            raise StreamDropped(f"{self.path} closed without data")

    async def _dispatch(self, event: StreamEvent) -> None:
        try:
            result = self._on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception:  # noqa: BLE001
            logger.exception("Realtime handler failed for %s event", event.event)
