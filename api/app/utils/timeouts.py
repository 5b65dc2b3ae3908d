"""Bounded waits for request-scoped database work."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

from app.core.config import settings
from app.core.errors import RequestTimeoutError

T = TypeVar("T")


async def bounded(awaitable: Awaitable[T], *, operation: str, timeout: float | None = None) -> T:
    """Await ``awaitable`` or raise ``RequestTimeoutError`` after the request timeout."""
    seconds = timeout if timeout is not None else settings.request_timeout_seconds
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise RequestTimeoutError(f"{operation} timed out after {seconds:g}s") from exc
