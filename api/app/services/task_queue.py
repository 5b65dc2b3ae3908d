"""RQ task queue wrapper with inline fallback for local/test runs."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue, Retry
from rq.registry import DeferredJobRegistry, FailedJobRegistry, ScheduledJobRegistry, StartedJobRegistry
from rq.results import Result
from rq.worker import Worker
from rq_scheduler import Scheduler

from app.core.config import settings
from app.core.errors import CommsError, RequestTimeoutError
from app.utils.datetime import utcnow
from app.utils.redaction import redact_secrets

logger = logging.getLogger("app.services.task_queue")

# Executor scans and event scheduling are safe to re-run.
DEFAULT_RETRY = Retry(max=2, interval=[5, 30])


class QueuedJobFailed(CommsError):
    """A queued job ran on the worker but did not succeed."""

    code = "queued_job_failed"
    status_code = 502


class TaskQueue:
    """Dispatches worker jobs to RQ, or runs them inline when Redis is absent."""

    def __init__(self) -> None:
        self.queue_names: list[str] = settings.worker_queue_names or ["default"]
        self._connection: Redis | None = None
        if settings.environment.lower() == "test":
            logger.info("Task queue disabled in test environment")
        else:
            self._connection = self._connect()

    @property
    def enabled(self) -> bool:
        return self._connection is not None

    @property
    def connection(self) -> Redis | None:
        return self._connection

    def _connect(self) -> Redis | None:
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable; automation jobs will run inline: %s", redact_secrets(str(exc)))
            return None
        logger.info("Task queue ready (queues: %s)", ", ".join(self.queue_names))
        return connection

    def queue_for(self, preferred: str) -> str:
        """Return ``preferred`` when the worker listens on it, else the first queue."""
        if preferred in self.queue_names:
            return preferred
        return self.queue_names[0]

    def _queue(self, queue_name: str | None) -> Queue:
        if self._connection is None:
            raise RuntimeError("Queue connection not initialized")
        return Queue(queue_name or self.queue_names[0], connection=self._connection)

    async def enqueue_or_run(
        self,
        func: Callable[..., Any],
        *,
        fallback: Callable[[], Any] | None = None,
        queue_name: str | None = None,
        timeout_seconds: int = 60,
        retry: Retry | None = DEFAULT_RETRY,
        description: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """Run ``func`` on the worker and wait for its result.

        Without a queue connection, or when Redis fails while enqueuing,
        ``fallback`` (or ``func(**kwargs)``) runs inline in this process.
        Worker-side timeouts and failures are raised, never retried inline.
        """
        if self._connection is None:
            return await self._run_inline(func, fallback, kwargs)
        label = description or func.__name__
        try:
            return await asyncio.to_thread(self._enqueue_and_wait, func, queue_name, timeout_seconds, retry, label, kwargs)
        except RedisError as exc:
            logger.warning("Queue dispatch for %s failed; running inline: %s", label, redact_secrets(str(exc)))
            return await self._run_inline(func, fallback, kwargs)

    @staticmethod
    async def _run_inline(func: Callable[..., Any], fallback: Callable[[], Any] | None, kwargs: dict[str, Any]) -> Any:
        result = fallback() if fallback is not None else func(**kwargs)
        if inspect.isawaitable(result):
            return await result
        return result

    def _enqueue_and_wait(
        self,
        func: Callable[..., Any],
        queue_name: str | None,
        timeout_seconds: int,
        retry: Retry | None,
        label: str,
        kwargs: dict[str, Any],
    ) -> Any:
        options: dict[str, Any] = {"kwargs": kwargs, "job_timeout": timeout_seconds, "description": label}
        if retry:
            options["retry"] = retry
        job = self._queue(queue_name).enqueue(func, **options)
        result = job.latest_result(timeout=timeout_seconds)
        if result is None:
            raise RequestTimeoutError(f"{label} did not finish in {timeout_seconds}s")
        if result.type != Result.Type.SUCCESSFUL:
            raise QueuedJobFailed(f"{label} failed on the worker", detail=redact_secrets(result.exc_string or ""))
        return result.return_value

    def snapshot(self) -> dict[str, Any]:
        """Diagnostic view of queues, workers, and the periodic scheduler."""
        redis_url = redact_secrets(settings.redis_url)
        if self._connection is None:
            return {
                "status": "offline",
                "queues": [],
                "workers": [],
                "error": "queue connection not initialized",
                "redis_url": redis_url,
            }

        workers = self._worker_stats()
        scheduler = self._scheduler_stats()
        warnings: list[str] = []
        if not workers:
            warnings.append("no_workers")
        if not scheduler["healthy"]:
            warnings.append("scheduler_unreachable")
        return {
            "status": "degraded" if warnings else "online",
            "queues": [self._queue_stats(name) for name in self.queue_names],
            "workers": workers,
            "redis_url": redis_url,
            "scheduler": scheduler,
            "warnings": warnings,
            "checked_at": utcnow().isoformat(),
        }

    def _queue_stats(self, name: str) -> dict[str, Any]:
        queue = self._queue(name)
        return {
            "name": name,
            "size": queue.count,
            "deferred": len(DeferredJobRegistry(queue=queue)),
            "scheduled": len(ScheduledJobRegistry(queue=queue)),
            "started": len(StartedJobRegistry(queue=queue)),
            "failed": len(FailedJobRegistry(queue=queue)),
        }

    def _worker_stats(self) -> list[dict[str, Any]]:
        try:
            workers = Worker.all(connection=self._connection)
        except RedisError as exc:  # pragma: no cover - network/redis specific
            logger.warning("Unable to list workers: %s", redact_secrets(str(exc)))
            return []
        return [
            {
                "name": worker.name,
                "state": worker.get_state(),
                "queues": worker.queue_names(),
                "current_job_id": worker.get_current_job_id(),
            }
            for worker in workers
        ]

    def _scheduler_stats(self) -> dict[str, Any]:
        try:
            scheduler = Scheduler(connection=self._connection, queue_name=self.queue_names[0])
            job_ids = sorted(job.id for job in scheduler.get_jobs())
        except RedisError:  # pragma: no cover - redis specific
            return {"healthy": False, "scheduled_jobs": None}
        return {"healthy": True, "scheduled_jobs": len(job_ids), "job_ids": job_ids}


task_queue = TaskQueue()
