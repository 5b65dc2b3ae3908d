"""Periodic job registration for rq-scheduler."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from rq_scheduler import Scheduler

from app.core.config import settings
from app.jobs.automations import process_due_automation_jobs_job
from app.jobs.maintenance import fail_stale_processing_jobs_job
from app.services.task_queue import task_queue

logger = logging.getLogger("app.jobs.schedule_registry")


def _schedule_entries() -> list[dict]:
    stale_interval = max(300, settings.automation_processing_timeout_minutes * 60 // 2)
    return [
        {
            "id": "automations:process_due_jobs",
            "func": process_due_automation_jobs_job,
            "interval": max(10, settings.automation_scan_interval_seconds),
            "repeat": None,
            "queue_name": task_queue.queue_for("automations"),
        },
        {
            "id": "maintenance:fail_stale_processing",
            "func": fail_stale_processing_jobs_job,
            "interval": stale_interval,
            "repeat": None,
            "queue_name": task_queue.queue_for("maintenance"),
        },
    ]


def ensure_schedules() -> None:
    """Idempotently register periodic jobs with rq-scheduler."""
    if settings.environment.lower() == "test":
        return
    if not task_queue.connection:
        logger.info("Skipping scheduler bootstrap; queue connection is unavailable")
        return
    scheduler = Scheduler(connection=task_queue.connection, queue_name=task_queue.queue_names[0])
    for entry in _schedule_entries():
        if entry["id"] in scheduler:
            continue
        scheduler.schedule(
            scheduled_time=datetime.utcnow(),
            func=entry["func"],
            interval=entry["interval"],
            repeat=entry["repeat"],
            id=entry["id"],
            queue_name=entry["queue_name"],
            result_ttl=int(timedelta(hours=1).total_seconds()),
        )
        logger.info("Scheduled job %s every %ss on queue %s", entry["id"], entry["interval"], entry["queue_name"])
