"""Worker job entrypoints for automation scheduling and execution."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from app.db.session import async_session
from app.models.automation import TriggerEvent
from app.schema.automation import TriggerEntity
from app.services import automation_executor, automation_scheduler

logger = logging.getLogger("app.jobs.automations")


def process_due_automation_jobs_job(batch_size: int | None = None) -> dict[str, Any]:
    """Scan and deliver due automation jobs within a worker context."""

    async def _run() -> dict[str, Any]:
        async with async_session() as session:
            summary = await automation_executor.process_due_jobs(session, batch_size=batch_size)
            return summary.model_dump()

    result = asyncio.run(_run())
    if result["scanned"]:
        logger.info(
            "Automation scan complete: %d scanned, %d sent, %d failed, %d cancelled, %d deferred",
            result["scanned"],
            result["sent"],
            result["failed"],
            result["cancelled"],
            result["deferred"],
        )
    return result


def schedule_trigger_event_job(
    *,
    trigger_event: str,
    entity: dict[str, Any],
    include_templates: bool = False,
) -> list[str]:
    """Create pending jobs for a business event raised by another service."""
    payload = TriggerEntity.model_validate(entity)

    async def _run() -> list[str]:
        async with async_session() as session:
            jobs = await automation_scheduler.schedule(
                session,
                TriggerEvent(trigger_event),
                payload,
                include_templates=include_templates,
            )
            return [str(job.id) for job in jobs]

    job_ids = asyncio.run(_run())
    logger.info("Event %s on %s %s scheduled %d job(s)", trigger_event, payload.kind, payload.id, len(job_ids))
    return job_ids
