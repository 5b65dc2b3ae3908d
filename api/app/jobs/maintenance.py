"""Maintenance jobs for automation job hygiene."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from app.core.config import settings
from app.db.session import async_session
from app.services import automation_executor

logger = logging.getLogger("app.jobs.maintenance")


def fail_stale_processing_jobs_job(timeout_minutes: int | None = None) -> dict[str, int]:
    """Scheduled sweep for jobs left in ``processing`` by a crashed worker."""
    minutes = timeout_minutes or settings.automation_processing_timeout_minutes

    async def _run() -> int:
        async with async_session() as session:
            return await automation_executor.fail_stale_processing(
                session, older_than=timedelta(minutes=minutes)
            )

    failed = asyncio.run(_run())
    if failed:
        logger.warning("Failed %d automation jobs stuck in processing for over %d minutes", failed, minutes)
    return {"failed": failed}
