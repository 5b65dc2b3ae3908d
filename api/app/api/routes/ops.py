from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db, require_ops_admin
from app.jobs.automations import process_due_automation_jobs_job
from app.models.user import User
from app.schema.automation import ExecutorRunSummary
from app.services import automation_executor
from app.services.delivery_monitor import delivery_monitor
from app.services.task_queue import task_queue

router = APIRouter()


@router.get("/queues", tags=["ops"])
async def queue_health(_: User = Depends(require_ops_admin)) -> dict:
    """
    Minimal operations dashboard for Redis/RQ health and delivery channels.

    Requires authentication to avoid leaking operational data to anonymous callers.
    """
    snapshot = task_queue.snapshot()
    snapshot["delivery"] = await delivery_monitor.snapshot()
    return snapshot


@router.post("/automation-jobs/run", response_model=ExecutorRunSummary, tags=["ops"])
async def run_automation_jobs(
    session: AsyncSession = Depends(get_db),
    _: User = Depends(require_ops_admin),
) -> ExecutorRunSummary:
    """Run one executor scan now, on the worker when available."""

    async def _fallback() -> dict:
        summary = await automation_executor.process_due_jobs(session)
        return summary.model_dump()

    result = await task_queue.enqueue_or_run(
        process_due_automation_jobs_job,
        fallback=_fallback,
        queue_name=task_queue.queue_for("automations"),
        timeout_seconds=120,
        description="automations:process_due_jobs:manual",
    )
    return ExecutorRunSummary.model_validate(result)
