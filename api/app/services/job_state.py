"""Automation job status transitions.

Invariants:
- ``sent``, ``failed`` and ``cancelled`` are terminal.
- ``processing`` is only entered from ``pending`` and only leaves to ``sent`` or ``failed``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from app.core.errors import ConflictError
from app.models.automation import AutomationJob, JobStatus

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.PROCESSING, JobStatus.SENT, JobStatus.FAILED, JobStatus.CANCELLED}
    ),
    JobStatus.PROCESSING: frozenset({JobStatus.SENT, JobStatus.FAILED}),
    JobStatus.SENT: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


class InvalidJobTransition(ConflictError):
    code = "invalid_job_transition"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[JobStatus(current)]


def transition(
    job: AutomationJob,
    target: JobStatus,
    *,
    at: datetime | None = None,
    error: str | None = None,
    log: dict[str, Any] | None = None,
) -> AutomationJob:
    """Move a job to ``target`` or raise ``InvalidJobTransition``.

    Only status, executed_at, delivery_log and error_message are touched.
    """
    current = JobStatus(job.status)
    if not can_transition(current, target):
        raise InvalidJobTransition(
            f"Job {job.id} cannot move from {current.value} to {target.value}",
            detail={"from": current.value, "to": target.value},
        )
    job.status = target
    if target in (JobStatus.SENT, JobStatus.FAILED) and at is not None:
        job.executed_at = at
    if error is not None:
        job.error_message = error[:500]
    if log is not None:
        job.delivery_log = {**(job.delivery_log or {}), **log}
    return job
