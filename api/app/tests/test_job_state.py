from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from app.models.automation import AutomationJob, JobStatus
from app.services.job_state import TERMINAL_STATUSES, InvalidJobTransition, can_transition, transition


def _job(status: JobStatus) -> AutomationJob:
    return AutomationJob(id=uuid.uuid4(), status=status, delivery_log={"deferrals": 1})


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {JobStatus.SENT, JobStatus.FAILED, JobStatus.CANCELLED}


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (JobStatus.PENDING, JobStatus.PROCESSING, True),
        (JobStatus.PENDING, JobStatus.CANCELLED, True),
        (JobStatus.PROCESSING, JobStatus.SENT, True),
        (JobStatus.PROCESSING, JobStatus.FAILED, True),
        (JobStatus.PROCESSING, JobStatus.CANCELLED, False),
        (JobStatus.PROCESSING, JobStatus.PENDING, False),
        (JobStatus.SENT, JobStatus.FAILED, False),
        (JobStatus.CANCELLED, JobStatus.PENDING, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_transition_merges_log_and_sets_execution_time():
    job = _job(JobStatus.PROCESSING)
    at = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    transition(job, JobStatus.SENT, at=at, log={"provider": "log"})

    assert job.status == JobStatus.SENT
    assert job.executed_at == at
    assert job.delivery_log == {"deferrals": 1, "provider": "log"}


def test_cancel_does_not_set_executed_at():
    job = _job(JobStatus.PENDING)
    transition(job, JobStatus.CANCELLED, at=datetime.now(timezone.utc), error="x" * 600)
    assert job.executed_at is None
    assert len(job.error_message) == 500


def test_invalid_transition_raises_conflict():
    job = _job(JobStatus.FAILED)
    with pytest.raises(InvalidJobTransition) as excinfo:
        transition(job, JobStatus.PENDING)
    assert excinfo.value.status_code == 409
    assert excinfo.value.detail == {"from": "failed", "to": "pending"}
    assert job.status == JobStatus.FAILED
