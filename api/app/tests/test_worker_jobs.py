"""Worker job wrappers delegate to services inside their own event loop."""

from __future__ import annotations

import uuid
from datetime import timedelta
from types import SimpleNamespace

from app.jobs import automations as automation_jobs
from app.jobs import maintenance as maintenance_jobs
from app.jobs import schedule_registry
from app.schema.automation import ExecutorRunSummary


class _FakeSessionFactory:
    def __init__(self) -> None:
        self.opened = 0

    def __call__(self):
        return self

    async def __aenter__(self):
        self.opened += 1
        return SimpleNamespace(name="session")

    async def __aexit__(self, *exc_info):
        return None


def test_process_due_jobs_job_returns_summary(monkeypatch):
    factory = _FakeSessionFactory()
    seen = {}

    async def fake_process(session, *, batch_size=None):
        seen["batch_size"] = batch_size
        return ExecutorRunSummary(scanned=2, sent=1, deferred=1)

    monkeypatch.setattr(automation_jobs, "async_session", factory)
    monkeypatch.setattr(automation_jobs.automation_executor, "process_due_jobs", fake_process)

    result = automation_jobs.process_due_automation_jobs_job(batch_size=25)

    assert result == {"scanned": 2, "sent": 1, "failed": 0, "cancelled": 0, "deferred": 1, "skipped": 0}
    assert seen["batch_size"] == 25
    assert factory.opened == 1


def test_schedule_trigger_event_job_validates_entity(monkeypatch):
    factory = _FakeSessionFactory()
    job_id = uuid.uuid4()
    captured = {}

    async def fake_schedule(session, trigger_event, entity, *, include_templates=False):
        captured.update(trigger_event=trigger_event, entity=entity, include_templates=include_templates)
        return [SimpleNamespace(id=job_id)]

    monkeypatch.setattr(automation_jobs, "async_session", factory)
    monkeypatch.setattr(automation_jobs.automation_scheduler, "schedule", fake_schedule)

    entity = {"kind": "quote", "id": str(uuid.uuid4()), "attributes": {"total": 1200}}
    result = automation_jobs.schedule_trigger_event_job(
        trigger_event="quote_sent_no_open", entity=entity, include_templates=True
    )

    assert result == [str(job_id)]
    assert captured["trigger_event"].value == "quote_sent_no_open"
    assert captured["entity"].attributes == {"total": 1200}
    assert captured["include_templates"] is True


def test_fail_stale_processing_job_uses_timeout(monkeypatch):
    factory = _FakeSessionFactory()
    seen = {}

    async def fake_sweep(session, *, older_than):
        seen["older_than"] = older_than
        return 3

    monkeypatch.setattr(maintenance_jobs, "async_session", factory)
    monkeypatch.setattr(maintenance_jobs.automation_executor, "fail_stale_processing", fake_sweep)

    assert maintenance_jobs.fail_stale_processing_jobs_job(timeout_minutes=45) == {"failed": 3}
    assert seen["older_than"] == timedelta(minutes=45)


def test_schedule_entries_cover_executor_and_sweep():
    entries = {entry["id"]: entry for entry in schedule_registry._schedule_entries()}
    assert set(entries) == {"automations:process_due_jobs", "maintenance:fail_stale_processing"}
    assert entries["automations:process_due_jobs"]["func"] is automation_jobs.process_due_automation_jobs_job
    assert entries["automations:process_due_jobs"]["interval"] >= 10


def test_ensure_schedules_is_noop_in_tests():
    schedule_registry.ensure_schedules()
