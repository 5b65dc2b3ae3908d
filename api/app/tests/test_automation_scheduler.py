"""Scheduler tests: condition matching, rule selection, and job snapshots."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.core.errors import ValidationError
from app.models.automation import DeliveryChannel, JobStatus, TriggerEvent
from app.schema.automation import TriggerEntity
from app.services import automation_scheduler
from app.services.automation_scheduler import evaluate_conditions

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def _entity(supplier_id: uuid.UUID | None, **attributes) -> TriggerEntity:
    return TriggerEntity(
        kind="lead",
        id=uuid.uuid4(),
        supplier_id=supplier_id,
        recipient_user_id=uuid.uuid4(),
        attributes=attributes,
    )


def test_empty_conditions_always_match():
    assert evaluate_conditions(None, {}) is True
    assert evaluate_conditions({}, {"anything": 1}) is True


def test_literal_conditions_mean_equality():
    assert evaluate_conditions({"source": "web"}, {"source": "web"}) is True
    assert evaluate_conditions({"source": "web"}, {"source": "phone"}) is False
    assert evaluate_conditions({"source": "web"}, {}) is False


def test_operator_conditions():
    attributes = {"total": 250, "status": "open", "quote": {"currency": "EUR"}}
    assert evaluate_conditions({"total": {"gte": 200, "lt": 300}}, attributes) is True
    assert evaluate_conditions({"total": {"gt": 250}}, attributes) is False
    assert evaluate_conditions({"status": {"in": ["open", "viewed"]}}, attributes) is True
    assert evaluate_conditions({"status": {"not_in": ["open"]}}, attributes) is False
    assert evaluate_conditions({"quote.currency": "EUR"}, attributes) is True
    assert evaluate_conditions({"discount": {"exists": False}}, attributes) is True
    assert evaluate_conditions({"discount": {"ne": 5}}, attributes) is True
    assert evaluate_conditions({"total": {"lt": "abc"}}, attributes) is False


def test_unknown_operator_is_rejected():
    with pytest.raises(ValidationError):
        evaluate_conditions({"total": {"gte": 1, "between": [1, 2]}}, {"total": 5})


def test_membership_requires_list():
    with pytest.raises(ValidationError):
        evaluate_conditions({"status": {"in": "open"}}, {"status": "open"})


@pytest.mark.asyncio
async def test_schedule_creates_one_job_per_matching_rule(session, factory):
    _, supplier = await factory.supplier()
    first = await factory.rule(supplier_id=supplier.id, delay_hours=0)
    second = await factory.rule(supplier_id=supplier.id, delay_hours=24, channel=DeliveryChannel.EMAIL)
    await factory.rule(supplier_id=supplier.id, is_active=False)
    _, other_supplier = await factory.supplier()
    await factory.rule(supplier_id=other_supplier.id)

    jobs = await automation_scheduler.schedule(session, TriggerEvent.LEAD_NEW, _entity(supplier.id), now=NOW)

    by_rule = {job.automation_id: job for job in jobs}
    assert set(by_rule) == {first.id, second.id}
    assert by_rule[first.id].scheduled_for == NOW
    assert by_rule[second.id].scheduled_for == NOW + timedelta(hours=24)
    assert all(job.status == JobStatus.PENDING for job in jobs)
    assert by_rule[second.id].channel == DeliveryChannel.EMAIL


@pytest.mark.asyncio
async def test_schedule_returns_empty_list_without_matches(session, factory):
    _, supplier = await factory.supplier()
    await factory.rule(supplier_id=supplier.id, trigger_event=TriggerEvent.PAYMENT_DUE)

    jobs = await automation_scheduler.schedule(session, TriggerEvent.LEAD_NEW, _entity(supplier.id), now=NOW)

    assert jobs == []


@pytest.mark.asyncio
async def test_templates_only_fire_when_requested(session, factory):
    _, supplier = await factory.supplier()
    template = await factory.rule(supplier_id=None)

    without = await automation_scheduler.schedule(session, TriggerEvent.LEAD_NEW, _entity(supplier.id), now=NOW)
    assert without == []

    with_templates = await automation_scheduler.schedule(
        session, TriggerEvent.LEAD_NEW, _entity(supplier.id), now=NOW, include_templates=True
    )
    assert [job.automation_id for job in with_templates] == [template.id]
    assert with_templates[0].supplier_id == supplier.id


@pytest.mark.asyncio
async def test_jobs_keep_rule_snapshot_after_edits(session, factory):
    _, supplier = await factory.supplier()
    rule = await factory.rule(
        supplier_id=supplier.id,
        name="Original",
        message_template={"title": "Hello"},
        trigger_conditions={"budget": {"gte": 100}},
    )
    entity = _entity(supplier.id, budget=150)

    [job] = await automation_scheduler.schedule(session, TriggerEvent.LEAD_NEW, entity, now=NOW)
    assert job.context == {"budget": 150}

    rule.name = "Renamed"
    rule.message_template = {"title": "Changed"}
    rule.channel = DeliveryChannel.SMS
    await session.commit()
    await session.refresh(job)

    assert job.automation_name == "Original"
    assert job.message_template == {"title": "Hello"}
    assert job.channel == DeliveryChannel.NOTIFICATION


@pytest.mark.asyncio
async def test_scheduled_for_is_immutable(session, factory):
    job = await factory.job(supplier_id=None, recipient_user_id=None, scheduled_for=NOW)
    with pytest.raises(ValueError):
        job.scheduled_for = NOW + timedelta(hours=1)
