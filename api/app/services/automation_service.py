"""Automation rule storage plus job listing, stats, and cancellation.

Invariants:
- Toggling, editing, or deleting a rule never touches jobs already scheduled.
- Only pending jobs can be cancelled by hand.
"""

from __future__ import annotations

import uuid
from datetime import timedelta

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import NotFoundError
from app.models.automation import AutomationJob, CommunicationAutomation, JobStatus
from app.models.user import User
from app.schema.automation import (
    AutomationAnalytics,
    AutomationJobStats,
    AutomationRuleCreate,
    AutomationRuleUpdate,
    TriggerEntity,
)
from app.services import automation_scheduler, user_service
from app.services.job_state import transition
from app.utils.datetime import utcnow

RULE_FIELDS = (
    "name",
    "description",
    "trigger_event",
    "trigger_conditions",
    "delay_hours",
    "channel",
    "template_id",
    "message_template",
    "is_active",
)
NON_NULLABLE_FIELDS = {"name", "trigger_event", "delay_hours", "channel", "is_active"}


async def list_rules(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None = None
) -> list[CommunicationAutomation]:
    """List a supplier's rules, or the global templates when no supplier is given."""
    stmt = select(CommunicationAutomation).order_by(CommunicationAutomation.created_at.desc())
    if supplier_id is not None:
        await user_service.ensure_supplier_access(session, user=user, supplier_id=supplier_id)
        stmt = stmt.where(CommunicationAutomation.supplier_id == supplier_id)
    else:
        stmt = stmt.where(CommunicationAutomation.supplier_id.is_(None))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_templates(session: AsyncSession) -> list[CommunicationAutomation]:
    """Global templates are readable by every authenticated user."""
    result = await session.execute(
        select(CommunicationAutomation)
        .where(CommunicationAutomation.supplier_id.is_(None))
        .order_by(CommunicationAutomation.trigger_event.asc(), CommunicationAutomation.name.asc())
    )
    return list(result.scalars().all())


async def get_rule(session: AsyncSession, *, rule_id: uuid.UUID) -> CommunicationAutomation:
    rule = await session.get(CommunicationAutomation, rule_id)
    if not rule:
        raise NotFoundError("Automation rule not found")
    return rule


async def get_managed_rule(
    session: AsyncSession, *, user: User, rule_id: uuid.UUID
) -> CommunicationAutomation:
    """Fetch a rule the user is allowed to change."""
    rule = await get_rule(session, rule_id=rule_id)
    await user_service.ensure_supplier_access(session, user=user, supplier_id=rule.supplier_id)
    return rule


async def create_rule(
    session: AsyncSession, *, user: User, payload: AutomationRuleCreate
) -> CommunicationAutomation:
    """Create a rule; several active rules may share a trigger."""
    await user_service.ensure_supplier_access(session, user=user, supplier_id=payload.supplier_id)
    rule = CommunicationAutomation(
        supplier_id=payload.supplier_id,
        name=payload.name,
        description=payload.description,
        trigger_event=payload.trigger_event,
        trigger_conditions=payload.trigger_conditions,
        delay_hours=payload.delay_hours,
        channel=payload.channel,
        template_id=payload.template_id,
        message_template=payload.message_template,
        is_active=payload.is_active,
        created_by=user.id,
    )
    session.add(rule)
    await session.commit()
    await session.refresh(rule)
    return rule


async def update_rule(
    session: AsyncSession, *, rule: CommunicationAutomation, payload: AutomationRuleUpdate
) -> CommunicationAutomation:
    """Apply only the fields present in the payload."""
    fields = payload.model_fields_set
    for name in RULE_FIELDS:
        if name not in fields:
            continue
        value = getattr(payload, name)
        if value is None and name in NON_NULLABLE_FIELDS:
            continue
        setattr(rule, name, value)
    await session.commit()
    await session.refresh(rule)
    return rule


async def toggle_rule(
    session: AsyncSession, *, rule: CommunicationAutomation, is_active: bool
) -> CommunicationAutomation:
    rule.is_active = is_active
    await session.commit()
    await session.refresh(rule)
    return rule


async def delete_rule(session: AsyncSession, *, rule: CommunicationAutomation) -> None:
    """Delete a rule; its jobs stay and keep running from their snapshot."""
    await session.delete(rule)
    await session.commit()


async def trigger_rule(
    session: AsyncSession, *, rule: CommunicationAutomation, entity: TriggerEntity
) -> AutomationJob:
    """Manually fire a rule for an entity, due immediately."""
    if entity.supplier_id is None and rule.supplier_id is not None:
        entity = entity.model_copy(update={"supplier_id": rule.supplier_id})
    job = automation_scheduler.build_job(rule, entity, scheduled_for=utcnow())
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


# Jobs


async def _job_scope(session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None):
    """Restrict job queries to suppliers the user manages."""
    if supplier_id is not None:
        await user_service.ensure_supplier_access(session, user=user, supplier_id=supplier_id)
        return AutomationJob.supplier_id == supplier_id
    if user.is_admin:
        return None
    owned = await user_service.owned_supplier_ids(session, user)
    clauses = [AutomationJob.recipient_user_id == user.id]
    if owned:
        clauses.append(AutomationJob.supplier_id.in_(owned))
    return or_(*clauses)


async def list_jobs(
    session: AsyncSession,
    *,
    user: User,
    automation_id: uuid.UUID | None = None,
    supplier_id: uuid.UUID | None = None,
    status: JobStatus | None = None,
    limit: int | None = None,
) -> list[AutomationJob]:
    """Newest jobs first, capped at the configured list limit."""
    cap = settings.automation_job_list_limit
    stmt = select(AutomationJob).order_by(AutomationJob.created_at.desc()).limit(min(limit or cap, cap))
    scope = await _job_scope(session, user=user, supplier_id=supplier_id)
    if scope is not None:
        stmt = stmt.where(scope)
    if automation_id is not None:
        stmt = stmt.where(AutomationJob.automation_id == automation_id)
    if status is not None:
        stmt = stmt.where(AutomationJob.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def job_stats(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None = None
) -> AutomationJobStats:
    stmt = select(AutomationJob.status, func.count(AutomationJob.id)).group_by(AutomationJob.status)
    scope = await _job_scope(session, user=user, supplier_id=supplier_id)
    if scope is not None:
        stmt = stmt.where(scope)
    result = await session.execute(stmt)
    counts = {JobStatus(status).value: count for status, count in result.all()}
    return AutomationJobStats(total=sum(counts.values()), **counts)


async def analytics(
    session: AsyncSession,
    *,
    user: User,
    days: int = 30,
    supplier_id: uuid.UUID | None = None,
) -> AutomationAnalytics:
    """Summarize jobs created in the trailing ``days``; success rate is a percentage."""
    since = utcnow() - timedelta(days=days)
    stmt = select(AutomationJob.status, AutomationJob.channel, AutomationJob.trigger_event).where(
        AutomationJob.created_at >= since
    )
    scope = await _job_scope(session, user=user, supplier_id=supplier_id)
    if scope is not None:
        stmt = stmt.where(scope)
    rows = (await session.execute(stmt)).all()

    total_sent = total_failed = 0
    by_channel: dict[str, int] = {}
    by_trigger: dict[str, int] = {}
    for status, channel, trigger_event in rows:
        if status == JobStatus.SENT:
            total_sent += 1
        elif status == JobStatus.FAILED:
            total_failed += 1
        by_channel[channel.value] = by_channel.get(channel.value, 0) + 1
        by_trigger[trigger_event.value] = by_trigger.get(trigger_event.value, 0) + 1
    attempted = total_sent + total_failed
    return AutomationAnalytics(
        days=days,
        total_sent=total_sent,
        total_failed=total_failed,
        success_rate=round(total_sent / attempted * 100, 2) if attempted else 0.0,
        by_channel=by_channel,
        by_trigger=by_trigger,
    )


async def cancel_job(session: AsyncSession, *, user: User, job_id: uuid.UUID) -> AutomationJob:
    """Cancel a pending job; anything else is a conflict."""
    job = await session.get(AutomationJob, job_id)
    if not job:
        raise NotFoundError("Automation job not found")
    await user_service.ensure_supplier_access(session, user=user, supplier_id=job.supplier_id)
    transition(job, JobStatus.CANCELLED, error="cancelled_by_user", log={"cancelled_by": str(user.id)})
    await session.commit()
    await session.refresh(job)
    return job
