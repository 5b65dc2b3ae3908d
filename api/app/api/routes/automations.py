"""Automation rule, event, and job endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.models.automation import JobStatus
from app.models.user import User
from app.schema.automation import (
    AutomationAnalytics,
    AutomationJobRead,
    AutomationJobStats,
    AutomationRuleCreate,
    AutomationRuleRead,
    AutomationRuleUpdate,
    AutomationToggle,
    ManualTriggerPayload,
    TriggerEventPayload,
)
from app.services import automation_scheduler, automation_service, user_service
from app.utils.timeouts import bounded

router = APIRouter()


@router.get("", response_model=list[AutomationRuleRead])
async def list_automation_rules(
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationRuleRead]:
    """List a supplier's rules, or global templates when no supplier is given."""
    rules = await bounded(
        automation_service.list_rules(session, user=current_user, supplier_id=supplier_id),
        operation="list automation rules",
    )
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.get("/templates", response_model=list[AutomationRuleRead])
async def list_automation_templates(
    session: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
) -> list[AutomationRuleRead]:
    rules = await bounded(automation_service.list_templates(session), operation="list templates")
    return [AutomationRuleRead.model_validate(rule) for rule in rules]


@router.post("", response_model=AutomationRuleRead, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    payload: AutomationRuleCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    rule = await bounded(
        automation_service.create_rule(session, user=current_user, payload=payload),
        operation="create automation rule",
    )
    return AutomationRuleRead.model_validate(rule)


@router.post("/events", response_model=list[AutomationJobRead], status_code=status.HTTP_201_CREATED)
async def handle_trigger_event(
    payload: TriggerEventPayload,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationJobRead]:
    """Schedule jobs for a business event; an empty list means no rule matched."""
    await bounded(
        user_service.ensure_supplier_access(session, user=current_user, supplier_id=payload.entity.supplier_id),
        operation="check supplier access",
    )
    jobs = await bounded(
        automation_scheduler.schedule(
            session,
            payload.trigger_event,
            payload.entity,
            include_templates=payload.include_templates,
        ),
        operation="schedule automation jobs",
    )
    return [AutomationJobRead.model_validate(job) for job in jobs]


@router.get("/jobs", response_model=list[AutomationJobRead])
async def list_automation_jobs(
    automation_id: uuid.UUID | None = None,
    supplier_id: uuid.UUID | None = None,
    job_status: JobStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[AutomationJobRead]:
    jobs = await bounded(
        automation_service.list_jobs(
            session,
            user=current_user,
            automation_id=automation_id,
            supplier_id=supplier_id,
            status=job_status,
        ),
        operation="list automation jobs",
    )
    return [AutomationJobRead.model_validate(job) for job in jobs]


@router.get("/jobs/stats", response_model=AutomationJobStats)
async def automation_job_stats(
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationJobStats:
    return await bounded(
        automation_service.job_stats(session, user=current_user, supplier_id=supplier_id),
        operation="automation job stats",
    )


@router.post("/jobs/{job_id}/cancel", response_model=AutomationJobRead)
async def cancel_automation_job(
    job_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationJobRead:
    """Cancel a pending job; terminal or in-flight jobs return 409."""
    job = await bounded(
        automation_service.cancel_job(session, user=current_user, job_id=job_id),
        operation="cancel automation job",
    )
    return AutomationJobRead.model_validate(job)


@router.get("/analytics", response_model=AutomationAnalytics)
async def automation_analytics(
    days: int = Query(default=30, ge=1, le=365),
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationAnalytics:
    return await bounded(
        automation_service.analytics(session, user=current_user, days=days, supplier_id=supplier_id),
        operation="automation analytics",
    )


@router.get("/{rule_id}", response_model=AutomationRuleRead)
async def get_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    rule = await bounded(automation_service.get_rule(session, rule_id=rule_id), operation="get automation rule")
    if rule.supplier_id is not None:
        await bounded(
            user_service.ensure_supplier_access(session, user=current_user, supplier_id=rule.supplier_id),
            operation="check supplier access",
        )
    return AutomationRuleRead.model_validate(rule)


@router.patch("/{rule_id}", response_model=AutomationRuleRead)
async def update_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationRuleUpdate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Update only the supplied fields of a rule."""
    rule = await bounded(
        automation_service.get_managed_rule(session, user=current_user, rule_id=rule_id),
        operation="load automation rule",
    )
    rule = await bounded(
        automation_service.update_rule(session, rule=rule, payload=payload),
        operation="update automation rule",
    )
    return AutomationRuleRead.model_validate(rule)


@router.post("/{rule_id}/toggle", response_model=AutomationRuleRead)
async def toggle_automation_rule(
    rule_id: uuid.UUID,
    payload: AutomationToggle,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationRuleRead:
    """Enable or disable future scheduling; existing jobs are unaffected."""
    rule = await bounded(
        automation_service.get_managed_rule(session, user=current_user, rule_id=rule_id),
        operation="load automation rule",
    )
    rule = await bounded(
        automation_service.toggle_rule(session, rule=rule, is_active=payload.is_active),
        operation="toggle automation rule",
    )
    return AutomationRuleRead.model_validate(rule)


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(
    rule_id: uuid.UUID,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> None:
    rule = await bounded(
        automation_service.get_managed_rule(session, user=current_user, rule_id=rule_id),
        operation="load automation rule",
    )
    await bounded(automation_service.delete_rule(session, rule=rule), operation="delete automation rule")


@router.post("/{rule_id}/trigger", response_model=AutomationJobRead, status_code=status.HTTP_201_CREATED)
async def trigger_automation_rule(
    rule_id: uuid.UUID,
    payload: ManualTriggerPayload,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> AutomationJobRead:
    """Test-fire a rule: one pending job due now."""
    rule = await bounded(
        automation_service.get_managed_rule(session, user=current_user, rule_id=rule_id),
        operation="load automation rule",
    )
    job = await bounded(
        automation_service.trigger_rule(session, rule=rule, entity=payload.entity),
        operation="trigger automation rule",
    )
    return AutomationJobRead.model_validate(job)
