"""Turn business events into pending automation jobs.

Invariants:
- One job per matching active rule; zero matches is an empty result.
- ``scheduled_for`` is exactly ``now + delay_hours``.
- Jobs carry a snapshot of the rule so later edits never change them.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.models.automation import AutomationJob, CommunicationAutomation, EntityKind, JobStatus, TriggerEvent
from app.schema.automation import TriggerEntity
from app.utils.datetime import ensure_utc, utcnow

logger = logging.getLogger("app.services.automation_scheduler")

_MISSING = object()


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def _apply(actual: Any, expected: Any) -> bool:
        if actual is _MISSING or actual is None:
            return False
        try:
            return op(actual, expected)
        except TypeError:
            return False

    return _apply


def _membership(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple, set)):
        raise ValidationError("'in' and 'not_in' expect a list", detail={"value": expected})
    return actual is not _MISSING and actual in expected


OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda actual, expected: actual is not _MISSING and actual == expected,
    "ne": lambda actual, expected: actual is _MISSING or actual != expected,
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "in": _membership,
    "not_in": lambda actual, expected: not _membership(actual, expected),
    "exists": lambda actual, expected: (actual is not _MISSING and actual is not None) == bool(expected),
}


def _lookup(attributes: dict[str, Any], path: str) -> Any:
    """Resolve dotted paths like ``quote.total`` against nested dicts."""
    current: Any = attributes
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def evaluate_conditions(conditions: dict[str, Any] | None, attributes: dict[str, Any]) -> bool:
    """Return True when every clause of the predicate holds.

    A clause is either a literal (equality) or an object of operators, e.g.
    ``{"total": {"gte": 100}, "status": "open"}``. Empty predicates match.
    """
    if not conditions:
        return True
    for field, clause in conditions.items():
        actual = _lookup(attributes, field)
        if isinstance(clause, dict) and clause and all(key in OPERATORS for key in clause):
            for op_name, expected in clause.items():
                if not OPERATORS[op_name](actual, expected):
                    return False
        elif isinstance(clause, dict) and any(key in OPERATORS for key in clause):
            unknown = sorted(key for key in clause if key not in OPERATORS)
            raise ValidationError("Unknown condition operator", detail={"field": field, "operators": unknown})
        elif not OPERATORS["eq"](actual, clause):
            return False
    return True


async def candidate_rules(
    session: AsyncSession,
    *,
    trigger_event: TriggerEvent,
    supplier_id: uuid.UUID | None,
    include_templates: bool = False,
) -> list[CommunicationAutomation]:
    stmt = select(CommunicationAutomation).where(
        CommunicationAutomation.is_active.is_(True),
        CommunicationAutomation.trigger_event == trigger_event,
    )
    if supplier_id is None:
        stmt = stmt.where(CommunicationAutomation.supplier_id.is_(None))
    elif include_templates:
        stmt = stmt.where(
            or_(
                CommunicationAutomation.supplier_id == supplier_id,
                CommunicationAutomation.supplier_id.is_(None),
            )
        )
    else:
        stmt = stmt.where(CommunicationAutomation.supplier_id == supplier_id)
    result = await session.execute(stmt.order_by(CommunicationAutomation.created_at.asc()))
    return list(result.scalars().all())


def build_job(
    rule: CommunicationAutomation, entity: TriggerEntity, *, scheduled_for: datetime
) -> AutomationJob:
    """Create a pending job carrying a snapshot of ``rule``."""
    return AutomationJob(
        automation_id=rule.id,
        entity_type=EntityKind(entity.kind),
        entity_id=entity.id,
        recipient_user_id=entity.recipient_user_id,
        supplier_id=rule.supplier_id if rule.supplier_id is not None else entity.supplier_id,
        automation_name=rule.name,
        trigger_event=rule.trigger_event,
        channel=rule.channel,
        template_id=rule.template_id,
        message_template=dict(rule.message_template) if rule.message_template else None,
        context=dict(entity.attributes),
        scheduled_for=scheduled_for,
        status=JobStatus.PENDING,
    )


async def schedule(
    session: AsyncSession,
    trigger_event: TriggerEvent,
    entity: TriggerEntity,
    now: datetime | None = None,
    *,
    include_templates: bool = False,
) -> list[AutomationJob]:
    """Create one pending job per active rule matching the event."""
    now = ensure_utc(now) or utcnow()
    trigger_event = TriggerEvent(trigger_event)
    rules = await candidate_rules(
        session,
        trigger_event=trigger_event,
        supplier_id=entity.supplier_id,
        include_templates=include_templates,
    )
    jobs: list[AutomationJob] = []
    for rule in rules:
        if not evaluate_conditions(rule.trigger_conditions, entity.attributes):
            continue
        jobs.append(build_job(rule, entity, scheduled_for=now + timedelta(hours=rule.delay_hours)))
    if not jobs:
        logger.info("No automations matched %s for %s %s", trigger_event.value, entity.kind, entity.id)
        return []
    session.add_all(jobs)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    for job in jobs:
        await session.refresh(job)
    logger.info(
        "Scheduled %d automation job(s) for %s on %s %s",
        len(jobs),
        trigger_event.value,
        entity.kind,
        entity.id,
    )
    return jobs
