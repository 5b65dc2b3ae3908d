"""Fire-time processing for due automation jobs.

Invariants:
- Constraints are checked in order: opt-out, rate limit, quiet hours.
- ``scheduled_for`` is never rewritten; deferral state lives in
  ``delivery_log`` (``not_before``, ``deferrals``, ``rate_limit_deferrals``)
  and ``not_before`` is mirrored on the row so deferred jobs are not scanned.
- Only a rate-limit deferral counts toward ``automation_max_deferrals``.
- A job is claimed with a conditional ``pending -> processing`` update that is
  committed before a provider is called. Concurrent scans that lose the claim
  skip the job, and a crashed run leaves a visible in-flight row.
- Failed deliveries are terminal; there is no automatic retry.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.automation import AutomationJob, JobStatus
from app.schema.automation import ExecutorRunSummary
from app.services import constraint_service
from app.services.delivery_monitor import delivery_monitor
from app.services.delivery_providers import DeliveryResult, provider_for
from app.services.job_state import can_transition, transition
from app.utils.datetime import ensure_utc, parse_iso, utcnow

logger = logging.getLogger("app.services.automation_executor")

OPTED_OUT = "opted_out"
RATE_LIMITED = "rate_limited"
STALE_PROCESSING = "processing_timeout"


def _log_decision(event: str, job: AutomationJob, **extra: Any) -> None:
    payload = {
        "event": event,
        "job_id": str(job.id),
        "automation_id": str(job.automation_id),
        "channel": job.channel.value,
        "supplier_id": str(job.supplier_id) if job.supplier_id else None,
        **extra,
    }
    logger.info(json.dumps(payload, default=str))


def not_before(job: AutomationJob) -> datetime | None:
    return ensure_utc(job.not_before) or parse_iso((job.delivery_log or {}).get("not_before"))


def _defer(job: AutomationJob, *, until: datetime, reason: str, now: datetime) -> int:
    """Keep the job pending and push its next eligible scan to ``until``."""
    until = ensure_utc(until)
    log = dict(job.delivery_log or {})
    deferrals = int(log.get("deferrals", 0)) + 1
    log.update(
        {
            "deferrals": deferrals,
            "not_before": until.isoformat(),
            "deferred_reason": reason,
            "last_deferred_at": now.isoformat(),
        }
    )
    if reason == RATE_LIMITED:
        log["rate_limit_deferrals"] = int(log.get("rate_limit_deferrals", 0)) + 1
    job.delivery_log = log
    job.not_before = until
    return deferrals


async def due_jobs(session: AsyncSession, *, now: datetime, limit: int) -> list[AutomationJob]:
    """Pending jobs that are due and not deferred past ``now``, oldest first."""
    result = await session.execute(
        select(AutomationJob)
        .where(
            AutomationJob.status == JobStatus.PENDING,
            AutomationJob.scheduled_for <= now,
            or_(AutomationJob.not_before.is_(None), AutomationJob.not_before <= now),
        )
        .order_by(AutomationJob.scheduled_for.asc(), AutomationJob.created_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def check_constraints(session: AsyncSession, job: AutomationJob, *, now: datetime) -> str | None:
    """Apply fire-time constraints; return the outcome or None when clear to send."""
    if job.recipient_user_id is not None:
        opt_outs = await constraint_service.load_opt_outs_for(
            session, user_id=job.recipient_user_id, channel=job.channel
        )
        match = constraint_service.find_matching_opt_out(
            opt_outs,
            user_id=job.recipient_user_id,
            supplier_id=job.supplier_id,
            channel=job.channel,
            automation_type=job.trigger_event.value,
        )
        if match is not None:
            transition(job, JobStatus.CANCELLED, error=OPTED_OUT, log={"opt_out_id": str(match.id)})
            _log_decision("automation_job_cancelled", job, reason=OPTED_OUT, opt_out_id=str(match.id))
            return "cancelled"

    decision = await constraint_service.check_rate_limit(
        session, supplier_id=job.supplier_id, channel=job.channel, now=now
    )
    if decision.exceeded:
        rate_deferrals = int((job.delivery_log or {}).get("rate_limit_deferrals", 0))
        if rate_deferrals >= settings.automation_max_deferrals:
            transition(job, JobStatus.CANCELLED, error=RATE_LIMITED, log={"rate_limit_window": decision.window})
            _log_decision("automation_job_cancelled", job, reason=RATE_LIMITED, rate_limit_deferrals=rate_deferrals)
            return "cancelled"
        retry_at = max(
            decision.retry_at or now,
            now + timedelta(seconds=settings.automation_scan_interval_seconds),
        )
        deferrals = _defer(job, until=retry_at, reason=RATE_LIMITED, now=now)
        _log_decision(
            "automation_job_deferred",
            job,
            reason=RATE_LIMITED,
            window=decision.window,
            sent_in_window=decision.sent_in_window,
            limit=decision.limit,
            not_before=retry_at,
            deferrals=deferrals,
        )
        return "deferred"

    quiet_hours = await constraint_service.get_effective_quiet_hours(session, job.supplier_id)
    window_end = constraint_service.quiet_window_end(quiet_hours, now)
    if window_end is not None:
        deferrals = _defer(job, until=window_end, reason="quiet_hours", now=now)
        _log_decision("automation_job_deferred", job, reason="quiet_hours", not_before=window_end, deferrals=deferrals)
        return "deferred"
    return None


async def claim_job(session: AsyncSession, job: AutomationJob, *, now: datetime) -> bool:
    """Atomically move ``job`` from pending to processing; False when another scan won."""
    if not can_transition(job.status, JobStatus.PROCESSING):
        return False
    log = {**(job.delivery_log or {}), "processing_started_at": now.isoformat()}
    result = await session.execute(
        update(AutomationJob)
        .where(AutomationJob.id == job.id, AutomationJob.status == JobStatus.PENDING)
        .values(status=JobStatus.PROCESSING, delivery_log=log)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        _log_decision("automation_job_claim_lost", job)
        await session.rollback()
        return False
    await session.commit()
    await session.refresh(job)
    return True


async def deliver_job(session: AsyncSession, job: AutomationJob, *, now: datetime) -> str:
    """Move a cleared job through processing to sent or failed."""
    provider = provider_for(job.channel)
    if not await claim_job(session, job, now=now):
        return "skipped"

    try:
        result: DeliveryResult = await delivery_monitor.track(
            job.channel.value,
            lambda: provider.deliver(session, job),
            context={"job_id": str(job.id)},
        )
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        await session.refresh(job)
        transition(job, JobStatus.FAILED, at=now, error=str(exc) or exc.__class__.__name__)
        await session.commit()
        _log_decision("automation_job_failed", job, error=job.error_message)
        return "failed"

    transition(job, JobStatus.SENT, at=now, log={**result.log, "delivered_at": now.isoformat()})
    await session.commit()
    for hook in result.after_commit:
        await hook()
    _log_decision("automation_job_sent", job, provider=result.log.get("provider"))
    return "sent"


async def process_job(session: AsyncSession, job: AutomationJob, *, now: datetime) -> str:
    """Run one due job; returns sent, failed, cancelled, deferred, or skipped."""
    await session.refresh(job)
    if job.status != JobStatus.PENDING:
        return "skipped"
    gate = not_before(job)
    if gate is not None and gate > now:
        return "skipped"
    outcome = await check_constraints(session, job, now=now)
    if outcome is None and not delivery_monitor.allow_call(job.channel.value):
        # Channel transport is cooling down after repeated failures.
        until = now + timedelta(seconds=settings.automation_scan_interval_seconds)
        _defer(job, until=until, reason="channel_paused", now=now)
        _log_decision("automation_job_deferred", job, reason="channel_paused", not_before=until)
        outcome = "deferred"
    if outcome is not None:
        await session.commit()
        return outcome
    return await deliver_job(session, job, now=now)


async def process_due_jobs(
    session: AsyncSession,
    now: datetime | None = None,
    *,
    batch_size: int | None = None,
) -> ExecutorRunSummary:
    """Scan pending jobs whose ``scheduled_for`` has passed and process them."""
    now = ensure_utc(now) or utcnow()
    jobs = await due_jobs(session, now=now, limit=batch_size or settings.automation_scan_batch_size)
    summary = ExecutorRunSummary(scanned=len(jobs))
    for job in jobs:
        outcome = await process_job(session, job, now=now)
        setattr(summary, outcome, getattr(summary, outcome) + 1)
    if jobs:
        logger.info(json.dumps({"event": "automation_scan_complete", **summary.model_dump()}))
    return summary


async def fail_stale_processing(
    session: AsyncSession, now: datetime | None = None, *, older_than: timedelta | None = None
) -> int:
    """Fail jobs stuck in ``processing`` after a worker died mid-delivery."""
    now = ensure_utc(now) or utcnow()
    cutoff = now - (older_than or timedelta(minutes=settings.automation_processing_timeout_minutes))
    result = await session.execute(select(AutomationJob).where(AutomationJob.status == JobStatus.PROCESSING))
    stale = [
        job
        for job in result.scalars().all()
        if (parse_iso((job.delivery_log or {}).get("processing_started_at")) or job.scheduled_for) <= cutoff
    ]
    for job in stale:
        transition(job, JobStatus.FAILED, at=now, error=STALE_PROCESSING)
        _log_decision("automation_job_failed", job, error=STALE_PROCESSING)
    if stale:
        await session.commit()
    return len(stale)
