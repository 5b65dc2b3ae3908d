"""Quiet hours, rate limit, and opt-out storage plus fire-time evaluation.

Invariants:
- Quiet hours are unique per supplier and rate limits per (supplier, channel);
  a null supplier is the global default and supplier rows take precedence.
- Opt-outs are append-only; an identical scope raises ``ConflictError``.
- Opt-out scoping is exact-match: a null supplier or automation type widens
  the scope, anything else must match the job.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ConflictError, PermissionDeniedError
from app.models.automation import AutomationJob, DeliveryChannel, JobStatus
from app.models.constraints import CommunicationOptOut, QuietHoursConfig, RateLimitConfig
from app.models.user import User
from app.schema.constraints import OptOutCreate, QuietHoursUpsert, RateLimitUpsert
from app.services import user_service

logger = logging.getLogger("app.services.constraints")

HOUR = timedelta(hours=1)
DAY = timedelta(days=1)


def _eq_or_null(column, value):
    return column.is_(None) if value is None else column == value


async def _visible_supplier_clause(session: AsyncSession, user: User, column, supplier_id: uuid.UUID | None):
    """Build the supplier filter a user is allowed to read with."""
    if supplier_id is not None:
        await user_service.ensure_supplier_access(session, user=user, supplier_id=supplier_id)
        return column == supplier_id
    if user.is_admin:
        return None
    owned = await user_service.owned_supplier_ids(session, user)
    if owned:
        return or_(column.is_(None), column.in_(owned))
    return column.is_(None)


async def _commit_or_conflict(session: AsyncSession, message: str) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(message) from exc


# Quiet hours


async def get_quiet_hours(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None = None
) -> list[QuietHoursConfig]:
    """List quiet hours configs visible to the user, newest first."""
    stmt = select(QuietHoursConfig).order_by(QuietHoursConfig.created_at.desc())
    clause = await _visible_supplier_clause(session, user, QuietHoursConfig.supplier_id, supplier_id)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def upsert_quiet_hours(
    session: AsyncSession, *, user: User, payload: QuietHoursUpsert
) -> QuietHoursConfig:
    """Insert or replace the quiet hours for a supplier (or the global default)."""
    await user_service.ensure_supplier_access(session, user=user, supplier_id=payload.supplier_id)
    result = await session.execute(
        select(QuietHoursConfig).where(_eq_or_null(QuietHoursConfig.supplier_id, payload.supplier_id))
    )
    config = result.scalar_one_or_none()
    if config is None:
        config = QuietHoursConfig(supplier_id=payload.supplier_id)
        session.add(config)
    config.start_time = payload.start_time
    config.end_time = payload.end_time
    config.timezone = payload.timezone
    config.days_of_week = list(payload.days_of_week)
    config.is_active = payload.is_active
    await _commit_or_conflict(session, "Quiet hours already configured for this supplier")
    await session.refresh(config)
    return config


async def get_effective_quiet_hours(
    session: AsyncSession, supplier_id: uuid.UUID | None
) -> QuietHoursConfig | None:
    """Return the active supplier config, falling back to the global one."""
    stmt = select(QuietHoursConfig).where(QuietHoursConfig.is_active.is_(True))
    if supplier_id is not None:
        stmt = stmt.where(
            or_(QuietHoursConfig.supplier_id == supplier_id, QuietHoursConfig.supplier_id.is_(None))
        )
    else:
        stmt = stmt.where(QuietHoursConfig.supplier_id.is_(None))
    result = await session.execute(stmt)
    configs = result.scalars().all()
    for config in configs:
        if config.supplier_id is not None:
            return config
    return configs[0] if configs else None


def quiet_window_end(config: QuietHoursConfig | None, now: datetime) -> datetime | None:
    """Return when the quiet window containing ``now`` ends, or None if outside.

    Windows are evaluated in the config's timezone and may wrap midnight; the
    window belongs to the weekday it starts on.
    """
    if config is None or not config.is_active:
        return None
    tz = ZoneInfo(config.timezone or "UTC")
    local_now = now.astimezone(tz)
    days = set(config.days_of_week or [])
    for offset in (0, -1):
        day = local_now.date() + timedelta(days=offset)
        if day.isoweekday() % 7 not in days:
            continue
        start = datetime.combine(day, config.start_time, tzinfo=tz)
        end = datetime.combine(day, config.end_time, tzinfo=tz)
        if end <= start:
            end += timedelta(days=1)
        if start <= local_now < end:
            return end.astimezone(timezone.utc)
    return None


# Rate limits


async def get_rate_limits(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None = None
) -> list[RateLimitConfig]:
    """List rate limits visible to the user, ordered by channel."""
    stmt = select(RateLimitConfig).order_by(RateLimitConfig.channel.asc())
    clause = await _visible_supplier_clause(session, user, RateLimitConfig.supplier_id, supplier_id)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def upsert_rate_limit(
    session: AsyncSession, *, user: User, payload: RateLimitUpsert
) -> RateLimitConfig:
    """Insert or replace the limit for a (supplier, channel) pair."""
    await user_service.ensure_supplier_access(session, user=user, supplier_id=payload.supplier_id)
    result = await session.execute(
        select(RateLimitConfig).where(
            _eq_or_null(RateLimitConfig.supplier_id, payload.supplier_id),
            RateLimitConfig.channel == payload.channel,
        )
    )
    config = result.scalar_one_or_none()
    if config is None:
        config = RateLimitConfig(supplier_id=payload.supplier_id, channel=payload.channel)
        session.add(config)
    config.max_per_hour = payload.max_per_hour
    config.max_per_day = payload.max_per_day
    config.is_active = payload.is_active
    await _commit_or_conflict(session, "Rate limit already configured for this channel")
    await session.refresh(config)
    return config


async def get_effective_rate_limit(
    session: AsyncSession, supplier_id: uuid.UUID | None, channel: DeliveryChannel
) -> RateLimitConfig | None:
    stmt = select(RateLimitConfig).where(
        RateLimitConfig.is_active.is_(True),
        RateLimitConfig.channel == channel,
    )
    if supplier_id is not None:
        stmt = stmt.where(or_(RateLimitConfig.supplier_id == supplier_id, RateLimitConfig.supplier_id.is_(None)))
    else:
        stmt = stmt.where(RateLimitConfig.supplier_id.is_(None))
    result = await session.execute(stmt)
    configs = result.scalars().all()
    for config in configs:
        if config.supplier_id is not None:
            return config
    return configs[0] if configs else None


@dataclass(slots=True)
class RateLimitDecision:
    exceeded: bool
    window: str | None = None
    sent_in_window: int = 0
    limit: int | None = None
    retry_at: datetime | None = None


async def check_rate_limit(
    session: AsyncSession,
    *,
    supplier_id: uuid.UUID | None,
    channel: DeliveryChannel,
    now: datetime,
) -> RateLimitDecision:
    """Count sent jobs in the rolling hour/day windows against the effective limit."""
    config = await get_effective_rate_limit(session, supplier_id, channel)
    if config is None:
        return RateLimitDecision(exceeded=False)
    for window, span, limit in (("hour", HOUR, config.max_per_hour), ("day", DAY, config.max_per_day)):
        since = now - span
        stmt = select(func.count(AutomationJob.id), func.min(AutomationJob.executed_at)).where(
            AutomationJob.status == JobStatus.SENT,
            AutomationJob.channel == channel,
            AutomationJob.executed_at > since,
            _eq_or_null(AutomationJob.supplier_id, supplier_id),
        )
        count, oldest = (await session.execute(stmt)).one()
        if count >= limit:
            retry_at = (oldest + span) if oldest else now + span
            return RateLimitDecision(
                exceeded=True, window=window, sent_in_window=count, limit=limit, retry_at=retry_at
            )
    return RateLimitDecision(exceeded=False)


# Opt-outs


async def get_opt_outs(
    session: AsyncSession, *, user: User, supplier_id: uuid.UUID | None = None
) -> list[CommunicationOptOut]:
    """List opt-outs newest first; an empty result is a normal outcome."""
    stmt = select(CommunicationOptOut).order_by(CommunicationOptOut.opted_out_at.desc())
    if supplier_id is not None:
        await user_service.ensure_supplier_access(session, user=user, supplier_id=supplier_id)
        stmt = stmt.where(CommunicationOptOut.supplier_id == supplier_id)
    elif not user.is_admin:
        owned = await user_service.owned_supplier_ids(session, user)
        clauses = [CommunicationOptOut.user_id == user.id]
        if owned:
            clauses.append(CommunicationOptOut.supplier_id.in_(owned))
        stmt = stmt.where(or_(*clauses))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_opt_out(
    session: AsyncSession, *, user: User, payload: OptOutCreate
) -> CommunicationOptOut:
    """Record a consent withdrawal for the caller (or on a user's behalf)."""
    target_user_id = payload.user_id or user.id
    if target_user_id != user.id and not user.is_admin:
        if payload.supplier_id is None:
            raise PermissionDeniedError("Cannot record opt-outs for other users")
        await user_service.ensure_supplier_access(session, user=user, supplier_id=payload.supplier_id)
    automation_type = payload.automation_type.value if payload.automation_type else None

    existing = await session.execute(
        select(CommunicationOptOut.id).where(
            CommunicationOptOut.user_id == target_user_id,
            _eq_or_null(CommunicationOptOut.supplier_id, payload.supplier_id),
            CommunicationOptOut.channel == payload.channel,
            _eq_or_null(CommunicationOptOut.automation_type, automation_type),
        )
    )
    if existing.first() is not None:
        raise ConflictError("Opt-out already recorded for this scope")

    opt_out = CommunicationOptOut(
        user_id=target_user_id,
        supplier_id=payload.supplier_id,
        channel=payload.channel,
        automation_type=automation_type,
        reason=payload.reason,
    )
    session.add(opt_out)
    await _commit_or_conflict(session, "Opt-out already recorded for this scope")
    await session.refresh(opt_out)
    logger.info(
        "Opt-out recorded for user %s (channel=%s, supplier=%s, type=%s)",
        target_user_id,
        payload.channel.value,
        payload.supplier_id,
        automation_type or "*",
    )
    return opt_out


def _opt_out_specificity(opt_out: CommunicationOptOut) -> int:
    return int(opt_out.supplier_id is not None) + int(opt_out.automation_type is not None)


def find_matching_opt_out(
    opt_outs: Iterable[CommunicationOptOut],
    *,
    user_id: uuid.UUID | None,
    supplier_id: uuid.UUID | None,
    channel: DeliveryChannel | str,
    automation_type: str | None,
) -> CommunicationOptOut | None:
    """Return the narrowest opt-out covering the delivery, if any."""
    if user_id is None:
        return None
    channel_value = DeliveryChannel(channel)
    matches: list[CommunicationOptOut] = []
    for opt_out in opt_outs:
        if opt_out.user_id != user_id or DeliveryChannel(opt_out.channel) != channel_value:
            continue
        if opt_out.supplier_id is not None and opt_out.supplier_id != supplier_id:
            continue
        if opt_out.automation_type is not None and opt_out.automation_type != automation_type:
            continue
        matches.append(opt_out)
    if not matches:
        return None
    return max(matches, key=_opt_out_specificity)


async def load_opt_outs_for(
    session: AsyncSession, *, user_id: uuid.UUID, channel: DeliveryChannel
) -> Sequence[CommunicationOptOut]:
    result = await session.execute(
        select(CommunicationOptOut).where(
            CommunicationOptOut.user_id == user_id,
            CommunicationOptOut.channel == channel,
        )
    )
    return result.scalars().all()
