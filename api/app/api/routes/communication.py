"""Quiet hours, rate limit, and opt-out endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.models.user import User
from app.schema.constraints import (
    OptOutCreate,
    OptOutRead,
    QuietHoursRead,
    QuietHoursUpsert,
    RateLimitRead,
    RateLimitUpsert,
)
from app.services import constraint_service
from app.utils.timeouts import bounded

router = APIRouter()


@router.get("/quiet-hours", response_model=list[QuietHoursRead])
async def list_quiet_hours(
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[QuietHoursRead]:
    configs = await bounded(
        constraint_service.get_quiet_hours(session, user=current_user, supplier_id=supplier_id),
        operation="list quiet hours",
    )
    return [QuietHoursRead.model_validate(config) for config in configs]


@router.put("/quiet-hours", response_model=QuietHoursRead)
async def upsert_quiet_hours(
    payload: QuietHoursUpsert,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> QuietHoursRead:
    """Create or replace quiet hours; omit ``supplier_id`` for the global default."""
    config = await bounded(
        constraint_service.upsert_quiet_hours(session, user=current_user, payload=payload),
        operation="save quiet hours",
    )
    return QuietHoursRead.model_validate(config)


@router.get("/rate-limits", response_model=list[RateLimitRead])
async def list_rate_limits(
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[RateLimitRead]:
    configs = await bounded(
        constraint_service.get_rate_limits(session, user=current_user, supplier_id=supplier_id),
        operation="list rate limits",
    )
    return [RateLimitRead.model_validate(config) for config in configs]


@router.put("/rate-limits", response_model=RateLimitRead)
async def upsert_rate_limit(
    payload: RateLimitUpsert,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> RateLimitRead:
    config = await bounded(
        constraint_service.upsert_rate_limit(session, user=current_user, payload=payload),
        operation="save rate limit",
    )
    return RateLimitRead.model_validate(config)


@router.get("/opt-outs", response_model=list[OptOutRead])
async def list_opt_outs(
    supplier_id: uuid.UUID | None = None,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> list[OptOutRead]:
    opt_outs = await bounded(
        constraint_service.get_opt_outs(session, user=current_user, supplier_id=supplier_id),
        operation="list opt-outs",
    )
    return [OptOutRead.model_validate(opt_out) for opt_out in opt_outs]


@router.post("/opt-outs", response_model=OptOutRead, status_code=status.HTTP_201_CREATED)
async def create_opt_out(
    payload: OptOutCreate,
    session: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> OptOutRead:
    """Record an opt-out; an identical scope already on file returns 409."""
    opt_out = await bounded(
        constraint_service.create_opt_out(session, user=current_user, payload=payload),
        operation="record opt-out",
    )
    return OptOutRead.model_validate(opt_out)
