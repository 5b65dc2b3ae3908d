"""Quiet hours, rate limit, and opt-out storage and evaluation."""

from __future__ import annotations

import uuid
from datetime import datetime, time, timedelta, timezone

import pytest

from app.models.automation import DeliveryChannel, JobStatus
from app.models.constraints import CommunicationOptOut, QuietHoursConfig, RateLimitConfig
from app.services import constraint_service
from app.services.constraint_service import find_matching_opt_out, quiet_window_end


def _quiet(start: time, end: time, *, tz: str = "UTC", days: list[int] | None = None) -> QuietHoursConfig:
    return QuietHoursConfig(
        start_time=start,
        end_time=end,
        timezone=tz,
        days_of_week=list(range(7)) if days is None else days,
        is_active=True,
    )


def test_quiet_window_wraps_midnight():
    config = _quiet(time(22, 0), time(7, 0))
    late = datetime(2026, 10, 19, 23, 15, tzinfo=timezone.utc)
    early = datetime(2026, 10, 20, 6, 59, tzinfo=timezone.utc)
    daytime = datetime(2026, 10, 20, 12, 0, tzinfo=timezone.utc)

    assert quiet_window_end(config, late) == datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)
    assert quiet_window_end(config, early) == datetime(2026, 10, 20, 7, 0, tzinfo=timezone.utc)
    assert quiet_window_end(config, daytime) is None


def test_quiet_window_uses_config_timezone():
    config = _quiet(time(20, 0), time(23, 0), tz="America/New_York")
    # 01:30 UTC on Oct 20 is 21:30 EDT on Oct 19.
    now = datetime(2026, 10, 20, 1, 30, tzinfo=timezone.utc)
    assert quiet_window_end(config, now) == datetime(2026, 10, 20, 3, 0, tzinfo=timezone.utc)


def test_quiet_window_respects_start_day():
    # 2026-10-19 is a Monday (1); the window opened Sunday night only.
    config = _quiet(time(22, 0), time(7, 0), days=[0])
    assert quiet_window_end(config, datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)) is not None
    assert quiet_window_end(config, datetime(2026, 10, 19, 23, 0, tzinfo=timezone.utc)) is None


def test_inactive_quiet_hours_never_apply():
    config = _quiet(time(0, 0), time(23, 59))
    config.is_active = False
    assert quiet_window_end(config, datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)) is None
    assert quiet_window_end(None, datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)) is None


def test_opt_out_matching_is_exact_and_prefers_narrowest():
    user_id, supplier_id = uuid.uuid4(), uuid.uuid4()
    broad = CommunicationOptOut(id=uuid.uuid4(), user_id=user_id, channel=DeliveryChannel.EMAIL)
    narrow = CommunicationOptOut(
        id=uuid.uuid4(),
        user_id=user_id,
        supplier_id=supplier_id,
        channel=DeliveryChannel.EMAIL,
        automation_type="payment_due",
    )
    other_type = CommunicationOptOut(
        id=uuid.uuid4(), user_id=user_id, channel=DeliveryChannel.SMS, automation_type="lead_new"
    )
    opt_outs = [broad, narrow, other_type]

    match = find_matching_opt_out(
        opt_outs, user_id=user_id, supplier_id=supplier_id, channel="email", automation_type="payment_due"
    )
    assert match is narrow

    match = find_matching_opt_out(
        opt_outs, user_id=user_id, supplier_id=uuid.uuid4(), channel="email", automation_type="payment_due"
    )
    assert match is broad

    assert (
        find_matching_opt_out(opt_outs, user_id=user_id, supplier_id=None, channel="sms", automation_type="quote_sent_no_open")
        is None
    )
    assert find_matching_opt_out(opt_outs, user_id=None, supplier_id=None, channel="email", automation_type=None) is None


@pytest.mark.asyncio
async def test_check_rate_limit_counts_rolling_window(session, factory):
    _, supplier = await factory.supplier()
    now = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    session.add(RateLimitConfig(supplier_id=supplier.id, channel=DeliveryChannel.SMS, max_per_hour=2, max_per_day=2))
    await session.commit()
    for minutes in (30, 60 * 5):
        await factory.job(
            supplier_id=supplier.id,
            recipient_user_id=None,
            channel=DeliveryChannel.SMS,
            status=JobStatus.SENT,
            scheduled_for=now - timedelta(minutes=minutes),
            executed_at=now - timedelta(minutes=minutes),
        )

    decision = await constraint_service.check_rate_limit(
        session, supplier_id=supplier.id, channel=DeliveryChannel.SMS, now=now
    )
    assert decision.exceeded is True
    assert decision.window == "day"
    assert decision.sent_in_window == 2
    assert decision.retry_at == now - timedelta(hours=5) + timedelta(days=1)

    email = await constraint_service.check_rate_limit(
        session, supplier_id=supplier.id, channel=DeliveryChannel.EMAIL, now=now
    )
    assert email.exceeded is False


@pytest.mark.asyncio
async def test_quiet_hours_upsert_updates_in_place(client, factory):
    owner, supplier = await factory.supplier()
    payload = {
        "supplier_id": str(supplier.id),
        "start_time": "21:00:00",
        "end_time": "08:00:00",
        "timezone": "Europe/Madrid",
        "days_of_week": [1, 2, 3, 4, 5],
    }
    first = await client.put("/api/communication/quiet-hours", headers=owner.headers, json=payload)
    assert first.status_code == 200

    second = await client.put(
        "/api/communication/quiet-hours", headers=owner.headers, json={**payload, "end_time": "09:00:00"}
    )
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["end_time"] == "09:00:00"

    listing = await client.get(
        "/api/communication/quiet-hours", params={"supplier_id": str(supplier.id)}, headers=owner.headers
    )
    assert [item["id"] for item in listing.json()] == [first.json()["id"]]


@pytest.mark.asyncio
async def test_quiet_hours_validation(client, factory):
    owner, supplier = await factory.supplier()
    bad_zone = await client.put(
        "/api/communication/quiet-hours",
        headers=owner.headers,
        json={"supplier_id": str(supplier.id), "start_time": "21:00", "end_time": "08:00", "timezone": "Mars/Base"},
    )
    assert bad_zone.status_code == 422

    empty_window = await client.put(
        "/api/communication/quiet-hours",
        headers=owner.headers,
        json={"supplier_id": str(supplier.id), "start_time": "21:00", "end_time": "21:00"},
    )
    assert empty_window.status_code == 422


@pytest.mark.asyncio
async def test_global_quiet_hours_require_admin(client, factory):
    owner, _ = await factory.supplier()
    admin = await factory.admin()
    payload = {"start_time": "22:00", "end_time": "07:00"}

    denied = await client.put("/api/communication/quiet-hours", headers=owner.headers, json=payload)
    assert denied.status_code == 403

    allowed = await client.put("/api/communication/quiet-hours", headers=admin.headers, json=payload)
    assert allowed.status_code == 200
    assert allowed.json()["supplier_id"] is None


@pytest.mark.asyncio
async def test_rate_limits_are_unique_per_channel(client, factory):
    owner, supplier = await factory.supplier()
    for channel, hourly in (("sms", 10), ("email", 50), ("sms", 20)):
        response = await client.put(
            "/api/communication/rate-limits",
            headers=owner.headers,
            json={"supplier_id": str(supplier.id), "channel": channel, "max_per_hour": hourly, "max_per_day": 100},
        )
        assert response.status_code == 200

    listing = await client.get(
        "/api/communication/rate-limits", params={"supplier_id": str(supplier.id)}, headers=owner.headers
    )
    assert listing.status_code == 200
    rows = listing.json()
    assert [row["channel"] for row in rows] == ["email", "sms"]
    assert rows[1]["max_per_hour"] == 20


@pytest.mark.asyncio
async def test_opt_outs_are_append_only(client, factory):
    user = await factory.user(prefix="buyer")

    empty = await client.get("/api/communication/opt-outs", headers=user.headers)
    assert empty.status_code == 200
    assert empty.json() == []

    payload = {"channel": "email", "automation_type": "payment_due", "reason": "Too many reminders"}
    created = await client.post("/api/communication/opt-outs", headers=user.headers, json=payload)
    assert created.status_code == 201
    assert created.json()["user_id"] == user.user_id
    assert created.json()["supplier_id"] is None

    duplicate = await client.post("/api/communication/opt-outs", headers=user.headers, json=payload)
    assert duplicate.status_code == 409
    assert duplicate.json()["code"] == "conflict"

    broader = await client.post("/api/communication/opt-outs", headers=user.headers, json={"channel": "email"})
    assert broader.status_code == 201

    listing = await client.get("/api/communication/opt-outs", headers=user.headers)
    assert len(listing.json()) == 2


@pytest.mark.asyncio
async def test_cannot_opt_out_other_users_without_supplier_access(client, factory):
    user = await factory.user(prefix="buyer")
    other = await factory.user(prefix="other")

    response = await client.post(
        "/api/communication/opt-outs",
        headers=user.headers,
        json={"user_id": other.user_id, "channel": "sms"},
    )
    assert response.status_code == 403
