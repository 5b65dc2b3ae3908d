"""Tests for ops endpoints and admin-only access checks."""

from __future__ import annotations

from datetime import timedelta

import pytest

from app.core.config import settings
from app.models.automation import DeliveryChannel, JobStatus
from app.utils.datetime import utcnow


@pytest.mark.asyncio
async def test_ops_requires_auth(client):
    response = await client.get("/api/ops/queues")
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_ops_rejects_regular_users(client, factory):
    user = await factory.user()
    response = await client.get("/api/ops/queues", headers=user.headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_ops_snapshot_for_allowlisted_operator(client, factory, monkeypatch):
    operator = await factory.user(prefix="ops")
    monkeypatch.setattr(settings, "ops_admin_emails", [operator.user.email.lower()])

    response = await client.get("/api/ops/queues", headers=operator.headers)
    assert response.status_code == 200
    data = response.json()
    assert "status" in data
    assert "queues" in data
    assert data["delivery"] == {}


@pytest.mark.asyncio
async def test_manual_executor_run_processes_due_jobs_inline(client, factory, session):
    admin = await factory.admin()
    job = await factory.job(
        supplier_id=None,
        recipient_user_id=None,
        channel=DeliveryChannel.SMS,
        scheduled_for=utcnow() - timedelta(minutes=1),
    )

    response = await client.post("/api/ops/automation-jobs/run", headers=admin.headers)
    assert response.status_code == 200
    summary = response.json()
    assert summary["scanned"] == 1
    assert summary["sent"] == 1

    await session.refresh(job)
    assert job.status == JobStatus.SENT
