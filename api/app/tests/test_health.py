from __future__ import annotations

import pytest

from app.core.config import settings


@pytest.mark.asyncio
async def test_health_reports_ok_without_auth(client, monkeypatch):
    called = False

    async def _snapshot_stub() -> dict[str, object]:
        nonlocal called
        called = True
        return {}

    monkeypatch.setattr("app.main.delivery_monitor.snapshot", _snapshot_stub)

    response = await client.get("/api/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert "delivery" not in payload
    assert called is False


@pytest.mark.asyncio
async def test_health_reports_ok_for_authenticated_users(client, factory, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {}

    monkeypatch.setattr("app.main.delivery_monitor.snapshot", _snapshot_stub)
    user = await factory.user(prefix="health")

    response = await client.get("/api/health", headers=user.headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["delivery"]["channels"] == {}
    assert payload["delivery"]["issues"] == []


@pytest.mark.asyncio
async def test_health_degrades_when_channel_circuit_is_open(client, factory, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {
            "sms": {
                "attempted": 7,
                "delivered": 2,
                "failed": 5,
                "paused": 1,
                "last_latency_ms": 220.13,
                "last_error": "webhook_status:503",
                "circuit": {
                    "failure_streak": 0,
                    "open_until": 0.0,
                    "remaining_cooldown": 12.25,
                    "current_backoff": 60.0,
                    "opened_count": 1,
                },
            }
        }

    monkeypatch.setattr("app.main.delivery_monitor.snapshot", _snapshot_stub)
    user = await factory.user(prefix="health")

    response = await client.get("/health", headers=user.headers)
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    telemetry = payload["delivery"]
    assert telemetry["channels"]["sms"]["state"] == "paused"
    assert telemetry["issues"][0] == {"channel": "sms", "reason": "circuit_open", "remaining_cooldown": 12.25}


@pytest.mark.asyncio
async def test_health_flags_last_error(client, factory, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {
            "email": {
                "attempted": 1,
                "delivered": 0,
                "failed": 1,
                "paused": 0,
                "last_latency_ms": 80.0,
                "last_error": "webhook_unreachable",
                "circuit": {"remaining_cooldown": 0.0},
            }
        }

    monkeypatch.setattr("app.main.delivery_monitor.snapshot", _snapshot_stub)
    user = await factory.user(prefix="health")

    response = await client.get("/api/health", headers=user.headers)
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["delivery"]["channels"]["email"]["state"] == "degraded"
    assert payload["delivery"]["issues"][0]["reason"] == "last_error"


@pytest.mark.asyncio
async def test_health_allows_allowlisted_clients_without_auth(client, monkeypatch):
    async def _snapshot_stub() -> dict[str, object]:
        return {}

    monkeypatch.setattr("app.main.delivery_monitor.snapshot", _snapshot_stub)
    monkeypatch.setattr(settings, "health_allowlist", ["testserver"])

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["delivery"]["issues"] == []
