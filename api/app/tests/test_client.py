"""Python client tests against mocked transports."""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timezone

import httpx
import pytest

from app.client import ClientSettings, CommsClient, NotificationObserver, RealtimeChannel
from app.client.realtime import parse_sse_frame
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RequestTimeoutError,
    TransientNetworkError,
    ValidationError,
)

SETTINGS = ClientSettings(
    api_url="http://comms.test/api",
    api_key="token-123",
    request_timeout_seconds=2.0,
    refetch_interval_seconds=0,
    reconnect_max_backoff_seconds=0.05,
)


def _client(handler) -> CommsClient:
    return CommsClient(SETTINGS, transport=httpx.MockTransport(handler))


def _notification(title: str = "Hello", **overrides) -> dict:
    payload = {
        "id": str(uuid.uuid4()),
        "user_id": str(uuid.uuid4()),
        "type": "lead_new",
        "title": title,
        "message": f"{title} body",
        "payload": {},
        "action_url": None,
        "priority": "normal",
        "is_read": False,
        "read_at": None,
        "created_at": datetime(2026, 10, 19, tzinfo=timezone.utc).isoformat(),
    }
    payload.update(overrides)
    return payload


def _sse(*frames: tuple[str, dict]) -> bytes:
    body = ": keepalive\n\n"
    for name, data in frames:
        body += f"id: {uuid.uuid4().hex}\nevent: {name}\ndata: {json.dumps(data)}\n\n"
    return body.encode()


@pytest.mark.asyncio
async def test_client_sends_bearer_token_and_parses_models():
    seen: list[httpx.Request] = []
    notification = _notification()

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[notification])

    async with _client(handler) as client:
        rows = await client.list_notifications(unread=True, limit=5)

    assert rows[0].title == "Hello"
    assert seen[0].headers["Authorization"] == "Bearer token-123"
    assert seen[0].url.path == "/api/notifications"
    assert seen[0].url.params["unread"] == "true"
    assert seen[0].url.params["limit"] == "5"


@pytest.mark.asyncio
async def test_notification_preferences_send_only_changed_fields():
    seen: list[httpx.Request] = []
    stored = {
        "user_id": str(uuid.uuid4()),
        "email_opt_in": True,
        "push_opt_in": False,
        "categories": {"leads": True, "quotes": True, "orders": True, "reviews": True},
        "system": True,
        "orders": True,
        "marketing": False,
        "updated_at": None,
    }

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "PUT":
            stored.update({k: v for k, v in json.loads(request.content).items() if k != "categories"})
        return httpx.Response(200, json=stored)

    async with _client(handler) as client:
        current = await client.get_notification_preferences()
        updated = await client.update_notification_preferences({"push_opt_in": True})

    assert current.push_opt_in is False
    assert current.categories.quotes is True
    assert updated.push_opt_in is True
    assert seen[1].method == "PUT"
    assert seen[1].url.path == "/api/notifications/preferences"
    assert json.loads(seen[1].content) == {"push_opt_in": True}


@pytest.mark.asyncio
async def test_local_validation_skips_network():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(201, json={})

    async with _client(handler) as client:
        with pytest.raises(ValidationError):
            await client.create_rule({"name": "  ", "trigger_event": "lead_new", "channel": "email"})
        with pytest.raises(ValidationError):
            await client.create_rule({"name": "Nudge", "trigger_event": "lead_new", "channel": "fax"})
        with pytest.raises(ValidationError):
            await client.create_opt_out({"reason": "no channel"})
        with pytest.raises(ValidationError):
            await client.analytics(days=0)
        with pytest.raises(ValidationError):
            await client.update_notification_preferences({"categories": {"spam": True}})

    assert calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "expected"),
    [
        (403, {"detail": "Not allowed", "code": "permission_denied"}, PermissionDeniedError),
        (401, {"detail": "Invalid token", "code": "unauthorized"}, PermissionDeniedError),
        (404, {"detail": "Missing", "code": "not_found"}, NotFoundError),
        (409, {"detail": "Opt-out already recorded", "code": "conflict"}, ConflictError),
        (422, {"detail": [{"loc": ["body"]}], "code": "validation_error"}, ValidationError),
        (502, {"detail": "bad gateway"}, TransientNetworkError),
    ],
)
async def test_http_errors_map_to_taxonomy(status, body, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)

    async with _client(handler) as client:
        with pytest.raises(expected) as excinfo:
            await client.get_opt_outs()
    assert excinfo.value.retryable is (expected is TransientNetworkError)


@pytest.mark.asyncio
async def test_invalid_job_transition_is_a_conflict():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(409, json={"detail": "cannot cancel", "code": "invalid_job_transition"})

    async with _client(handler) as client:
        with pytest.raises(ConflictError):
            await client.cancel_job(uuid.uuid4())


@pytest.mark.asyncio
async def test_timeouts_and_connection_errors_are_retryable():
    def timeout_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    def refused_handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with _client(timeout_handler) as client:
        with pytest.raises(RequestTimeoutError) as timeout_info:
            await client.unread_count()
    assert timeout_info.value.retryable is True
    assert isinstance(timeout_info.value, TimeoutError)

    async with _client(refused_handler) as client:
        with pytest.raises(TransientNetworkError):
            await client.unread_count()


@pytest.mark.asyncio
async def test_delete_returns_none_on_no_content():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(204)

    async with _client(handler) as client:
        assert await client.delete_rule(uuid.uuid4()) is None


def test_parse_sse_frame():
    event = parse_sse_frame(["id: 7", "event: INSERT", 'data: {"record": {"id": "n1"}}'])
    assert event is not None
    assert event.event == "INSERT"
    assert event.id == "7"
    assert event.record == {"id": "n1"}
    assert parse_sse_frame([": keepalive"]) is None


@pytest.mark.asyncio
async def test_realtime_channel_reconnects_then_stops_on_auth_failure():
    calls = 0
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls == 1:
            return httpx.Response(503, json={"detail": "warming up"})
        if calls == 2:
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=_sse(("ready", {"topic": "notifications:x"}), ("INSERT", {"record": {"id": "n1"}})),
            )
        return httpx.Response(401, json={"detail": "Invalid token", "code": "unauthorized"})

    async with _client(handler) as client:
        channel = RealtimeChannel(client.http, received.append, initial_backoff=0.01, max_backoff=0.02)
        channel.start()
        await asyncio.wait_for(channel.wait(), timeout=2)
        await channel.close()

    assert calls == 3
    assert channel.connections == 1
    assert [event.event for event in received] == ["ready", "INSERT"]
    assert isinstance(channel.error, PermissionDeniedError)
    assert channel.running is False


@pytest.mark.asyncio
async def test_realtime_channel_close_is_idempotent():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    async with _client(handler) as client:
        async with RealtimeChannel(client.http, lambda event: None, initial_backoff=0.01, max_backoff=0.02) as channel:
            await asyncio.sleep(0.05)
            assert channel.running is True
        assert channel.closed is True
        assert channel.running is False
        await channel.close()


@pytest.mark.asyncio
async def test_observer_states_and_toasts():
    stream_calls = 0
    listing: list[dict] = []
    toasts = []
    inserted = _notification("Fresh quote")

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal stream_calls
        path = request.url.path
        if path.endswith("/notifications/stream"):
            stream_calls += 1
            if stream_calls == 1:
                listing.append(inserted)
                return httpx.Response(
                    200,
                    headers={"content-type": "text/event-stream"},
                    content=_sse(("ready", {"topic": "t"}), ("INSERT", {"table": "notifications", "record": inserted})),
                )
            return httpx.Response(403, json={"detail": "stop", "code": "permission_denied"})
        if path.endswith("/notifications/unread-count"):
            return httpx.Response(200, json={"count": len(listing)})
        if path.endswith("/notifications"):
            return httpx.Response(200, json=list(listing))
        return httpx.Response(404, json={"detail": "nope", "code": "not_found"})

    async with _client(handler) as client:
        observer = NotificationObserver(client, on_toast=toasts.append, refetch_interval=0)
        assert observer.state == "loading"
        await observer.refresh()
        assert observer.state == "empty"

        observer.channel.start()
        await asyncio.wait_for(observer.channel.wait(), timeout=2)

        assert [toast.title for toast in toasts] == ["Fresh quote"]
        assert observer.state == "ready"
        assert observer.unread_count == 1
        assert observer.notifications[0].title == "Fresh quote"
        await observer.close()


@pytest.mark.asyncio
async def test_observer_logs_errors_instead_of_raising(caplog):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"detail": "down"})

    async with _client(handler) as client:
        observer = NotificationObserver(client, refetch_interval=0)
        await observer.refresh()

    assert observer.state == "error"
    assert isinstance(observer.error, TransientNetworkError)
    assert "Notification refetch failed" in caplog.text


@pytest.mark.asyncio
async def test_observer_periodic_refetch():
    fetches = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal fetches
        if request.url.path.endswith("/stream"):
            return httpx.Response(403, json={"detail": "no stream", "code": "permission_denied"})
        if request.url.path.endswith("/unread-count"):
            return httpx.Response(200, json={"count": 0})
        fetches += 1
        return httpx.Response(200, json=[])

    async with _client(handler) as client:
        async with NotificationObserver(client, refetch_interval=0.02) as observer:
            await asyncio.sleep(0.15)
            assert observer.state == "empty"
        assert observer.channel.closed is True

    assert fetches >= 3
