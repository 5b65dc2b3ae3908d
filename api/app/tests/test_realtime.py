from __future__ import annotations

import json

import pytest

from app.services.realtime import ChangeEvent, RealtimeBroker, Subscription


@pytest.mark.asyncio
async def test_publish_reaches_topic_subscribers_only():
    broker = RealtimeBroker()
    mine = await broker.subscribe("notifications:a")
    theirs = await broker.subscribe("notifications:b")

    await broker.publish("notifications:a", "INSERT", {"id": "1"})

    event = await mine.get(timeout=0.1)
    assert event is not None
    assert event.event_type == "INSERT"
    assert event.record == {"id": "1"}
    assert await theirs.get(timeout=0.05) is None

    await mine.close()
    await theirs.close()
    assert broker.subscriber_count("notifications:a") == 0


@pytest.mark.asyncio
async def test_same_key_replaces_previous_subscription():
    broker = RealtimeBroker()
    first = await broker.subscribe("notifications:a", key="user-a")
    second = await broker.subscribe("notifications:a", key="user-a")

    assert first.closed is True
    assert second.closed is False
    assert broker.subscriber_count("notifications:a") == 1
    assert await first.get(timeout=0.01) is None

    await second.close()
    await second.close()
    assert broker.subscriber_count("notifications:a") == 0


@pytest.mark.asyncio
async def test_listen_always_releases():
    broker = RealtimeBroker()
    with pytest.raises(RuntimeError):
        async with broker.listen("notifications:a", key="k"):
            assert broker.subscriber_count("notifications:a") == 1
            raise RuntimeError("boom")
    assert broker.subscriber_count("notifications:a") == 0


@pytest.mark.asyncio
async def test_publish_without_subscribers_is_harmless():
    broker = RealtimeBroker()
    event = await broker.publish("notifications:nobody", "UPDATE", {"updated": 2})
    assert event.topic == "notifications:nobody"


def test_change_event_formats():
    event = ChangeEvent(topic="notifications:a", event_type="INSERT", table="notifications", record={"id": "n1"})

    restored = ChangeEvent.from_json(event.to_json())
    assert restored == event

    frame = event.to_sse()
    assert frame.startswith(f"id: {event.id}\nevent: INSERT\n")
    assert frame.endswith("\n\n")
    data = json.loads(frame.split("data: ", 1)[1])
    assert data["record"] == {"id": "n1"}


def test_base_subscription_requires_a_get_implementation():
    with pytest.raises(TypeError):
        Subscription(RealtimeBroker(), "notifications:a", None)
