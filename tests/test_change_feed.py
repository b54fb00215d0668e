"""Tests for the in-process change feed and subscription handles."""

import pytest

from app.realtime.feed import (ChangeEvent, LocalChangeFeed, RedisChangeFeed,
                               build_change_feed, channel_for)


def _event(employee_id: int, event_type: str = "INSERT", record_id: int = 1) -> ChangeEvent:
    return ChangeEvent(event_type=event_type, employee_id=employee_id, record_id=record_id)


@pytest.mark.asyncio
async def test_events_reach_only_matching_employee(change_feed):
    alice_seen, bob_seen = [], []

    async def _alice(event):
        alice_seen.append(event.record_id)

    async def _bob(event):
        bob_seen.append(event.record_id)

    alice = await change_feed.subscribe(1, _alice)
    bob = await change_feed.subscribe(2, _bob)

    await change_feed.publish(_event(1, record_id=10))
    await change_feed.publish(_event(2, record_id=20))
    await change_feed.publish(_event(1, "UPDATE", record_id=10))
    await alice.join()
    await bob.join()

    assert alice_seen == [10, 10]
    assert bob_seen == [20]


@pytest.mark.asyncio
async def test_events_are_handled_one_at_a_time_in_order(change_feed):
    seen = []

    async def _handler(event):
        seen.append(event.event_type)

    sub = await change_feed.subscribe(1, _handler)
    for event_type in ("INSERT", "UPDATE", "DELETE"):
        await change_feed.publish(_event(1, event_type))
    await sub.join()
    assert seen == ["INSERT", "UPDATE", "DELETE"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_subscription(change_feed):
    calls = []

    async def _handler(event):
        calls.append(event.record_id)
        if event.record_id == 1:
            raise RuntimeError("boom")

    sub = await change_feed.subscribe(1, _handler)
    await change_feed.publish(_event(1, record_id=1))
    await change_feed.publish(_event(1, record_id=2))
    await sub.join()
    assert calls == [1, 2]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery(change_feed):
    seen = []

    async def _handler(event):
        seen.append(event)

    sub = await change_feed.subscribe(1, _handler)
    await change_feed.unsubscribe(sub)
    assert sub.closed is True
    assert change_feed.subscriber_count(1) == 0

    await change_feed.publish(_event(1))
    assert seen == []


@pytest.mark.asyncio
async def test_close_releases_every_subscription():
    feed = LocalChangeFeed()

    async def _noop(event):
        return None

    subs = [await feed.subscribe(i, _noop) for i in (1, 1, 2)]
    await feed.close()
    assert all(s.closed for s in subs)
    assert feed.subscriber_count(1) == 0
    assert feed.subscriber_count(2) == 0


def test_channel_names_are_per_employee():
    assert channel_for(42) == "attendance:42"


def test_change_event_json_shape():
    event = ChangeEvent.model_validate_json(
        '{"event_type": "UPDATE", "employee_id": 7, "record_id": 3,'
        ' "occurred_at": "2026-03-10T17:15:00+00:00"}'
    )
    assert event.table == "attendance_records"
    assert event.employee_id == 7


@pytest.mark.asyncio
async def test_build_change_feed_selects_backend():
    assert isinstance(build_change_feed("memory", "redis://localhost:6379/0"), LocalChangeFeed)
    feed = build_change_feed("redis", "redis://localhost:6379/0")
    assert isinstance(feed, RedisChangeFeed)
    await feed.close()
