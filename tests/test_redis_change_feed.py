"""Tests for the Redis pub/sub change feed, run against an in-memory client."""

import asyncio
import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.realtime.feed import ChangeEvent, RedisChangeFeed, channel_for


class FakePubSub:
    """Mimics ``redis.asyncio.client.PubSub`` closely enough for the feed."""

    def __init__(self, client: "FakeRedis") -> None:
        self._client = client
        self.queue: asyncio.Queue = asyncio.Queue()
        self.channels: set[str] = set()
        self.closed = False

    async def subscribe(self, channel: str) -> None:
        self.channels.add(channel)
        self._client.pubsubs.add(self)
        self.queue.put_nowait({"type": "subscribe", "channel": channel, "data": 1})

    async def unsubscribe(self) -> None:
        self.channels.clear()
        self._client.pubsubs.discard(self)

    async def aclose(self) -> None:
        self.closed = True

    async def listen(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, Exception):
                raise item
            yield item

    def drop_connection(self) -> None:
        self.queue.put_nowait(RedisConnectionError("redis connection lost"))


class FakeRedis:
    def __init__(self) -> None:
        self.pubsubs: set[FakePubSub] = set()
        self.closed = False

    def pubsub(self) -> FakePubSub:
        return FakePubSub(self)

    async def publish(self, channel: str, data) -> int:
        receivers = [p for p in self.pubsubs if channel in p.channels]
        for p in receivers:
            p.queue.put_nowait({"type": "message", "channel": channel, "data": data})
        return len(receivers)

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
async def redis_feed():
    client = FakeRedis()
    feed = RedisChangeFeed("redis://unused", client=client)
    yield feed, client
    await feed.close()


async def _drain(pubsub: FakePubSub, sub) -> None:
    """Let the reader empty the pubsub, then let the worker handle everything."""
    while not pubsub.queue.empty():
        await asyncio.sleep(0)
    await sub.join()


def _only_pubsub(client: FakeRedis) -> FakePubSub:
    (pubsub,) = client.pubsubs
    return pubsub


@pytest.mark.asyncio
async def test_published_events_reach_the_channel_subscriber(redis_feed):
    feed, client = redis_feed
    seen = []

    async def _handler(event):
        seen.append((event.event_type, event.record_id))

    sub = await feed.subscribe(7, _handler)
    pubsub = _only_pubsub(client)
    assert pubsub.channels == {channel_for(7)}

    await feed.publish(ChangeEvent(event_type="INSERT", employee_id=7, record_id=3))
    await feed.publish(ChangeEvent(event_type="INSERT", employee_id=8, record_id=4))
    await feed.publish(ChangeEvent(event_type="UPDATE", employee_id=7, record_id=3))
    await _drain(pubsub, sub)

    assert seen == [("INSERT", 3), ("UPDATE", 3)]
    await feed.unsubscribe(sub)


@pytest.mark.asyncio
async def test_malformed_messages_are_dropped(redis_feed, caplog):
    feed, client = redis_feed
    seen = []

    async def _handler(event):
        seen.append(event.record_id)

    sub = await feed.subscribe(7, _handler)
    pubsub = _only_pubsub(client)

    with caplog.at_level(logging.WARNING, logger="app.realtime.feed"):
        await client.publish(channel_for(7), b"not json")
        await client.publish(channel_for(7), b'{"event_type": "TRUNCATE", "employee_id": 7}')
        await feed.publish(ChangeEvent(event_type="DELETE", employee_id=7, record_id=9))
        await _drain(pubsub, sub)

    assert seen == [9]
    assert sum("Dropping malformed change event" in r.getMessage() for r in caplog.records) == 2
    await feed.unsubscribe(sub)


@pytest.mark.asyncio
async def test_unsubscribe_releases_the_pubsub(redis_feed):
    feed, client = redis_feed
    seen = []

    async def _handler(event):
        seen.append(event)

    sub = await feed.subscribe(7, _handler)
    pubsub = _only_pubsub(client)

    await feed.unsubscribe(sub)
    assert sub.closed is True
    assert pubsub.closed is True
    assert client.pubsubs == set()

    receivers = await client.publish(channel_for(7), b"{}")
    assert receivers == 0
    assert seen == []


@pytest.mark.asyncio
async def test_lost_connection_is_logged_and_close_still_releases(redis_feed, caplog):
    feed, client = redis_feed

    async def _handler(event):
        return None

    sub = await feed.subscribe(7, _handler)
    pubsub = _only_pubsub(client)

    with caplog.at_level(logging.ERROR, logger="app.realtime.feed"):
        pubsub.drop_connection()
        while not pubsub.queue.empty():
            await asyncio.sleep(0)
        await asyncio.sleep(0)

    assert any("stopped" in r.getMessage() for r in caplog.records)

    await feed.unsubscribe(sub)
    assert sub.closed is True
    assert pubsub.closed is True
    assert sub._worker.done()


@pytest.mark.asyncio
async def test_ping_and_close_use_the_client(redis_feed):
    feed, client = redis_feed
    assert await feed.ping() is True
    await feed.close()
    assert client.closed is True
