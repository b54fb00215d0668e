"""
Change feed for attendance records.

Every committed write to ``attendance_records`` is published as a
``ChangeEvent`` on a per-employee channel. Subscribers treat an event purely
as a reload trigger; the payload is informational and never merged into
local state.

Two backends:

* ``LocalChangeFeed`` — in-process fan-out, fine for a single worker.
* ``RedisChangeFeed`` — Redis pub/sub so every worker process sees writes
  made by any other.

Each ``Subscription`` owns a queue and one worker task, so events for a
subscriber are handled one at a time in arrival order.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    event_type: ChangeType
    table: str = "attendance_records"
    employee_id: int
    record_id: int | None = None
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]


def channel_for(employee_id: int) -> str:
    return f"attendance:{employee_id}"


class Subscription:
    """Handle for one subscriber; events are queued and handled in order."""

    def __init__(self, employee_id: int, handler: ChangeHandler) -> None:
        self.employee_id = employee_id
        self._handler = handler
        self._queue: asyncio.Queue[ChangeEvent] = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        self.closed = False

    def deliver(self, event: ChangeEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except Exception:
                logger.exception(
                    "Change handler failed for employee %d (%s)",
                    self.employee_id,
                    event.event_type,
                )
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every event delivered so far has been handled."""
        await self._queue.join()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker


class ChangeFeed:
    """Interface shared by the feed backends."""

    async def publish(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    async def subscribe(self, employee_id: int, handler: ChangeHandler) -> Subscription:
        raise NotImplementedError

    async def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# ── In-process backend ──────────────────────────────────────────────
class LocalChangeFeed(ChangeFeed):
    def __init__(self) -> None:
        self._subscribers: dict[int, set[Subscription]] = defaultdict(set)

    async def publish(self, event: ChangeEvent) -> None:
        subscribers = list(self._subscribers.get(event.employee_id, ()))
        logger.debug(
            "Publishing %s for employee %d to %d subscriber(s)",
            event.event_type,
            event.employee_id,
            len(subscribers),
        )
        for sub in subscribers:
            sub.deliver(event)

    async def subscribe(self, employee_id: int, handler: ChangeHandler) -> Subscription:
        sub = Subscription(employee_id, handler)
        self._subscribers[employee_id].add(sub)
        return sub

    async def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.employee_id)
        if subs is not None:
            subs.discard(subscription)
            if not subs:
                del self._subscribers[subscription.employee_id]
        await subscription.close()

    def subscriber_count(self, employee_id: int) -> int:
        return len(self._subscribers.get(employee_id, ()))

    async def close(self) -> None:
        for subs in list(self._subscribers.values()):
            for sub in list(subs):
                await self.unsubscribe(sub)


# ── Redis pub/sub backend ───────────────────────────────────────────
class RedisSubscription(Subscription):
    def __init__(self, employee_id: int, handler: ChangeHandler, pubsub) -> None:
        super().__init__(employee_id, handler)
        self._pubsub = pubsub
        self._reader = asyncio.create_task(self._read())

    async def _read(self) -> None:
        try:
            async for message in self._pubsub.listen():
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.model_validate_json(message["data"])
                except ValueError:
                    logger.warning("Dropping malformed change event: %r", message["data"])
                    continue
                self.deliver(event)
        except Exception:
            logger.exception(
                "Change feed reader for employee %d stopped; no further reloads",
                self.employee_id,
            )

    async def close(self) -> None:
        if self.closed:
            return
        self._reader.cancel()
        try:
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await self._reader
            try:
                await self._pubsub.unsubscribe()
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning("Error releasing pubsub for employee %d: %s", self.employee_id, e)
        finally:
            await super().close()


class RedisChangeFeed(ChangeFeed):
    def __init__(self, url: str, client=None) -> None:
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.from_url(url)
        self._redis = client

    async def publish(self, event: ChangeEvent) -> None:
        await self._redis.publish(channel_for(event.employee_id), event.model_dump_json())

    async def subscribe(self, employee_id: int, handler: ChangeHandler) -> Subscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel_for(employee_id))
        return RedisSubscription(employee_id, handler, pubsub)

    async def unsubscribe(self, subscription: Subscription) -> None:
        await subscription.close()

    async def ping(self) -> bool:
        return bool(await self._redis.ping())

    async def close(self) -> None:
        await self._redis.aclose()


def build_change_feed(backend: str, redis_url: str) -> ChangeFeed:
    if backend == "redis":
        logger.info("Using Redis change feed at %s", redis_url)
        return RedisChangeFeed(redis_url)
    return LocalChangeFeed()
