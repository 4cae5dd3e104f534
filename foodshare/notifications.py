"""
Real-time event fan-out to connected clients.

Delivery is best effort: there is no backlog for disconnected subscribers and
a subscriber that falls behind loses messages.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncContextManager, AsyncIterator, Protocol

import redis
from redis import asyncio as aioredis

logger = logging.getLogger(__name__)

NEW_LISTING_EVENT = "new-listing"


class EventBroadcaster(Protocol):
    """Publishes events to every connected subscriber."""

    def publish(self, event: str, payload: dict) -> None:
        ...

    def subscribe(self) -> AsyncContextManager[AsyncIterator[dict]]:
        ...


async def _drain(queue: asyncio.Queue) -> AsyncIterator[dict]:
    while True:
        yield await queue.get()


@dataclass
class InMemoryEventBroadcaster:
    """In-process fan-out; publish may be called from any thread."""

    max_pending: int = 100
    # Most recent messages, kept for inspection in development and tests.
    published: deque = field(default_factory=lambda: deque(maxlen=100))

    def __post_init__(self):
        self._subscribers: set = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str, payload: dict) -> None:
        message = {"event": event, "data": payload}
        self.published.append(message)
        with self._lock:
            subscribers = list(self._subscribers)
        for loop, queue in subscribers:
            loop.call_soon_threadsafe(self._offer, queue, message)

    @staticmethod
    def _offer(queue: asyncio.Queue, message: dict) -> None:
        try:
            queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning("Dropping %s event for a slow subscriber", message["event"])

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[dict]]:
        entry = (asyncio.get_running_loop(), asyncio.Queue(maxsize=self.max_pending))
        with self._lock:
            self._subscribers.add(entry)
        try:
            yield _drain(entry[1])
        finally:
            with self._lock:
                self._subscribers.discard(entry)


@dataclass
class RedisEventBroadcaster:
    """Redis pub/sub broadcaster so every API process reaches its own sockets."""

    url: str
    channel: str = "foodshare:events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, event: str, payload: dict) -> None:
        message = json.dumps({"event": event, "data": payload}, default=str)
        self.client.publish(self.channel, message)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator[AsyncIterator[dict]]:
        client = aioredis.Redis.from_url(self.url)
        pubsub = client.pubsub()
        await pubsub.subscribe(self.channel)
        try:
            yield self._listen(pubsub)
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()
            await client.aclose()

    @staticmethod
    async def _listen(pubsub) -> AsyncIterator[dict]:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                yield json.loads(message["data"])
            except ValueError:
                logger.warning("Skipping malformed event on channel: %r", message["data"])
