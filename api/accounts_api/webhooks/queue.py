"""Event queue adapters (FIFO handoff from publish to processing)."""

from __future__ import annotations

import json
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Protocol, runtime_checkable

import redis.asyncio as redis

from accounts_api.webhooks.event import WebhookEvent

logger = logging.getLogger(__name__)

# Queue key for webhook events
WEBHOOK_QUEUE_KEY = "webhook:events"


@runtime_checkable
class EventQueueAdapter(Protocol):
    """FIFO queue of events waiting for delivery."""

    async def enqueue(self, event: WebhookEvent) -> None: ...

    async def enqueue_batch(self, events: list[WebhookEvent]) -> None: ...

    async def dequeue(self) -> WebhookEvent | None:
        """Oldest event, or None when the queue is empty."""
        ...

    async def peek(self) -> WebhookEvent | None: ...

    async def size(self) -> int: ...


class InMemoryEventQueue:
    """Reference queue for development and tests."""

    def __init__(self) -> None:
        self._queue: deque[WebhookEvent] = deque()

    async def enqueue(self, event: WebhookEvent) -> None:
        self._queue.append(event)

    async def enqueue_batch(self, events: list[WebhookEvent]) -> None:
        self._queue.extend(events)

    async def dequeue(self) -> WebhookEvent | None:
        return self._queue.popleft() if self._queue else None

    async def peek(self) -> WebhookEvent | None:
        return self._queue[0] if self._queue else None

    async def size(self) -> int:
        return len(self._queue)

    def clear(self) -> None:
        self._queue.clear()


class ValkeyEventQueue:
    """Queue kept in a Valkey list: RPUSH to enqueue, LPOP to dequeue."""

    def __init__(
        self,
        client_factory: Callable[[], Awaitable[redis.Redis]],
        key: str = WEBHOOK_QUEUE_KEY,
    ):
        self._client_factory = client_factory
        self._key = key

    @staticmethod
    def _decode(raw: str | None) -> WebhookEvent | None:
        if raw is None:
            return None
        try:
            return WebhookEvent.from_json(raw)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error("Failed to parse queued webhook event: %s", e)
            return None

    async def enqueue(self, event: WebhookEvent) -> None:
        client = await self._client_factory()
        await client.rpush(self._key, event.to_json())

    async def enqueue_batch(self, events: list[WebhookEvent]) -> None:
        if not events:
            return
        client = await self._client_factory()
        await client.rpush(self._key, *(event.to_json() for event in events))

    async def dequeue(self) -> WebhookEvent | None:
        client = await self._client_factory()
        while True:
            raw = await client.lpop(self._key)
            if raw is None:
                return None
            event = self._decode(raw)
            if event is not None:
                return event

    async def peek(self) -> WebhookEvent | None:
        client = await self._client_factory()
        return self._decode(await client.lindex(self._key, 0))

    async def size(self) -> int:
        client = await self._client_factory()
        return await client.llen(self._key)
