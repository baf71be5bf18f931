"""Webhook event publisher."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from accounts_api.webhooks.event import (
    EventDraft,
    EventMetadata,
    WebhookEvent,
    WebhookEventType,
    generate_event_id,
    utc_now_iso,
)
from accounts_api.webhooks.queue import EventQueueAdapter
from accounts_api.webhooks.storage import EventStorageAdapter

logger = logging.getLogger(__name__)


class WebhookEventPublisher:
    """Records business events and queues them for delivery."""

    def __init__(
        self,
        storage: EventStorageAdapter,
        queue: EventQueueAdapter,
        source: str = "accounts-api",
        environment: str = "development",
    ):
        self._storage = storage
        self._queue = queue
        self._source = source
        self._environment = environment

    def build_metadata(self, overrides: dict[str, Any] | None = None) -> EventMetadata:
        """Merge caller-supplied metadata over the publisher defaults."""
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        return EventMetadata(
            tenant_id=overrides.get("tenant_id", "system"),
            user_id=overrides.get("user_id"),
            timestamp=overrides.get("timestamp") or utc_now_iso(),
            version=overrides.get("version", "1.0.0"),
            environment=overrides.get("environment", self._environment),
            source=overrides.get("source", self._source),
        )

    def create_event(
        self,
        event_type: WebhookEventType,
        data: Any,
        metadata: dict[str, Any] | None = None,
    ) -> WebhookEvent:
        return WebhookEvent(
            id=generate_event_id(),
            type=WebhookEventType(event_type),
            data=data,
            metadata=self.build_metadata(metadata),
        )

    async def publish(
        self,
        event_type: WebhookEventType,
        data: Any,
        metadata: dict[str, Any] | None = None,
    ) -> WebhookEvent:
        """
        Store an event, then queue it for delivery.

        Args:
            event_type: The event type (e.g., WebhookEventType.INVOICE_CREATED)
            data: The event data payload
            metadata: Overrides for tenant_id, user_id, timestamp, version,
                environment and source

        Returns:
            The published WebhookEvent

        Raises:
            Whatever the storage or queue adapter raised. An event that could
            not be stored is never queued.
        """
        event = self.create_event(event_type, data, metadata)

        try:
            # Store event for auditing and replay
            await self._storage.store(event)
            # Queue event for processing
            await self._queue.enqueue(event)
        except Exception as e:
            logger.error("Failed to publish webhook event %s: %s", event.id, e)
            raise

        logger.info(
            "Published webhook event %s (type: %s, tenant: %s)",
            event.id,
            event.type,
            event.metadata.tenant_id,
        )
        return event

    async def publish_batch(self, drafts: Iterable[EventDraft]) -> list[WebhookEvent]:
        """Store a batch of events, then queue the whole batch."""
        events = [self.create_event(d.type, d.data, d.metadata) for d in drafts]
        if not events:
            return []

        try:
            await self._storage.store_batch(events)
            await self._queue.enqueue_batch(events)
        except Exception as e:
            logger.error("Failed to publish batch of %d webhook events: %s", len(events), e)
            raise

        logger.info("Published batch of %d webhook events", len(events))
        return events
