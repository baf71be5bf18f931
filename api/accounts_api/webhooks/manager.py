"""Webhook manager: endpoint CRUD, publishing and the background delivery loops."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from accounts_api.webhooks.config import DEFAULT_WEBHOOK_CONFIG, WebhookConfig
from accounts_api.webhooks.domain import (
    WebhookDelivery,
    WebhookEndpoint,
    WebhookStats,
    generate_webhook_secret,
)
from accounts_api.webhooks.event import (
    EventDraft,
    EventFilter,
    EventMetadata,
    WebhookEvent,
    WebhookEventType,
)
from accounts_api.webhooks.http import HttpClient
from accounts_api.webhooks.processor import WebhookEventProcessor
from accounts_api.webhooks.publisher import WebhookEventPublisher
from accounts_api.webhooks.queue import EventQueueAdapter, InMemoryEventQueue
from accounts_api.webhooks.repositories import (
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
)
from accounts_api.webhooks.signer import WebhookSigner
from accounts_api.webhooks.storage import EventStorageAdapter, InMemoryEventStorage

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT_MS = 10_000


class WebhookManager:
    """Owns the publisher and processor and drives their periodic work."""

    def __init__(
        self,
        endpoint_repo: WebhookEndpointRepository,
        delivery_repo: WebhookDeliveryRepository,
        storage: EventStorageAdapter,
        queue: EventQueueAdapter,
        http_client: HttpClient,
        config: WebhookConfig = DEFAULT_WEBHOOK_CONFIG,
        app_name: str = "accounts-api",
        app_version: str = "1.0.0",
        environment: str = "development",
    ):
        self._endpoint_repo = endpoint_repo
        self._delivery_repo = delivery_repo
        self._storage = storage
        self._queue = queue
        self._http_client = http_client
        self._config = config

        self._publisher = WebhookEventPublisher(
            storage,
            queue,
            source=app_name,
            environment=environment,
        )
        self._processor = WebhookEventProcessor(
            endpoint_repo,
            delivery_repo,
            http_client,
            config,
            event_storage=storage,
            user_agent=f"{app_name}/{app_version}",
        )

        self._running = False
        self._stop_event = asyncio.Event()
        self._processing_lock = asyncio.Lock()
        self._tasks: list[asyncio.Task] = []

    @property
    def config(self) -> WebhookConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    # Endpoint management

    async def create_endpoint(
        self,
        tenant_id: str,
        url: str,
        events: Iterable[WebhookEventType],
        secret: str | None = None,
        **options: Any,
    ) -> WebhookEndpoint:
        """Create an endpoint; a ``whsec_`` secret is generated when none is given."""
        endpoint = WebhookEndpoint(
            tenant_id=tenant_id,
            url=url,
            secret=secret or generate_webhook_secret(),
            events={WebhookEventType(e) for e in events},
            **options,
        )
        created = await self._endpoint_repo.create(endpoint)
        logger.info("Created webhook endpoint %s for tenant %s", created.id, tenant_id)
        return created

    async def update_endpoint(self, endpoint_id: str, **updates: Any) -> WebhookEndpoint:
        if "events" in updates and updates["events"] is not None:
            updates["events"] = {WebhookEventType(e) for e in updates["events"]}
        return await self._endpoint_repo.update(endpoint_id, **updates)

    async def delete_endpoint(self, endpoint_id: str) -> None:
        await self._endpoint_repo.delete(endpoint_id)
        logger.info("Deleted webhook endpoint %s", endpoint_id)

    async def get_endpoint(self, endpoint_id: str) -> WebhookEndpoint | None:
        return await self._endpoint_repo.find_by_id(endpoint_id)

    async def get_endpoints(self, tenant_id: str) -> list[WebhookEndpoint]:
        return await self._endpoint_repo.find_by_tenant_id(tenant_id)

    # Event publishing

    async def publish_event(
        self,
        event_type: WebhookEventType,
        data: Any,
        metadata: dict[str, Any] | None = None,
    ) -> WebhookEvent:
        return await self._publisher.publish(event_type, data, metadata)

    async def publish_batch(self, events: Iterable[EventDraft]) -> list[WebhookEvent]:
        return await self._publisher.publish_batch(events)

    # Event processing

    async def process_events(self) -> int:
        """
        Drain up to ``batch_size`` events from the queue.

        Only one drain runs at a time. A failure while processing one event
        is logged and the drain moves on to the next event.

        Returns:
            Number of events taken off the queue
        """
        async with self._processing_lock:
            dequeued = 0
            while dequeued < self._config.batch_size:
                event = await self._queue.dequeue()
                if event is None:
                    break
                dequeued += 1

                try:
                    await self._processor.process_event(event)
                except Exception as e:
                    logger.error("Failed to process webhook event %s: %s", event.id, e)

            if dequeued:
                logger.info("Processed %d webhook events", dequeued)
            return dequeued

    async def retry_failed_deliveries(self) -> int:
        return await self._processor.retry_failed_deliveries()

    # Statistics and monitoring

    async def get_endpoint_stats(self, endpoint_id: str) -> WebhookStats:
        return await self._processor.get_stats(endpoint_id)

    async def get_endpoint_deliveries(self, endpoint_id: str) -> list[WebhookDelivery]:
        return await self._delivery_repo.find_by_endpoint_id(endpoint_id)

    async def get_events(self, event_filter: EventFilter) -> list[WebhookEvent]:
        """Stored events matching a filter, newest first."""
        event_types = event_filter.event_types or list(WebhookEventType)
        events: list[WebhookEvent] = []
        for event_type in event_types:
            events.extend(
                await self._storage.get_events_by_type(event_type, event_filter.tenant_id)
            )

        def matches(event: WebhookEvent) -> bool:
            occurred_at = event.metadata.occurred_at
            if event_filter.from_date and occurred_at < event_filter.from_date:
                return False
            if event_filter.to_date and occurred_at > event_filter.to_date:
                return False
            if event_filter.user_id and event.metadata.user_id != event_filter.user_id:
                return False
            return True

        return sorted(
            (e for e in events if matches(e)),
            key=lambda e: e.metadata.occurred_at,
            reverse=True,
        )

    async def get_queue_size(self) -> int:
        return await self._queue.size()

    async def validate_endpoint(self, url: str, secret: str) -> bool:
        """Send a signed test event; True when the endpoint answers 2xx."""
        event = WebhookEvent(
            type=WebhookEventType.CUSTOMER_CREATED,
            data={"test": True},
            metadata=EventMetadata(
                tenant_id="test",
                environment="test",
                source="webhook-validation",
            ),
        )
        payload = event.to_json()
        headers = {"Content-Type": "application/json", "X-Webhook-Test": "true"}
        if self._config.enable_signature_verification:
            headers.update(
                WebhookSigner.get_headers(
                    payload,
                    secret,
                    signature_header=self._config.signature_header,
                    timestamp_header=self._config.timestamp_header,
                )
            )

        try:
            response = await self._http_client.post(
                url,
                payload,
                headers=headers,
                timeout_ms=VALIDATION_TIMEOUT_MS,
            )
        except Exception as e:
            logger.warning("Endpoint validation failed for %s: %s", url, e)
            return False
        return response.ok

    # Lifecycle

    async def start(self) -> None:
        """Start the processing and retry loops."""
        if self._running:
            logger.warning("Webhook manager is already running")
            return

        self._running = True
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(
                self._run_periodically(
                    "processing",
                    self._config.processing_interval_seconds,
                    self._process_tick,
                )
            ),
            asyncio.create_task(
                self._run_periodically(
                    "retry",
                    self._config.retry_interval_seconds,
                    self.retry_failed_deliveries,
                )
            ),
        ]
        logger.info("Webhook manager started")

    async def stop(self) -> None:
        """Stop both loops, then drain the queue one last time."""
        if not self._running:
            logger.info("Webhook manager is not running")
            return

        logger.info("Stopping webhook manager...")
        self._running = False
        self._stop_event.set()
        # Loops finish their current tick instead of being cancelled mid-delivery
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        try:
            await self.process_events()
        except Exception as e:
            logger.error("Error processing remaining webhook events: %s", e)

        logger.info("Webhook manager stopped")

    async def _process_tick(self) -> None:
        if self._processing_lock.locked():
            logger.debug("Previous webhook drain still running; skipping tick")
            return
        await self.process_events()

    async def _run_periodically(
        self,
        name: str,
        interval_seconds: float,
        tick: Callable[[], Awaitable[Any]],
    ) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                break
            except TimeoutError:
                pass

            try:
                await tick()
            except Exception as e:
                logger.error("Error in webhook %s loop: %s", name, e)


def create_in_memory_webhook_manager(
    endpoint_repo: WebhookEndpointRepository,
    delivery_repo: WebhookDeliveryRepository,
    http_client: HttpClient,
    **config_overrides: Any,
) -> WebhookManager:
    """Manager with in-memory event storage and queue (development and tests)."""
    return WebhookManager(
        endpoint_repo,
        delivery_repo,
        InMemoryEventStorage(),
        InMemoryEventQueue(),
        http_client,
        DEFAULT_WEBHOOK_CONFIG.with_overrides(**config_overrides),
    )
