"""Webhook delivery processor."""

from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, TypeVar

from accounts_api.webhooks.config import DEFAULT_WEBHOOK_CONFIG, WebhookConfig
from accounts_api.webhooks.domain import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEndpoint,
    WebhookStats,
    utc_now,
)
from accounts_api.webhooks.event import WebhookEvent
from accounts_api.webhooks.http import HttpClient
from accounts_api.webhooks.repositories import (
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
)
from accounts_api.webhooks.signer import WebhookSigner
from accounts_api.webhooks.storage import EventStorageAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAX_ERROR_MESSAGE_LENGTH = 500
MAX_RESPONSE_BODY_LENGTH = 2000


@dataclass
class DeliveryResult:
    """Result of a webhook delivery attempt."""

    success: bool
    http_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    error_message: str | None = None
    latency_ms: int | None = None


def calculate_retry_delay_ms(
    attempts: int,
    config: WebhookConfig = DEFAULT_WEBHOOK_CONFIG,
    jitter: bool = True,
) -> float:
    """
    Backoff before the next attempt, after ``attempts`` failed ones.

    ``min(initial * multiplier ** (attempts - 1), max)`` plus up to 10%
    random jitter.
    """
    exponent = max(attempts - 1, 0)
    delay = min(
        config.initial_retry_delay_ms * config.backoff_multiplier**exponent,
        config.max_retry_delay_ms,
    )
    if jitter:
        delay += random.uniform(0, 0.1 * delay)
    return delay


def _serialize_body(data: Any) -> str | None:
    if data is None:
        return None
    body = data if isinstance(data, str) else json.dumps(data, default=str)
    return body[:MAX_RESPONSE_BODY_LENGTH]


async def _gather_in_batches(
    items: Sequence[T],
    size: int,
    worker: Callable[[T], Awaitable[R]],
) -> list[R | BaseException]:
    """Run ``worker`` over ``items``, ``size`` at a time, collecting every outcome."""
    outcomes: list[R | BaseException] = []
    for start in range(0, len(items), size):
        batch = items[start : start + size]
        results = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        outcomes.extend(results)
    return outcomes


class WebhookEventProcessor:
    """Fans events out to subscribed endpoints and tracks every attempt."""

    def __init__(
        self,
        endpoint_repo: WebhookEndpointRepository,
        delivery_repo: WebhookDeliveryRepository,
        http_client: HttpClient,
        config: WebhookConfig = DEFAULT_WEBHOOK_CONFIG,
        event_storage: EventStorageAdapter | None = None,
        user_agent: str = "accounts-api/1.0.0",
    ):
        """
        Initialize the processor.

        Args:
            endpoint_repo: Endpoint subscriptions
            delivery_repo: Delivery attempt records
            http_client: Outbound transport
            config: Retry, concurrency and signing options
            event_storage: Source of event payloads for retries
            user_agent: Value of the User-Agent header
        """
        self._endpoint_repo = endpoint_repo
        self._delivery_repo = delivery_repo
        self._http_client = http_client
        self._config = config
        self._event_storage = event_storage
        self._user_agent = user_agent

    async def process_event(self, event: WebhookEvent) -> list[WebhookDelivery]:
        """Deliver an event to every active endpoint of its tenant that subscribes to it."""
        endpoints = await self._endpoint_repo.find_by_event_type(
            event.type,
            event.metadata.tenant_id,
        )
        active = [e for e in endpoints if e.is_active and e.subscribes_to(event.type)]
        if not active:
            logger.debug("No endpoints for event %s (%s)", event.id, event.type)
            return []

        outcomes = await _gather_in_batches(
            active,
            self._config.concurrency,
            lambda endpoint: self.deliver_to_endpoint(event, endpoint),
        )

        deliveries = []
        for endpoint, outcome in zip(active, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Could not record delivery of event %s to endpoint %s: %s",
                    event.id,
                    endpoint.id,
                    outcome,
                )
            else:
                deliveries.append(outcome)
        return deliveries

    async def deliver_to_endpoint(
        self,
        event: WebhookEvent,
        endpoint: WebhookEndpoint,
    ) -> WebhookDelivery:
        """First delivery attempt of an event to one endpoint."""
        delivery = await self._delivery_repo.create(
            WebhookDelivery(
                webhook_endpoint_id=endpoint.id,
                event_id=event.id,
                status=DeliveryStatus.PENDING,
                attempts=0,
            )
        )
        result = await self._attempt_delivery(event, endpoint, delivery.id)
        return await self._record_attempt(delivery, endpoint, result)

    async def retry_failed_deliveries(self) -> int:
        """Re-attempt deliveries whose backoff has elapsed. Returns how many were tried."""
        due = await self._delivery_repo.find_failed_deliveries(self._config.batch_size)
        now = utc_now()
        due = [d for d in due if d.is_due(now)]
        if not due:
            return 0

        outcomes = await _gather_in_batches(due, self._config.concurrency, self._retry_delivery)
        for delivery, outcome in zip(due, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Retry of delivery %s could not be recorded: %s", delivery.id, outcome)

        logger.info("Retried %d webhook deliveries", len(due))
        return len(due)

    async def get_stats(self, endpoint_id: str) -> WebhookStats:
        return await self._delivery_repo.get_stats(endpoint_id)

    async def _retry_delivery(self, delivery: WebhookDelivery) -> WebhookDelivery:
        if delivery.status != DeliveryStatus.RETRY:
            return delivery

        endpoint = await self._endpoint_repo.find_by_id(delivery.webhook_endpoint_id)
        if endpoint is None or not endpoint.is_active:
            logger.warning(
                "Abandoning retry of delivery %s: endpoint %s is inactive or deleted",
                delivery.id,
                delivery.webhook_endpoint_id,
            )
            return await self._delivery_repo.update(
                delivery.id,
                status=DeliveryStatus.FAILED,
                next_retry_at=None,
                error_message="Endpoint inactive or deleted",
            )

        event = None
        if self._event_storage is not None:
            event = await self._event_storage.get_event(delivery.event_id)
        if event is None:
            logger.error(
                "Abandoning retry of delivery %s: event %s not found",
                delivery.id,
                delivery.event_id,
            )
            return await self._delivery_repo.update(
                delivery.id,
                status=DeliveryStatus.FAILED,
                next_retry_at=None,
                error_message=f"Event {delivery.event_id} not found",
            )

        result = await self._attempt_delivery(event, endpoint, delivery.id)
        return await self._record_attempt(delivery, endpoint, result)

    def build_headers(
        self,
        event: WebhookEvent,
        endpoint: WebhookEndpoint,
        payload: str,
        delivery_id: str,
        timestamp: int | None = None,
    ) -> dict[str, str]:
        """Request headers for one attempt; signing headers always win."""
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "X-Webhook-Event": event.type.value,
            "X-Webhook-Delivery": delivery_id,
        }
        headers.update(endpoint.headers or {})

        if self._config.enable_signature_verification:
            headers.update(
                WebhookSigner.get_headers(
                    payload,
                    endpoint.secret,
                    signature_header=self._config.signature_header,
                    timestamp_header=self._config.timestamp_header,
                    timestamp=timestamp,
                )
            )
        return headers

    async def _attempt_delivery(
        self,
        event: WebhookEvent,
        endpoint: WebhookEndpoint,
        delivery_id: str,
    ) -> DeliveryResult:
        """Attempt a single delivery; never raises."""
        payload = event.to_json()
        headers = self.build_headers(event, endpoint, payload, delivery_id)
        start_time = time.monotonic()

        try:
            response = await self._http_client.post(
                endpoint.url,
                payload,
                headers=headers,
                timeout_ms=endpoint.timeout_ms or self._config.timeout_ms,
            )
        except Exception as e:
            logger.warning(
                "Webhook delivery to %s failed (event: %s): %s",
                endpoint.id,
                event.id,
                e,
            )
            return DeliveryResult(
                success=False,
                error_message=(str(e) or type(e).__name__)[:MAX_ERROR_MESSAGE_LENGTH],
            )

        latency_ms = int((time.monotonic() - start_time) * 1000)
        body = _serialize_body(response.data)

        if response.ok:
            logger.info(
                "Webhook delivered to %s (event: %s, latency: %dms)",
                endpoint.id,
                event.id,
                latency_ms,
            )
            return DeliveryResult(
                success=True,
                http_status=response.status,
                response_body=body,
                response_headers=response.headers,
                latency_ms=latency_ms,
            )

        logger.warning(
            "Webhook delivery to %s returned HTTP %d (event: %s)",
            endpoint.id,
            response.status,
            event.id,
        )
        return DeliveryResult(
            success=False,
            http_status=response.status,
            response_body=body,
            response_headers=response.headers,
            error_message=f"HTTP {response.status} {response.status_text}".strip(),
            latency_ms=latency_ms,
        )

    async def _record_attempt(
        self,
        delivery: WebhookDelivery,
        endpoint: WebhookEndpoint,
        result: DeliveryResult,
    ) -> WebhookDelivery:
        attempts = delivery.attempts + 1
        now = utc_now()
        common = {
            "attempts": attempts,
            "last_attempt_at": now,
            "response_status": result.http_status,
            "response_body": result.response_body,
            "response_headers": result.response_headers,
            "latency_ms": result.latency_ms,
        }

        if result.success:
            return await self._delivery_repo.update(
                delivery.id,
                status=DeliveryStatus.DELIVERED,
                next_retry_at=None,
                error_message=None,
                **common,
            )

        max_attempts = endpoint.retry_attempts
        if max_attempts is None:
            max_attempts = self._config.max_retry_attempts
        if attempts < max_attempts:
            next_retry_at: datetime | None = now + timedelta(
                milliseconds=calculate_retry_delay_ms(attempts, self._config)
            )
            status = DeliveryStatus.RETRY
        else:
            next_retry_at = None
            status = DeliveryStatus.FAILED
            logger.error(
                "Webhook delivery %s to %s failed after %d attempts: %s",
                delivery.id,
                endpoint.id,
                attempts,
                result.error_message,
            )

        return await self._delivery_repo.update(
            delivery.id,
            status=status,
            next_retry_at=next_retry_at,
            error_message=result.error_message,
            **common,
        )
