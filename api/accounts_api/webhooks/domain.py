"""Webhook endpoint, delivery and statistics records."""

from __future__ import annotations

import secrets
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from accounts_api.webhooks.event import WebhookEventType


class DeliveryStatus(StrEnum):
    """Webhook delivery status."""

    PENDING = "pending"
    DELIVERED = "delivered"
    RETRY = "retry"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(UTC)


def generate_endpoint_id() -> str:
    return f"wh_{uuid.uuid4().hex}"


def generate_delivery_id() -> str:
    return f"del_{uuid.uuid4().hex}"


def generate_webhook_secret() -> str:
    return f"whsec_{secrets.token_urlsafe(32)}"


@dataclass
class WebhookEndpoint:
    """Tenant-owned subscription to one or more event types."""

    tenant_id: str
    url: str
    secret: str
    events: set[WebhookEventType]
    is_active: bool = True
    description: str | None = None
    headers: dict[str, str] | None = None
    timeout_ms: int | None = None
    retry_attempts: int | None = None
    id: str = field(default_factory=generate_endpoint_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.retry_attempts is not None and self.retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")

    def subscribes_to(self, event_type: WebhookEventType | str) -> bool:
        """Check if this endpoint subscribes to the given event type."""
        return event_type in self.events


@dataclass
class WebhookDelivery:
    """Attempt tracking for one (event, endpoint) pair."""

    webhook_endpoint_id: str
    event_id: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    response_status: int | None = None
    response_body: str | None = None
    response_headers: dict[str, str] | None = None
    error_message: str | None = None
    latency_ms: int | None = None
    id: str = field(default_factory=generate_delivery_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def is_due(self, now: datetime) -> bool:
        return (
            self.status == DeliveryStatus.RETRY
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )


@dataclass
class WebhookStats:
    """Delivery statistics for one endpoint."""

    total_events: int = 0
    delivered_events: int = 0
    failed_events: int = 0
    pending_events: int = 0
    average_delivery_time_ms: float = 0.0
    success_rate: float = 0.0
    last_delivery_at: datetime | None = None
    most_recent_error: str | None = None

    @classmethod
    def from_deliveries(cls, deliveries: Iterable[WebhookDelivery]) -> WebhookStats:
        deliveries = list(deliveries)
        delivered = [d for d in deliveries if d.status == DeliveryStatus.DELIVERED]
        failed = [d for d in deliveries if d.status == DeliveryStatus.FAILED]
        pending = [
            d for d in deliveries if d.status in (DeliveryStatus.PENDING, DeliveryStatus.RETRY)
        ]
        latencies = [d.latency_ms for d in delivered if d.latency_ms is not None]
        errored = [d for d in deliveries if d.error_message and d.last_attempt_at]

        total = len(deliveries)
        return cls(
            total_events=total,
            delivered_events=len(delivered),
            failed_events=len(failed),
            pending_events=len(pending),
            average_delivery_time_ms=sum(latencies) / len(latencies) if latencies else 0.0,
            success_rate=(len(delivered) / total) * 100 if total else 0.0,
            last_delivery_at=max(
                (d.last_attempt_at for d in delivered if d.last_attempt_at), default=None
            ),
            most_recent_error=(
                max(errored, key=lambda d: d.last_attempt_at).error_message if errored else None
            ),
        )
