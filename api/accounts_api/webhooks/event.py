"""Webhook event data model."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class WebhookEventType(StrEnum):
    """Business events that can be delivered to webhook endpoints."""

    # Invoices
    INVOICE_CREATED = "invoice.created"
    INVOICE_UPDATED = "invoice.updated"
    INVOICE_SENT = "invoice.sent"
    INVOICE_PAID = "invoice.paid"
    INVOICE_OVERDUE = "invoice.overdue"
    INVOICE_VOIDED = "invoice.voided"
    PAYMENT_RECEIVED = "invoice.payment_received"

    # Customers
    CUSTOMER_CREATED = "customer.created"
    CUSTOMER_UPDATED = "customer.updated"
    CUSTOMER_DELETED = "customer.deleted"

    # Inventory
    INVENTORY_ITEM_CREATED = "inventory.item_created"
    INVENTORY_ITEM_UPDATED = "inventory.item_updated"
    INVENTORY_ITEM_DELETED = "inventory.item_deleted"
    STOCK_LEVEL_LOW = "inventory.stock_level_low"
    STOCK_MOVEMENT = "inventory.stock_movement"

    # Users
    USER_CREATED = "user.created"
    USER_UPDATED = "user.updated"
    USER_INVITED = "user.invited"
    USER_DELETED = "user.deleted"

    # Tenants
    TENANT_CREATED = "tenant.created"
    TENANT_UPDATED = "tenant.updated"
    TENANT_SUBSCRIPTION_CHANGED = "tenant.subscription_changed"

    # GST
    GST_RETURN_GENERATED = "gst.return_generated"
    GST_RETURN_FILED = "gst.return_filed"

    # System
    BACKUP_COMPLETED = "system.backup_completed"
    BACKUP_FAILED = "system.backup_failed"
    MAINTENANCE_STARTED = "system.maintenance_started"
    MAINTENANCE_COMPLETED = "system.maintenance_completed"


def generate_event_id() -> str:
    """Time-prefixed random id, e.g. ``evt_1700000000000_<32 hex chars>``."""
    return f"evt_{int(time.time() * 1000)}_{uuid.uuid4().hex}"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class EventMetadata:
    """Who published an event, where and when."""

    tenant_id: str = "system"
    user_id: str | None = None
    timestamp: str = field(default_factory=utc_now_iso)
    version: str = "1.0.0"
    environment: str = "development"
    source: str = "accounts-api"

    @property
    def occurred_at(self) -> datetime:
        """Parsed ``timestamp`` (naive values are taken as UTC)."""
        value = datetime.fromisoformat(self.timestamp.replace("Z", "+00:00"))
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"tenantId": self.tenant_id}
        if self.user_id is not None:
            payload["userId"] = self.user_id
        payload.update(
            {
                "timestamp": self.timestamp,
                "version": self.version,
                "environment": self.environment,
                "source": self.source,
            }
        )
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> EventMetadata:
        return cls(
            tenant_id=payload["tenantId"],
            user_id=payload.get("userId"),
            timestamp=payload["timestamp"],
            version=payload["version"],
            environment=payload["environment"],
            source=payload["source"],
        )


@dataclass(frozen=True)
class WebhookEvent:
    """Represents a business event to be delivered. Never mutated once created."""

    type: WebhookEventType
    data: Any
    metadata: EventMetadata = field(default_factory=EventMetadata)
    id: str = field(default_factory=generate_event_id)

    def to_payload(self) -> dict[str, Any]:
        """Convert to JSON-serializable payload."""
        return {
            "id": self.id,
            "type": self.type.value,
            "data": self.data,
            "metadata": self.metadata.to_payload(),
        }

    def to_json(self) -> str:
        """Serialized request body; the same string is signed and sent."""
        return json.dumps(self.to_payload(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> WebhookEvent:
        """Create WebhookEvent from JSON payload."""
        return cls(
            id=payload["id"],
            type=WebhookEventType(payload["type"]),
            data=payload["data"],
            metadata=EventMetadata.from_payload(payload["metadata"]),
        )

    @classmethod
    def from_json(cls, raw: str) -> WebhookEvent:
        return cls.from_payload(json.loads(raw))


@dataclass(frozen=True)
class EventDraft:
    """An event to publish in a batch; the publisher assigns its id."""

    type: WebhookEventType
    data: Any
    metadata: dict[str, Any] | None = None


@dataclass
class EventFilter:
    """Query filter for stored events."""

    tenant_id: str | None = None
    event_types: list[WebhookEventType] | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None
    user_id: str | None = None
