from .config import WebhookConfig, WebhookConfigLoader
from .domain import DeliveryStatus, WebhookDelivery, WebhookEndpoint, WebhookStats
from .event import EventDraft, EventFilter, EventMetadata, WebhookEvent, WebhookEventType
from .exceptions import (
    WebhookConfigError,
    WebhookDeliveryError,
    WebhookError,
    WebhookNotFoundError,
    WebhookSignatureError,
)
from .manager import WebhookManager, create_in_memory_webhook_manager
from .signer import WebhookSigner

__all__ = [
    "WebhookManager",
    "create_in_memory_webhook_manager",
    "WebhookConfig",
    "WebhookConfigLoader",
    "WebhookEvent",
    "WebhookEventType",
    "EventMetadata",
    "EventDraft",
    "EventFilter",
    "WebhookEndpoint",
    "WebhookDelivery",
    "WebhookStats",
    "DeliveryStatus",
    "WebhookSigner",
    "WebhookError",
    "WebhookDeliveryError",
    "WebhookSignatureError",
    "WebhookConfigError",
    "WebhookNotFoundError",
]
