"""Webhook error types."""

from __future__ import annotations

from typing import Any


class WebhookError(Exception):
    """Base class for webhook errors."""

    code = "WEBHOOK_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class WebhookDeliveryError(WebhookError):
    """A single delivery attempt failed."""

    code = "WEBHOOK_DELIVERY_ERROR"

    def __init__(
        self,
        message: str,
        endpoint_id: str | None = None,
        event_id: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.endpoint_id = endpoint_id
        self.event_id = event_id
        self.status_code = status_code


class WebhookSignatureError(WebhookError):
    """Malformed signature header, stale timestamp or digest mismatch."""

    code = "WEBHOOK_SIGNATURE_ERROR"


class WebhookConfigError(WebhookError):
    """Invalid webhook configuration."""

    code = "WEBHOOK_CONFIG_ERROR"


class WebhookNotFoundError(WebhookError):
    """Endpoint or delivery record does not exist."""

    code = "WEBHOOK_NOT_FOUND"
