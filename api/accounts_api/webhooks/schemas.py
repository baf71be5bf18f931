"""Webhook Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, Field, HttpUrl, field_validator

from accounts_api.webhooks.domain import DeliveryStatus, WebhookEndpoint
from accounts_api.webhooks.event import WebhookEventType

MASKED_SECRET = "***"


class WebhookEndpointCreate(BaseModel):
    """Request body for creating an endpoint."""

    url: HttpUrl = Field(..., description="Webhook endpoint URL")
    events: list[WebhookEventType] = Field(
        ..., min_length=1, description="List of events to subscribe to"
    )
    description: str | None = Field(None, description="Optional description for the webhook")
    headers: dict[str, str] | None = Field(
        None, description="Optional custom headers to include in webhook requests"
    )
    timeout_ms: int | None = Field(
        None, ge=1000, le=60000, description="Request timeout in milliseconds (1s-60s)"
    )


class WebhookEndpointUpdate(BaseModel):
    """Request body for updating an endpoint; omitted fields are left unchanged."""

    url: HttpUrl | None = None
    events: list[WebhookEventType] | None = Field(None, min_length=1)
    is_active: bool | None = None
    description: str | None = None
    headers: dict[str, str] | None = None
    timeout_ms: int | None = Field(None, ge=1000, le=60000)

    @field_validator("url", "events", "is_active")
    @classmethod
    def reject_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class WebhookEndpointResponse(BaseModel):
    """Webhook endpoint configuration response (secret masked)."""

    id: str = Field(..., description="Unique endpoint identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    url: str = Field(..., description="Webhook URL")
    secret: str = Field(MASKED_SECRET, description="Signing secret (masked)")
    events: list[WebhookEventType] = Field(..., description="Subscribed event types")
    is_active: bool = Field(..., description="Whether endpoint is active")
    description: str | None = Field(None, description="Endpoint description")
    headers: dict[str, str] | None = Field(None, description="Custom request headers")
    timeout_ms: int | None = Field(None, description="Request timeout in milliseconds")
    retry_attempts: int | None = Field(None, description="Maximum delivery attempts")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_endpoint(cls, endpoint: WebhookEndpoint, reveal_secret: bool = False):
        return cls(
            id=endpoint.id,
            tenant_id=endpoint.tenant_id,
            url=endpoint.url,
            secret=endpoint.secret if reveal_secret else MASKED_SECRET,
            events=sorted(endpoint.events),
            is_active=endpoint.is_active,
            description=endpoint.description,
            headers=endpoint.headers,
            timeout_ms=endpoint.timeout_ms,
            retry_attempts=endpoint.retry_attempts,
            created_at=endpoint.created_at,
            updated_at=endpoint.updated_at,
        )


class WebhookDeliveryResponse(BaseModel):
    """Webhook delivery log entry response."""

    id: str = Field(..., description="Delivery record ID")
    webhook_endpoint_id: str = Field(..., description="Target endpoint ID")
    event_id: str = Field(..., description="Event ID")
    status: DeliveryStatus = Field(..., description="pending, delivered, retry or failed")
    attempts: int = Field(..., description="Number of delivery attempts")
    last_attempt_at: datetime | None = None
    next_retry_at: datetime | None = None
    response_status: int | None = Field(None, description="HTTP response status code")
    error_message: str | None = Field(None, description="Error message if failed")
    latency_ms: int | None = Field(None, description="Delivery latency in milliseconds")
    created_at: datetime
    updated_at: datetime


class WebhookStatsResponse(BaseModel):
    """Delivery statistics for one endpoint."""

    total_events: int
    delivered_events: int
    failed_events: int
    pending_events: int
    average_delivery_time_ms: float
    success_rate: float = Field(..., description="Delivered share in percent")
    last_delivery_at: datetime | None = None
    most_recent_error: str | None = None


class WebhookTestResponse(BaseModel):
    """Result of sending a test event to an endpoint."""

    success: bool
    message: str
