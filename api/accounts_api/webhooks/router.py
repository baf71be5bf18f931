"""Webhook endpoint management API router."""

from fastapi import APIRouter, Depends, Header, HTTPException, status

from accounts_api.webhooks.domain import WebhookEndpoint
from accounts_api.webhooks.event import WebhookEventType
from accounts_api.webhooks.exceptions import WebhookNotFoundError
from accounts_api.webhooks.manager import WebhookManager
from accounts_api.webhooks.schemas import (
    WebhookDeliveryResponse,
    WebhookEndpointCreate,
    WebhookEndpointResponse,
    WebhookEndpointUpdate,
    WebhookStatsResponse,
    WebhookTestResponse,
)
from accounts_api.webhooks.service import get_webhook_manager

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _get_tenant_endpoint(
    manager: WebhookManager,
    endpoint_id: str,
    tenant_id: str,
) -> WebhookEndpoint:
    endpoint = await manager.get_endpoint(endpoint_id)
    # Other tenants' endpoints are reported as missing
    if endpoint is None or endpoint.tenant_id != tenant_id:
        raise HTTPException(status_code=404, detail="Webhook endpoint not found")
    return endpoint


@router.get("", response_model=list[WebhookEndpointResponse])
async def list_endpoints(
    x_tenant_id: str = Header(..., description="Tenant making the request"),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    """List the tenant's webhook endpoints (secrets are masked)."""
    endpoints = await manager.get_endpoints(x_tenant_id)
    return [WebhookEndpointResponse.from_endpoint(e) for e in endpoints]


@router.post("", response_model=WebhookEndpointResponse, status_code=status.HTTP_201_CREATED)
async def create_endpoint(
    body: WebhookEndpointCreate,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    """Create a webhook endpoint.

    The generated signing secret is returned in this response only.
    """
    endpoint = await manager.create_endpoint(
        tenant_id=x_tenant_id,
        url=str(body.url),
        events=body.events,
        description=body.description,
        headers=body.headers,
        timeout_ms=body.timeout_ms,
    )
    return WebhookEndpointResponse.from_endpoint(endpoint, reveal_secret=True)


@router.get("/events", response_model=list[str])
async def list_event_types():
    """List the event types endpoints can subscribe to."""
    return [event_type.value for event_type in WebhookEventType]


@router.get("/{endpoint_id}", response_model=WebhookEndpointResponse)
async def get_endpoint(
    endpoint_id: str,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    endpoint = await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)
    return WebhookEndpointResponse.from_endpoint(endpoint)


@router.put("/{endpoint_id}", response_model=WebhookEndpointResponse)
async def update_endpoint(
    endpoint_id: str,
    body: WebhookEndpointUpdate,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)

    updates = body.model_dump(exclude_unset=True)
    if updates.get("url") is not None:
        updates["url"] = str(updates["url"])
    try:
        endpoint = await manager.update_endpoint(endpoint_id, **updates)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=404, detail="Webhook endpoint not found") from e
    return WebhookEndpointResponse.from_endpoint(endpoint)


@router.delete("/{endpoint_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_endpoint(
    endpoint_id: str,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)
    try:
        await manager.delete_endpoint(endpoint_id)
    except WebhookNotFoundError as e:
        raise HTTPException(status_code=404, detail="Webhook endpoint not found") from e


@router.get("/{endpoint_id}/stats", response_model=WebhookStatsResponse)
async def get_endpoint_stats(
    endpoint_id: str,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    """Delivery statistics: counts, success rate and most recent error."""
    await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)
    stats = await manager.get_endpoint_stats(endpoint_id)
    return WebhookStatsResponse.model_validate(stats, from_attributes=True)


@router.get("/{endpoint_id}/deliveries", response_model=list[WebhookDeliveryResponse])
async def list_deliveries(
    endpoint_id: str,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    """Delivery history of an endpoint, newest first."""
    await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)
    deliveries = await manager.get_endpoint_deliveries(endpoint_id)
    return [WebhookDeliveryResponse.model_validate(d, from_attributes=True) for d in deliveries]


@router.post("/{endpoint_id}/test", response_model=WebhookTestResponse)
async def test_endpoint(
    endpoint_id: str,
    x_tenant_id: str = Header(...),
    manager: WebhookManager = Depends(get_webhook_manager),
):
    """Send a signed test event to the endpoint."""
    endpoint = await _get_tenant_endpoint(manager, endpoint_id, x_tenant_id)
    success = await manager.validate_endpoint(endpoint.url, endpoint.secret)
    return WebhookTestResponse(
        success=success,
        message="Test event delivered" if success else "Test event delivery failed",
    )
