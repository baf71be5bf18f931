"""Webhook manager wiring for the API service."""

from __future__ import annotations

import logging

from fastapi import Request

from accounts_api.config import Settings, get_settings
from accounts_api.db.session import async_session_maker
from accounts_api.valkey import get_valkey
from accounts_api.webhooks.config import WebhookConfig, WebhookConfigLoader
from accounts_api.webhooks.exceptions import WebhookConfigError
from accounts_api.webhooks.http import HttpClient, HttpxClient
from accounts_api.webhooks.manager import WebhookManager
from accounts_api.webhooks.queue import EventQueueAdapter, InMemoryEventQueue, ValkeyEventQueue
from accounts_api.webhooks.repositories import (
    SqlWebhookDeliveryRepository,
    SqlWebhookEndpointRepository,
)
from accounts_api.webhooks.storage import SqlEventStorage

logger = logging.getLogger(__name__)


def _build_queue(settings: Settings) -> EventQueueAdapter:
    backend = settings.WEBHOOK_QUEUE_BACKEND.lower()
    if backend == "valkey":
        return ValkeyEventQueue(get_valkey)
    if backend == "memory":
        logger.warning("Using in-memory webhook queue; queued events are lost on restart")
        return InMemoryEventQueue()
    raise WebhookConfigError(f"Unknown webhook queue backend: {settings.WEBHOOK_QUEUE_BACKEND}")


def build_webhook_manager(
    settings: Settings | None = None,
    config: WebhookConfig | None = None,
    http_client: HttpClient | None = None,
) -> WebhookManager:
    """Manager backed by the database, Valkey and httpx."""
    settings = settings or get_settings()
    config = config or WebhookConfigLoader.load(settings.WEBHOOK_CONFIG_PATH)

    return WebhookManager(
        endpoint_repo=SqlWebhookEndpointRepository(async_session_maker),
        delivery_repo=SqlWebhookDeliveryRepository(async_session_maker),
        storage=SqlEventStorage(async_session_maker),
        queue=_build_queue(settings),
        http_client=http_client or HttpxClient(),
        config=config,
        app_name=settings.APP_NAME,
        app_version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )


def get_webhook_manager(request: Request) -> WebhookManager:
    """Dependency for the manager owned by the running application."""
    return request.app.state.webhook_manager
