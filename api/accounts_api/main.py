"""Accounts API - Webhook delivery service."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from accounts_api.config import get_settings
from accounts_api.db.base import Base
from accounts_api.db.session import engine
from accounts_api.valkey import close_valkey
from accounts_api.webhooks import models  # noqa: F401  (registers webhook tables)
from accounts_api.webhooks.router import router as webhooks_router
from accounts_api.webhooks.service import build_webhook_manager

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    if not settings.TESTING:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    manager = build_webhook_manager(settings)
    app.state.webhook_manager = manager

    if settings.WEBHOOK_WORKER_ENABLED and not settings.TESTING:
        await manager.start()
    else:
        logger.info("Webhook background processing disabled")

    yield

    # Cleanup on shutdown
    await manager.stop()
    await close_valkey()
    await engine.dispose()


app = FastAPI(
    title="Accounts API Webhooks",
    description="""
## Webhook Delivery API

Tenants register HTTPS endpoints and subscribe them to business events.
Published events are stored, queued and delivered with an HMAC-SHA256
signature in the `X-Webhook-Signature` header (`t=<timestamp>,v1=<hex>`).

### Features

- **Endpoints** - Create, update and delete subscriptions per tenant
- **Retries** - Exponential backoff with jitter for failed deliveries
- **History** - Delivery log and per-endpoint statistics
- **Testing** - Send a signed test event to an endpoint

All requests identify the tenant with the `X-Tenant-ID` header.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# Routes - all under /api/v1
API_PREFIX = "/api/v1"
app.include_router(webhooks_router, prefix=API_PREFIX)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Accounts API Webhooks",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
