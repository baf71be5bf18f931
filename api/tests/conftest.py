"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"
os.environ["WEBHOOK_QUEUE_BACKEND"] = "memory"

from accounts_api.db.base import Base
from accounts_api.main import app
from accounts_api.webhooks import models  # noqa: F401
from accounts_api.webhooks.http import HttpResponse
from accounts_api.webhooks.manager import WebhookManager
from accounts_api.webhooks.queue import InMemoryEventQueue
from accounts_api.webhooks.repositories import (
    InMemoryWebhookDeliveryRepository,
    InMemoryWebhookEndpointRepository,
)
from accounts_api.webhooks.service import get_webhook_manager
from accounts_api.webhooks.storage import InMemoryEventStorage

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@dataclass
class SentRequest:
    url: str
    body: str
    headers: dict[str, str]
    timeout_ms: int | None


class FakeHttpClient:
    """HttpClient double that records requests and replays scripted outcomes.

    Outcomes are HttpResponse instances or exceptions, scripted per URL and
    consumed in order. Unscripted requests get ``default``.
    """

    def __init__(self) -> None:
        self.requests: list[SentRequest] = []
        self.default: HttpResponse | BaseException = HttpResponse(
            status=200, status_text="OK", data={"received": True}
        )
        self._scripted: dict[str, list[HttpResponse | BaseException]] = {}

    def script(self, url: str, *outcomes: HttpResponse | BaseException) -> None:
        self._scripted.setdefault(url, []).extend(outcomes)

    def requests_to(self, url: str) -> list[SentRequest]:
        return [r for r in self.requests if r.url == url]

    async def post(self, url, body, *, headers=None, timeout_ms=None):
        self.requests.append(SentRequest(url, body, dict(headers or {}), timeout_ms))
        scripted = self._scripted.get(url)
        outcome = scripted.pop(0) if scripted else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture
def http_client() -> FakeHttpClient:
    return FakeHttpClient()


@pytest.fixture
def endpoint_repo() -> InMemoryWebhookEndpointRepository:
    return InMemoryWebhookEndpointRepository()


@pytest.fixture
def delivery_repo() -> InMemoryWebhookDeliveryRepository:
    return InMemoryWebhookDeliveryRepository()


@pytest.fixture
def event_storage() -> InMemoryEventStorage:
    return InMemoryEventStorage()


@pytest.fixture
def event_queue() -> InMemoryEventQueue:
    return InMemoryEventQueue()


@pytest.fixture
def manager(endpoint_repo, delivery_repo, event_storage, event_queue, http_client):
    """In-memory webhook manager; background loops are not started."""
    return WebhookManager(
        endpoint_repo,
        delivery_repo,
        event_storage,
        event_queue,
        http_client,
    )


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def client(manager: WebhookManager) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client backed by the in-memory manager."""
    app.dependency_overrides[get_webhook_manager] = lambda: manager

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
