"""Tests for the SQL repositories and event storage (SQLite in memory)."""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from sqlalchemy.exc import IntegrityError

from accounts_api.webhooks.domain import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEndpoint,
    WebhookStats,
    utc_now,
)
from accounts_api.webhooks.event import EventMetadata, WebhookEvent, WebhookEventType
from accounts_api.webhooks.exceptions import WebhookNotFoundError
from accounts_api.webhooks.repositories import (
    SqlWebhookDeliveryRepository,
    SqlWebhookEndpointRepository,
    WebhookDeliveryRepository,
    WebhookEndpointRepository,
)
from accounts_api.webhooks.storage import EventStorageAdapter, SqlEventStorage


@pytest_asyncio.fixture
async def sql_endpoints(session_factory):
    return SqlWebhookEndpointRepository(session_factory)


@pytest_asyncio.fixture
async def sql_deliveries(session_factory):
    return SqlWebhookDeliveryRepository(session_factory)


@pytest_asyncio.fixture
async def sql_storage(session_factory):
    return SqlEventStorage(session_factory)


def make_endpoint(tenant_id="tenant-1", events=None, **kwargs):
    return WebhookEndpoint(
        tenant_id=tenant_id,
        url="https://hooks.example.com/receive",
        secret="whsec_test",
        events=events or {WebhookEventType.INVOICE_CREATED},
        **kwargs,
    )


def make_event(event_type=WebhookEventType.INVOICE_CREATED, tenant_id="tenant-1", when=None):
    return WebhookEvent(
        type=event_type,
        data={"invoice_id": "inv_1", "lines": [{"sku": "A", "qty": 2}]},
        metadata=EventMetadata(
            tenant_id=tenant_id,
            user_id="user-1",
            timestamp=(when or utc_now()).isoformat(),
        ),
    )


class TestProtocols:
    """The SQL adapters satisfy the adapter protocols."""

    @pytest.mark.asyncio
    async def test_sql_adapters_match_protocols(self, session_factory):
        assert isinstance(SqlWebhookEndpointRepository(session_factory), WebhookEndpointRepository)
        assert isinstance(SqlWebhookDeliveryRepository(session_factory), WebhookDeliveryRepository)
        assert isinstance(SqlEventStorage(session_factory), EventStorageAdapter)


class TestSqlEndpointRepository:
    """Tests for SqlWebhookEndpointRepository."""

    @pytest.mark.asyncio
    async def test_create_and_find(self, sql_endpoints):
        endpoint = make_endpoint(headers={"X-Custom": "1"}, timeout_ms=5000)
        await sql_endpoints.create(endpoint)

        found = await sql_endpoints.find_by_id(endpoint.id)

        assert found.url == endpoint.url
        assert found.events == {WebhookEventType.INVOICE_CREATED}
        assert found.headers == {"X-Custom": "1"}
        assert found.timeout_ms == 5000
        assert found.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_find_missing(self, sql_endpoints):
        assert await sql_endpoints.find_by_id("wh_missing") is None

    @pytest.mark.asyncio
    async def test_find_by_event_type_and_tenant(self, sql_endpoints):
        invoice = await sql_endpoints.create(make_endpoint())
        await sql_endpoints.create(make_endpoint(events={WebhookEventType.CUSTOMER_CREATED}))
        await sql_endpoints.create(make_endpoint(tenant_id="tenant-2"))

        found = await sql_endpoints.find_by_event_type(
            WebhookEventType.INVOICE_CREATED, "tenant-1"
        )
        everywhere = await sql_endpoints.find_by_event_type(WebhookEventType.INVOICE_CREATED)

        assert [e.id for e in found] == [invoice.id]
        assert len(everywhere) == 2

    @pytest.mark.asyncio
    async def test_find_by_tenant(self, sql_endpoints):
        await sql_endpoints.create(make_endpoint())
        await sql_endpoints.create(make_endpoint())
        await sql_endpoints.create(make_endpoint(tenant_id="tenant-2"))

        assert len(await sql_endpoints.find_by_tenant_id("tenant-1")) == 2

    @pytest.mark.asyncio
    async def test_update(self, sql_endpoints):
        endpoint = await sql_endpoints.create(make_endpoint())

        updated = await sql_endpoints.update(
            endpoint.id,
            events={WebhookEventType.INVOICE_PAID, WebhookEventType.INVOICE_SENT},
            is_active=False,
        )

        assert updated.events == {WebhookEventType.INVOICE_PAID, WebhookEventType.INVOICE_SENT}
        assert updated.is_active is False
        assert (await sql_endpoints.find_by_id(endpoint.id)).is_active is False

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, sql_endpoints):
        with pytest.raises(WebhookNotFoundError):
            await sql_endpoints.update("wh_missing", is_active=False)

    @pytest.mark.asyncio
    async def test_update_rejects_immutable_fields(self, sql_endpoints):
        endpoint = await sql_endpoints.create(make_endpoint())

        with pytest.raises(ValueError):
            await sql_endpoints.update(endpoint.id, created_at=utc_now())

    @pytest.mark.asyncio
    async def test_delete(self, sql_endpoints):
        endpoint = await sql_endpoints.create(make_endpoint())

        await sql_endpoints.delete(endpoint.id)

        assert await sql_endpoints.find_by_id(endpoint.id) is None
        with pytest.raises(WebhookNotFoundError):
            await sql_endpoints.delete(endpoint.id)


class TestSqlDeliveryRepository:
    """Tests for SqlWebhookDeliveryRepository."""

    @pytest.mark.asyncio
    async def test_create_and_update(self, sql_deliveries):
        delivery = await sql_deliveries.create(WebhookDelivery("wh_1", "evt_1"))
        retry_at = utc_now() + timedelta(seconds=1)

        updated = await sql_deliveries.update(
            delivery.id,
            status=DeliveryStatus.RETRY,
            attempts=1,
            next_retry_at=retry_at,
            response_status=500,
            response_headers={"content-type": "text/plain"},
            error_message="HTTP 500",
        )

        assert updated.status == DeliveryStatus.RETRY
        assert updated.attempts == 1
        assert updated.response_headers == {"content-type": "text/plain"}
        assert abs(updated.next_retry_at - retry_at) < timedelta(milliseconds=1)

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, sql_deliveries):
        with pytest.raises(WebhookNotFoundError):
            await sql_deliveries.update("del_missing", attempts=1)

    @pytest.mark.asyncio
    async def test_find_failed_deliveries_returns_due_retries_in_order(self, sql_deliveries):
        now = utc_now()
        later_due = await sql_deliveries.create(
            WebhookDelivery(
                "wh_1", "evt_1", DeliveryStatus.RETRY, 1, next_retry_at=now - timedelta(seconds=5)
            )
        )
        first_due = await sql_deliveries.create(
            WebhookDelivery(
                "wh_1", "evt_2", DeliveryStatus.RETRY, 1, next_retry_at=now - timedelta(seconds=60)
            )
        )
        await sql_deliveries.create(
            WebhookDelivery(
                "wh_1", "evt_3", DeliveryStatus.RETRY, 1, next_retry_at=now + timedelta(hours=1)
            )
        )
        await sql_deliveries.create(WebhookDelivery("wh_1", "evt_4", DeliveryStatus.FAILED, 5))

        due = await sql_deliveries.find_failed_deliveries()
        limited = await sql_deliveries.find_failed_deliveries(limit=1)

        assert [d.id for d in due] == [first_due.id, later_due.id]
        assert [d.id for d in limited] == [first_due.id]

    @pytest.mark.asyncio
    async def test_stats(self, sql_deliveries):
        base = datetime(2024, 1, 15, 10, 0, tzinfo=UTC)
        await sql_deliveries.create(
            WebhookDelivery(
                "wh_1",
                "evt_1",
                DeliveryStatus.DELIVERED,
                1,
                last_attempt_at=base,
                latency_ms=100,
            )
        )
        await sql_deliveries.create(
            WebhookDelivery(
                "wh_1",
                "evt_2",
                DeliveryStatus.DELIVERED,
                2,
                last_attempt_at=base + timedelta(minutes=5),
                latency_ms=300,
            )
        )
        await sql_deliveries.create(
            WebhookDelivery(
                "wh_1",
                "evt_3",
                DeliveryStatus.FAILED,
                5,
                last_attempt_at=base + timedelta(minutes=1),
                error_message="HTTP 500",
            )
        )
        await sql_deliveries.create(
            WebhookDelivery(
                "wh_1",
                "evt_4",
                DeliveryStatus.RETRY,
                1,
                last_attempt_at=base + timedelta(minutes=2),
                error_message="Request timeout after 30000ms",
            )
        )
        await sql_deliveries.create(WebhookDelivery("wh_2", "evt_5", DeliveryStatus.PENDING))

        stats = await sql_deliveries.get_stats("wh_1")

        assert stats == WebhookStats(
            total_events=4,
            delivered_events=2,
            failed_events=1,
            pending_events=1,
            average_delivery_time_ms=200.0,
            success_rate=50.0,
            last_delivery_at=base + timedelta(minutes=5),
            most_recent_error="Request timeout after 30000ms",
        )

    @pytest.mark.asyncio
    async def test_stats_without_deliveries(self, sql_deliveries):
        assert await sql_deliveries.get_stats("wh_none") == WebhookStats()


class TestSqlEventStorage:
    """Tests for SqlEventStorage."""

    @pytest.mark.asyncio
    async def test_store_and_get(self, sql_storage):
        event = make_event()

        await sql_storage.store(event)

        assert await sql_storage.get_event(event.id) == event
        assert await sql_storage.get_event("evt_missing") is None

    @pytest.mark.asyncio
    async def test_store_batch_and_query_by_type(self, sql_storage):
        base = datetime(2024, 1, 15, tzinfo=UTC)
        older = make_event(when=base)
        newer = make_event(when=base + timedelta(hours=1))
        other_tenant = make_event(tenant_id="tenant-2", when=base)
        other_type = make_event(WebhookEventType.INVOICE_PAID)

        await sql_storage.store_batch([older, newer, other_tenant, other_type])

        found = await sql_storage.get_events_by_type(WebhookEventType.INVOICE_CREATED, "tenant-1")
        everywhere = await sql_storage.get_events_by_type(WebhookEventType.INVOICE_CREATED)

        assert [e.id for e in found] == [newer.id, older.id]
        assert len(everywhere) == 3

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, sql_storage):
        event = make_event()
        await sql_storage.store(event)

        with pytest.raises(IntegrityError):
            await sql_storage.store(event)
