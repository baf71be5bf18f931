"""Endpoint and delivery repositories."""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accounts_api.webhooks.domain import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEndpoint,
    WebhookStats,
    utc_now,
)
from accounts_api.webhooks.event import WebhookEventType
from accounts_api.webhooks.exceptions import WebhookNotFoundError
from accounts_api.webhooks.models import WebhookDeliveryModel, WebhookEndpointModel

# Fields that callers may never rewrite through update()
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


@runtime_checkable
class WebhookEndpointRepository(Protocol):
    async def find_by_tenant_id(self, tenant_id: str) -> list[WebhookEndpoint]: ...

    async def find_by_id(self, endpoint_id: str) -> WebhookEndpoint | None: ...

    async def find_by_event_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEndpoint]: ...

    async def create(self, endpoint: WebhookEndpoint) -> WebhookEndpoint: ...

    async def update(self, endpoint_id: str, **updates: Any) -> WebhookEndpoint: ...

    async def delete(self, endpoint_id: str) -> None: ...


@runtime_checkable
class WebhookDeliveryRepository(Protocol):
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery: ...

    async def update(self, delivery_id: str, **updates: Any) -> WebhookDelivery: ...

    async def find_by_id(self, delivery_id: str) -> WebhookDelivery | None: ...

    async def find_failed_deliveries(self, limit: int = 100) -> list[WebhookDelivery]:
        """Deliveries in RETRY whose ``next_retry_at`` has passed, oldest due first."""
        ...

    async def find_by_endpoint_id(self, endpoint_id: str) -> list[WebhookDelivery]: ...

    async def get_stats(self, endpoint_id: str) -> WebhookStats: ...


def _check_updates(record_type: type, updates: dict[str, Any]) -> None:
    allowed = {f.name for f in dataclasses.fields(record_type)} - _IMMUTABLE_FIELDS
    unknown = set(updates) - allowed
    if unknown:
        raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class InMemoryWebhookEndpointRepository:
    """Reference endpoint repository for development and tests."""

    def __init__(self) -> None:
        self._endpoints: dict[str, WebhookEndpoint] = {}

    async def find_by_tenant_id(self, tenant_id: str) -> list[WebhookEndpoint]:
        endpoints = [e for e in self._endpoints.values() if e.tenant_id == tenant_id]
        return sorted(endpoints, key=lambda e: e.created_at, reverse=True)

    async def find_by_id(self, endpoint_id: str) -> WebhookEndpoint | None:
        return self._endpoints.get(endpoint_id)

    async def find_by_event_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEndpoint]:
        return [
            e
            for e in self._endpoints.values()
            if e.subscribes_to(event_type) and (tenant_id is None or e.tenant_id == tenant_id)
        ]

    async def create(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        self._endpoints[endpoint.id] = endpoint
        return endpoint

    async def update(self, endpoint_id: str, **updates: Any) -> WebhookEndpoint:
        _check_updates(WebhookEndpoint, updates)
        current = self._endpoints.get(endpoint_id)
        if current is None:
            raise WebhookNotFoundError(f"Webhook endpoint {endpoint_id} not found")
        updated = dataclasses.replace(current, **updates, updated_at=utc_now())
        self._endpoints[endpoint_id] = updated
        return updated

    async def delete(self, endpoint_id: str) -> None:
        if self._endpoints.pop(endpoint_id, None) is None:
            raise WebhookNotFoundError(f"Webhook endpoint {endpoint_id} not found")


class InMemoryWebhookDeliveryRepository:
    """Reference delivery repository for development and tests."""

    def __init__(self) -> None:
        self._deliveries: dict[str, WebhookDelivery] = {}

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        self._deliveries[delivery.id] = delivery
        return delivery

    async def update(self, delivery_id: str, **updates: Any) -> WebhookDelivery:
        _check_updates(WebhookDelivery, updates)
        current = self._deliveries.get(delivery_id)
        if current is None:
            raise WebhookNotFoundError(f"Webhook delivery {delivery_id} not found")
        updated = dataclasses.replace(current, **updates, updated_at=utc_now())
        self._deliveries[delivery_id] = updated
        return updated

    async def find_by_id(self, delivery_id: str) -> WebhookDelivery | None:
        return self._deliveries.get(delivery_id)

    async def find_failed_deliveries(self, limit: int = 100) -> list[WebhookDelivery]:
        now = utc_now()
        due = [d for d in self._deliveries.values() if d.is_due(now)]
        due.sort(key=lambda d: d.next_retry_at)  # type: ignore[arg-type, return-value]
        return due[:limit]

    async def find_by_endpoint_id(self, endpoint_id: str) -> list[WebhookDelivery]:
        deliveries = [d for d in self._deliveries.values() if d.webhook_endpoint_id == endpoint_id]
        return sorted(deliveries, key=lambda d: d.created_at, reverse=True)

    async def get_stats(self, endpoint_id: str) -> WebhookStats:
        return WebhookStats.from_deliveries(await self.find_by_endpoint_id(endpoint_id))


class SqlWebhookEndpointRepository:
    """Endpoint repository backed by the ``webhook_endpoints`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_endpoint(row: WebhookEndpointModel) -> WebhookEndpoint:
        return WebhookEndpoint(
            id=row.id,
            tenant_id=row.tenant_id,
            url=row.url,
            secret=row.secret,
            events={WebhookEventType(e) for e in row.events},
            is_active=row.is_active,
            description=row.description,
            headers=row.headers,
            timeout_ms=row.timeout_ms,
            retry_attempts=row.retry_attempts,
            created_at=_as_utc(row.created_at),  # type: ignore[arg-type]
            updated_at=_as_utc(row.updated_at),  # type: ignore[arg-type]
        )

    @staticmethod
    def _column_values(values: dict[str, Any]) -> dict[str, Any]:
        if "events" in values:
            values["events"] = sorted(str(e) for e in values["events"])
        return values

    async def find_by_tenant_id(self, tenant_id: str) -> list[WebhookEndpoint]:
        query = (
            select(WebhookEndpointModel)
            .where(WebhookEndpointModel.tenant_id == tenant_id)
            .order_by(WebhookEndpointModel.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_endpoint(row) for row in result.scalars().all()]

    async def find_by_id(self, endpoint_id: str) -> WebhookEndpoint | None:
        async with self._session_factory() as session:
            row = await session.get(WebhookEndpointModel, endpoint_id)
            return self._to_endpoint(row) if row else None

    async def find_by_event_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEndpoint]:
        # JSON containment differs between backends, so the event filter runs here
        query = select(WebhookEndpointModel)
        if tenant_id is not None:
            query = query.where(WebhookEndpointModel.tenant_id == tenant_id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            endpoints = [self._to_endpoint(row) for row in result.scalars().all()]
        return [e for e in endpoints if e.subscribes_to(event_type)]

    async def create(self, endpoint: WebhookEndpoint) -> WebhookEndpoint:
        values = self._column_values(dataclasses.asdict(endpoint))
        async with self._session_factory() as session:
            session.add(WebhookEndpointModel(**values))
            await session.commit()
        return endpoint

    async def update(self, endpoint_id: str, **updates: Any) -> WebhookEndpoint:
        _check_updates(WebhookEndpoint, updates)
        values = self._column_values({**updates, "updated_at": utc_now()})
        async with self._session_factory() as session:
            row = await session.get(WebhookEndpointModel, endpoint_id)
            if row is None:
                raise WebhookNotFoundError(f"Webhook endpoint {endpoint_id} not found")
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()
            return self._to_endpoint(row)

    async def delete(self, endpoint_id: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(WebhookEndpointModel, endpoint_id)
            if row is None:
                raise WebhookNotFoundError(f"Webhook endpoint {endpoint_id} not found")
            await session.delete(row)
            await session.commit()


class SqlWebhookDeliveryRepository:
    """Delivery repository backed by the ``webhook_deliveries`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_delivery(row: WebhookDeliveryModel) -> WebhookDelivery:
        return WebhookDelivery(
            id=row.id,
            webhook_endpoint_id=row.webhook_endpoint_id,
            event_id=row.event_id,
            status=DeliveryStatus(row.status),
            attempts=row.attempts,
            last_attempt_at=_as_utc(row.last_attempt_at),
            next_retry_at=_as_utc(row.next_retry_at),
            response_status=row.response_status,
            response_body=row.response_body,
            response_headers=row.response_headers,
            error_message=row.error_message,
            latency_ms=row.latency_ms,
            created_at=_as_utc(row.created_at),  # type: ignore[arg-type]
            updated_at=_as_utc(row.updated_at),  # type: ignore[arg-type]
        )

    @staticmethod
    def _column_values(values: dict[str, Any]) -> dict[str, Any]:
        if "status" in values:
            values["status"] = DeliveryStatus(values["status"]).value
        return values

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        values = self._column_values(dataclasses.asdict(delivery))
        async with self._session_factory() as session:
            session.add(WebhookDeliveryModel(**values))
            await session.commit()
        return delivery

    async def update(self, delivery_id: str, **updates: Any) -> WebhookDelivery:
        _check_updates(WebhookDelivery, updates)
        values = self._column_values({**updates, "updated_at": utc_now()})
        async with self._session_factory() as session:
            row = await session.get(WebhookDeliveryModel, delivery_id)
            if row is None:
                raise WebhookNotFoundError(f"Webhook delivery {delivery_id} not found")
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()
            return self._to_delivery(row)

    async def find_by_id(self, delivery_id: str) -> WebhookDelivery | None:
        async with self._session_factory() as session:
            row = await session.get(WebhookDeliveryModel, delivery_id)
            return self._to_delivery(row) if row else None

    async def find_failed_deliveries(self, limit: int = 100) -> list[WebhookDelivery]:
        query = (
            select(WebhookDeliveryModel)
            .where(
                WebhookDeliveryModel.status == DeliveryStatus.RETRY.value,
                WebhookDeliveryModel.next_retry_at <= utc_now(),
            )
            .order_by(WebhookDeliveryModel.next_retry_at.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_delivery(row) for row in result.scalars().all()]

    async def find_by_endpoint_id(self, endpoint_id: str) -> list[WebhookDelivery]:
        query = (
            select(WebhookDeliveryModel)
            .where(WebhookDeliveryModel.webhook_endpoint_id == endpoint_id)
            .order_by(WebhookDeliveryModel.created_at.desc())
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_delivery(row) for row in result.scalars().all()]

    async def get_stats(self, endpoint_id: str) -> WebhookStats:
        return WebhookStats.from_deliveries(await self.find_by_endpoint_id(endpoint_id))
