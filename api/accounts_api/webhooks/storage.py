"""Event storage adapters (audit record of every published event)."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accounts_api.webhooks.event import EventMetadata, WebhookEvent, WebhookEventType
from accounts_api.webhooks.models import WebhookEventRecord

logger = logging.getLogger(__name__)


@runtime_checkable
class EventStorageAdapter(Protocol):
    """Durable, append-only store of published events."""

    async def store(self, event: WebhookEvent) -> None: ...

    async def store_batch(self, events: list[WebhookEvent]) -> None: ...

    async def get_event(self, event_id: str) -> WebhookEvent | None: ...

    async def get_events_by_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEvent]:
        """Events of one type, newest first."""
        ...


class InMemoryEventStorage:
    """Reference storage for development and tests."""

    def __init__(self) -> None:
        self._events: dict[str, WebhookEvent] = {}

    async def store(self, event: WebhookEvent) -> None:
        self._events[event.id] = event

    async def store_batch(self, events: list[WebhookEvent]) -> None:
        for event in events:
            self._events[event.id] = event

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        return self._events.get(event_id)

    async def get_events_by_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEvent]:
        events = [
            event
            for event in self._events.values()
            if event.type == event_type
            and (tenant_id is None or event.metadata.tenant_id == tenant_id)
        ]
        return sorted(events, key=lambda e: e.metadata.occurred_at, reverse=True)

    def clear(self) -> None:
        self._events.clear()


class SqlEventStorage:
    """Event storage backed by the ``webhook_events`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_record(event: WebhookEvent) -> WebhookEventRecord:
        return WebhookEventRecord(
            id=event.id,
            event_type=event.type.value,
            tenant_id=event.metadata.tenant_id,
            user_id=event.metadata.user_id,
            data=event.data,
            event_metadata=event.metadata.to_payload(),
            occurred_at=event.metadata.occurred_at,
        )

    @staticmethod
    def _to_event(record: WebhookEventRecord) -> WebhookEvent:
        return WebhookEvent(
            id=record.id,
            type=WebhookEventType(record.event_type),
            data=record.data,
            metadata=EventMetadata.from_payload(record.event_metadata),
        )

    async def store(self, event: WebhookEvent) -> None:
        async with self._session_factory() as session:
            session.add(self._to_record(event))
            await session.commit()

    async def store_batch(self, events: list[WebhookEvent]) -> None:
        async with self._session_factory() as session:
            session.add_all([self._to_record(event) for event in events])
            await session.commit()
        logger.debug("Stored %d webhook events", len(events))

    async def get_event(self, event_id: str) -> WebhookEvent | None:
        async with self._session_factory() as session:
            record = await session.get(WebhookEventRecord, event_id)
            return self._to_event(record) if record else None

    async def get_events_by_type(
        self,
        event_type: WebhookEventType,
        tenant_id: str | None = None,
    ) -> list[WebhookEvent]:
        query = (
            select(WebhookEventRecord)
            .where(WebhookEventRecord.event_type == event_type.value)
            .order_by(WebhookEventRecord.occurred_at.desc())
        )
        if tenant_id is not None:
            query = query.where(WebhookEventRecord.tenant_id == tenant_id)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_event(record) for record in result.scalars().all()]
