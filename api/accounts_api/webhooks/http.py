"""Outbound HTTP transport for webhook deliveries."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

import httpx

from accounts_api.webhooks.exceptions import WebhookDeliveryError


@dataclass
class HttpResponse:
    """Transport-agnostic view of an HTTP response."""

    status: int
    status_text: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    data: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@runtime_checkable
class HttpClient(Protocol):
    async def post(
        self,
        url: str,
        body: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
    ) -> HttpResponse:
        """POST ``body`` as-is; raise on transport errors and timeouts."""
        ...


class HttpxClient:
    """HttpClient implementation on top of httpx."""

    DEFAULT_TIMEOUT_MS = 30_000

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport

    async def post(
        self,
        url: str,
        body: str,
        *,
        headers: dict[str, str] | None = None,
        timeout_ms: int | None = None,
    ) -> HttpResponse:
        timeout = (timeout_ms or self.DEFAULT_TIMEOUT_MS) / 1000

        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    content=body.encode("utf-8"),
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise WebhookDeliveryError(f"Request timeout after {int(timeout * 1000)}ms") from e
        except httpx.RequestError as e:
            raise WebhookDeliveryError(f"HTTP request failed: {str(e)[:500]}") from e

        try:
            data: Any = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            data = response.text

        return HttpResponse(
            status=response.status_code,
            status_text=response.reason_phrase,
            headers=dict(response.headers),
            data=data,
        )
