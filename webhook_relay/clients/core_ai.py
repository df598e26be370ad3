"""Core AI Service client — forwards normalized commerce events.

POST {base}/api/v1/events with the event envelope and an X-API-Key header.
Any 2xx is success. Non-2xx raises ForwardError; network errors propagate as
httpx exceptions. Both are treated the same by the forwarder.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from webhook_relay.errors import ForwardError

logger = logging.getLogger(__name__)


def api_base(url: str) -> str:
    """'http://host:8000/' -> 'http://host:8000/api/v1'."""
    return url.rstrip("/") + "/api/v1"


def error_detail(response: httpx.Response) -> str:
    """Best-effort error text from a JSON or plain error body."""
    try:
        data = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("message")
        if detail:
            return str(detail)
    return response.reason_phrase or f"HTTP {response.status_code}"


class CoreAIClient:
    """Async client for the Core AI Service events endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=api_base(base_url),
            timeout=timeout,
            headers={"X-API-Key": api_key, "Content-Type": "application/json"},
            transport=transport,
        )

    async def forward_event(self, envelope: dict[str, Any]) -> None:
        """Deliver one event envelope.

        Raises:
            ForwardError: on a non-2xx response
            httpx.HTTPError: on connection/timeout errors
        """
        response = await self._client.post("/events", json=envelope)
        if not response.is_success:
            raise ForwardError(
                f"Core AI Service rejected event: {error_detail(response)}",
                status_code=response.status_code,
            )
        logger.debug(
            "Event forwarded to Core AI Service: type=%s store=%s",
            envelope.get("event_type"),
            envelope.get("store_id"),
        )

    async def aclose(self) -> None:
        await self._client.aclose()
