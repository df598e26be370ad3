"""Store lookup client. Resolves shop domains and store ids.

GET  {base}/api/v1/stores/domain/{domain}
GET  {base}/api/v1/stores/{store_id}
PATCH {base}/api/v1/stores/domain/{domain}   {"status": "uninstalled"}

404 means "unknown store" and returns None; any other failure raises
StoreLookupError.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import BaseModel, ConfigDict, field_validator

from webhook_relay.clients.core_ai import api_base, error_detail
from webhook_relay.errors import StoreLookupError

logger = logging.getLogger(__name__)


class Store(BaseModel):
    """Store record as returned by the store service."""

    model_config = ConfigDict(extra="ignore")

    id: str
    domain: str = ""
    name: str = ""
    status: str = "active"

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        return str(value)

    @property
    def is_active(self) -> bool:
        return self.status == "active"


class StoreDirectory(Protocol):
    """What the relay needs from the store service."""

    async def get_by_domain(self, domain: str) -> Store | None: ...

    async def get_by_id(self, store_id: str) -> Store | None: ...

    async def mark_uninstalled(self, domain: str) -> bool: ...


class StoreClient:
    """Async client for the store lookup API."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["X-API-Key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=api_base(base_url),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def _get_store(self, path: str) -> Store | None:
        try:
            response = await self._client.get(path)
        except httpx.HTTPError as e:
            raise StoreLookupError(f"Store service unreachable: {type(e).__name__}") from e
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise StoreLookupError(
                f"Store lookup failed ({response.status_code}): {error_detail(response)}"
            )
        return Store.model_validate(response.json())

    async def get_by_domain(self, domain: str) -> Store | None:
        return await self._get_store(f"/stores/domain/{domain}")

    async def get_by_id(self, store_id: str) -> Store | None:
        return await self._get_store(f"/stores/{store_id}")

    async def mark_uninstalled(self, domain: str) -> bool:
        """Flag the store as uninstalled. Returns False on any failure."""
        try:
            response = await self._client.patch(
                f"/stores/domain/{domain}", json={"status": "uninstalled"}
            )
        except httpx.HTTPError:
            logger.warning("Failed to mark store uninstalled: %s", domain, exc_info=True)
            return False
        if not response.is_success:
            logger.error(
                "Failed to mark store uninstalled: %s (%d %s)",
                domain,
                response.status_code,
                error_detail(response),
            )
            return False
        logger.info("Store marked uninstalled: %s", domain)
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
