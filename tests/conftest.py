"""Shared fixtures for the webhook relay test suite."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
from typing import Any

import pytest

from webhook_relay.clients.stores import Store
from webhook_relay.config import Settings
from webhook_relay.errors import ForwardError, StoreLookupError
from webhook_relay.pipeline.assembly import Pipeline, build_pipeline

WEBHOOK_SECRET = "test-secret"
SHOP = "s1.myshopify.com"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSink:
    """Stands in for the Core AI Service client."""

    def __init__(self, failures: int = 0, always_fail: bool = False, delay: float = 0.0) -> None:
        self.calls: list[dict[str, Any]] = []
        self.failures_remaining = failures
        self.always_fail = always_fail
        self.delay = delay

    async def forward_event(self, envelope: dict[str, Any]) -> None:
        self.calls.append(envelope)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise ForwardError("Core AI Service rejected event: upstream down", status_code=502)


class FakeStores:
    """In-memory store directory."""

    def __init__(self, stores: dict[str, Store] | None = None, delay: float = 0.0) -> None:
        self.stores = stores if stores is not None else {
            SHOP: Store(id="101", domain=SHOP, name="Shop One"),
        }
        self.uninstalled: list[str] = []
        self.lookup_error = False
        self.delay = delay

    async def get_by_domain(self, domain: str) -> Store | None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.lookup_error:
            raise StoreLookupError("Store service unreachable: ConnectError")
        return self.stores.get(domain)

    async def get_by_id(self, store_id: str) -> Store | None:
        if self.lookup_error:
            raise StoreLookupError("Store service unreachable: ConnectError")
        for store in self.stores.values():
            if store.id == store_id:
                return store
        return None

    async def mark_uninstalled(self, domain: str) -> bool:
        self.uninstalled.append(domain)
        return True


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Compute a valid Shopify signature."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def webhook_request(
    payload: Any,
    topic: str = "orders/create",
    shop: str = SHOP,
    secret: str = WEBHOOK_SECRET,
) -> tuple[bytes, dict[str, str]]:
    """Body + headers for a signed webhook POST."""
    body = json.dumps(payload).encode()
    headers = {
        "X-Shopify-Hmac-SHA256": sign(body, secret),
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": shop,
        "Content-Type": "application/json",
    }
    return body, headers


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        shopify_webhook_secret=WEBHOOK_SECRET,
        core_ai_service_url="http://core-ai.test",
        max_retries=3,
        retry_base_delay_seconds=1.0,
        breaker_failure_threshold=5,
        breaker_reset_timeout_seconds=30.0,
        rate_limit_max_events=100,
        rate_limit_window_seconds=60,
        queue_max_size=500,
        batch_size=10,
        forward_timeout_seconds=1.0,
        idle_interval_seconds=0.01,
    )


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def stores() -> FakeStores:
    return FakeStores()


@pytest.fixture
def pipeline(settings: Settings, sink: FakeSink, stores: FakeStores, clock: FakeClock) -> Pipeline:
    return build_pipeline(settings, sink=sink, stores=stores, clock=clock)
