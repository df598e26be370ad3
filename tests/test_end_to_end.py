"""End-to-end: signed webhook in, forwarded event (or dead letter) out."""

from __future__ import annotations

import httpx
import pytest

from webhook_relay.pipeline.assembly import build_pipeline
from webhook_relay.serve import create_app

from tests.conftest import SHOP, FakeSink, webhook_request


def _client(pipeline) -> httpx.AsyncClient:
    app = create_app(pipeline=pipeline, run_workers=False)
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://relay")


async def _post(client: httpx.AsyncClient, payload, **kwargs) -> httpx.Response:
    body, headers = webhook_request(payload, **kwargs)
    return await client.post("/webhooks/shopify", content=body, headers=headers)


@pytest.mark.asyncio
async def test_accepted_webhook_is_forwarded(pipeline, sink):
    """Scenario A: queue 0 -> 1 -> 0, one processed event."""
    async with _client(pipeline) as client:
        assert len(pipeline.queue) == 0
        resp = await _post(client, {"id": 1001, "total_price": "10.00"})
        assert resp.status_code == 200
        assert len(pipeline.queue) == 1

    await pipeline.forwarder.process_batch()

    assert len(pipeline.queue) == 0
    assert pipeline.metrics.snapshot()["events_processed"] == 1
    assert pipeline.metrics.shop_snapshot(SHOP)["events_processed"] == 1
    assert len(sink.calls) == 1
    envelope = sink.calls[0]
    assert envelope["event_type"] == "orders_create"
    assert envelope["store_id"] == "101"
    assert envelope["payload"] == {"id": 1001, "total_price": "10.00"}
    assert envelope["occurred_at"].endswith("+00:00")


@pytest.mark.asyncio
async def test_redelivery_is_deduplicated(pipeline):
    """Scenario B: the same payload twice leaves one queued event."""
    async with _client(pipeline) as client:
        first = await _post(client, {"id": 2002})
        second = await _post(client, {"id": 2002})

    assert first.status_code == second.status_code == 200
    assert len(pipeline.queue) == 1
    assert pipeline.metrics.snapshot()["duplicate_events_detected"] == 1


@pytest.mark.asyncio
async def test_failing_downstream_dead_letters(settings, stores, clock):
    """Scenario C: after the retry ceiling, DLQ 1 and live queue 0."""
    sink = FakeSink(always_fail=True)
    pipeline = build_pipeline(settings, sink=sink, stores=stores, clock=clock)

    async with _client(pipeline) as client:
        await _post(client, {"id": 3003})

    for _ in range(settings.max_retries):
        await pipeline.forwarder.process_batch()
        clock.advance(settings.retry_max_delay_seconds)

    assert len(sink.calls) == settings.max_retries
    assert len(pipeline.queue.dead_letters) == 1
    assert len(pipeline.queue) == 0
    assert pipeline.metrics.snapshot()["events_failed"] == 1

    # Operator replay gives the event a fresh budget; downstream has recovered
    sink.always_fail = False
    async with _client(pipeline) as client:
        resp = await client.post("/webhooks/dead-letters/replay")
    assert resp.json()["replayed"] == 1

    await pipeline.forwarder.process_batch()
    assert len(pipeline.queue) == 0
    assert len(pipeline.queue.dead_letters) == 0
    assert pipeline.metrics.snapshot()["events_processed"] == 1


@pytest.mark.asyncio
async def test_rate_limit_boundary(pipeline):
    """Scenario D: 101 events in one window, 100 admitted, 1 rejected."""
    statuses = []
    async with _client(pipeline) as client:
        for i in range(101):
            resp = await _post(client, {"id": i})
            statuses.append(resp.status_code)

    assert statuses.count(200) == 100
    assert statuses[-1] == 429
    assert len(pipeline.queue) == 100
    assert pipeline.metrics.shop_snapshot(SHOP)["events_rate_limited"] == 1


@pytest.mark.asyncio
async def test_circuit_opens_under_sustained_failure(settings, stores, clock):
    settings = settings.model_copy(update={"breaker_failure_threshold": 2, "max_retries": 5, "batch_size": 1})
    sink = FakeSink(always_fail=True)
    pipeline = build_pipeline(settings, sink=sink, stores=stores, clock=clock)

    async with _client(pipeline) as client:
        for i in range(4):
            await _post(client, {"id": i})

    for _ in range(4):
        assert await pipeline.forwarder.process_batch() == 1

    # Once the breaker opens the remaining events fail fast
    assert pipeline.breaker.is_open is True
    assert len(sink.calls) == 2
    assert all(e.retries == 1 for e in pipeline.queue.events())

    async with _client(pipeline) as client:
        status = (await client.get("/webhooks/status")).json()
    assert status["circuit_breaker"]["is_open"] is True
    assert status["queue"]["total_events"] == 4


@pytest.mark.asyncio
async def test_lifespan_runs_workers(pipeline, sink):
    app = create_app(pipeline=pipeline, run_workers=True)
    async with app.router.lifespan_context(app):
        assert pipeline.forwarder.running is True
    assert pipeline.forwarder.running is False
