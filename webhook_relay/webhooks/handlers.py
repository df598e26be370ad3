"""Webhook HTTP handlers — FastAPI route handlers for inbound Shopify webhooks.

Each request:
1. Reads raw body (needed for HMAC verification)
2. Verifies the signature
3. Checks required headers and parses JSON
4. Drops duplicates (200, not re-queued) and claims the dedup key
5. Resolves the store (404 if unknown)
6. Checks queue capacity (503) and the per-shop rate limit (429 + Retry-After)
7. Enqueues for async forwarding; any rejection releases the dedup key
8. Returns 200 immediately; forwarding happens in the background

Security contract:
- Never return error details to webhook caller (info disclosure)
- Return 401 only for signature failures
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import math
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from webhook_relay.pipeline.assembly import Pipeline
from webhook_relay.pipeline.models import QueuedEvent
from webhook_relay.webhooks.dispatcher import (
    UNINSTALL_TOPIC,
    normalize_topic,
    original_event_id,
    summarize,
)
from webhook_relay.webhooks.verification import SHOP_HEADER, TOPIC_HEADER, verify_webhook

logger = logging.getLogger(__name__)


def _log_webhook(shop: str, topic: str, webhook_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info(
        "WEBHOOK_AUDIT shop=%s topic=%s id=%s status=%s",
        shop or "unknown",
        topic or "unknown",
        webhook_id or "-",
        status,
    )


def _reply(status: str, status_code: int, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse({"status": status}, status_code=status_code, headers=headers)


async def _handle_webhook(request: Request) -> JSONResponse:
    """Admit one webhook into the forwarding pipeline."""
    pipeline: Pipeline = request.app.state.pipeline
    start = time.time()

    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    shop = headers.get(SHOP_HEADER, "").strip()
    topic = headers.get(TOPIC_HEADER, "").strip()

    # 1. Verify signature over the exact raw bytes
    if not verify_webhook(body, headers, pipeline.settings.shopify_webhook_secret):
        _log_webhook(shop, topic, "", "signature_failed")
        return _reply("unauthorized", 401)

    if not shop or not topic:
        _log_webhook(shop, topic, "", "missing_headers")
        return _reply("bad request", 400)

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _log_webhook(shop, topic, "", "invalid_json")
        return _reply("bad request", 400)

    webhook_id = original_event_id(payload)
    pipeline.metrics.record_received(shop)

    # 2. Idempotency: claim the key before the first await so a concurrent
    # redelivery of the same webhook is seen as a duplicate
    if pipeline.dedup.is_duplicate(topic, shop, payload):
        pipeline.metrics.record_duplicate(shop)
        _log_webhook(shop, topic, webhook_id, "duplicate")
        return _reply("received", 200)
    pipeline.dedup.remember(topic, shop, payload)

    try:
        # 3. Store lookup
        store = await pipeline.stores.get_by_domain(shop)
        if store is None:
            pipeline.dedup.forget(topic, shop, payload)
            _log_webhook(shop, topic, webhook_id, "unknown_store")
            return _reply("not found", 404)
        if not store.is_active:
            logger.info("Webhook for inactive store %s (status=%s)", shop, store.status)

        if topic == UNINSTALL_TOPIC:
            await pipeline.stores.mark_uninstalled(shop)

        # 4. Capacity and rate limit; no await from here to the enqueue, so
        # quota is only spent on events that are actually queued
        if pipeline.queue.is_full:
            pipeline.dedup.forget(topic, shop, payload)
            _log_webhook(shop, topic, webhook_id, "queue_full")
            return _reply("unavailable", 503)

        if not pipeline.rate_limiter.admit(shop):
            pipeline.dedup.forget(topic, shop, payload)
            pipeline.metrics.record_rate_limited(shop)
            _log_webhook(shop, topic, webhook_id, "rate_limited")
            retry_after = max(1, math.ceil(pipeline.rate_limiter.retry_after(shop)))
            return _reply("rate limited", 429, headers={"Retry-After": str(retry_after)})

        # 5. Enqueue
        pipeline.queue.enqueue(
            QueuedEvent.create(
                original_event_id=webhook_id,
                store_id=store.id,
                shop_domain=shop,
                event_type=normalize_topic(topic),
                payload=payload,
            )
        )
    except Exception:
        pipeline.dedup.forget(topic, shop, payload)
        logger.exception("Error processing webhook: shop=%s topic=%s", shop, topic)
        _log_webhook(shop, topic, webhook_id, "error")
        return _reply("error", 500)

    _log_webhook(shop, topic, webhook_id, "queued")
    elapsed_ms = (time.time() - start) * 1000
    logger.debug(
        "Webhook admitted in %.1fms: %s/%s (%s)",
        elapsed_ms,
        shop,
        topic,
        summarize(topic, payload),
    )
    return _reply("received", 200)


def register_webhook_routes(app: FastAPI) -> None:
    """Register inbound webhook endpoints on the FastAPI app."""

    @app.post("/webhooks/shopify")
    async def shopify_webhook(request: Request):
        """Receive Shopify webhooks (signature-verified)."""
        return await _handle_webhook(request)

    @app.post("/webhooks/shopify/{topic:path}")
    async def shopify_webhook_with_topic(request: Request):
        """Receive Shopify webhooks with a topic subpath.

        The subpath is informational only; the signed X-Shopify-Topic header
        decides the topic.
        """
        return await _handle_webhook(request)

    @app.post("/api/webhooks")
    async def legacy_webhook(request: Request):
        """Legacy webhook address registered with existing stores."""
        return await _handle_webhook(request)

    logger.info("Webhook routes registered: /webhooks/shopify, /api/webhooks")
