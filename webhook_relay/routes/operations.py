"""Operational API routes (status, per-shop metrics, dead letter replay).

All routes except /health require the X-Admin-Token header when
ADMIN_TOKEN is configured.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from webhook_relay.errors import StoreLookupError
from webhook_relay.pipeline.assembly import Pipeline

logger = logging.getLogger(__name__)


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def require_admin(
    pipeline: Pipeline = Depends(get_pipeline),
    x_admin_token: str | None = Header(default=None),
) -> None:
    """Reject the request unless it carries the configured admin token."""
    expected = pipeline.settings.admin_token
    if not expected:
        return
    if not x_admin_token or not hmac.compare_digest(
        x_admin_token.encode("utf-8"), expected.encode("utf-8")
    ):
        raise HTTPException(status_code=401, detail="unauthorized")


class ReplayRequest(BaseModel):
    """Dead letter replay selection; ``None`` replays every entry."""

    event_ids: list[str] | None = None


router = APIRouter(tags=["operations"])
admin = [Depends(require_admin)]


@router.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


@router.get("/webhooks/status", dependencies=admin)
async def webhook_status(pipeline: Pipeline = Depends(get_pipeline)):
    """Queue, DLQ, circuit breaker and global counters."""
    return pipeline.status()


@router.get("/api/metrics", dependencies=admin)
async def shop_metrics(
    shop: str | None = Query(default=None),
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Counters for a single shop."""
    if not shop:
        return JSONResponse({"error": "Missing shop parameter"}, status_code=400)
    try:
        store = await pipeline.stores.get_by_domain(shop)
    except StoreLookupError:
        logger.exception("Store lookup failed in metrics endpoint: %s", shop)
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    if store is None:
        return JSONResponse({"error": "Store not found"}, status_code=404)
    return {"shop": shop, "store_id": store.id, **pipeline.metrics.shop_snapshot(shop)}


@router.get("/webhooks/dead-letters", dependencies=admin)
async def list_dead_letters(pipeline: Pipeline = Depends(get_pipeline)):
    """Every event that exhausted its retry budget."""
    entries = pipeline.queue.dead_letters.entries()
    return {"count": len(entries), "entries": [entry.to_dict() for entry in entries]}


@router.post("/webhooks/dead-letters/replay", dependencies=admin)
async def replay_dead_letters(
    body: ReplayRequest | None = None,
    pipeline: Pipeline = Depends(get_pipeline),
):
    """Move dead-lettered events back into the live queue with a fresh retry budget."""
    event_ids = body.event_ids if body is not None else None
    replayed = pipeline.queue.replay_dead_letters(event_ids)
    logger.info("DLQ replay requested: %d events re-queued", len(replayed))
    return {
        "replayed": len(replayed),
        "event_ids": [event.id for event in replayed],
        "remaining": len(pipeline.queue.dead_letters),
    }
