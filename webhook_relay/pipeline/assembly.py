"""Pipeline container: every stateful component, built once at startup.

The HTTP handlers and the background workers share one Pipeline instance
(via ``app.state.pipeline``) instead of module-level singletons, so tests
can build a fresh pipeline per case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import redis

from webhook_relay.clients.core_ai import CoreAIClient
from webhook_relay.clients.stores import StoreClient, StoreDirectory
from webhook_relay.config import Settings
from webhook_relay.pipeline.circuit_breaker import CircuitBreaker
from webhook_relay.pipeline.forwarder import EventSink, Forwarder, RetryPolicy
from webhook_relay.pipeline.metrics import MetricsRecorder
from webhook_relay.pipeline.monitor import Monitor
from webhook_relay.pipeline.queue import DeadLetterQueue, EventQueue
from webhook_relay.webhooks.idempotency import (
    DedupCache,
    DuplicateDetector,
    RedisDedupCache,
)
from webhook_relay.webhooks.rate_limit import RateLimiter

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Shared pipeline components."""

    settings: Settings
    dedup: DuplicateDetector
    rate_limiter: RateLimiter
    metrics: MetricsRecorder
    queue: EventQueue
    breaker: CircuitBreaker
    sink: EventSink
    stores: StoreDirectory
    forwarder: Forwarder
    monitor: Monitor

    async def start(self) -> None:
        await self.forwarder.start()
        await self.monitor.start()

    async def stop(self, drain_timeout: float = 5.0) -> None:
        await self.monitor.stop()
        await self.forwarder.stop(drain_timeout=drain_timeout)

    async def aclose(self) -> None:
        """Close HTTP clients owned by the pipeline."""
        for client in (self.sink, self.stores):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()

    def status(self) -> dict[str, Any]:
        """Operational snapshot: queue, DLQ, circuit breaker, global metrics."""
        return {
            "queue": self.queue.stats(),
            "dlq_size": len(self.queue.dead_letters),
            "circuit_breaker": self.breaker.status(),
            "forwarder_running": self.forwarder.running,
            "metrics": self.metrics.snapshot(),
        }


def _redis_client(settings: Settings) -> redis.Redis | None:
    if not settings.redis_url:
        return None
    return redis.from_url(settings.redis_url, decode_responses=True)


def build_pipeline(
    settings: Settings,
    *,
    sink: EventSink | None = None,
    stores: StoreDirectory | None = None,
    clock: Callable[[], float] | None = None,
) -> Pipeline:
    """Wire every component from ``settings``.

    ``sink`` and ``stores`` default to the HTTP clients; tests pass fakes.
    """
    redis_client = _redis_client(settings)

    if settings.dedup_backend == "redis":
        if redis_client is None:
            raise ValueError("DEDUP_BACKEND=redis requires REDIS_URL")
        dedup: DuplicateDetector = RedisDedupCache(redis_client, ttl=settings.dedup_ttl_seconds)
    else:
        dedup = DedupCache(
            ttl=settings.dedup_ttl_seconds,
            max_entries=settings.dedup_max_entries,
            clock=clock,
        )

    metrics = MetricsRecorder()
    queue = EventQueue(
        max_size=settings.queue_max_size,
        dead_letters=DeadLetterQueue(mirror=redis_client, mirror_key=settings.dlq_redis_key),
        metrics=metrics,
        clock=clock,
    )
    breaker = CircuitBreaker(
        threshold=settings.breaker_failure_threshold,
        timeout=settings.breaker_reset_timeout_seconds,
        clock=clock,
    )

    if sink is None:
        sink = CoreAIClient(
            settings.core_ai_service_url,
            api_key=settings.core_ai_service_api_key,
            timeout=settings.forward_timeout_seconds,
        )
    if stores is None:
        stores = StoreClient(settings.store_api_url, api_key=settings.core_ai_service_api_key)

    forwarder = Forwarder(
        queue,
        sink,
        breaker,
        metrics,
        stores,
        policy=RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        ),
        batch_size=settings.batch_size,
        forward_timeout=settings.forward_timeout_seconds,
        idle_interval=settings.idle_interval_seconds,
        error_backoff=settings.error_backoff_seconds,
    )
    monitor = Monitor(
        queue,
        breaker,
        interval=settings.monitor_interval_seconds,
        queue_warning_threshold=settings.monitor_queue_warning_threshold,
    )

    logger.info(
        "Pipeline built: dedup=%s queue_max=%d max_retries=%d",
        settings.dedup_backend,
        settings.queue_max_size,
        settings.max_retries,
    )
    return Pipeline(
        settings=settings,
        dedup=dedup,
        rate_limiter=RateLimiter(
            max_events=settings.rate_limit_max_events,
            window_seconds=settings.rate_limit_window_seconds,
            storage_uri=settings.rate_limit_storage_uri,
        ),
        metrics=metrics,
        queue=queue,
        breaker=breaker,
        sink=sink,
        stores=stores,
        forwarder=forwarder,
        monitor=monitor,
    )
