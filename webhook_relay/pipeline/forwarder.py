"""Drains the event queue into the Core AI Service.

Each iteration claims a batch of eligible events and forwards them
concurrently. Every forward goes through the circuit breaker and a per-call
deadline. Outcomes:

- success: event removed from the queue, latency recorded
- failure (exception, timeout or breaker fail-fast): ``retries`` += 1, then
  either rescheduled with exponential backoff or, once the retry ceiling is
  reached, moved to the dead letter queue

The loop never dies on an unexpected error; it logs, backs off and resumes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

from webhook_relay.clients.stores import StoreDirectory
from webhook_relay.pipeline.circuit_breaker import CircuitBreaker
from webhook_relay.pipeline.metrics import MetricsRecorder
from webhook_relay.pipeline.models import EventState, QueuedEvent
from webhook_relay.pipeline.queue import EventQueue

logger = logging.getLogger(__name__)

CIRCUIT_OPEN_ERROR = "circuit breaker open"


class EventSink(Protocol):
    async def forward_event(self, envelope: dict[str, Any]) -> None: ...


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``base_delay * 2 ** (retries - 1)``, capped."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 300.0

    def delay_for(self, retries: int) -> float:
        delay = self.base_delay * (2 ** max(retries - 1, 0))
        return min(delay, self.max_delay)

    def exhausted(self, retries: int) -> bool:
        return retries >= self.max_retries


class Forwarder:
    """Background worker that forwards queued events."""

    def __init__(
        self,
        queue: EventQueue,
        sink: EventSink,
        breaker: CircuitBreaker,
        metrics: MetricsRecorder,
        stores: StoreDirectory | None = None,
        *,
        policy: RetryPolicy | None = None,
        batch_size: int = 10,
        forward_timeout: float = 10.0,
        idle_interval: float = 0.1,
        error_backoff: float = 1.0,
    ) -> None:
        self._queue = queue
        self._sink = sink
        self._breaker = breaker
        self._metrics = metrics
        self._stores = stores
        self.policy = policy or RetryPolicy()
        self._batch_size = batch_size
        self._forward_timeout = forward_timeout
        self._idle_interval = idle_interval
        self._error_backoff = error_backoff
        self._task: asyncio.Task[None] | None = None
        self._stopped = True

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._stopped = False
        self._task = asyncio.create_task(self._run(), name="webhook-forwarder")
        logger.info("Forwarder started (batch_size=%d)", self._batch_size)

    async def stop(self, drain_timeout: float = 5.0) -> None:
        """Stop the loop, letting an in-progress batch settle for ``drain_timeout``."""
        self._stopped = True
        task, self._task = self._task, None
        if task is None:
            return
        try:
            await asyncio.wait_for(task, timeout=drain_timeout)
        except asyncio.TimeoutError:
            logger.warning("Forwarder did not drain within %.1fs, cancelled", drain_timeout)
        except asyncio.CancelledError:
            pass
        self._queue.release_in_flight()
        logger.info("Forwarder stopped (%d events left in queue)", len(self._queue))

    async def _run(self) -> None:
        while not self._stopped:
            try:
                handled = await self.process_batch()
                if handled and self._queue.has_eligible():
                    continue
                await self._queue.wait_for_work(self._idle_interval)
            except Exception:
                logger.exception("Error processing event queue")
                await asyncio.sleep(self._error_backoff)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_batch(self) -> int:
        """Forward one batch of eligible events. Returns the batch size."""
        batch = self._queue.dequeue_batch(self._batch_size)
        if not batch:
            return 0
        logger.debug("Processing %d events from queue", len(batch))
        await asyncio.gather(*(self._process_event(event) for event in batch))
        return len(batch)

    async def _process_event(self, event: QueuedEvent) -> None:
        start = time.monotonic()
        shop_domain = await self._resolve_shop(event)

        error = ""
        try:
            forwarded = await self._breaker.execute(lambda: self._forward(event))
            if not forwarded:
                error = CIRCUIT_OPEN_ERROR
        except asyncio.TimeoutError:
            forwarded = False
            error = f"forward timed out after {self._forward_timeout:.1f}s"
        except Exception as e:
            forwarded = False
            error = str(e) or type(e).__name__

        if forwarded:
            latency_ms = (time.monotonic() - start) * 1000
            event.state = EventState.SUCCEEDED
            self._queue.remove(event)
            self._metrics.record_processed(shop_domain, latency_ms)
            logger.info(
                "Successfully processed event %s (original event ID: %s) in %.1fms",
                event.id,
                event.original_event_id,
                latency_ms,
            )
            return

        self._handle_failure(event, error, shop_domain)

    async def _forward(self, event: QueuedEvent) -> None:
        await asyncio.wait_for(
            self._sink.forward_event(event.envelope()),
            timeout=self._forward_timeout,
        )

    async def _resolve_shop(self, event: QueuedEvent) -> str:
        """Shop domain for metrics/logging; lookup failures never block a forward."""
        if self._stores is None or event.shop_domain:
            return event.shop_domain
        try:
            store = await self._stores.get_by_id(event.store_id)
        except Exception:
            logger.warning(
                "Store lookup failed for store %s", event.store_id, exc_info=True
            )
            return event.shop_domain
        if store is None:
            return event.shop_domain
        event.shop_domain = store.domain
        return store.domain

    def _handle_failure(self, event: QueuedEvent, error: str, shop_domain: str) -> None:
        event.retries += 1
        event.last_error = error

        if self.policy.exhausted(event.retries):
            self._queue.dead_letter(event, error)
            self._metrics.record_failed(shop_domain)
            logger.error(
                "Event %s (original event ID: %s) failed after %d attempts, moved to DLQ: %s",
                event.id,
                event.original_event_id,
                event.retries,
                error,
            )
            return

        delay = self.policy.delay_for(event.retries)
        self._queue.requeue_for_retry(event, delay)
        self._metrics.record_retried(shop_domain)
        logger.warning(
            "Failed to forward event %s (attempt %d/%d): %s, retrying in %.1fs",
            event.id,
            event.retries,
            self.policy.max_retries,
            error,
            delay,
        )
