"""In-process event queue and dead letter queue.

All mutations are synchronous, so within one event loop they never
interleave; the only suspension point is ``wait_for_work``.

Ordering: eligible events come out in arrival order, except that retries
whose backoff has elapsed are served ahead of never-attempted events.

Invariants:
- An event leaves the live queue exactly once (success or dead-lettering)
- An event id is never in the live queue and the DLQ at the same time
- The live queue never holds more than ``max_size`` events
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Callable, Iterable

from webhook_relay.errors import QueueFullError
from webhook_relay.pipeline.models import DeadLetterEntry, EventState, QueuedEvent

if TYPE_CHECKING:
    import redis

    from webhook_relay.pipeline.metrics import MetricsRecorder

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 10000


class DeadLetterQueue:
    """Events that exhausted their retry budget.

    Entries stay here until an operator replays them. When a Redis client is
    given, every entry is also LPUSHed as JSON to ``mirror_key`` as an audit
    trail; mirror failures are logged and otherwise ignored.
    """

    def __init__(
        self,
        mirror: redis.Redis | None = None,
        mirror_key: str = "webhook-dlq",
    ) -> None:
        self._entries: list[DeadLetterEntry] = []
        self._mirror = mirror
        self._mirror_key = mirror_key

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, event_id: object) -> bool:
        return any(entry.event.id == event_id for entry in self._entries)

    def append(self, entry: DeadLetterEntry) -> None:
        self._entries.append(entry)
        if self._mirror is not None:
            try:
                self._mirror.lpush(
                    self._mirror_key, json.dumps(entry.to_dict(), default=str)
                )
            except Exception:
                logger.warning(
                    "DLQ mirror write failed for %s", entry.event.id, exc_info=True
                )

    def entries(self) -> list[DeadLetterEntry]:
        return list(self._entries)

    def take(self, event_id: str) -> DeadLetterEntry | None:
        """Remove and return the entry for ``event_id``."""
        for i, entry in enumerate(self._entries):
            if entry.event.id == event_id:
                return self._entries.pop(i)
        return None


class EventQueue:
    """FIFO of accepted events awaiting forwarding."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        dead_letters: DeadLetterQueue | None = None,
        metrics: MetricsRecorder | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._max_size = max_size
        self._dead_letters = dead_letters if dead_letters is not None else DeadLetterQueue()
        self._metrics = metrics
        self._clock = clock or time.time
        self._events: list[QueuedEvent] = []
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return any(event.id == event_id for event in self._events)

    @property
    def is_full(self) -> bool:
        return len(self._events) >= self._max_size

    @property
    def dead_letters(self) -> DeadLetterQueue:
        return self._dead_letters

    def events(self) -> list[QueuedEvent]:
        return list(self._events)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def enqueue(self, event: QueuedEvent) -> QueuedEvent:
        """Append to the tail and wake the forwarder.

        Raises:
            QueueFullError: if the queue already holds ``max_size`` events.
        """
        if self.is_full:
            raise QueueFullError(f"Event queue full ({self._max_size} events)")
        self._append(event)
        logger.debug(
            "Event added to queue: %s (type=%s store=%s)",
            event.id,
            event.event_type,
            event.store_id,
        )
        return event

    def dequeue_batch(self, n: int) -> list[QueuedEvent]:
        """Claim up to ``n`` eligible events and mark them in flight."""
        if n <= 0:
            return []
        now = self._clock()
        ready_retries = [e for e in self._events if e.is_ready_retry(now)]
        fresh = [
            e for e in self._events if e.state == EventState.NEW and e.is_eligible(now)
        ]
        batch = (ready_retries + fresh)[:n]
        for event in batch:
            event.state = EventState.IN_FLIGHT
        return batch

    def requeue_for_retry(self, event: QueuedEvent, delay: float) -> float:
        """Schedule ``event`` for another attempt ``delay`` seconds from now.

        Returns the new ``next_retry_at``.
        """
        next_retry_at = self._clock() + delay
        event.next_retry_at = next_retry_at
        event.state = EventState.RETRY_SCHEDULED
        self._wakeup.set()
        return next_retry_at

    def remove(self, event: QueuedEvent) -> bool:
        """Delete ``event`` from the live queue. False if it was not there."""
        for i, queued in enumerate(self._events):
            if queued.id == event.id:
                del self._events[i]
                self._update_size()
                return True
        return False

    def dead_letter(self, event: QueuedEvent, error: str) -> DeadLetterEntry:
        """Move ``event`` from the live queue to the DLQ."""
        self.remove(event)
        event.state = EventState.DEAD_LETTERED
        event.last_error = error
        entry = DeadLetterEntry(event=replace(event), error=error, failed_at=self._clock())
        self._dead_letters.append(entry)
        return entry

    def replay_dead_letters(
        self, event_ids: Iterable[str] | None = None
    ) -> list[QueuedEvent]:
        """Move dead-lettered events back into the live queue with a fresh budget.

        Stops early, leaving the remainder dead-lettered, once the queue is full.
        """
        if event_ids is None:
            targets = [entry.event.id for entry in self._dead_letters.entries()]
        else:
            targets = list(event_ids)

        replayed: list[QueuedEvent] = []
        for event_id in targets:
            if self.is_full:
                logger.warning(
                    "Queue full, stopping DLQ replay after %d events", len(replayed)
                )
                break
            entry = self._dead_letters.take(event_id)
            if entry is None:
                continue
            event = replace(
                entry.event,
                retries=0,
                next_retry_at=None,
                state=EventState.NEW,
                last_error="",
            )
            self._append(event)
            replayed.append(event)

        if replayed:
            logger.info("Replayed %d dead-lettered events", len(replayed))
        return replayed

    def release_in_flight(self) -> int:
        """Return events abandoned mid-flight (e.g. on shutdown) to the eligible set."""
        released = 0
        for event in self._events:
            if event.state == EventState.IN_FLIGHT:
                event.state = (
                    EventState.RETRY_SCHEDULED if event.retries else EventState.NEW
                )
                released += 1
        return released

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def has_eligible(self) -> bool:
        now = self._clock()
        return any(e.is_eligible(now) for e in self._events)

    async def wait_for_work(self, timeout: float) -> None:
        """Suspend until something is enqueued or ``timeout`` elapses."""
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        self._wakeup.clear()

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        ready = sum(1 for e in self._events if e.is_ready_retry(now))
        in_flight = sum(1 for e in self._events if e.state == EventState.IN_FLIGHT)
        return {
            "total_events": len(self._events),
            "pending_events": len(self._events) - ready,
            "ready_to_retry": ready,
            "in_flight": in_flight,
            "dead_letters": len(self._dead_letters),
        }

    def _append(self, event: QueuedEvent) -> None:
        self._events.append(event)
        self._update_size()
        self._wakeup.set()

    def _update_size(self) -> None:
        if self._metrics is not None:
            self._metrics.update_queue_size(len(self._events))
