"""Periodic pipeline health monitor.

Every ``interval`` seconds, reads queue size, DLQ size and circuit breaker
state, logs them, and raises a warning when:
- the live queue exceeds ``queue_warning_threshold``
- the dead letter queue is non-empty
- the circuit breaker is open

Read-only: never mutates pipeline state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from webhook_relay.pipeline.circuit_breaker import CircuitBreaker
from webhook_relay.pipeline.queue import EventQueue

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_QUEUE_WARNING_THRESHOLD = 1000


@dataclass
class MonitorReport:
    """One monitoring tick."""

    queue_size: int
    dlq_size: int
    circuit_open: bool
    failure_count: int
    warnings: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.warnings


class Monitor:
    """Polls queue and breaker state on a fixed interval."""

    def __init__(
        self,
        queue: EventQueue,
        breaker: CircuitBreaker,
        interval: float = DEFAULT_INTERVAL,
        queue_warning_threshold: int = DEFAULT_QUEUE_WARNING_THRESHOLD,
    ) -> None:
        self._queue = queue
        self._breaker = breaker
        self._interval = interval
        self._threshold = queue_warning_threshold
        self._task: asyncio.Task[None] | None = None
        self.last_report: MonitorReport | None = None

    def check(self) -> MonitorReport:
        """Take one reading, log it and return it."""
        queue_size = len(self._queue)
        dlq_size = len(self._queue.dead_letters)
        breaker = self._breaker.status()

        report = MonitorReport(
            queue_size=queue_size,
            dlq_size=dlq_size,
            circuit_open=breaker["is_open"],
            failure_count=breaker["failure_count"],
        )
        if queue_size > self._threshold:
            report.warnings.append(f"Large webhook queue size: {queue_size}")
        if dlq_size > 0:
            report.warnings.append(f"Dead letter queue has {dlq_size} events")
        if report.circuit_open:
            report.warnings.append("Circuit breaker is OPEN")

        logger.info(
            "Webhook queue metrics: queue=%d dlq=%d circuit=%s (%d failures)",
            queue_size,
            dlq_size,
            "OPEN" if report.circuit_open else "CLOSED",
            report.failure_count,
        )
        for warning in report.warnings:
            logger.warning("WARNING: %s", warning)

        self.last_report = report
        return report

    async def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="webhook-monitor")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.check()
            except Exception:
                logger.exception("Error monitoring webhook metrics")
