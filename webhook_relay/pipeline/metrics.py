"""Global and per-shop event processing counters.

Average processing time is computed over a rolling window of the most recent
samples (oldest evicted first), not over all time.
Snapshots are copies; callers cannot mutate recorder state through them.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MAX_PROCESSING_SAMPLES = 1000


@dataclass
class Metrics:
    """Counters for one scope (global or a single shop)."""

    events_received: int = 0
    events_processed: int = 0
    events_failed: int = 0
    events_retried: int = 0
    events_rate_limited: int = 0
    duplicate_events_detected: int = 0
    queue_size: int = 0
    avg_processing_time: float = 0.0
    start_time: float = field(default_factory=time.time)


class MetricsRecorder:
    """Accumulates pipeline counters. Per-shop records are created lazily."""

    def __init__(self, max_samples: int = MAX_PROCESSING_SAMPLES) -> None:
        self._max_samples = max_samples
        self._global = Metrics()
        self._global_samples: deque[float] = deque(maxlen=max_samples)
        self._shops: dict[str, Metrics] = {}
        self._shop_samples: dict[str, deque[float]] = {}

    def _shop(self, shop: str) -> Metrics:
        metrics = self._shops.get(shop)
        if metrics is None:
            metrics = Metrics()
            self._shops[shop] = metrics
            self._shop_samples[shop] = deque(maxlen=self._max_samples)
        return metrics

    def record_received(self, shop: str) -> None:
        self._global.events_received += 1
        self._shop(shop).events_received += 1

    def record_processed(self, shop: str, latency_ms: float) -> None:
        self._global.events_processed += 1
        self._global_samples.append(latency_ms)
        self._global.avg_processing_time = _mean(self._global_samples)

        metrics = self._shop(shop)
        metrics.events_processed += 1
        samples = self._shop_samples[shop]
        samples.append(latency_ms)
        metrics.avg_processing_time = _mean(samples)

    def record_failed(self, shop: str) -> None:
        self._global.events_failed += 1
        self._shop(shop).events_failed += 1

    def record_retried(self, shop: str) -> None:
        self._global.events_retried += 1
        self._shop(shop).events_retried += 1

    def record_duplicate(self, shop: str) -> None:
        self._global.duplicate_events_detected += 1
        self._shop(shop).duplicate_events_detected += 1

    def record_rate_limited(self, shop: str) -> None:
        self._global.events_rate_limited += 1
        self._shop(shop).events_rate_limited += 1

    def update_queue_size(self, size: int) -> None:
        self._global.queue_size = size

    def snapshot(self) -> dict[str, Any]:
        """Copy of the global counters."""
        return asdict(self._global)

    def shop_snapshot(self, shop: str) -> dict[str, Any]:
        """Copy of one shop's counters (an empty record if never seen)."""
        return asdict(self._shop(shop))

    def shops(self) -> list[str]:
        return sorted(self._shops)

    def format_text(self) -> str:
        """Plain-text rendering of the global counters for log output."""
        m = self._global
        uptime = int(time.time() - m.start_time)
        return "\n".join(
            [
                "Webhook Relay Metrics:",
                "-" * 40,
                f"Events Received: {m.events_received}",
                f"Events Processed: {m.events_processed}",
                f"Events Failed: {m.events_failed}",
                f"Events Retried: {m.events_retried}",
                f"Events Rate Limited: {m.events_rate_limited}",
                f"Duplicate Events Detected: {m.duplicate_events_detected}",
                f"Queue Size: {m.queue_size}",
                f"Average Processing Time: {m.avg_processing_time:.2f}ms",
                f"Uptime: {uptime} seconds",
                "-" * 40,
            ]
        )

    def reset(self) -> None:
        self._global = Metrics()
        self._global_samples.clear()
        self._shops.clear()
        self._shop_samples.clear()
        logger.info("Metrics reset")


def _mean(samples: deque[float]) -> float:
    if not samples:
        return 0.0
    return sum(samples) / len(samples)
