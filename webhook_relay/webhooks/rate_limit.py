"""Per-shop fixed window rate limiting for inbound webhooks.

Uses the ``limits`` fixed-window strategy (the engine behind slowapi), keyed
by shop domain instead of client address. The check is called from the
webhook handler rather than a route decorator, right before the enqueue, so
only deliveries that are actually queued count against a shop's quota.

Rejected events are not queued; the caller answers 429 with Retry-After so
the platform's own redelivery policy applies.
"""

from __future__ import annotations

import logging
import time

from limits import RateLimitItemPerSecond
from limits.storage import storage_from_string
from limits.strategies import FixedWindowRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 100
DEFAULT_WINDOW_SECONDS = 60


class RateLimiter:
    """Fixed window counter keyed by shop domain.

    ``storage_uri`` takes any ``limits`` storage URI (``memory://``,
    ``redis://host:6379``) so the windows can be shared across instances.
    """

    def __init__(
        self,
        max_events: int = DEFAULT_MAX_EVENTS,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        storage_uri: str = "memory://",
    ) -> None:
        self._item = RateLimitItemPerSecond(
            max_events, max(1, int(window_seconds)), namespace="webhook"
        )
        self._limiter = FixedWindowRateLimiter(storage_from_string(storage_uri))

    @property
    def max_events(self) -> int:
        return self._item.amount

    def admit(self, shop: str) -> bool:
        """Count one event for ``shop``; False once the window's cap is exceeded."""
        if self._limiter.hit(self._item, shop):
            return True
        logger.warning(
            "Rate limit exceeded for %s (%d events per %ds)",
            shop,
            self._item.amount,
            self._item.get_expiry(),
        )
        return False

    def remaining(self, shop: str) -> int:
        """Events ``shop`` may still send in its current window."""
        return self._limiter.get_window_stats(self._item, shop).remaining

    def retry_after(self, shop: str) -> float:
        """Seconds until ``shop``'s current window closes (0 if none is open)."""
        reset_time = self._limiter.get_window_stats(self._item, shop).reset_time
        return max(0.0, reset_time - time.time())
