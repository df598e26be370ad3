"""Webhook deduplication — suppress redelivered webhooks.

The dedup key is a SHA256 digest of (topic, shop, canonical payload), so an
identical redelivery collapses to the same key whenever it arrives.

Two backends share the same contract:
- DedupCache: process-local dict of key -> expiry, lazily swept once it
  grows past ``max_entries``
- RedisDedupCache: shared across instances, fail-open when Redis is down

Duplicates are answered with 200 by the caller (the platform retries on errors).
The caller remembers a delivery as soon as it passes the duplicate check and
forgets it again if the delivery is rejected later, so concurrent redeliveries
of the same webhook cannot both get through.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Callable, Protocol

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1800  # 30 minutes
DEFAULT_MAX_ENTRIES = 1000

_KEY_PREFIX = "webhook:seen"


def dedup_key(topic: str, shop: str, payload: Any) -> str:
    """Deterministic digest of a webhook's topic, shop and payload."""
    canonical = json.dumps(
        {"topic": topic, "shop": shop, "payload": payload},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class DuplicateDetector(Protocol):
    def is_duplicate(self, topic: str, shop: str, payload: Any) -> bool: ...

    def remember(
        self, topic: str, shop: str, payload: Any, ttl: int | None = None
    ) -> None: ...

    def forget(self, topic: str, shop: str, payload: Any) -> None: ...

class DedupCache:
    """In-memory dedup cache with lazy expiry."""

    def __init__(
        self,
        ttl: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock or time.time
        self._entries: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_duplicate(self, topic: str, shop: str, payload: Any) -> bool:
        """True if this (topic, shop, payload) was remembered and has not expired."""
        key = dedup_key(topic, shop, payload)
        expires_at = self._entries.get(key)
        if expires_at is None:
            return False
        if expires_at <= self._clock():
            del self._entries[key]
            return False
        logger.info("Duplicate webhook detected: shop=%s topic=%s", shop, topic)
        return True

    def remember(
        self, topic: str, shop: str, payload: Any, ttl: int | None = None
    ) -> None:
        """Mark this webhook as seen for ``ttl`` seconds."""
        key = dedup_key(topic, shop, payload)
        self._entries[key] = self._clock() + (ttl if ttl is not None else self._ttl)
        if len(self._entries) > self._max_entries:
            self.sweep()

    def forget(self, topic: str, shop: str, payload: Any) -> None:
        """Drop a remembered webhook so a redelivery is admitted again."""
        self._entries.pop(dedup_key(topic, shop, payload), None)

    def sweep(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, expires_at in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Dedup cache swept %d expired entries", len(expired))
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()


class RedisDedupCache:
    """Redis-backed dedup cache, shared by every relay instance.

    Key pattern: webhook:seen:{digest}
    If Redis is down, falls back to allowing (fail-open for availability).
    """

    def __init__(
        self,
        client: redis.Redis,
        ttl: int = DEFAULT_TTL_SECONDS,
        prefix: str = _KEY_PREFIX,
    ) -> None:
        self._redis = client
        self._ttl = ttl
        self._prefix = prefix

    def _key(self, topic: str, shop: str, payload: Any) -> str:
        return f"{self._prefix}:{dedup_key(topic, shop, payload)}"

    def is_duplicate(self, topic: str, shop: str, payload: Any) -> bool:
        try:
            if self._redis.exists(self._key(topic, shop, payload)):
                logger.info("Duplicate webhook detected: shop=%s topic=%s", shop, topic)
                return True
            return False
        except Exception:
            logger.warning(
                "Redis unavailable for webhook dedup, allowing %s/%s",
                shop,
                topic,
                exc_info=True,
            )
            return False

    def remember(
        self, topic: str, shop: str, payload: Any, ttl: int | None = None
    ) -> None:
        try:
            self._redis.set(
                self._key(topic, shop, payload),
                "1",
                ex=ttl if ttl is not None else self._ttl,
            )
        except Exception:
            logger.warning("Failed to mark webhook as seen: %s/%s", shop, topic)

    def forget(self, topic: str, shop: str, payload: Any) -> None:
        try:
            self._redis.delete(self._key(topic, shop, payload))
        except Exception:
            logger.warning("Failed to clear seen webhook: %s/%s", shop, topic)
