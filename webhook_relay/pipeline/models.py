"""Queue records for the forwarding pipeline."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventState(str, Enum):
    """Lifecycle of a queued event.

    NEW -> IN_FLIGHT -> SUCCEEDED | RETRY_SCHEDULED | DEAD_LETTERED.
    RETRY_SCHEDULED events become eligible again once next_retry_at passes.
    """

    NEW = "new"
    IN_FLIGHT = "in_flight"
    RETRY_SCHEDULED = "retry_scheduled"
    SUCCEEDED = "succeeded"
    DEAD_LETTERED = "dead_lettered"


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def make_event_id(event_type: str, store_id: str, created_at: float) -> str:
    """``{event_type}-{store_id}-{epoch ms}-{random suffix}``."""
    return f"{event_type}-{store_id}-{int(created_at * 1000)}-{secrets.token_hex(5)}"


@dataclass
class QueuedEvent:
    """A webhook accepted into the live queue, pending forwarding."""

    id: str
    original_event_id: str
    store_id: str
    shop_domain: str
    event_type: str
    payload: Any
    created_at: float
    retries: int = 0
    next_retry_at: float | None = None
    state: EventState = EventState.NEW
    last_error: str = ""

    @classmethod
    def create(
        cls,
        *,
        original_event_id: str,
        store_id: str,
        shop_domain: str,
        event_type: str,
        payload: Any,
        created_at: float | None = None,
    ) -> QueuedEvent:
        created = time.time() if created_at is None else created_at
        return cls(
            id=make_event_id(event_type, store_id, created),
            original_event_id=original_event_id,
            store_id=store_id,
            shop_domain=shop_domain,
            event_type=event_type,
            payload=payload,
            created_at=created,
        )

    def is_eligible(self, now: float) -> bool:
        """Ready to be handed to the forwarder."""
        if self.state not in (EventState.NEW, EventState.RETRY_SCHEDULED):
            return False
        return self.next_retry_at is None or self.next_retry_at <= now

    def is_ready_retry(self, now: float) -> bool:
        return (
            self.state == EventState.RETRY_SCHEDULED
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )

    def envelope(self) -> dict[str, Any]:
        """JSON body for the Core AI Service events endpoint."""
        return {
            "event_type": self.event_type,
            "store_id": self.store_id,
            "occurred_at": _iso(self.created_at),
            "payload": self.payload,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "original_event_id": self.original_event_id,
            "store_id": self.store_id,
            "shop_domain": self.shop_domain,
            "event_type": self.event_type,
            "created_at": _iso(self.created_at),
            "retries": self.retries,
            "next_retry_at": _iso(self.next_retry_at),
            "state": self.state.value,
        }


@dataclass(frozen=True)
class DeadLetterEntry:
    """Snapshot of an event that exhausted its retry budget."""

    event: QueuedEvent
    error: str
    failed_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data = self.event.to_dict()
        data["payload"] = self.event.payload
        data["error"] = self.error
        data["failed_at"] = _iso(self.failed_at)
        return data
