"""Exception hierarchy for the webhook relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for webhook relay errors."""

    pass


class QueueFullError(RelayError):
    """Raised when the live event queue is at capacity."""

    pass


class ForwardError(RelayError):
    """Raised when the Core AI Service rejects a forwarded event."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreLookupError(RelayError):
    """Raised when the store service fails for a reason other than 404."""

    pass
