"""Exception hierarchy for the tracking client.

Tracking calls never raise into the host application; these exceptions are
raised and handled inside the client. Only registry lookups surface
``UnknownInstanceError`` to callers.
"""

from __future__ import annotations


class TracklineError(Exception):
    """Base exception for trackline errors."""
    pass


class PropertyValidationError(TracklineError, ValueError):
    """A property key or value is outside the supported value types."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Invalid property {path!r}: {reason}")


class TransportError(TracklineError):
    """Submitting a batch to the ingestion endpoint failed.

    ``retryable`` decides whether the batch is requeued (connectivity,
    timeouts, rate limiting, server errors) or dropped (the server rejected
    the payload as unprocessable).
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = True,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)

    @property
    def permanent(self) -> bool:
        return not self.retryable


class PersistenceError(TracklineError):
    """Reading or writing a state snapshot failed."""
    pass


class UnknownInstanceError(TracklineError, LookupError):
    """No tracker has been initialized under the requested name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"No tracker initialized under {name!r}. "
            f"Call trackline.init(token) before looking it up."
        )
