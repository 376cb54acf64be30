"""Exception taxonomy shared by the hub and the relay client."""

from __future__ import annotations

from typing import Any


class RelayError(RuntimeError):
    """Base exception raised for relay-related failures."""


class UnreachableHub(RelayError):
    """Raised when the relay client cannot reach the hub after bounded retries."""


class StoreUnavailable(RelayError):
    """Raised when the registry backing store cannot be read or written.

    Registry mutations that raise this error were not persisted.
    """


class MalformedRequest(RelayError):
    """Raised for missing or invalid request fields; never retried."""

    def __init__(self, detail: Any) -> None:
        super().__init__(str(detail))
        self.detail = detail


class DeliveryFailed(RelayError):
    """A single fan-out leg exhausted its retry budget.

    Never raised to the publisher; instances are handed to the hub's failure
    signal so operators can observe them.
    """

    def __init__(self, target: Any, message_id: str, attempts: int, reason: str) -> None:
        super().__init__(
            f"Delivery of {message_id} to {target} failed after {attempts} attempt(s): {reason}"
        )
        self.target = target
        self.message_id = message_id
        self.attempts = attempts
        self.reason = reason


class UnknownDestination(RelayError):
    """Raised by a destination when the target channel no longer exists."""


class DestinationError(RelayError):
    """Raised by a destination when posting into the target channel failed."""
