"""Exceptions raised by the proactive push engine."""

from typing import Any


class NotificationEngineError(Exception):
    """Base class for engine errors."""


class UserEnumerationError(NotificationEngineError):
    """The user set could not be listed; the whole run is aborted."""

    def __init__(self, message: str, summary: Any = None) -> None:
        super().__init__(message)
        # The failed run's summary, state FAILED
        self.summary = summary


class PushDeliveryError(NotificationEngineError):
    """Every push request for a user failed at the transport level."""
