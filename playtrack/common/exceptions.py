"""
Custom exceptions for PlayTrack.
"""

from typing import Any


class PlaytrackError(Exception):
    """Base exception for PlayTrack."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigError(PlaytrackError):
    """Configuration related errors."""

    pass


class StorageError(PlaytrackError):
    """Local durable store unavailable or rejected an operation."""

    pass


class TransportError(PlaytrackError):
    """Batch delivery failed (network error or non-2xx response)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, details)


class PolicyFetchError(PlaytrackError):
    """Server analytics policy could not be retrieved or parsed."""

    pass


class InvalidTransitionError(PlaytrackError):
    """Player state machine received a callback its state cannot accept."""

    pass
