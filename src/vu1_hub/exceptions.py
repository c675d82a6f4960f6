"""
Exception hierarchy for the VU1 gauge hub.

All exceptions inherit from :class:`VU1Error` so callers can catch
broadly (``except VU1Error``) or narrowly (``except TimeoutError``).
"""

from __future__ import annotations


class VU1Error(Exception):
    """Base exception for all VU1 hub errors."""


class TransportError(VU1Error):
    """Raised when the serial port is unavailable, closed, or lost mid-exchange."""


class TimeoutError(VU1Error):  # noqa: A001 – intentional shadow of builtin
    """Raised when no complete response frame arrives within the time budget."""

    def __init__(self, message: str, elapsed: float = 0.0, timeout: float | None = None) -> None:
        super().__init__(message)
        self.elapsed = elapsed
        self.timeout = timeout


class MalformedFrameError(VU1Error):
    """Raised when received bytes do not parse as a valid response frame."""


class StatusError(VU1Error):
    """Raised when the hub answers with a non-zero status code."""

    def __init__(self, message: str, code: int, status_name: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.status_name = status_name


class ValidationError(VU1Error):
    """Raised when an argument or configuration value fails pre-send validation."""


class DeviceNotFoundError(VU1Error):
    """Raised when an identifier is not present in the device registry."""
