"""
Custom Exceptions for Zaplight.

Provides a hierarchy of exceptions for the ingestion, payment, device and
configuration layers. Everything except configuration errors is local to a
single boost and never stops the process.
"""

from __future__ import annotations

from typing import Optional


class ZaplightError(Exception):
    """Base exception for all Zaplight errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


# =============================================================================
# Event Errors
# =============================================================================


class EventError(ZaplightError):
    """Base exception for relay event handling."""
    pass


class InvalidEvent(EventError):
    """Event is malformed, has a wrong id, or a bad signature."""

    def __init__(self, event_id: Optional[str], reason: str):
        super().__init__(f"Invalid event {event_id or '<unknown>'}: {reason}")
        self.event_id = event_id
        self.reason = reason


class OutOfScopeEvent(EventError):
    """Event is valid but not a zap receipt for the configured target."""

    def __init__(self, event_id: str, reason: str):
        super().__init__(f"Event {event_id} out of scope: {reason}")
        self.event_id = event_id
        self.reason = reason


class DuplicateEvent(EventError):
    """Event id was already seen inside the dedup window."""

    def __init__(self, event_id: str):
        super().__init__(f"Duplicate event {event_id}")
        self.event_id = event_id


# =============================================================================
# Payment Errors
# =============================================================================


class PaymentError(ZaplightError):
    """Base exception for wallet correlation errors."""
    pass


class PaymentUnconfirmed(PaymentError):
    """Wallet could not confirm the payment behind a zap receipt."""

    def __init__(self, event_id: str, reason: str):
        super().__init__(f"Payment for {event_id} unconfirmed: {reason}")
        self.event_id = event_id
        self.reason = reason


# =============================================================================
# Device Errors
# =============================================================================


class DeviceError(ZaplightError):
    """Base exception for lighting device errors."""
    pass


class DeviceUnreachable(DeviceError):
    """Device did not accept a command after all retries."""

    def __init__(self, host: str, reason: str, attempts: int = 1):
        super().__init__(
            f"Device '{host}' unreachable after {attempts} attempt(s): {reason}"
        )
        self.host = host
        self.reason = reason
        self.attempts = attempts


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationInvalid(ZaplightError):
    """Base exception for configuration errors. Fatal at startup."""

    def __init__(self, message: str):
        super().__init__(message, recoverable=False)


class SegmentError(ConfigurationInvalid):
    """Invalid strip segment definition."""

    def __init__(self, segment: str, reason: str):
        super().__init__(f"Segment error '{segment}': {reason}")
        self.segment = segment


class PresetError(ConfigurationInvalid):
    """Invalid or missing preset definition."""

    def __init__(self, preset: str, reason: str):
        super().__init__(f"Preset error '{preset}': {reason}")
        self.preset = preset


class PlaylistError(ConfigurationInvalid):
    """Invalid or missing playlist definition."""

    def __init__(self, playlist: str, reason: str):
        super().__init__(f"Playlist error '{playlist}': {reason}")
        self.playlist = playlist
