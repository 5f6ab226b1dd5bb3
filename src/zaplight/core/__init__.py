"""Core system components for Zaplight."""

from zaplight.core.config import Settings, validate_settings
from zaplight.core.exceptions import (
    ConfigurationInvalid,
    DeviceUnreachable,
    PaymentUnconfirmed,
    ZaplightError,
)
from zaplight.core.models import ConfirmedBoost, RelayEvent, ZapReceipt

__all__ = [
    "Settings",
    "validate_settings",
    "ZaplightError",
    "ConfigurationInvalid",
    "DeviceUnreachable",
    "PaymentUnconfirmed",
    "RelayEvent",
    "ZapReceipt",
    "ConfirmedBoost",
]
