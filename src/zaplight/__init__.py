"""
Zaplight: Nostr zaps to WLED light shows

Listens for zap receipts on Nostr relays, confirms each payment through
Nostr Wallet Connect and turns it into a timed playlist on a WLED LED
controller, with an OSC trigger fired as the show starts.
"""

__version__ = "0.1.0"
__author__ = "Zaplight Team"

from zaplight.core.config import Settings
from zaplight.core.models import ConfirmedBoost, ZapReceipt

__all__ = [
    "ConfirmedBoost",
    "Settings",
    "ZapReceipt",
    "__version__",
]
