"""
Payment Correlator: confirms zap receipts against the wallet.

Receipts are signed by the recipient's LNURL server, but the amount they
claim is still untrusted input. Only the wallet's settled amount is used
downstream; a receipt the wallet cannot confirm produces no light show.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import structlog

from zaplight.core.exceptions import PaymentUnconfirmed
from zaplight.core.models import ConfirmedBoost, ZapReceipt
from zaplight.payments.wallet import WalletClient

logger = structlog.get_logger()


class PaymentCorrelator:
    """
    Turns a ZapReceipt into a ConfirmedBoost.

    Stateless apart from counters, so concurrent confirmations for distinct
    receipts never interfere.
    """

    def __init__(self, wallet: WalletClient, timeout_s: float = 5.0):
        self.wallet = wallet
        self.timeout_s = timeout_s

        self._confirmed = 0
        self._unconfirmed = 0

    async def confirm(self, receipt: ZapReceipt) -> ConfirmedBoost:
        """Raises PaymentUnconfirmed unless the wallet reports a positive settled amount."""
        if not receipt.bolt11:
            self._unconfirmed += 1
            raise PaymentUnconfirmed(receipt.event_id, "receipt carries no invoice")

        try:
            lookup = await asyncio.wait_for(
                self.wallet.lookup(receipt.bolt11), timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            self._unconfirmed += 1
            raise PaymentUnconfirmed(
                receipt.event_id, f"wallet did not answer within {self.timeout_s}s"
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._unconfirmed += 1
            raise PaymentUnconfirmed(receipt.event_id, f"wallet lookup failed: {e}") from e

        if not lookup.paid:
            self._unconfirmed += 1
            raise PaymentUnconfirmed(receipt.event_id, "wallet reports invoice unpaid")
        if lookup.amount_msat <= 0:
            self._unconfirmed += 1
            raise PaymentUnconfirmed(receipt.event_id, "wallet reports a zero amount")

        if receipt.claimed_msat and receipt.claimed_msat != lookup.amount_msat:
            logger.warning(
                "Claimed amount differs from settled amount",
                event_id=receipt.event_id,
                claimed_msat=receipt.claimed_msat,
                settled_msat=lookup.amount_msat,
            )

        self._confirmed += 1
        return ConfirmedBoost(
            receipt=receipt,
            amount_msat=lookup.amount_msat,
            confirmed_at=lookup.settled_at or time.time(),
        )

    async def try_confirm(self, receipt: ZapReceipt) -> Optional[ConfirmedBoost]:
        """Confirm one receipt, logging failures instead of raising."""
        try:
            boost = await self.confirm(receipt)
        except PaymentUnconfirmed as e:
            logger.warning("Boost not confirmed", event_id=e.event_id, reason=e.reason)
            return None

        logger.info("Boost confirmed", event_id=boost.event_id, sats=boost.sats)
        return boost

    def get_stats(self) -> dict:
        return {"confirmed": self._confirmed, "unconfirmed": self._unconfirmed}
