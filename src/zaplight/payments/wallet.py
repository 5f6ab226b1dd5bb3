"""
Wallet collaborators.

The correlator only needs one question answered: has this invoice been paid,
and for how much. ``NwcWalletClient`` answers it over Nostr Wallet Connect
(NIP-47) using nostr-sdk, which owns the session crypto.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol

import structlog
from nostr_sdk import (
    LookupInvoiceRequest,
    LookupInvoiceResponse,
    NostrWalletConnect,
    NostrWalletConnectUri,
    TransactionState,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class WalletLookup:
    """Wallet answer for one invoice."""

    paid: bool
    amount_msat: int
    settled_at: Optional[float] = None


class WalletClient(Protocol):
    async def lookup(self, bolt11: str) -> WalletLookup:
        ...


def lookup_from_response(response: LookupInvoiceResponse) -> WalletLookup:
    """
    Map a NIP-47 ``lookup_invoice`` result to a :class:`WalletLookup`.

    Wallets that report a transaction state are trusted on it; older ones
    only set ``settled_at`` once the invoice is paid. The preimage is not a
    payment signal: the receiving wallet knows it before payment.
    """
    settled_at = None
    if response.settled_at is not None:
        settled_at = float(response.settled_at.as_secs())

    if response.state is not None:
        paid = response.state == TransactionState.SETTLED
    else:
        paid = settled_at is not None

    return WalletLookup(
        paid=paid,
        amount_msat=int(response.amount or 0) if paid else 0,
        settled_at=settled_at if paid else None,
    )


class NwcWalletClient:
    """Looks invoices up through a NIP-47 wallet connection."""

    def __init__(self, nwc: Any):
        self._nwc = nwc

    @classmethod
    def from_uri(cls, uri: str) -> "NwcWalletClient":
        """Connect from a ``nostr+walletconnect://`` URI."""
        return cls(NostrWalletConnect(NostrWalletConnectUri.parse(uri)))

    async def lookup(self, bolt11: str) -> WalletLookup:
        response = await self._nwc.lookup_invoice(
            LookupInvoiceRequest(payment_hash=None, invoice=bolt11)
        )
        result = lookup_from_response(response)
        logger.debug("Wallet lookup", paid=result.paid, amount_msat=result.amount_msat)
        return result
