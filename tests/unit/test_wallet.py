import asyncio
from typing import Optional

from nostr_sdk import LookupInvoiceResponse, Timestamp, TransactionState

from zaplight.payments.wallet import NwcWalletClient, WalletLookup

from conftest import BOLT11_21_SATS


def make_response(
    state: Optional[TransactionState],
    settled_at: Optional[int] = None,
    preimage: Optional[str] = None,
    amount: int = 21_000,
) -> LookupInvoiceResponse:
    return LookupInvoiceResponse(
        transaction_type=None,
        state=state,
        invoice=BOLT11_21_SATS,
        description=None,
        description_hash=None,
        preimage=preimage,
        payment_hash="0" * 64,
        amount=amount,
        fees_paid=0,
        created_at=Timestamp.from_secs(1_700_000_000),
        expires_at=None,
        settled_at=Timestamp.from_secs(settled_at) if settled_at is not None else None,
        metadata=None,
    )


class FakeNwc:
    """Answers ``lookup_invoice`` like a NIP-47 wallet service."""

    def __init__(self, response: LookupInvoiceResponse):
        self.response = response
        self.requests = []

    async def lookup_invoice(self, params):
        self.requests.append(params)
        return self.response


def test_settled_invoice_reports_paid_amount() -> None:
    nwc = FakeNwc(make_response(TransactionState.SETTLED, settled_at=1_700_000_050))

    lookup = asyncio.run(NwcWalletClient(nwc).lookup(BOLT11_21_SATS))

    assert lookup == WalletLookup(paid=True, amount_msat=21_000, settled_at=1_700_000_050.0)
    assert nwc.requests[0].invoice == BOLT11_21_SATS
    assert nwc.requests[0].payment_hash is None


def test_pending_invoice_is_unpaid_even_with_preimage() -> None:
    nwc = FakeNwc(make_response(TransactionState.PENDING, preimage="1" * 64))

    lookup = asyncio.run(NwcWalletClient(nwc).lookup(BOLT11_21_SATS))

    assert lookup == WalletLookup(paid=False, amount_msat=0)


def test_wallet_without_state_is_paid_once_settled() -> None:
    settled = asyncio.run(NwcWalletClient(FakeNwc(make_response(None, settled_at=1_700_000_060))).lookup("x"))
    open_invoice = asyncio.run(NwcWalletClient(FakeNwc(make_response(None))).lookup("x"))

    assert settled.paid is True
    assert settled.amount_msat == 21_000
    assert open_invoice.paid is False


def test_client_builds_from_connection_uri(settings) -> None:
    client = NwcWalletClient.from_uri(settings.nwc.uri)

    assert isinstance(client, NwcWalletClient)
