import asyncio
from typing import Optional

import pytest

from zaplight.core.exceptions import PaymentUnconfirmed
from zaplight.core.models import ZapReceipt
from zaplight.payments.correlator import PaymentCorrelator
from zaplight.payments.wallet import WalletLookup


class FakeWallet:
    def __init__(
        self,
        result: Optional[WalletLookup] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    async def lookup(self, bolt11: str) -> WalletLookup:
        self.calls.append(bolt11)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def make_receipt(bolt11: Optional[str] = "lnbc210n1pjzapxyz", claimed_msat: int = 21_000) -> ZapReceipt:
    return ZapReceipt(
        event_id="f" * 64,
        coordinate="30311:" + "a" * 64 + ":live",
        bolt11=bolt11,
        claimed_msat=claimed_msat,
        created_at=1_700_000_000,
    )


def test_confirmed_amount_comes_from_wallet_not_receipt() -> None:
    wallet = FakeWallet(WalletLookup(paid=True, amount_msat=50_000, settled_at=1_700_000_005.0))
    correlator = PaymentCorrelator(wallet)

    boost = asyncio.run(correlator.confirm(make_receipt(claimed_msat=21_000)))

    assert boost.amount_msat == 50_000
    assert boost.sats == 50
    assert boost.confirmed_at == 1_700_000_005.0
    assert wallet.calls == ["lnbc210n1pjzapxyz"]
    assert correlator.get_stats()["confirmed"] == 1


@pytest.mark.parametrize(
    "lookup",
    [
        WalletLookup(paid=False, amount_msat=21_000),
        WalletLookup(paid=True, amount_msat=0),
    ],
)
def test_unpaid_or_zero_amount_is_unconfirmed(lookup: WalletLookup) -> None:
    correlator = PaymentCorrelator(FakeWallet(lookup))

    with pytest.raises(PaymentUnconfirmed):
        asyncio.run(correlator.confirm(make_receipt()))


def test_wallet_timeout_is_unconfirmed() -> None:
    wallet = FakeWallet(WalletLookup(paid=True, amount_msat=21_000), delay=1.0)
    correlator = PaymentCorrelator(wallet, timeout_s=0.01)

    with pytest.raises(PaymentUnconfirmed, match="did not answer"):
        asyncio.run(correlator.confirm(make_receipt()))


def test_wallet_error_is_unconfirmed() -> None:
    correlator = PaymentCorrelator(FakeWallet(error=RuntimeError("relay down")))

    assert asyncio.run(correlator.try_confirm(make_receipt())) is None
    assert correlator.get_stats()["unconfirmed"] == 1


def test_receipt_without_invoice_never_reaches_wallet() -> None:
    wallet = FakeWallet(WalletLookup(paid=True, amount_msat=21_000))
    correlator = PaymentCorrelator(wallet)

    with pytest.raises(PaymentUnconfirmed):
        asyncio.run(correlator.confirm(make_receipt(bolt11=None)))
    assert wallet.calls == []
