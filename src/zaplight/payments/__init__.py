"""Payment confirmation through the wallet."""

from zaplight.payments.bolt11 import invoice_amount_msat
from zaplight.payments.correlator import PaymentCorrelator
from zaplight.payments.wallet import NwcWalletClient, WalletLookup

__all__ = ["NwcWalletClient", "PaymentCorrelator", "WalletLookup", "invoice_amount_msat"]
