"""BOLT-11 invoice amount extraction."""

from __future__ import annotations

from typing import Optional

from bolt11 import decode as decode_invoice

LIGHTNING_URI_PREFIX = "lightning:"


def invoice_amount_msat(invoice: str) -> Optional[int]:
    """
    Return the amount encoded in ``invoice`` in millisatoshis.

    The invoice is fully decoded, so a bad checksum or signature is rejected.
    Returns None for amountless invoices. Raises ValueError when the string
    is not a valid BOLT-11 invoice.
    """
    invoice = invoice.strip().lower()
    if invoice.startswith(LIGHTNING_URI_PREFIX):
        invoice = invoice[len(LIGHTNING_URI_PREFIX):]

    try:
        decoded = decode_invoice(invoice)
    except Exception as e:
        # decode raises bolt11, bech32 and bitstring errors alike
        raise ValueError(f"not a valid bolt11 invoice: {e}") from e

    if decoded.amount_msat is None:
        return None
    return int(decoded.amount_msat)
