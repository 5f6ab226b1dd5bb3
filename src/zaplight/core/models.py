"""
Runtime data model for Zaplight.

Immutable records that flow from the relay pool to the scheduler. Static show
configuration (segments, presets, playlists) lives in
:mod:`zaplight.core.config`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

Tag = Tuple[str, ...]

ZAP_RECEIPT_KIND = 9735
ZAP_REQUEST_KIND = 9734


@dataclass(frozen=True)
class RelayEvent:
    """A signed NIP-01 event as received from a relay."""

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tuple[Tag, ...]
    content: str
    sig: str
    # First relay the event was observed on; not part of its identity.
    relay_url: Optional[str] = field(default=None, compare=False)

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag called ``name``."""
        return [tag[1] for tag in self.tags if len(tag) > 1 and tag[0] == name]

    def first_tag(self, name: str) -> Optional[str]:
        values = self.tag_values(name)
        return values[0] if values else None

    def to_dict(self) -> dict:
        """Serialize back to the NIP-01 JSON object shape."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }


@dataclass(frozen=True)
class ZapReceipt:
    """A zap receipt addressed to the configured content coordinate."""

    event_id: str
    coordinate: str
    bolt11: Optional[str]
    claimed_msat: int
    created_at: int
    payer_pubkey: Optional[str] = None
    message: str = ""
    relay_url: Optional[str] = field(default=None, compare=False)


@dataclass(frozen=True)
class ConfirmedBoost:
    """A zap receipt whose payment the wallet has confirmed."""

    receipt: ZapReceipt
    amount_msat: int
    confirmed_at: float

    @property
    def sats(self) -> int:
        return self.amount_msat // 1000

    @property
    def event_id(self) -> str:
        return self.receipt.event_id
