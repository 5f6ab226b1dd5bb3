"""
Content address helpers.

Turns the configured content address into the addressable event coordinate
``<kind>:<pubkey>:<identifier>`` that zap receipts carry in their ``a`` tag.
NIP-19 decoding and coordinate parsing are done by nostr-sdk.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Tuple

from nostr_sdk import Coordinate as NostrCoordinate
from nostr_sdk import Kind, Nip19Coordinate, NostrSdkError, PublicKey, RelayUrl

NADDR_PREFIX = "naddr1"
NOSTR_URI_PREFIX = "nostr:"


@dataclass(frozen=True)
class Coordinate:
    """Addressable event coordinate."""

    kind: int
    pubkey: str
    identifier: str
    relays: Tuple[str, ...] = field(default=(), compare=False)

    def __str__(self) -> str:
        return f"{self.kind}:{self.pubkey}:{self.identifier}"


def _from_sdk(coordinate: NostrCoordinate, relays: Iterable[RelayUrl] = ()) -> Coordinate:
    return Coordinate(
        kind=coordinate.kind().as_u16(),
        pubkey=coordinate.public_key().to_hex(),
        identifier=coordinate.identifier(),
        relays=tuple(str(relay).rstrip("/") for relay in relays),
    )


def decode_naddr(naddr: str) -> Coordinate:
    """Decode a NIP-19 ``naddr`` (optionally ``nostr:`` prefixed) into a :class:`Coordinate`."""
    naddr = naddr.strip()
    try:
        if naddr.startswith(NOSTR_URI_PREFIX):
            decoded = Nip19Coordinate.from_nostr_uri(naddr)
        else:
            decoded = Nip19Coordinate.from_bech32(naddr)
    except NostrSdkError as e:
        raise ValueError(f"invalid naddr: {e}") from e
    return _from_sdk(decoded.coordinate(), decoded.relays())


def encode_naddr(coordinate: Coordinate) -> str:
    sdk_coordinate = NostrCoordinate(
        Kind(coordinate.kind),
        PublicKey.parse(coordinate.pubkey),
        coordinate.identifier,
    )
    relays = [RelayUrl.parse(url) for url in coordinate.relays]
    return Nip19Coordinate(sdk_coordinate, relays).to_bech32()


def parse_content_address(value: str) -> Coordinate:
    """
    Parse a configured content address.

    Accepts either an ``naddr1...`` string or a raw
    ``<kind>:<pubkey-hex>:<identifier>`` coordinate. Raises ValueError.
    """
    value = value.strip()
    if value.startswith((NADDR_PREFIX, NOSTR_URI_PREFIX)):
        return decode_naddr(value)
    try:
        return _from_sdk(NostrCoordinate.parse(value))
    except NostrSdkError as e:
        raise ValueError(f"invalid coordinate '{value}': {e}") from e
