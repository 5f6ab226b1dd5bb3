"""Nostr relay subscription, event validation and deduplication."""

from zaplight.relay.dedup import Deduplicator
from zaplight.relay.naddr import Coordinate, decode_naddr, encode_naddr, parse_content_address
from zaplight.relay.pool import RelayConnection, RelayPool, SubscriptionFilter
from zaplight.relay.validator import ZapValidator

__all__ = [
    "Coordinate",
    "Deduplicator",
    "RelayConnection",
    "RelayPool",
    "SubscriptionFilter",
    "ZapValidator",
    "decode_naddr",
    "encode_naddr",
    "parse_content_address",
]
