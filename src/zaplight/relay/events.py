"""
NIP-01 event helpers: shape parsing, content-derived ids and signatures.

Shape checks are local; id and signature checks go through nostr-sdk.
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Mapping, Optional

import structlog
from nostr_sdk import Event as NostrEvent
from nostr_sdk import NostrSdkError

from zaplight.core.exceptions import InvalidEvent
from zaplight.core.models import RelayEvent

logger = structlog.get_logger()

SignatureVerifier = Callable[[RelayEvent], bool]

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_HEX128 = re.compile(r"^[0-9a-f]{128}$")


def parse_event(raw: Mapping[str, Any], relay_url: Optional[str] = None) -> RelayEvent:
    """Build a :class:`RelayEvent` from a raw JSON object, checking its shape."""
    if not isinstance(raw, Mapping):
        raise InvalidEvent(None, "event is not an object")

    event_id = raw.get("id")
    if not isinstance(event_id, str) or not _HEX64.match(event_id):
        raise InvalidEvent(None, "missing or malformed id")

    pubkey = raw.get("pubkey")
    sig = raw.get("sig")
    created_at = raw.get("created_at")
    kind = raw.get("kind")
    content = raw.get("content")
    tags = raw.get("tags")

    if not isinstance(pubkey, str) or not _HEX64.match(pubkey):
        raise InvalidEvent(event_id, "malformed pubkey")
    if not isinstance(sig, str) or not _HEX128.match(sig):
        raise InvalidEvent(event_id, "malformed signature")
    # bool is an int subclass; reject it explicitly
    if not isinstance(created_at, int) or isinstance(created_at, bool) or created_at < 0:
        raise InvalidEvent(event_id, "malformed created_at")
    if not isinstance(kind, int) or isinstance(kind, bool) or not 0 <= kind <= 65535:
        raise InvalidEvent(event_id, "malformed kind")
    if not isinstance(content, str):
        raise InvalidEvent(event_id, "content is not a string")
    if not isinstance(tags, list) or not all(
        isinstance(tag, list) and all(isinstance(part, str) for part in tag) for tag in tags
    ):
        raise InvalidEvent(event_id, "tags must be a list of string lists")

    return RelayEvent(
        id=event_id,
        pubkey=pubkey,
        created_at=created_at,
        kind=kind,
        tags=tuple(tuple(tag) for tag in tags),
        content=content,
        sig=sig,
        relay_url=relay_url,
    )


def to_nostr_event(event: RelayEvent) -> NostrEvent:
    """Hand the event to nostr-sdk. Raises NostrSdkError for an off-curve pubkey."""
    return NostrEvent.from_json(json.dumps(event.to_dict()))


def has_valid_id(event: RelayEvent) -> bool:
    """True when the id is the sha256 of the canonical NIP-01 serialization."""
    try:
        return to_nostr_event(event).verify_id()
    except NostrSdkError as e:
        logger.debug("Event rejected by nostr-sdk", event_id=event.id, error=str(e))
        return False


def verify_signature(event: RelayEvent) -> bool:
    """
    Verify the BIP-340 signature using nostr-sdk.

    Any parse or verification failure inside the library counts as an
    invalid signature.
    """
    try:
        return to_nostr_event(event).verify_signature()
    except Exception as e:
        logger.debug("Signature verification failed", event_id=event.id, error=str(e))
        return False
