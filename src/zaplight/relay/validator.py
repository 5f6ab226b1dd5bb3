"""
Zap Validator: turns raw relay events into deduplicated zap receipts.

Every zap is delivered once per subscribed relay. Without the dedup window
one payment would trigger one light show per relay.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Union

import structlog

from zaplight.core.exceptions import DuplicateEvent, InvalidEvent, OutOfScopeEvent
from zaplight.core.models import ZAP_RECEIPT_KIND, RelayEvent, ZapReceipt
from zaplight.payments.bolt11 import invoice_amount_msat
from zaplight.relay.dedup import Deduplicator
from zaplight.relay.events import (
    SignatureVerifier,
    has_valid_id,
    parse_event,
    verify_signature,
)

logger = structlog.get_logger()


class ZapValidator:
    """
    Validates, scopes and deduplicates zap receipts.

    Checks run in order: event shape, content-derived id, signature, scope
    (kind 9735 with an ``a`` tag equal to the target coordinate), then the
    dedup window. Only events passing every check are recorded as seen, so
    a forged copy can never shadow the genuine receipt.
    """

    def __init__(
        self,
        coordinate: str,
        deduplicator: Optional[Deduplicator] = None,
        verify: SignatureVerifier = verify_signature,
    ):
        self.coordinate = coordinate
        self.deduplicator = deduplicator or Deduplicator()
        self.verify = verify

        self._accepted = 0
        self._invalid = 0
        self._out_of_scope = 0

    def validate(self, event: Union[RelayEvent, Mapping[str, Any]]) -> ZapReceipt:
        """Return the receipt or raise InvalidEvent / OutOfScopeEvent / DuplicateEvent."""
        if not isinstance(event, RelayEvent):
            event = parse_event(event)

        if not has_valid_id(event):
            raise InvalidEvent(event.id, "id does not match event content")
        if not self.verify(event):
            raise InvalidEvent(event.id, "bad signature")

        if event.kind != ZAP_RECEIPT_KIND:
            raise OutOfScopeEvent(event.id, f"kind {event.kind} is not a zap receipt")
        if self.coordinate not in event.tag_values("a"):
            raise OutOfScopeEvent(event.id, "receipt does not reference the target")

        receipt = self._build_receipt(event)

        if not self.deduplicator.check_and_record(event.id):
            raise DuplicateEvent(event.id)

        return receipt

    def process(self, event: Union[RelayEvent, Mapping[str, Any]]) -> Optional[ZapReceipt]:
        """Validate one event, logging and counting rejects instead of raising."""
        try:
            receipt = self.validate(event)
        except InvalidEvent as e:
            self._invalid += 1
            logger.warning("Dropping invalid event", event_id=e.event_id, reason=e.reason)
            return None
        except OutOfScopeEvent as e:
            self._out_of_scope += 1
            logger.debug("Ignoring out-of-scope event", event_id=e.event_id, reason=e.reason)
            return None
        except DuplicateEvent as e:
            logger.debug("Suppressed duplicate zap", event_id=e.event_id)
            return None

        self._accepted += 1
        logger.info(
            "Zap receipt accepted",
            event_id=receipt.event_id,
            claimed_msat=receipt.claimed_msat,
            relay=receipt.relay_url,
        )
        return receipt

    def _build_receipt(self, event: RelayEvent) -> ZapReceipt:
        bolt11 = event.first_tag("bolt11")
        zap_request = _parse_zap_request(event.first_tag("description"))

        claimed_msat = 0
        if bolt11:
            try:
                claimed_msat = invoice_amount_msat(bolt11) or 0
            except ValueError as e:
                logger.debug("Unparseable bolt11 on receipt", event_id=event.id, error=str(e))
        if not claimed_msat and zap_request:
            claimed_msat = _zap_request_amount(zap_request)

        payer = None
        message = ""
        if zap_request:
            message = zap_request.get("content") or ""
            anonymous = any(
                isinstance(tag, list) and tag and tag[0] == "anon"
                for tag in zap_request.get("tags") or []
            )
            if not anonymous and isinstance(zap_request.get("pubkey"), str):
                payer = zap_request["pubkey"]
        if payer is None:
            payer = event.first_tag("P")

        return ZapReceipt(
            event_id=event.id,
            coordinate=self.coordinate,
            bolt11=bolt11,
            claimed_msat=claimed_msat,
            created_at=event.created_at,
            payer_pubkey=payer,
            message=message,
            relay_url=event.relay_url,
        )

    def get_stats(self) -> dict:
        return {
            "accepted": self._accepted,
            "invalid": self._invalid,
            "out_of_scope": self._out_of_scope,
            **self.deduplicator.get_stats(),
        }


def _parse_zap_request(description: Optional[str]) -> Optional[dict]:
    if not description:
        return None
    try:
        request = json.loads(description)
    except ValueError:
        return None
    return request if isinstance(request, dict) else None


def _zap_request_amount(zap_request: dict) -> int:
    for tag in zap_request.get("tags") or []:
        if isinstance(tag, list) and len(tag) > 1 and tag[0] == "amount":
            try:
                return max(0, int(tag[1]))
            except (TypeError, ValueError):
                return 0
    return 0
