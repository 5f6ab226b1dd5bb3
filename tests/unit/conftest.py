from __future__ import annotations

import asyncio
import hashlib
import json
from typing import Any, Callable, Dict, List, Optional

import pytest
from bolt11 import Bolt11, MilliSatoshi, TagChar, Tags, encode
from nostr_sdk import EventBuilder, Keys, Kind, Tag, Timestamp

from zaplight.core.config import (
    NwcConfig,
    PlaylistConfig,
    PresetConfig,
    RelayConfig,
    SegmentConfig,
    SelectionConfig,
    Settings,
    WledConfig,
    ZapsConfig,
)
from zaplight.core.models import ZAP_RECEIPT_KIND, ZAP_REQUEST_KIND

# The LNURL server that signs zap receipts
RECEIPT_KEYS = Keys.parse("1" * 64)
TARGET_AUTHOR = Keys.parse("2" * 64).public_key().to_hex()
WALLET_PUBKEY = Keys.parse("3" * 64).public_key().to_hex()
PAYER = Keys.parse("5" * 64).public_key().to_hex()
INVOICE_NODE_KEY = "4" * 64
COORDINATE = f"30311:{TARGET_AUTHOR}:live"


def build_invoice(amount_msat: Optional[int], label: str = "zap") -> str:
    """Signed BOLT-11 invoice; ``label`` makes the payment hash unique."""
    tags = Tags()
    tags.add(TagChar.payment_hash, hashlib.sha256(label.encode()).hexdigest())
    tags.add(TagChar.payment_secret, hashlib.sha256(f"{label}:secret".encode()).hexdigest())
    tags.add(TagChar.description, label)
    invoice = Bolt11(
        currency="bc",
        amount_msat=MilliSatoshi(amount_msat) if amount_msat is not None else None,
        date=1_700_000_000,
        tags=tags,
    )
    return encode(invoice, INVOICE_NODE_KEY)


BOLT11_21_SATS = build_invoice(21_000)


def sign_event(
    kind: int,
    tags: List[List[str]],
    content: str = "",
    created_at: int = 1_700_000_000,
    keys: Keys = RECEIPT_KEYS,
) -> Dict[str, Any]:
    event = (
        EventBuilder(Kind(kind), content)
        .tags([Tag.parse(tag) for tag in tags])
        .custom_created_at(Timestamp.from_secs(created_at))
        .finalize(keys)
    )
    return json.loads(event.as_json())


def build_zap_event(
    coordinate: str = COORDINATE,
    kind: int = ZAP_RECEIPT_KIND,
    bolt11: Optional[str] = BOLT11_21_SATS,
    amount_msat: int = 21_000,
    payer: str = PAYER,
    message: str = "great show",
    created_at: int = 1_700_000_000,
) -> Dict[str, Any]:
    zap_request = {
        "kind": ZAP_REQUEST_KIND,
        "pubkey": payer,
        "created_at": created_at - 1,
        "content": message,
        "tags": [["a", coordinate], ["amount", str(amount_msat)], ["relays", "wss://relay.one"]],
    }
    tags = [["p", TARGET_AUTHOR], ["a", coordinate], ["P", payer]]
    if bolt11 is not None:
        tags.append(["bolt11", bolt11])
    tags.append(["description", json.dumps(zap_request)])
    return sign_event(kind, tags, created_at=created_at)


def build_settings() -> Settings:
    def preset(name: str, rgb: List[int], effects: List[Any]) -> PresetConfig:
        return PresetConfig(name=name, colors=[rgb, rgb], effects=effects)

    return Settings(
        zaps=ZapsConfig(relay_addrs=["wss://relay.one", "wss://relay.two"], naddr=COORDINATE),
        relay=RelayConfig(reconnect_base_s=0.01, reconnect_max_s=0.05),
        nwc=NwcConfig(uri=f"nostr+walletconnect://{WALLET_PUBKEY}?relay=wss://relay.one&secret={'6' * 64}"),
        wled=WledConfig(
            host="wled.local",
            brightness=150,
            segments=[
                SegmentConfig(name="left", start=0, stop=30),
                SegmentConfig(name="right", start=30, stop=60, grouping=2, reverse=True),
            ],
            retry_backoff_s=0.0,
        ),
        presets=[
            preset("A", [255, 0, 0], ["Solid", "Breathe"]),
            preset("B", [0, 255, 0], [2, 2]),
            preset("C", [0, 0, 255], [0, 0]),
            preset("D", [255, 255, 255], [9, 9]),
            preset("idle", [10, 0, 20], [0, 0]),
        ],
        playlists=[
            PlaylistConfig(
                name="rapid-fire",
                presets=["A", "B", "C", "D"],
                durations=[10, 10, 10, 30],
                transitions=[7, 7, 7, 0],
                repeat=1,
                end="idle",
            ),
            PlaylistConfig(
                name="flash",
                presets=["C"],
                durations=[5],
                transitions=[1],
                end="idle",
            ),
            PlaylistConfig(
                name="tiny",
                presets=["A", "B"],
                durations=[0.01, 0.01],
                transitions=[0, 0],
                end="idle",
            ),
        ],
        selection=SelectionConfig(policy="round_robin", playlists=["tiny"]),
    )


@pytest.fixture
def zap_event() -> Callable[..., Dict[str, Any]]:
    return build_zap_event


@pytest.fixture
def settings() -> Settings:
    return build_settings()


class FakeWebSocket:
    """
    Scripted relay connection.

    ``frames`` are sent to the client after its REQ; the string ``"SUB"``
    inside a frame is replaced by the subscription id the client chose.
    With ``hang`` the connection stays open once the frames are exhausted.
    """

    def __init__(self, frames: List[Any], hang: bool = False):
        self.frames = frames
        self.hang = hang
        self.sent: List[Any] = []

    async def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        sub_id = self.sent[0][1] if self.sent else None
        for frame in self.frames:
            if isinstance(frame, list):
                frame = [sub_id if part == "SUB" else part for part in frame]
            yield frame if isinstance(frame, str) else json.dumps(frame)
        if self.hang:
            await asyncio.Event().wait()


class _Connection:
    def __init__(self, ws: FakeWebSocket):
        self.ws = ws

    async def __aenter__(self) -> FakeWebSocket:
        return self.ws

    async def __aexit__(self, *exc: Any) -> bool:
        return False


class FakeConnect:
    """Stands in for ``websockets.connect``; scripted sessions per relay URL."""

    def __init__(self, sessions: Dict[str, List[Any]]):
        self.sessions = {url: list(items) for url, items in sessions.items()}
        self.calls: List[str] = []

    def __call__(self, url: str, **kwargs: Any) -> _Connection:
        self.calls.append(url)
        item = self.sessions[url].pop(0)
        if isinstance(item, Exception):
            raise item
        return _Connection(item)


@pytest.fixture
def fake_relays() -> Callable[[Dict[str, List[Any]]], FakeConnect]:
    return FakeConnect


@pytest.fixture
def fake_websocket() -> Callable[..., FakeWebSocket]:
    return FakeWebSocket
