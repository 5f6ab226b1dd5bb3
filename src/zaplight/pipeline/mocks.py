"""
Mock collaborators for testing.

Stand-ins for the wallet, the WLED device and the OSC target so the whole
pipeline runs without a Lightning node or LED hardware.
"""

from __future__ import annotations

import time
from typing import Dict, List, Optional

import structlog

from zaplight.core.config import PresetConfig
from zaplight.core.exceptions import DeviceUnreachable
from zaplight.payments.bolt11 import invoice_amount_msat
from zaplight.payments.wallet import WalletLookup
from zaplight.show.scheduler import DeviceCommand

logger = structlog.get_logger()

DEFAULT_MOCK_MSAT = 21_000


class MockWallet:
    """
    Wallet that reports every invoice as paid.

    The settled amount is whatever the invoice encodes, or a fixed default
    for amountless invoices. ``unpaid`` invoices report as not settled.
    """

    def __init__(self, default_msat: int = DEFAULT_MOCK_MSAT) -> None:
        self.default_msat = default_msat
        self.unpaid: set[str] = set()
        self.amounts: Dict[str, int] = {}
        self.lookups: List[str] = []

    async def lookup(self, bolt11: str) -> WalletLookup:
        self.lookups.append(bolt11)
        if bolt11 in self.unpaid:
            return WalletLookup(paid=False, amount_msat=0)

        amount = self.amounts.get(bolt11)
        if amount is None:
            try:
                amount = invoice_amount_msat(bolt11)
            except ValueError:
                amount = None
        return WalletLookup(
            paid=True,
            amount_msat=amount if amount is not None else self.default_msat,
            settled_at=time.time(),
        )


class MockCommandSink:
    """Device sink that records commands instead of sending them."""

    def __init__(self, host: str = "mock-wled") -> None:
        self.host = host
        self.commands: List[DeviceCommand] = []
        self.fail = False
        self.closed = False

    async def load_effects(self) -> Dict[str, int]:
        logger.info("Mock device effects loaded", host=self.host)
        return {}

    def check_effects(self, presets: List[PresetConfig]) -> None:
        """Mock check - accepts every effect."""

    async def set_preset(self, command: DeviceCommand) -> None:
        if self.fail:
            raise DeviceUnreachable(self.host, "mock device offline")
        self.commands.append(command)
        logger.info(
            "Mock device command",
            playlist=command.playlist,
            step=command.step,
            preset=command.preset.name,
        )

    async def ping(self) -> bool:
        return not self.fail

    async def close(self) -> None:
        self.closed = True

    def get_stats(self) -> dict:
        return {"host": self.host, "sent": len(self.commands), "failures": 0}


class MockOscEmitter:
    """Records the sats of every trigger."""

    def __init__(self) -> None:
        self.sent: List[int] = []
        self.last_command: Optional[DeviceCommand] = None

    def open(self) -> None:
        pass

    def close(self) -> None:
        pass

    def trigger(self, command: DeviceCommand) -> None:
        self.last_command = command
        self.sent.append(command.boost.sats if command.boost is not None else 0)
