"""
Pipeline Builder for Zaplight.

Wires the relay pool, validator, payment correlator, show selector and
playlist scheduler into one running service:

    relays -> validate/dedup -> confirm payment -> select show -> schedule -> WLED (+ OSC)
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Set

import structlog
import websockets

from zaplight.core.config import Settings
from zaplight.core.exceptions import ConfigurationInvalid, DeviceUnreachable
from zaplight.core.models import ZAP_RECEIPT_KIND, ConfirmedBoost, RelayEvent, ZapReceipt
from zaplight.output.osc import OscEmitter
from zaplight.output.wled import WledCommandSink
from zaplight.payments.correlator import PaymentCorrelator
from zaplight.payments.wallet import NwcWalletClient, WalletClient
from zaplight.relay.dedup import Deduplicator
from zaplight.relay.events import SignatureVerifier, verify_signature
from zaplight.relay.naddr import parse_content_address
from zaplight.relay.pool import RelayPool, SubscriptionFilter
from zaplight.relay.validator import ZapValidator
from zaplight.show.scheduler import (
    CommandSink,
    PlaybackMachine,
    PlaylistScheduler,
    PreemptionPolicy,
    ShowRequest,
    TriggerEmitter,
)
from zaplight.show.selector import ShowSelector, build_policy

logger = structlog.get_logger()


class BoostPipeline:
    """
    The running service.

    One ingest task drains the relay pool; every accepted receipt gets its own
    confirmation task, bounded by a semaphore. Confirmed boosts go through the
    selector to the scheduler, which owns the device.
    """

    def __init__(
        self,
        settings: Settings,
        pool: RelayPool,
        validator: ZapValidator,
        correlator: PaymentCorrelator,
        selector: ShowSelector,
        scheduler: PlaylistScheduler,
        sink: Any,
        emitter: Optional[Any] = None,
        max_concurrent_confirmations: int = 8,
    ):
        self.settings = settings
        self.pool = pool
        self.validator = validator
        self.correlator = correlator
        self.selector = selector
        self.scheduler = scheduler
        self.sink = sink
        self.emitter = emitter

        self._confirm_slots = asyncio.Semaphore(max_concurrent_confirmations)
        self._confirmations: Set[asyncio.Task] = set()
        self._ingest_task: Optional[asyncio.Task] = None
        self._running = False

        self._boosts = 0
        self._unmatched = 0

    async def start(self) -> None:
        """Prepare the device, then start the scheduler, relays and ingest."""
        logger.info("Starting boost pipeline")
        try:
            await self.sink.load_effects()
        except DeviceUnreachable as e:
            logger.error(
                "Device unreachable at startup, effect names resolve on first command",
                host=e.host,
                error=e.message,
            )
        else:
            self.sink.check_effects(self.settings.presets)
        if self.emitter is not None:
            self.emitter.open()

        self.scheduler.start()
        self.pool.start()
        self._ingest_task = asyncio.create_task(self._ingest(), name="ingest")
        self._running = True

    async def stop(self) -> None:
        """Stop ingest, cancel in-flight confirmations and release devices."""
        logger.info("Stopping boost pipeline")
        self._running = False

        if self._ingest_task is not None:
            self._ingest_task.cancel()
            await asyncio.gather(self._ingest_task, return_exceptions=True)
            self._ingest_task = None

        for task in list(self._confirmations):
            task.cancel()
        await asyncio.gather(*self._confirmations, return_exceptions=True)
        self._confirmations.clear()

        await self.pool.stop()
        await self.scheduler.stop()
        if self.emitter is not None:
            self.emitter.close()
        await self.sink.close()

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Run until ``stop_event`` is set (or forever)."""
        stop_event = stop_event or asyncio.Event()
        try:
            await self.start()
            await stop_event.wait()
        finally:
            await self.stop()

    def handle_event(self, event: RelayEvent) -> Optional[asyncio.Task]:
        """Validate one relay event and, if accepted, start confirming it."""
        receipt = self.validator.process(event)
        if receipt is None:
            return None
        task = asyncio.create_task(self._confirm(receipt), name=f"confirm:{receipt.event_id[:8]}")
        self._confirmations.add(task)
        task.add_done_callback(self._confirmations.discard)
        return task

    def dispatch(self, boost: ConfirmedBoost) -> bool:
        """Pick a show for a confirmed boost and hand it to the scheduler."""
        name = self.selector.select(boost)
        if name is None:
            self._unmatched += 1
            return False
        playlist = self.settings.get_playlist(name)
        self._boosts += 1
        logger.info("Boost triggers playlist", event_id=boost.event_id, sats=boost.sats, playlist=name)
        self.scheduler.trigger(ShowRequest(playlist=playlist, boost=boost))
        return True

    async def drain(self) -> None:
        """Wait for every in-flight confirmation to finish."""
        while self._confirmations:
            await asyncio.gather(*list(self._confirmations), return_exceptions=True)

    async def _ingest(self) -> None:
        async for event in self.pool.events():
            self.handle_event(event)

    async def _confirm(self, receipt: ZapReceipt) -> None:
        async with self._confirm_slots:
            boost = await self.correlator.try_confirm(receipt)
        if boost is not None:
            self.dispatch(boost)

    @property
    def running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "relays": self.pool.get_stats(),
            "validator": self.validator.get_stats(),
            "correlator": self.correlator.get_stats(),
            "scheduler": self.scheduler.get_stats(),
            "device": self.sink.get_stats(),
            "boosts": self._boosts,
            "unmatched": self._unmatched,
            "in_flight": len(self._confirmations),
        }


def build_scheduler(
    settings: Settings,
    sink: CommandSink,
    emitter: Optional[TriggerEmitter] = None,
) -> PlaylistScheduler:
    """Scheduler for the configured device."""
    if settings.wled is None:
        raise ConfigurationInvalid("a [wled] device section is required")
    machine = PlaybackMachine(
        device=settings.wled.host,
        presets={p.name: p for p in settings.presets},
        policy=PreemptionPolicy(settings.scheduler.preemption),
        max_queued=settings.scheduler.max_queued,
    )
    return PlaylistScheduler(machine, sink, emitter=emitter)


def build_pipeline(
    settings: Optional[Settings] = None,
    mock: bool = False,
    connect: Callable[..., Any] = websockets.connect,
    verify: SignatureVerifier = verify_signature,
) -> BoostPipeline:
    """
    Build the complete boost pipeline.

    Args:
        settings: Configuration settings. Uses defaults if None.
        mock: If True, use the mock wallet and mock device instead of
            Nostr Wallet Connect and WLED. Relays are still real.
        connect: WebSocket connect function, replaceable in tests.
        verify: Event signature check.

    Returns:
        BoostPipeline ready to start.
    """
    if settings is None:
        settings = Settings()
    if settings.zaps is None:
        raise ConfigurationInvalid("a [zaps] section is required")
    if settings.wled is None:
        raise ConfigurationInvalid("a [wled] device section is required")

    logger.info("Building boost pipeline", mock=mock)

    coordinate = parse_content_address(settings.zaps.naddr)
    subscription = SubscriptionFilter(kinds=(ZAP_RECEIPT_KIND,), coordinates=(str(coordinate),))
    pool = RelayPool(settings.zaps.relay_addrs, subscription, settings.relay, connect=connect)

    validator = ZapValidator(
        str(coordinate),
        Deduplicator(window_s=settings.dedup.window_s, capacity=settings.dedup.capacity),
        verify=verify,
    )

    sink: Any
    wallet: WalletClient
    if mock:
        from zaplight.pipeline.mocks import MockCommandSink, MockWallet

        wallet = MockWallet()
        sink = MockCommandSink(host=settings.wled.host)
    else:
        if settings.nwc is None:
            raise ConfigurationInvalid("an [nwc] wallet section is required to confirm zaps")
        wallet = NwcWalletClient.from_uri(settings.nwc.uri)
        sink = WledCommandSink(settings.wled)

    timeout_s = settings.nwc.timeout_s if settings.nwc is not None else 5.0
    max_concurrent = settings.nwc.max_concurrent_confirmations if settings.nwc is not None else 8
    correlator = PaymentCorrelator(wallet, timeout_s=timeout_s)

    emitter = OscEmitter.from_config(settings.osc) if settings.osc is not None else None
    selector = ShowSelector(build_policy(settings))
    scheduler = build_scheduler(settings, sink, emitter)

    return BoostPipeline(
        settings=settings,
        pool=pool,
        validator=validator,
        correlator=correlator,
        selector=selector,
        scheduler=scheduler,
        sink=sink,
        emitter=emitter,
        max_concurrent_confirmations=max_concurrent,
    )
