import asyncio

import httpx

from zaplight.output.wled import WledCommandSink
from zaplight.pipeline import build_pipeline
from zaplight.pipeline.mocks import MockOscEmitter
from zaplight.relay.events import parse_event

from conftest import BOLT11_21_SATS, build_invoice


async def settle(pipeline) -> None:
    await pipeline.drain()
    await asyncio.wait_for(pipeline.scheduler.wait_idle(), timeout=2.0)


def test_duplicate_receipts_from_two_relays_play_one_show(settings, zap_event) -> None:
    raw = zap_event()

    async def scenario():
        pipeline = build_pipeline(settings, mock=True)
        emitter = MockOscEmitter()
        pipeline.scheduler.emitter = emitter
        pipeline.scheduler.start()

        first = pipeline.handle_event(parse_event(raw, relay_url="wss://relay.one"))
        second = pipeline.handle_event(parse_event(raw, relay_url="wss://relay.two"))
        await settle(pipeline)

        # replaying the same receipt later changes nothing
        replay = pipeline.handle_event(parse_event(raw, relay_url="wss://relay.one"))
        await settle(pipeline)
        await pipeline.scheduler.stop()
        return pipeline, emitter, first, second, replay

    pipeline, emitter, first, second, replay = asyncio.run(scenario())

    assert first is not None
    assert second is None and replay is None
    assert pipeline.correlator.wallet.lookups == [BOLT11_21_SATS]
    assert emitter.sent == [21]
    assert [c.preset.name for c in pipeline.sink.commands] == ["A", "B", "idle"]
    assert pipeline.get_stats()["boosts"] == 1


def test_unconfirmed_payments_start_no_show(settings, zap_event) -> None:
    zero_invoice = build_invoice(None, "zero")
    unpaid_invoice = build_invoice(21_000, "unpaid")
    zero = zap_event(bolt11=zero_invoice, created_at=1_700_000_001)
    unpaid = zap_event(bolt11=unpaid_invoice, created_at=1_700_000_002)

    async def scenario():
        pipeline = build_pipeline(settings, mock=True)
        wallet = pipeline.correlator.wallet
        wallet.amounts[zero_invoice] = 0
        wallet.unpaid.add(unpaid_invoice)
        pipeline.scheduler.start()

        pipeline.handle_event(parse_event(zero))
        pipeline.handle_event(parse_event(unpaid))
        await settle(pipeline)
        await pipeline.scheduler.stop()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert pipeline.sink.commands == []
    assert pipeline.correlator.get_stats() == {"confirmed": 0, "unconfirmed": 2}


def test_amount_tier_below_threshold_is_not_played(settings, zap_event) -> None:
    from zaplight.core.config import AmountTier, SelectionConfig

    settings.selection = SelectionConfig(
        policy="amount_tiers",
        tiers=[AmountTier(min_sats=1000, playlist="tiny")],
    )

    async def scenario():
        pipeline = build_pipeline(settings, mock=True)
        pipeline.scheduler.start()
        pipeline.handle_event(parse_event(zap_event()))
        await settle(pipeline)
        await pipeline.scheduler.stop()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert pipeline.sink.commands == []
    assert pipeline.get_stats()["unmatched"] == 1


def test_running_pipeline_end_to_end(settings, zap_event, fake_relays, fake_websocket) -> None:
    raw = zap_event()
    connect = fake_relays(
        {
            "wss://relay.one": [fake_websocket([["EVENT", "SUB", raw]], hang=True)],
            "wss://relay.two": [fake_websocket([["EVENT", "SUB", raw]], hang=True)],
        }
    )

    async def scenario():
        pipeline = build_pipeline(settings, mock=True, connect=connect)
        await pipeline.start()
        for _ in range(200):
            if len(pipeline.sink.commands) >= 3:
                break
            await asyncio.sleep(0.01)
        await pipeline.stop()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert [c.preset.name for c in pipeline.sink.commands] == ["A", "B", "idle"]
    assert pipeline.validator.get_stats()["duplicates"] == 1
    assert pipeline.sink.closed is True
    assert pipeline.running is False


def test_offline_device_at_startup_does_not_stop_the_service(
    settings, zap_event, fake_relays, fake_websocket
) -> None:
    def offline(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    connect = fake_relays(
        {
            "wss://relay.one": [fake_websocket([], hang=True)],
            "wss://relay.two": [fake_websocket([], hang=True)],
        }
    )

    async def scenario():
        pipeline = build_pipeline(settings, mock=True, connect=connect)
        sink = WledCommandSink(settings.wled, client=httpx.AsyncClient(transport=httpx.MockTransport(offline)))
        pipeline.sink = pipeline.scheduler.sink = sink

        await pipeline.start()
        running = pipeline.running
        pipeline.handle_event(parse_event(zap_event()))
        await settle(pipeline)
        await pipeline.stop()
        return pipeline, running

    pipeline, running = asyncio.run(scenario())

    assert running is True
    assert sorted(connect.calls) == ["wss://relay.one", "wss://relay.two"]
    # dispatched to the scheduler; the offline device abandons the session
    assert pipeline.get_stats()["boosts"] == 1
    assert pipeline.scheduler.get_stats()["abandoned"] == 1
