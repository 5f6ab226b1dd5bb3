"""
Command-Line Interface for Zaplight.

Provides commands for running the boost-to-light service, checking the
configuration and exercising the WLED and OSC outputs by hand.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import tomllib
from pathlib import Path
from typing import Optional

import click
import structlog
import yaml
from pydantic import ValidationError

from zaplight import __version__
from zaplight.core.config import Settings, validate_settings
from zaplight.core.exceptions import ConfigurationInvalid, ZaplightError

logger = structlog.get_logger()


def _load_settings(ctx: click.Context) -> Settings:
    """Load settings; unreadable or ill-typed configuration is ConfigurationInvalid."""
    config_path = ctx.obj.get("config_path")
    try:
        settings = Settings.from_file(config_path) if config_path else Settings()
    except ValidationError as e:
        raise ConfigurationInvalid(f"invalid configuration: {e}") from e
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as e:
        raise ConfigurationInvalid(f"cannot parse {config_path}: {e}") from e
    settings.debug = ctx.obj.get("debug", False)
    return settings


def _validate_startup_config(settings: Settings, mock: bool) -> None:
    """
    Validate the configuration before anything touches the network.

    Mock runs confirm payments locally, so they do not need a wallet section.
    """
    validate_settings(settings, require_sources=False)
    if settings.zaps is None or not settings.zaps.relay_addrs:
        raise ConfigurationInvalid("zaps.relay_addrs must list at least one relay")
    if not mock and settings.nwc is None:
        raise ConfigurationInvalid("an [nwc] wallet section is required to confirm zaps")


def _fail(ctx: click.Context, error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    if ctx.obj.get("debug"):
        raise error
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file (YAML or TOML)",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config: Optional[str]) -> None:
    """
    Zaplight - Nostr zaps to WLED light shows

    Listens for zap receipts on Nostr relays, confirms each payment through
    Nostr Wallet Connect and plays a playlist on a WLED controller, firing an
    OSC trigger when a show starts.
    """
    ctx.ensure_object(dict)

    # Configure logging
    log_level = "DEBUG" if debug else "INFO"
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level)
        ),
    )

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config) if config else None


async def _run_until_signalled(pipeline) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; Ctrl+C still raises.
            pass
    await pipeline.run(stop_event)


@cli.command()
@click.option("--mock", is_flag=True, help="Use mock wallet and device (no hardware)")
@click.pass_context
def run(ctx: click.Context, mock: bool) -> None:
    """Run the zap-to-light service."""
    from zaplight.pipeline import build_pipeline

    click.echo(f"Zaplight v{__version__}")
    click.echo("=" * 50)

    try:
        settings = _load_settings(ctx)
        _validate_startup_config(settings, mock=mock)
    except ZaplightError as e:
        _fail(ctx, e)
        return

    click.echo(f"Mode: {'Mock' if mock else 'Live'}")
    click.echo(f"Relays: {', '.join(settings.zaps.relay_addrs)}")
    click.echo(f"Device: {settings.wled.host}")
    click.echo()

    try:
        pipeline = build_pipeline(settings, mock=mock)
        click.echo("Pipeline built successfully. Starting...")
        click.echo("Press Ctrl+C to stop.")
        click.echo()

        asyncio.run(_run_until_signalled(pipeline))

    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    except Exception as e:
        _fail(ctx, e)


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context) -> None:
    """Validate the configuration file and print a summary."""
    try:
        settings = _load_settings(ctx)
        validate_settings(settings)
    except ZaplightError as e:
        _fail(ctx, e)
        return

    click.echo("Configuration OK")
    click.echo(f"  Relays:    {len(settings.zaps.relay_addrs)}")
    click.echo(f"  Segments:  {len(settings.wled.segments)}")
    click.echo(f"  Presets:   {len(settings.presets)}")
    click.echo(f"  Playlists: {', '.join(p.name for p in settings.playlists)}")
    click.echo(f"  Selection: {settings.selection.policy}")
    click.echo(f"  Preemption: {settings.scheduler.preemption}")


async def _play(settings: Settings, playlist_name: str, mock: bool) -> int:
    from zaplight.output.wled import WledCommandSink
    from zaplight.pipeline import build_scheduler
    from zaplight.pipeline.mocks import MockCommandSink
    from zaplight.show.scheduler import ShowRequest

    playlist = settings.get_playlist(playlist_name)
    sink = MockCommandSink(settings.wled.host) if mock else WledCommandSink(settings.wled)
    try:
        await sink.load_effects()
        sink.check_effects(settings.presets)

        scheduler = build_scheduler(settings, sink)
        scheduler.start()
        try:
            scheduler.trigger(ShowRequest(playlist=playlist))
            await scheduler.wait_idle()
        finally:
            await scheduler.stop()
        return scheduler.get_stats()["commands_sent"]
    finally:
        await sink.close()


@cli.command()
@click.argument("playlist")
@click.option("--mock", is_flag=True, help="Record commands instead of sending them")
@click.pass_context
def play(ctx: click.Context, playlist: str, mock: bool) -> None:
    """Play one playlist on the device, without a boost."""
    try:
        settings = _load_settings(ctx)
        validate_settings(settings, require_sources=False)
        click.echo(f"Playing '{playlist}' on {settings.wled.host}...")
        sent = asyncio.run(_play(settings, playlist, mock))
    except KeyboardInterrupt:
        click.echo("\nStopped.")
        return
    except ZaplightError as e:
        _fail(ctx, e)
        return

    click.echo(f"Done, {sent} commands sent.")


@cli.command("list-effects")
@click.pass_context
def list_effects(ctx: click.Context) -> None:
    """List the effects the WLED controller offers."""
    from zaplight.output.wled import WledCommandSink

    async def fetch(settings: Settings) -> dict:
        sink = WledCommandSink(settings.wled)
        try:
            return await sink.load_effects()
        finally:
            await sink.close()

    try:
        settings = _load_settings(ctx)
        if settings.wled is None:
            raise ConfigurationInvalid("a [wled] device section is required")
        effects = asyncio.run(fetch(settings))
    except ZaplightError as e:
        _fail(ctx, e)
        return

    click.echo(f"Effects on {settings.wled.host}:")
    click.echo("-" * 60)
    for name, effect_id in sorted(effects.items(), key=lambda item: item[1]):
        click.echo(f"  [{effect_id:3d}] {name}")


@cli.command("osc-test")
@click.option("--sats", default=21, help="Amount to send in the trigger")
@click.pass_context
def osc_test(ctx: click.Context, sats: int) -> None:
    """Send a single OSC boost trigger."""
    from zaplight.output.osc import OscEmitter

    try:
        settings = _load_settings(ctx)
        if settings.osc is None:
            raise ConfigurationInvalid("an [osc] section is required")
        emitter = OscEmitter.from_config(settings.osc)
    except ZaplightError as e:
        _fail(ctx, e)
        return

    if emitter.send_sats(sats):
        click.echo(f"Sent {emitter.path} {sats} to {emitter.host}:{emitter.port}")
    else:
        click.echo("Error: OSC send failed", err=True)
        sys.exit(1)


@cli.command("decode-naddr")
@click.argument("naddr")
def decode_naddr(naddr: str) -> None:
    """Show the coordinate behind an naddr1... content address."""
    from zaplight.relay.naddr import parse_content_address

    try:
        coordinate = parse_content_address(naddr)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Coordinate: {coordinate}")
    click.echo(f"  Kind:       {coordinate.kind}")
    click.echo(f"  Author:     {coordinate.pubkey}")
    click.echo(f"  Identifier: {coordinate.identifier}")
    for relay in coordinate.relays:
        click.echo(f"  Relay:      {relay}")


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
