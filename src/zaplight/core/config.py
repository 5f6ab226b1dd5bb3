"""
Configuration Management for Zaplight.

Uses Pydantic Settings for type-safe configuration with environment
variable support and YAML/TOML file loading. Cross-references between
segments, presets and playlists are checked by :func:`validate_settings`
once at startup.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from zaplight.core.exceptions import (
    ConfigurationInvalid,
    PlaylistError,
    PresetError,
    SegmentError,
)

RGB = List[int]


class ZapsConfig(BaseModel):
    """Zap receipt subscription."""
    relay_addrs: List[str] = Field(default_factory=list)
    naddr: str  # naddr1... or "<kind>:<pubkey>:<identifier>"


class RelayConfig(BaseModel):
    """Relay connection supervision."""
    reconnect_base_s: float = Field(default=1.0, gt=0)
    reconnect_factor: float = Field(default=2.0, ge=1.0)
    reconnect_max_s: float = Field(default=60.0, gt=0)
    open_timeout_s: float = Field(default=10.0, gt=0)


class DedupConfig(BaseModel):
    """Duplicate suppression window for multi-relay delivery."""
    window_s: float = Field(default=120.0, gt=0)
    capacity: int = Field(default=4096, ge=1)


class NwcConfig(BaseModel):
    """Nostr Wallet Connect (NIP-47) payment confirmation."""
    uri: str
    timeout_s: float = Field(default=5.0, gt=0)
    max_concurrent_confirmations: int = Field(default=8, ge=1)


class OscConfig(BaseModel):
    """OSC trigger target."""
    address: str  # "host:port"
    path: str = "/boost"

    def host_port(self) -> tuple[str, int]:
        host, sep, port = self.address.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ConfigurationInvalid(f"OSC address must be host:port, got '{self.address}'")
        return host, int(port)


class SegmentConfig(BaseModel):
    """Contiguous range of the LED strip."""
    name: str
    start: int = Field(ge=0)
    stop: int = Field(ge=0)  # exclusive
    grouping: int = Field(default=1, ge=1)
    reverse: bool = False


class WledConfig(BaseModel):
    """WLED controller and its static strip layout."""
    host: str
    brightness: int = Field(default=128, ge=0, le=255)
    segments: List[SegmentConfig] = Field(default_factory=list)
    max_segments: int = Field(default=32, ge=1)
    timeout_s: float = Field(default=2.0, gt=0)
    retries: int = Field(default=3, ge=1)
    retry_backoff_s: float = Field(default=0.25, ge=0)


class PresetConfig(BaseModel):
    """Static lighting state applied across all segments."""
    name: str
    colors: List[RGB]
    colors2: Optional[List[RGB]] = None
    colors3: Optional[List[RGB]] = None
    effects: List[Union[int, str]]
    speed: Optional[int] = Field(default=None, ge=0, le=255)
    intensity: Optional[int] = Field(default=None, ge=0, le=255)


class PlaylistConfig(BaseModel):
    """Timed sequence of presets."""
    name: str
    presets: List[str]
    durations: List[float]
    transitions: List[float]
    repeat: int = Field(default=0, ge=0)
    end: str


class AmountTier(BaseModel):
    min_sats: int = Field(ge=0)
    playlist: str


class SelectionConfig(BaseModel):
    """How a confirmed boost maps to a playlist."""
    policy: Literal["round_robin", "amount_tiers", "cumulative_thresholds"] = "round_robin"
    playlists: List[str] = Field(default_factory=list)  # empty = every playlist
    tiers: List[AmountTier] = Field(default_factory=list)


class SchedulerConfig(BaseModel):
    """What happens when a boost arrives mid-playback."""
    preemption: Literal["finish_step", "immediate", "ignore", "enqueue"] = "finish_step"
    max_queued: int = Field(default=8, ge=1)


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with ZAPLIGHT_)
    - YAML or TOML config file
    - Direct instantiation
    """

    model_config = SettingsConfigDict(
        env_prefix="ZAPLIGHT_",
        env_nested_delimiter="__",
    )

    # Sources and sinks
    zaps: Optional[ZapsConfig] = None
    relay: RelayConfig = Field(default_factory=RelayConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    nwc: Optional[NwcConfig] = None
    osc: Optional[OscConfig] = None
    wled: Optional[WledConfig] = None

    # Show
    presets: List[PresetConfig] = Field(default_factory=list)
    playlists: List[PlaylistConfig] = Field(default_factory=list)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_toml(cls, path: Path) -> "Settings":
        """Load settings from a TOML file."""
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return cls(**data)

    @classmethod
    def from_file(cls, path: Path) -> "Settings":
        path = Path(path)
        if path.suffix == ".toml":
            return cls.from_toml(path)
        return cls.from_yaml(path)

    def get_preset(self, name: str) -> PresetConfig:
        for preset in self.presets:
            if preset.name == name:
                return preset
        raise PresetError(name, "not defined")

    def get_playlist(self, name: str) -> PlaylistConfig:
        for playlist in self.playlists:
            if playlist.name == name:
                return playlist
        raise PlaylistError(name, "not defined")

    def selection_playlists(self) -> List[str]:
        """Playlists the round-robin policy cycles through."""
        return list(self.selection.playlists) or [p.name for p in self.playlists]


# =============================================================================
# Startup validation
# =============================================================================


def _validate_rgb(owner: str, colors: List[RGB]) -> None:
    for rgb in colors:
        if len(rgb) != 3 or not all(0 <= c <= 255 for c in rgb):
            raise PresetError(owner, f"color {rgb} is not an RGB triple in 0..255")


def validate_segments(wled: WledConfig) -> None:
    if not wled.segments:
        raise SegmentError("<none>", "at least one segment is required")
    if len(wled.segments) > wled.max_segments:
        raise SegmentError(
            wled.segments[wled.max_segments].name,
            f"device supports at most {wled.max_segments} segments",
        )
    seen = set()
    for seg in wled.segments:
        if seg.name in seen:
            raise SegmentError(seg.name, "duplicate segment name")
        seen.add(seg.name)
        if seg.stop <= seg.start:
            raise SegmentError(seg.name, f"stop ({seg.stop}) must be greater than start ({seg.start})")


def validate_presets(presets: List[PresetConfig], segment_count: int) -> None:
    seen = set()
    for preset in presets:
        if preset.name in seen:
            raise PresetError(preset.name, "duplicate preset name")
        seen.add(preset.name)

        if len(preset.colors) != segment_count:
            raise PresetError(
                preset.name,
                f"has {len(preset.colors)} colors for {segment_count} segments",
            )
        if len(preset.effects) != segment_count:
            raise PresetError(
                preset.name,
                f"has {len(preset.effects)} effects for {segment_count} segments",
            )
        _validate_rgb(preset.name, preset.colors)
        for extra in (preset.colors2, preset.colors3):
            if extra is None:
                continue
            if len(extra) > segment_count:
                raise PresetError(preset.name, "more secondary colors than segments")
            _validate_rgb(preset.name, extra)
        for effect in preset.effects:
            if isinstance(effect, int) and not 0 <= effect <= 255:
                raise PresetError(preset.name, f"effect id {effect} out of range")


def validate_playlists(playlists: List[PlaylistConfig], preset_names: set[str]) -> None:
    seen = set()
    for playlist in playlists:
        if playlist.name in seen:
            raise PlaylistError(playlist.name, "duplicate playlist name")
        seen.add(playlist.name)

        lengths = {len(playlist.presets), len(playlist.durations), len(playlist.transitions)}
        if len(lengths) != 1:
            raise PlaylistError(
                playlist.name,
                "presets, durations and transitions must have the same length",
            )
        if not playlist.presets:
            raise PlaylistError(playlist.name, "must contain at least one step")
        if any(d < 0 for d in playlist.durations):
            raise PlaylistError(playlist.name, "durations must be non-negative")
        if any(t < 0 for t in playlist.transitions):
            raise PlaylistError(playlist.name, "transitions must be non-negative")

        for name in playlist.presets:
            if name not in preset_names:
                raise PlaylistError(playlist.name, f"unknown preset '{name}'")
        if playlist.end not in preset_names:
            raise PlaylistError(playlist.name, f"unknown end preset '{playlist.end}'")


def validate_selection(settings: Settings) -> None:
    playlist_names = {p.name for p in settings.playlists}
    selection = settings.selection

    if selection.policy == "round_robin":
        candidates = settings.selection_playlists()
        if not candidates:
            raise ConfigurationInvalid("round_robin selection needs at least one playlist")
        for name in candidates:
            if name not in playlist_names:
                raise PlaylistError(name, "selected for round_robin but not defined")
    else:
        if not selection.tiers:
            raise ConfigurationInvalid(f"{selection.policy} selection needs at least one tier")
        for tier in selection.tiers:
            if tier.playlist not in playlist_names:
                raise PlaylistError(tier.playlist, "used by an amount tier but not defined")

    if selection.policy == "cumulative_thresholds":
        thresholds = [tier.min_sats for tier in selection.tiers]
        if min(thresholds) <= 0:
            raise ConfigurationInvalid("cumulative thresholds must be positive")
        if len(set(thresholds)) != len(thresholds):
            raise ConfigurationInvalid("cumulative thresholds must be distinct")


def validate_settings(settings: Settings, require_sources: bool = True) -> None:
    """
    Check the whole configuration. Raises ConfigurationInvalid subclasses.

    With ``require_sources`` the zap subscription and wallet sections must be
    present as well, which is what ``run`` needs.
    """
    from zaplight.relay.naddr import parse_content_address

    if settings.wled is None:
        raise ConfigurationInvalid("a [wled] device section is required")

    validate_segments(settings.wled)
    validate_presets(settings.presets, len(settings.wled.segments))
    validate_playlists(settings.playlists, {p.name for p in settings.presets})
    validate_selection(settings)

    if settings.osc is not None:
        settings.osc.host_port()

    if require_sources:
        if settings.zaps is None:
            raise ConfigurationInvalid("a [zaps] section is required")
        if not settings.zaps.relay_addrs:
            raise ConfigurationInvalid("zaps.relay_addrs must list at least one relay")
        if settings.nwc is None:
            raise ConfigurationInvalid("an [nwc] wallet section is required to confirm zaps")

    if settings.zaps is not None:
        try:
            parse_content_address(settings.zaps.naddr)
        except ValueError as e:
            raise ConfigurationInvalid(f"zaps.naddr is not a valid content address: {e}")
