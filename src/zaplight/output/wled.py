"""
WLED device command sink.

Applies a preset by posting the full segment layout to ``/json/state``.
Every command carries all segments, so the device ends up in the same state
no matter what it showed before.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx
import structlog

from zaplight.core.config import PresetConfig, WledConfig
from zaplight.core.exceptions import ConfigurationInvalid, DeviceUnreachable, PresetError
from zaplight.show.scheduler import DeviceCommand

logger = structlog.get_logger()

DEFAULT_SPEED = 128
DEFAULT_INTENSITY = 128
BLACK = [0, 0, 0]


def _color_at(colors: Optional[List[List[int]]], index: int) -> List[int]:
    if colors is None or index >= len(colors):
        return list(BLACK)
    return list(colors[index])


def _uses_effect_names(preset: PresetConfig) -> bool:
    return any(isinstance(effect, str) and not effect.isdigit() for effect in preset.effects)


class WledCommandSink:
    """Async HTTP client for one WLED controller."""

    def __init__(self, config: WledConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.host = config.host
        self._client = client or httpx.AsyncClient(timeout=config.timeout_s)
        self._effects: Dict[str, int] = {}
        self._effects_loaded = False

        self._sent = 0
        self._failures = 0

    @property
    def base_url(self) -> str:
        if self.host.startswith(("http://", "https://")):
            return self.host.rstrip("/")
        return f"http://{self.host}"

    async def close(self) -> None:
        await self._client.aclose()

    async def load_effects(self) -> Dict[str, int]:
        """Fetch the device's effect list; ids are list positions."""
        response = await self._request("GET", "/json/effects")
        names = response.json()
        if not isinstance(names, list):
            raise DeviceUnreachable(self.host, "effect list is not a JSON array")
        self._effects = {str(name): index for index, name in enumerate(names)}
        self._effects_loaded = True
        logger.info("Loaded WLED effects", host=self.host, count=len(self._effects))
        return dict(self._effects)

    def check_effects(self, presets: List[PresetConfig]) -> None:
        """Raise ConfigurationInvalid if a preset names an effect the device lacks."""
        for preset in presets:
            for effect in preset.effects:
                self.resolve_effect(preset, effect)

    def resolve_effect(self, preset: PresetConfig, effect: int | str) -> int:
        if isinstance(effect, int):
            return effect
        if effect.isdigit():
            return int(effect)
        if effect not in self._effects:
            raise PresetError(preset.name, f"effect '{effect}' is not known to {self.host}")
        return self._effects[effect]

    def build_state(self, command: DeviceCommand) -> Dict[str, Any]:
        """JSON body for ``/json/state`` applying ``command``."""
        preset = command.preset
        segments = self.config.segments
        if len(preset.colors) != len(segments):
            raise ConfigurationInvalid(
                f"preset '{preset.name}' has {len(preset.colors)} colors for {len(segments)} segments"
            )

        seg: List[Dict[str, Any]] = []
        for index, segment in enumerate(segments):
            seg.append(
                {
                    "id": index,
                    "n": segment.name,
                    "start": segment.start,
                    "stop": segment.stop,
                    "grp": segment.grouping,
                    "on": True,
                    "bri": self.config.brightness,
                    "col": [
                        list(preset.colors[index]),
                        _color_at(preset.colors2, index),
                        _color_at(preset.colors3, index),
                    ],
                    "fx": self.resolve_effect(preset, preset.effects[index]),
                    "sx": preset.speed if preset.speed is not None else DEFAULT_SPEED,
                    "ix": preset.intensity if preset.intensity is not None else DEFAULT_INTENSITY,
                    "sel": True,
                    "rev": segment.reverse,
                }
            )
        # Zero-length slots clear segments left over from other layouts.
        seg.extend({"stop": 0} for _ in range(self.config.max_segments - len(seg)))

        return {
            "on": True,
            "bri": self.config.brightness,
            # tt applies to this call only
            "tt": int(round(command.transition_s * 10)),
            "seg": seg,
        }

    async def set_preset(self, command: DeviceCommand) -> None:
        """Apply a command. Raises DeviceUnreachable once retries are exhausted."""
        if not self._effects_loaded and _uses_effect_names(command.preset):
            # device was offline at startup
            await self.load_effects()
        body = self.build_state(command)
        await self._request("POST", "/json/state", json=body)
        self._sent += 1
        logger.debug(
            "WLED preset applied",
            host=self.host,
            preset=command.preset.name,
            transition_s=command.transition_s,
        )

    async def ping(self) -> bool:
        try:
            response = await self._request("GET", "/json/info", attempts=1)
        except DeviceUnreachable:
            return False
        info = response.json()
        logger.info("WLED reachable", host=self.host, version=info.get("ver"), leds=info.get("leds", {}).get("count"))
        return True

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        attempts: Optional[int] = None,
    ) -> httpx.Response:
        attempts = attempts or self.config.retries
        url = f"{self.base_url}{path}"
        last_error = ""

        for attempt in range(attempts):
            if attempt:
                await asyncio.sleep(self.config.retry_backoff_s * 2 ** (attempt - 1))
            try:
                response = await self._client.request(method, url, json=json)
            except httpx.HTTPError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.is_success:
                    return response
                last_error = f"HTTP {response.status_code}"
            logger.warning(
                "WLED request failed",
                host=self.host,
                path=path,
                attempt=attempt + 1,
                attempts=attempts,
                error=last_error,
            )

        self._failures += 1
        raise DeviceUnreachable(self.host, f"{method} {path}: {last_error}", attempts=attempts)

    def get_stats(self) -> dict:
        return {"host": self.host, "sent": self._sent, "failures": self._failures}
