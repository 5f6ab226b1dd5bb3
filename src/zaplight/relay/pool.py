"""
Relay Pool: one supervised websocket subscription per relay.

All connections feed a single queue, so downstream sees one stream of
events in first-observed order. Relays are assumed to come back eventually;
a connection retries forever with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence

import structlog
import websockets
from websockets.exceptions import WebSocketException

from zaplight.core.config import RelayConfig
from zaplight.core.exceptions import InvalidEvent
from zaplight.core.models import RelayEvent
from zaplight.relay.events import parse_event

logger = structlog.get_logger()


@dataclass(frozen=True)
class SubscriptionFilter:
    """NIP-01 REQ filter."""

    kinds: Sequence[int] = ()
    coordinates: Sequence[str] = ()
    authors: Sequence[str] = ()
    since: Optional[int] = None

    def to_dict(self, since: Optional[int] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.kinds:
            data["kinds"] = list(self.kinds)
        if self.coordinates:
            data["#a"] = list(self.coordinates)
        if self.authors:
            data["authors"] = list(self.authors)
        effective_since = since if since is not None else self.since
        if effective_since is not None:
            data["since"] = effective_since
        return data


def backoff_delay(attempt: int, config: RelayConfig) -> float:
    """Exponential backoff with 10% jitter, capped at ``reconnect_max_s``."""
    delay = min(
        config.reconnect_base_s * (config.reconnect_factor ** max(0, attempt - 1)),
        config.reconnect_max_s,
    )
    return delay + random.uniform(0, delay * 0.1)


class RelayConnection:
    """Supervises the subscription on a single relay."""

    def __init__(
        self,
        url: str,
        subscription: SubscriptionFilter,
        queue: "asyncio.Queue[RelayEvent]",
        config: RelayConfig,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.url = url
        self.subscription = subscription
        self.queue = queue
        self.config = config
        self._connect = connect
        self._sleep = sleep

        self._since = subscription.since
        self._attempt = 0

        # Stats
        self.connects = 0
        self.events_received = 0
        self.invalid_frames = 0

    @property
    def since(self) -> Optional[int]:
        """``since`` used for the next REQ; newest event seen so far."""
        return self._since

    async def run(self) -> None:
        """Connect, subscribe and reconnect forever."""
        while True:
            try:
                await self._session()
                logger.warning("Relay closed subscription", relay=self.url)
            except asyncio.CancelledError:
                raise
            except (OSError, asyncio.TimeoutError, WebSocketException) as e:
                logger.warning("Relay connection lost", relay=self.url, error=str(e))
            except Exception:
                logger.exception("Unexpected relay session error", relay=self.url)

            self._attempt += 1
            delay = backoff_delay(self._attempt, self.config)
            logger.info(
                "Reconnecting to relay",
                relay=self.url,
                attempt=self._attempt,
                delay_s=round(delay, 2),
            )
            await self._sleep(delay)

    async def _session(self) -> None:
        sub_id = uuid.uuid4().hex[:16]

        async with self._connect(self.url, open_timeout=self.config.open_timeout_s) as ws:
            self.connects += 1
            request = ["REQ", sub_id, self.subscription.to_dict(since=self._since)]
            await ws.send(json.dumps(request))
            self._attempt = 0
            logger.info("Subscribed to relay", relay=self.url, since=self._since)

            async for message in ws:
                if self._handle_message(sub_id, message):
                    return

    def _handle_message(self, sub_id: str, message: Any) -> bool:
        """Handle one relay frame. Returns True when the subscription ended."""
        try:
            frame = json.loads(message)
        except (TypeError, ValueError):
            self.invalid_frames += 1
            logger.debug("Non-JSON frame from relay", relay=self.url)
            return False

        if not isinstance(frame, list) or not frame or not isinstance(frame[0], str):
            self.invalid_frames += 1
            return False

        kind = frame[0]
        if kind == "EVENT" and len(frame) >= 3:
            if frame[1] != sub_id:
                return False
            try:
                event = parse_event(frame[2], relay_url=self.url)
            except InvalidEvent as e:
                self.invalid_frames += 1
                logger.warning("Malformed event from relay", relay=self.url, reason=e.reason)
                return False
            self.events_received += 1
            if self._since is None or event.created_at > self._since:
                self._since = event.created_at
            self.queue.put_nowait(event)
        elif kind == "EOSE":
            logger.debug("End of stored events", relay=self.url)
        elif kind == "NOTICE":
            logger.info("Relay notice", relay=self.url, notice=frame[1] if len(frame) > 1 else None)
        elif kind == "CLOSED" and len(frame) >= 2 and frame[1] == sub_id:
            logger.warning("Subscription closed by relay", relay=self.url, reason=frame[2:])
            return True
        return False

    def get_stats(self) -> dict:
        return {
            "url": self.url,
            "connects": self.connects,
            "events_received": self.events_received,
            "invalid_frames": self.invalid_frames,
            "since": self._since,
        }


class RelayPool:
    """Fans in events from every configured relay into one stream."""

    def __init__(
        self,
        relay_urls: Sequence[str],
        subscription: SubscriptionFilter,
        config: Optional[RelayConfig] = None,
        connect: Callable[..., Any] = websockets.connect,
    ):
        self.config = config or RelayConfig()
        if subscription.since is None:
            subscription = SubscriptionFilter(
                kinds=subscription.kinds,
                coordinates=subscription.coordinates,
                authors=subscription.authors,
                since=int(time.time()),
            )
        self.subscription = subscription
        self.queue: "asyncio.Queue[RelayEvent]" = asyncio.Queue()
        self.connections: List[RelayConnection] = [
            RelayConnection(url, subscription, self.queue, self.config, connect=connect)
            for url in dict.fromkeys(relay_urls)
        ]
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        """Spawn one supervising task per relay."""
        if self._tasks:
            return
        logger.info("Starting relay pool", relays=[c.url for c in self.connections])
        self._tasks = [
            asyncio.create_task(conn.run(), name=f"relay:{conn.url}")
            for conn in self.connections
        ]

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Relay pool stopped")

    async def events(self) -> AsyncIterator[RelayEvent]:
        while True:
            yield await self.queue.get()

    def get_stats(self) -> List[dict]:
        return [conn.get_stats() for conn in self.connections]
