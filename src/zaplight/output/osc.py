"""OSC trigger sent when a boosted show starts."""

from __future__ import annotations

from typing import Optional

import structlog
from pythonosc.udp_client import SimpleUDPClient

from zaplight.core.config import OscConfig
from zaplight.show.scheduler import DeviceCommand

logger = structlog.get_logger()

DEFAULT_OSC_PATH = "/boost"


class OscEmitter:
    """
    Fire-and-forget UDP sender.

    One message per playlist session entered from idle, carrying the boost
    amount in sats as an int. Send failures are logged; playback never waits
    on this.
    """

    def __init__(
        self,
        host: str,
        port: int,
        path: str = DEFAULT_OSC_PATH,
        client: Optional[SimpleUDPClient] = None,
    ):
        self.host = host
        self.port = port
        self.path = path
        self._client = client
        self._sent = 0
        self._errors = 0

    @classmethod
    def from_config(cls, config: OscConfig) -> "OscEmitter":
        host, port = config.host_port()
        return cls(host, port, path=config.path)

    def open(self) -> bool:
        """Create the UDP client. An unresolvable host is logged, not raised."""
        if self._client is not None:
            return True
        try:
            self._client = SimpleUDPClient(self.host, self.port)
        except OSError as e:
            self._errors += 1
            logger.warning("OSC target unavailable", host=self.host, port=self.port, error=str(e))
            return False
        return True

    def close(self) -> None:
        self._client = None

    def send_sats(self, sats: int) -> bool:
        if not self.open():
            return False
        try:
            self._client.send_message(self.path, int(sats))
        except OSError as e:
            self._errors += 1
            logger.warning("OSC send failed", host=self.host, port=self.port, error=str(e))
            return False

        self._sent += 1
        logger.info("OSC trigger sent", path=self.path, sats=sats)
        return True

    def trigger(self, command: DeviceCommand) -> None:
        sats = command.boost.sats if command.boost is not None else 0
        self.send_sats(sats)

    def get_stats(self) -> dict:
        return {"sent": self._sent, "errors": self._errors}
