"""Device and trigger outputs."""

from zaplight.output.osc import OscEmitter
from zaplight.output.wled import WledCommandSink

__all__ = ["OscEmitter", "WledCommandSink"]
