"""Show selection and playlist scheduling."""

from zaplight.show.scheduler import (
    DeviceCommand,
    PlaybackMachine,
    PlaybackPhase,
    PlaylistScheduler,
    PreemptionPolicy,
    ShowRequest,
)
from zaplight.show.selector import (
    AmountTierPolicy,
    CumulativeThresholdPolicy,
    RoundRobinPolicy,
    ShowSelector,
)

__all__ = [
    "AmountTierPolicy",
    "CumulativeThresholdPolicy",
    "DeviceCommand",
    "PlaybackMachine",
    "PlaybackPhase",
    "PlaylistScheduler",
    "PreemptionPolicy",
    "RoundRobinPolicy",
    "ShowRequest",
    "ShowSelector",
]
