"""
Show Selection: maps a confirmed boost to a playlist.

Policies are pure functions of (boost, prior state) so selection stays
deterministic regardless of network timing. ``ShowSelector`` owns the state
and is the only place it advances.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import structlog

from zaplight.core.config import AmountTier, Settings
from zaplight.core.models import ConfirmedBoost

logger = structlog.get_logger()


@dataclass(frozen=True)
class SelectionState:
    position: int = 0
    # sats accumulated towards the largest cumulative threshold
    cycle_total: int = 0


@dataclass(frozen=True)
class Selection:
    playlist: Optional[str]
    state: SelectionState


class SelectionPolicy(Protocol):
    def select(self, boost: ConfirmedBoost, state: SelectionState) -> Selection:
        ...


class RoundRobinPolicy:
    """Cycle through a fixed list of playlists, one per boost."""

    def __init__(self, playlists: Sequence[str]):
        if not playlists:
            raise ValueError("round robin needs at least one playlist")
        self.playlists = list(playlists)

    def select(self, boost: ConfirmedBoost, state: SelectionState) -> Selection:
        index = state.position % len(self.playlists)
        return Selection(
            playlist=self.playlists[index],
            state=replace(state, position=(index + 1) % len(self.playlists)),
        )


class AmountTierPolicy:
    """Pick the playlist of the highest tier whose threshold the boost reaches."""

    def __init__(self, tiers: Sequence[AmountTier]):
        if not tiers:
            raise ValueError("amount tiers need at least one tier")
        self.tiers: List[AmountTier] = sorted(tiers, key=lambda t: t.min_sats)

    def select(self, boost: ConfirmedBoost, state: SelectionState) -> Selection:
        chosen = None
        for tier in self.tiers:
            if boost.sats >= tier.min_sats:
                chosen = tier.playlist
        return Selection(playlist=chosen, state=state)


class CumulativeThresholdPolicy:
    """
    Play a show each time the running sat total crosses a threshold.

    Boosts accumulate into a cycle total. Crossing the largest threshold wraps
    the total around, so the thresholds repeat for as long as boosts come in.
    When one boost crosses several thresholds, the largest one wins.
    """

    def __init__(self, tiers: Sequence[AmountTier]):
        if not tiers:
            raise ValueError("cumulative thresholds need at least one tier")
        self.playlists: Dict[int, str] = {tier.min_sats: tier.playlist for tier in tiers}
        self.max_threshold = max(self.playlists)
        if min(self.playlists) <= 0:
            raise ValueError("cumulative thresholds must be positive")

    def crossed(self, old_total: int, sats: int) -> Tuple[List[int], int]:
        """Thresholds crossed by adding ``sats`` to ``old_total``, and the new cycle total."""
        new_total = old_total + sats
        if new_total >= self.max_threshold:
            cycle_total = new_total - self.max_threshold
            crossed = [self.max_threshold] + [
                t for t in self.playlists if t != self.max_threshold and cycle_total >= t
            ]
        else:
            cycle_total = new_total
            crossed = [t for t in self.playlists if old_total < t <= new_total]
        return sorted(crossed), cycle_total

    def select(self, boost: ConfirmedBoost, state: SelectionState) -> Selection:
        crossed, cycle_total = self.crossed(state.cycle_total, boost.sats)
        return Selection(
            playlist=self.playlists[crossed[-1]] if crossed else None,
            state=replace(state, cycle_total=cycle_total),
        )


def build_policy(settings: Settings) -> SelectionPolicy:
    if settings.selection.policy == "amount_tiers":
        return AmountTierPolicy(settings.selection.tiers)
    if settings.selection.policy == "cumulative_thresholds":
        return CumulativeThresholdPolicy(settings.selection.tiers)
    return RoundRobinPolicy(settings.selection_playlists())


class ShowSelector:
    """Holds the selection state between boosts."""

    def __init__(self, policy: SelectionPolicy, state: Optional[SelectionState] = None):
        self.policy = policy
        self.state = state or SelectionState()

    def select(self, boost: ConfirmedBoost) -> Optional[str]:
        selection = self.policy.select(boost, self.state)
        self.state = selection.state
        if selection.playlist is None:
            logger.info("Boost selected no show", event_id=boost.event_id, sats=boost.sats)
        else:
            logger.debug("Selected playlist", event_id=boost.event_id, playlist=selection.playlist)
        return selection.playlist
