"""Bounded sliding-window deduplication keyed by event id."""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable


class Deduplicator:
    """
    Remembers recently seen event ids.

    The same zap receipt is delivered once per subscribed relay, usually
    seconds apart. Ids are kept in first-seen order; entries older than
    ``window_s`` expire and the oldest entries are evicted once ``capacity``
    is reached. An id that re-arrives after expiry counts as new.
    """

    def __init__(
        self,
        window_s: float = 120.0,
        capacity: int = 4096,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.window_s = window_s
        self.capacity = capacity
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

        self.duplicates = 0
        self.evicted = 0

    def check_and_record(self, event_id: str) -> bool:
        """
        Record ``event_id`` and return True if it is new.

        Returns False, without touching the window, for an id already seen
        inside it.
        """
        now = self._clock()
        self._expire(now)

        if event_id in self._seen:
            self.duplicates += 1
            return False

        self._seen[event_id] = now
        while len(self._seen) > self.capacity:
            self._seen.popitem(last=False)
            self.evicted += 1
        return True

    def _expire(self, now: float) -> None:
        cutoff = now - self.window_s
        while self._seen:
            oldest_id, first_seen = next(iter(self._seen.items()))
            if first_seen > cutoff:
                break
            del self._seen[oldest_id]

    def __contains__(self, event_id: str) -> bool:
        self._expire(self._clock())
        return event_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def get_stats(self) -> dict:
        return {
            "tracked": len(self._seen),
            "duplicates": self.duplicates,
            "evicted": self.evicted,
            "window_s": self.window_s,
        }
