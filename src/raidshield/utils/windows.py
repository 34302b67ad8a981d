"""
Sliding window event counters.

Tracks event timestamps per (community, subject, category) and answers
"how many events in the last N seconds" questions for:
- Message rate (spam bursts)
- Voice moderation actions (mute/deafen/disconnect abuse)
- Member joins (raid bursts and join statistics)

Entries are pruned lazily on every access; ``prune()`` is called by the
engine's maintenance loop to evict keys that have gone quiet.
"""

from __future__ import annotations

from collections import deque
from enum import Enum
from typing import Mapping, Optional

from raidshield.utils.keyed_lock import KeyedLock
from raidshield.utils.logging import get_logger

logger = get_logger(__name__)

# Subject used for community-wide windows such as joins
COMMUNITY_WIDE = "*"


class EventCategory(Enum):
    """Kinds of events counted by the window counter."""
    MESSAGE = "message"
    JOIN = "join"
    VOICE = "voice_action"


# How long each category keeps its timestamps when no horizon is given.
# Joins are kept for an hour so join statistics can be reported.
DEFAULT_RETENTION: dict[EventCategory, float] = {
    EventCategory.MESSAGE: 5.0,
    EventCategory.JOIN: 3600.0,
    EventCategory.VOICE: 10.0,
}

WindowKey = tuple[str, str, EventCategory]


class SlidingWindowCounter:
    """
    Fixed-horizon event-rate tracker.

    Each key holds an ordered deque of timestamps. A query with horizon H
    at time ``now`` counts the entries with ``now - t < H``. Storage keeps
    whatever is younger than ``max(H, retention)`` for the category.
    """

    def __init__(self, retention: Optional[Mapping[EventCategory, float]] = None) -> None:
        """
        Initialize the counter.

        Args:
            retention: Per-category storage horizon in seconds
        """
        self.retention: dict[EventCategory, float] = dict(DEFAULT_RETENTION)
        if retention:
            self.retention.update(retention)
        self._windows: dict[WindowKey, deque[float]] = {}
        self._spans: dict[WindowKey, float] = {}  # widest horizon asked of each key
        self._locks = KeyedLock()

    def _horizon(self, category: EventCategory, horizon: Optional[float]) -> float:
        return self.retention[category] if horizon is None else horizon

    def _trim(self, key: WindowKey, now: float, keep: float) -> deque[float]:
        """Drop expired timestamps for ``key``; caller holds the key lock."""
        window = self._windows.get(key)
        if window is None:
            return deque()
        kept = deque(t for t in window if now - t < keep)
        if kept:
            self._windows[key] = kept
        else:
            del self._windows[key]
            self._spans.pop(key, None)
        return kept

    def record(
        self,
        community: str,
        subject: str,
        category: EventCategory,
        timestamp: float,
        horizon: Optional[float] = None,
    ) -> int:
        """
        Append an event and return the in-window count.

        Args:
            community: Community ID
            subject: Subject ID (``COMMUNITY_WIDE`` for joins)
            category: Event category
            timestamp: Event time in seconds
            horizon: Counting horizon in seconds (category retention if None)

        Returns:
            int: Events within the horizon, including this one
        """
        key = (community, subject, category)
        span = self._horizon(category, horizon)
        with self._locks.hold(key):
            keep = max(span, self.retention[category], self._spans.get(key, 0.0))
            window = self._trim(key, timestamp, keep)
            window.append(timestamp)
            self._windows[key] = window
            self._spans[key] = max(keep, self._spans.get(key, 0.0))
            return sum(1 for t in window if timestamp - t < span)

    def count(
        self,
        community: str,
        subject: str,
        category: EventCategory,
        now: float,
        horizon: Optional[float] = None,
    ) -> int:
        """Return the in-window count without recording an event."""
        key = (community, subject, category)
        span = self._horizon(category, horizon)
        with self._locks.hold(key):
            keep = max(span, self.retention[category], self._spans.get(key, 0.0))
            window = self._trim(key, now, keep)
            return sum(1 for t in window if now - t < span)

    def clear(
        self,
        community: str,
        subject: Optional[str] = None,
        category: Optional[EventCategory] = None,
    ) -> int:
        """
        Evict window keys for a community.

        Args:
            community: Community ID
            subject: Only evict this subject's keys
            category: Only evict keys of this category

        Returns:
            int: Number of keys evicted
        """
        removed = 0
        for key in list(self._windows):
            key_community, key_subject, key_category = key
            if key_community != community:
                continue
            if subject is not None and key_subject != subject:
                continue
            if category is not None and key_category != category:
                continue
            with self._locks.hold(key):
                self._spans.pop(key, None)
                if self._windows.pop(key, None) is not None:
                    removed += 1
        if removed:
            logger.debug("Cleared %d window(s) for community %s", removed, community)
        return removed

    def prune(self, now: float) -> int:
        """
        Drop expired timestamps everywhere and evict empty keys.

        Args:
            now: Current time in seconds

        Returns:
            int: Number of keys evicted
        """
        evicted = 0
        for key in list(self._windows):
            with self._locks.hold(key):
                if key not in self._windows:
                    continue
                keep = self._spans.get(key, self.retention[key[2]])
                if not self._trim(key, now, keep):
                    evicted += 1
        return evicted

    def __len__(self) -> int:
        return len(self._windows)
