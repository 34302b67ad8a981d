"""
Escalating penalties for repeat offenders.

Each confirmed violation moves a subject one rung up the community's
penalty ladder (default):
- Violation 1: 1 minute timeout
- Violation 2: 1 hour timeout
- Violation 3+: Kick

Counters reset after a period without violations (default 5 minutes)
and are removed after a kick. Privileged subjects are never escalated.
Counters live in memory only; a restart starts everyone clean.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from raidshield.utils.keyed_lock import KeyedLock
from raidshield.utils.logging import get_logger
from raidshield.utils.policy import PenaltyAction, PenaltyTier

if TYPE_CHECKING:
    from raidshield.utils.policy import CommunityPolicy

logger = get_logger(__name__)


@dataclass
class EscalationEntry:
    """Mutable per-subject counter."""
    count: int
    last_violation: float
    reset_after: float

    def expired(self, now: float) -> bool:
        return now - self.last_violation > self.reset_after


@dataclass
class EscalationResult:
    """Outcome of registering a violation."""
    count: int
    tier: Optional[PenaltyTier]
    skipped: bool = False
    terminal: bool = False

    @property
    def action(self) -> Optional[PenaltyAction]:
        return self.tier.action if self.tier else None

    @property
    def duration(self) -> float:
        return self.tier.duration if self.tier else 0.0


class EscalationManager:
    """
    Per-(community, subject) violation counters.

    Features:
    - Ladder lookup clamped to the last tier
    - Lazy inactivity reset, plus ``sweep()`` to bound memory
    - Privileged subjects short-circuit without touching the counter
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], EscalationEntry] = {}
        self._locks = KeyedLock()

    def register_violation(
        self,
        community: str,
        subject: str,
        now: float,
        policy: CommunityPolicy,
        privileged: bool = False,
    ) -> EscalationResult:
        """
        Count a violation and pick the penalty.

        Callers submit each physical event once; there is no deduplication.

        Args:
            community: Community ID
            subject: Offending subject
            now: Violation time in seconds
            policy: Community policy (ladder and reset horizon)
            privileged: Whether the subject is an administrator

        Returns:
            EscalationResult: Count and tier to apply
        """
        key = (community, subject)
        if privileged or policy.is_exempt(subject):
            logger.info("Escalation skipped - privileged: %s in %s", subject, community)
            with self._locks.hold(key):
                entry = self._entries.get(key)
                count = entry.count if entry and not entry.expired(now) else 0
            return EscalationResult(count=count, tier=None, skipped=True)

        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None or entry.expired(now):
                entry = EscalationEntry(0, now, policy.violation_reset)
                self._entries[key] = entry

            entry.count += 1
            entry.last_violation = now
            entry.reset_after = policy.violation_reset

            tier = policy.tier_for(entry.count)
            terminal = tier.action is PenaltyAction.KICK
            count = entry.count
            if terminal:
                del self._entries[key]

        logger.info(
            "Violation %d for %s in %s: %s", count, subject, community, tier.label
        )
        return EscalationResult(count=count, tier=tier, terminal=terminal)

    def get_count(self, community: str, subject: str, now: float) -> int:
        """Current violation count (0 if clean or expired)."""
        key = (community, subject)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return 0
            if entry.expired(now):
                del self._entries[key]
                return 0
            return entry.count

    def revert(self, community: str, subject: str) -> bool:
        """
        Take back the latest counted violation.

        Used when the platform refused the penalty. A refused kick has
        already removed the entry, so there is nothing to take back.

        Returns:
            bool: True if a counter was decremented
        """
        key = (community, subject)
        with self._locks.hold(key):
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.count -= 1
            if entry.count <= 0:
                del self._entries[key]
        logger.info("Violation reverted for %s in %s", subject, community)
        return True

    def clear(self, community: str, subject: str) -> bool:
        """Forget a subject's violations."""
        key = (community, subject)
        with self._locks.hold(key):
            return self._entries.pop(key, None) is not None

    def sweep(self, now: float) -> int:
        """
        Remove expired entries.

        Returns:
            int: Number of entries removed
        """
        removed = 0
        for key in list(self._entries):
            with self._locks.hold(key):
                entry = self._entries.get(key)
                if entry is not None and entry.expired(now):
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug("Escalation sweep removed %d entries", removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)
