"""
Join-time suspicion scoring.

Combines signals available when a member joins:
- Account age below the community minimum (+3)
- No avatar (+2)
- Random-looking username (+2)
- Join burst across the community (+5, also triggers raid mode)

The score is reported uncapped; decisions use the value capped at 10.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

SCORE_CAP = 10
NEW_ACCOUNT_POINTS = 3
NO_AVATAR_POINTS = 2
RANDOM_NAME_POINTS = 2
JOIN_BURST_POINTS = 5

# Join handling thresholds applied to the capped score
KICK_SCORE = 7
QUARANTINE_SCORE = 5
RAID_ACTION_SCORE = 3

SECONDS_PER_DAY = 86400


@dataclass
class SuspicionResult:
    """Suspicion score for one join."""
    score: int
    reasons: list[str] = field(default_factory=list)
    burst: bool = False
    account_age_days: Optional[int] = None

    @property
    def capped(self) -> int:
        return min(self.score, SCORE_CAP)


def is_random_username(username: Optional[str]) -> bool:
    """
    Judge whether a username looks machine-generated.

    More than six digits, three or more underscores, or digits only.
    A missing username counts as random.
    """
    if not username:
        return True
    digits = sum(1 for c in username if c.isdigit())
    if digits > 6:
        return True
    if username.count("_") >= 3:
        return True
    return username.isdigit()


def account_age_days(account_created_at: Optional[float], now: float) -> Optional[int]:
    """Whole days between account creation and ``now`` (None if unknown)."""
    if account_created_at is None:
        return None
    return int((now - account_created_at) // SECONDS_PER_DAY)


def score_join(
    account_created_at: Optional[float],
    has_avatar: Optional[bool],
    username: Optional[str],
    recent_joins: int,
    min_account_age: int,
    join_threshold: int,
    now: float,
) -> SuspicionResult:
    """
    Score a member join.

    Missing inputs are treated as the worst case.

    Args:
        account_created_at: Account creation time in seconds (None if unknown)
        has_avatar: Whether the account has an avatar
        username: Account username
        recent_joins: Joins in the trailing join window, this one included
        min_account_age: Minimum account age in days
        join_threshold: Joins per window that count as a burst
        now: Join time in seconds

    Returns:
        SuspicionResult: Score, reasons and burst flag
    """
    result = SuspicionResult(score=0)

    age = account_age_days(account_created_at, now)
    result.account_age_days = age
    if age is None:
        result.score += NEW_ACCOUNT_POINTS
        result.reasons.append("Account age unknown")
    elif age < min_account_age:
        result.score += NEW_ACCOUNT_POINTS
        result.reasons.append(f"New account ({age} days old)")

    if not has_avatar:
        result.score += NO_AVATAR_POINTS
        result.reasons.append("No avatar")

    if is_random_username(username):
        result.score += RANDOM_NAME_POINTS
        result.reasons.append("Random-looking username")

    if recent_joins >= join_threshold:
        result.score += JOIN_BURST_POINTS
        result.burst = True
        result.reasons.append(f"Join burst ({recent_joins} joins in window)")

    return result
