"""
Per-community moderation policy.

Provides:
- ``CommunityPolicy``: immutable, fully-populated policy value
- ``resolve_policy()``: the single place where defaults are applied
- ``merge_policy()``: explicit partial update with type coercion
- ``PolicyStore``: cached policies backed by the settings table

All windows and durations are in seconds.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional

from raidshield.utils.logging import get_logger

if TYPE_CHECKING:
    from raidshield.utils.database import DatabaseManager

logger = get_logger(__name__)


class PenaltyAction(Enum):
    """Penalties available on the escalation ladder."""
    WARN = "warn"
    TIMEOUT = "timeout"
    KICK = "kick"


class RaidAction(Enum):
    """What happens to suspicious joins while raid mode is active."""
    QUARANTINE = "quarantine"
    KICK = "kick"


@dataclass(frozen=True)
class PenaltyTier:
    """One rung of the escalation ladder."""
    action: PenaltyAction
    duration: float = 0.0  # seconds, timeouts only

    @property
    def label(self) -> str:
        if self.action is PenaltyAction.TIMEOUT:
            return f"timeout ({_format_duration(self.duration)})"
        return self.action.value

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action.value, "duration": self.duration}

    @classmethod
    def from_value(cls, value: Any) -> PenaltyTier:
        """Build a tier from a stored dict, a bare action name or a tier."""
        if isinstance(value, PenaltyTier):
            return value
        if isinstance(value, str):
            return cls(PenaltyAction(value.lower()))
        return cls(
            action=PenaltyAction(str(value["action"]).lower()),
            duration=float(value.get("duration", 0) or 0),
        )


DEFAULT_LADDER: tuple[PenaltyTier, ...] = (
    PenaltyTier(PenaltyAction.TIMEOUT, 60.0),
    PenaltyTier(PenaltyAction.TIMEOUT, 3600.0),
    PenaltyTier(PenaltyAction.KICK),
)


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds % 3600 == 0 and seconds >= 3600:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0 and seconds >= 60:
        return f"{seconds // 60}m"
    return f"{seconds}s"


@dataclass(frozen=True)
class CommunityPolicy:
    """
    Immutable moderation policy for one community.

    Instances are produced by ``resolve_policy`` and never mutated; an
    update produces a new value through ``merge_policy``.
    """

    # Message rate
    antispam_enabled: bool = True
    message_threshold: int = 5
    message_window: float = 5.0

    # Voice abuse
    voice_enabled: bool = True
    voice_threshold: int = 3
    voice_window: float = 10.0

    # Escalation
    violation_reset: float = 300.0
    penalty_ladder: tuple[PenaltyTier, ...] = DEFAULT_LADDER

    # Join screening and raid mode
    antiraid_enabled: bool = True
    join_threshold: int = 5
    join_window: float = 60.0
    min_account_age: int = 7
    suspicion_threshold: int = 5
    auto_kick_suspicious: bool = True
    quarantine_role: Optional[str] = None
    raid_action: RaidAction = RaidAction.QUARANTINE
    raid_duration: float = 600.0

    # Content checks
    automod_enabled: bool = True
    profanity_filter: bool = True
    caps_filter: bool = True
    emoji_filter: bool = True
    mention_filter: bool = True
    duplicate_filter: bool = True
    zalgo_filter: bool = True
    sensitive_filter: bool = True
    caps_threshold: int = 70
    emoji_limit: int = 10
    mention_limit: int = 5
    duplicate_limit: int = 3

    # Links
    linkfilter_enabled: bool = True
    block_url_shorteners: bool = True
    strict_mode: bool = False
    auto_timeout_scam: bool = True
    scam_timeout: float = 600.0

    # Reporting and exemptions
    notification_channel: Optional[str] = None
    whitelist: frozenset[str] = field(default_factory=frozenset)

    def is_exempt(self, subject: str) -> bool:
        """Check whether a subject is on the community whitelist."""
        return str(subject) in self.whitelist

    def tier_for(self, violation_count: int) -> PenaltyTier:
        """Ladder tier for the Nth violation (clamped to the last tier)."""
        ladder = self.penalty_ladder or DEFAULT_LADDER
        index = min(max(violation_count, 1), len(ladder)) - 1
        return ladder[index]

    def to_record(self) -> dict[str, Any]:
        """Plain JSON-serializable representation for storage."""
        record: dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, frozenset):
                value = sorted(value)
            elif f.name == "penalty_ladder":
                value = [tier.to_dict() for tier in value]
            record[f.name] = value
        return record


POLICY_FIELDS: dict[str, dataclasses.Field] = {
    f.name: f for f in dataclasses.fields(CommunityPolicy)
}
_DEFAULTS = CommunityPolicy()


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _coerce_optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _coerce_whitelist(value: Any) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",")]
    return frozenset(str(item) for item in value if str(item))


def _coerce_ladder(value: Any) -> tuple[PenaltyTier, ...]:
    if not value:
        return DEFAULT_LADDER
    return tuple(PenaltyTier.from_value(item) for item in value)


def _coerce(name: str, value: Any) -> Any:
    """Coerce one raw field value to the type the policy declares."""
    default = getattr(_DEFAULTS, name)
    if name == "penalty_ladder":
        return _coerce_ladder(value)
    if name == "whitelist":
        return _coerce_whitelist(value)
    if name == "raid_action":
        return value if isinstance(value, RaidAction) else RaidAction(str(value).lower())
    if name in ("quarantine_role", "notification_channel"):
        return _coerce_optional_str(value)
    if isinstance(default, bool):
        return _coerce_bool(value)
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value


def resolve_policy(raw: Optional[Mapping[str, Any]] = None) -> CommunityPolicy:
    """
    Build a complete policy from a possibly partial mapping.

    Missing or null fields take their defaults. Unknown keys are ignored.

    Args:
        raw: Stored or user-supplied field values

    Returns:
        CommunityPolicy: Fully-populated immutable policy
    """
    if not raw:
        return _DEFAULTS
    values: dict[str, Any] = {}
    for name, value in raw.items():
        if name not in POLICY_FIELDS:
            continue
        if value is None:
            values[name] = _coerce_none(name)
            continue
        try:
            values[name] = _coerce(name, value)
        except (TypeError, ValueError, KeyError) as e:
            logger.warning("Stored policy field %s=%r unusable, using default: %s", name, value, e)
    return dataclasses.replace(_DEFAULTS, **values)


def merge_policy(policy: CommunityPolicy, fields: Mapping[str, Any]) -> CommunityPolicy:
    """
    Apply a partial update to a policy.

    Args:
        policy: Current policy
        fields: Field values to change

    Returns:
        CommunityPolicy: New policy with the changes applied

    Raises:
        ValueError: If a value cannot be coerced to the field's type
    """
    changes: dict[str, Any] = {}
    for name, value in fields.items():
        if name not in POLICY_FIELDS:
            logger.warning("Ignoring unknown policy field: %s", name)
            continue
        try:
            changes[name] = _coerce(name, value) if value is not None else _coerce_none(name)
        except (TypeError, ValueError, KeyError) as e:
            raise ValueError(f"Invalid value for {name}: {value!r}") from e
    return dataclasses.replace(policy, **changes)


def _coerce_none(name: str) -> Any:
    """Null clears optional references and restores defaults elsewhere."""
    if name in ("quarantine_role", "notification_channel"):
        return None
    return getattr(_DEFAULTS, name)


class PolicyStore:
    """
    Typed, cached access to community policies.

    A community without a stored record gets the defaults, which are
    persisted on first access so operators can see and edit them.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self.db = db
        self._cache: dict[str, CommunityPolicy] = {}
        self._lock = threading.RLock()

    def get(self, community: str) -> CommunityPolicy:
        """
        Get the policy for a community, creating the default if missing.

        Args:
            community: Community ID

        Returns:
            CommunityPolicy: The community's policy
        """
        with self._lock:
            cached = self._cache.get(community)
            if cached is not None:
                return cached

            record = self.db.get_policy_record(community)
            if record is None:
                policy = resolve_policy()
                self.db.save_policy_record(community, policy.to_record())
                logger.info("Created default policy for community %s", community)
            else:
                policy = resolve_policy(record)

            self._cache[community] = policy
            return policy

    def update(self, community: str, **fields: Any) -> CommunityPolicy:
        """
        Merge field changes into a community's policy and persist them.

        Args:
            community: Community ID
            **fields: Policy fields to change

        Returns:
            CommunityPolicy: The updated policy
        """
        with self._lock:
            updated = merge_policy(self.get(community), fields)
            self.db.save_policy_record(community, updated.to_record())
            self._cache[community] = updated
        logger.info("Policy updated for %s: %s", community, ", ".join(sorted(fields)))
        return updated

    def reset(self, community: str) -> bool:
        """
        Delete a community's stored policy; the next ``get`` recreates it.

        Returns:
            bool: True if a stored record was removed
        """
        with self._lock:
            self._cache.pop(community, None)
            removed = self.db.delete_policy_record(community)
        if removed:
            logger.info("Policy reset for community %s", community)
        return removed
