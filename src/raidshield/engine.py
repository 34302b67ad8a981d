"""
Detection and escalation engine.

This module contains the ShieldEngine class which handles:
- Loading and managing event handlers
- Dispatching platform events to handlers
- Carrying out enforcement actions without blocking detection
- Recording violations and aggregate counters
- Raid mode notifications and timers
- Periodic maintenance of in-memory state
- Query operations for dashboards and command layers
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import importlib
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable, Optional

from raidshield.errors import ActionDenied, ActionFailed, InvalidContent
from raidshield.events import (
    Action,
    AssignRole,
    Kick,
    Notify,
    Timeout,
    Violation,
)
from raidshield.utils.database import DatabaseManager
from raidshield.utils.escalation import EscalationManager
from raidshield.utils.logging import get_logger
from raidshield.utils.policy import CommunityPolicy, PenaltyAction, PenaltyTier, PolicyStore
from raidshield.utils.raid_mode import RaidModeController, RaidState, RaidTrigger
from raidshield.utils.suspicion import SuspicionResult
from raidshield.utils.threat_matcher import SEVERITY, BlockedDomain, ThreatKind, ThreatMatcher
from raidshield.utils.windows import COMMUNITY_WIDE, EventCategory, SlidingWindowCounter

if TYPE_CHECKING:
    from raidshield.config import Config
    from raidshield.events import Event, PlatformAdapter

logger = get_logger(__name__)

SUSPICIOUS_MAX = 500  # per community

# Stat counters bumped when an action succeeds
ACTION_STATS: dict[str, str] = {
    Timeout.kind: "timeouts_issued",
    Kick.kind: "kicks_issued",
    AssignRole.kind: "quarantines_issued",
}


@dataclass
class SuspiciousEntry:
    """A subject flagged at join time."""
    subject: str
    score: int
    reasons: list[str] = field(default_factory=list)
    flagged_at: float = 0.0


class ShieldEngine:
    """
    Real-time abuse detection engine.

    Features:
    - Handler modules selected by configuration
    - Per-key locked sliding windows, escalation and raid state
    - Fire-and-forget enforcement with violation logging
    - Cancellable raid mode auto-disable
    - Maintenance loop independent of event traffic

    Attributes:
        config: Engine configuration
        adapter: Platform adapter that carries out actions
        start_time: Engine start timestamp for uptime tracking
    """

    def __init__(
        self,
        config: Config,
        adapter: PlatformAdapter,
        db: Optional[DatabaseManager] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine configuration
            adapter: Platform adapter for outbound actions
            db: Database manager (created from config if omitted)
            clock: Time source in seconds
        """
        self.config = config
        self.adapter = adapter
        self.clock = clock
        self.start_time = datetime.now(timezone.utc)

        self.db = db or DatabaseManager(config.database_path)
        self.policies = PolicyStore(self.db)
        self.windows = SlidingWindowCounter()
        self.escalation = EscalationManager()
        self.matcher = ThreatMatcher(
            domains=[
                BlockedDomain(
                    domain=row["domain"],
                    reason=row["reason"] or "",
                    origin=row["origin"],
                    community=row["community_id"] or None,
                    added_by=row["added_by"] or "",
                )
                for row in self.db.get_blocked_domains()
            ],
            words=self.db.get_profanity_words(),
        )
        self.raid = RaidModeController(
            windows=self.windows,
            scheduler=self._schedule,
            on_enter=self._on_raid_enter,
            on_exit=self._on_raid_exit,
        )

        self._suspicious: dict[str, OrderedDict[str, SuspiciousEntry]] = {}
        self._handlers: list[Any] = []
        self._pending: set[asyncio.Task] = set()
        self._maintenance_task: Optional[asyncio.Task] = None

        self._load_handlers()

    # ==================== Handlers ====================

    def _load_handlers(self) -> None:
        """Load all enabled handler modules based on configuration."""
        handlers_to_load: list[tuple[str, bool]] = [
            ("raidshield.handlers.antispam", self.config.enable_antispam),
            ("raidshield.handlers.automod", self.config.enable_automod),
            ("raidshield.handlers.linkfilter", self.config.enable_linkfilter),
            ("raidshield.handlers.antiraid", self.config.enable_antiraid),
        ]

        for module_path, enabled in handlers_to_load:
            if not enabled:
                continue
            try:
                module = importlib.import_module(module_path)
                module.prepare(self)
                logger.info("Loaded handler: %s", module_path)
            except Exception as e:
                logger.error("Failed to load handler %s: %s", module_path, e)

    def add_handler(self, handler: Any) -> None:
        """Register a handler object with ``on_<event_name>`` coroutines."""
        self._handlers.append(handler)

    @property
    def handlers(self) -> list[Any]:
        return list(self._handlers)

    async def dispatch(self, event: Event) -> None:
        """
        Send an event to every handler that listens for it.

        A failing handler is logged and never stops the others.

        Args:
            event: Inbound platform event
        """
        method_name = f"on_{event.event_name}"
        for handler in self._handlers:
            method = getattr(handler, method_name, None)
            if method is None:
                continue
            try:
                await method(event)
            except Exception:
                logger.exception(
                    "Handler %s failed on %s in %s",
                    type(handler).__name__, event.event_name, event.community,
                )

    # ==================== Policy ====================

    def get_policy(self, community: str) -> CommunityPolicy:
        return self.policies.get(community)

    def update_policy(self, community: str, **fields: Any) -> CommunityPolicy:
        return self.policies.update(community, **fields)

    def reset_policy(self, community: str) -> bool:
        return self.policies.reset(community)

    def is_privileged(self, policy: CommunityPolicy, subject: str, flag: bool = False) -> bool:
        """Administrators and whitelisted subjects are never acted on."""
        return flag or policy.is_exempt(subject)

    # ==================== Enforcement ====================

    def penalty_action(
        self,
        tier: PenaltyTier,
        community: str,
        subject: str,
        reason: str,
    ) -> Optional[Action]:
        """Translate a ladder tier into a platform action (None for warn)."""
        if tier.action is PenaltyAction.TIMEOUT:
            return Timeout(community, subject, tier.duration, reason)
        if tier.action is PenaltyAction.KICK:
            return Kick(community, subject, reason)
        return None

    def notice(
        self,
        community: str,
        title: str,
        description: str = "",
        severity: int = 0,
        subject: Optional[str] = None,
        **fields: Any,
    ) -> Notify:
        """Build a structured notification for the community's channel."""
        policy = self.get_policy(community)
        message = {
            "title": title,
            "description": description,
            "severity": severity,
            "fields": fields,
        }
        return Notify(community, policy.notification_channel, message, subject)

    def enforce(
        self,
        violation: Violation,
        action: Optional[Action] = None,
        side_actions: Iterable[Action] = (),
        stats: Iterable[str] = (),
        escalated: bool = False,
    ) -> None:
        """
        Carry out a violation's actions and record it, without waiting.

        Args:
            violation: The violation to record
            action: Primary enforcement action; its outcome is recorded
            side_actions: Deletes and notices sent after the primary action
            stats: Aggregate counters to increment
            escalated: The violation was counted on the ladder and is
                taken back if the platform denies the action
        """
        self.spawn(self._enforce(
            violation, action, list(side_actions), list(stats), escalated
        ))

    async def _enforce(
        self,
        violation: Violation,
        action: Optional[Action],
        side_actions: list[Action],
        stats: list[str],
        escalated: bool = False,
    ) -> None:
        outcome = violation.action
        if action is not None:
            outcome = await self.execute(action)

        if outcome == "denied" and escalated:
            self.escalation.revert(violation.community, violation.subject)

        for side_action in side_actions:
            await self.execute(side_action)

        if outcome == "attempted":
            await self.execute(self.notice(
                violation.community,
                "Enforcement failed",
                f"Could not {action.kind} {violation.subject}; manual action needed",
                severity=violation.severity,
                subject=violation.subject,
                reason=violation.reason,
            ))

        counters = ["total_violations", *stats]
        if outcome in ACTION_STATS and action is not None and outcome == action.kind:
            counters.append(ACTION_STATS[outcome])
        await self.persist(dataclasses.replace(violation, action=outcome), counters)

    async def execute(self, action: Action) -> str:
        """
        Run one action on the adapter.

        Returns:
            str: The action kind on success, "denied" or "attempted" otherwise
        """
        try:
            await self.adapter.execute(action)
            return action.kind
        except ActionDenied as e:
            logger.info("Action denied: %s", e)
            return "denied"
        except ActionFailed as e:
            logger.warning("Failed to %s: %s", action.kind, e)
            return "attempted"
        except Exception as e:
            logger.warning("Failed to %s: %s", action.kind, e)
            return "attempted"

    async def persist(self, violation: Violation, counters: Iterable[str] = ()) -> None:
        """Write a violation and bump counters off the event loop."""
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(
                self.db.add_violation,
                violation.community,
                violation.subject,
                violation.category,
                violation.severity,
                violation.reason,
                violation.action,
                violation.timestamp,
                violation.evidence,
            ))
            await loop.run_in_executor(None, functools.partial(
                self.db.increment_stats, violation.community, *counters
            ))
        except Exception as e:
            logger.error("Failed to record violation for %s: %s", violation.subject, e)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run a coroutine in the background and keep a reference to it."""
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait until every background action and write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ==================== Raid Mode ====================

    def _schedule(self, delay: float, callback: Callable[[], None]) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Maintenance expires it instead
            return None
        return loop.call_later(delay, callback)

    def _on_raid_enter(self, state: RaidState, reason: str) -> None:
        policy = self.get_policy(state.community)
        self.spawn(self.execute(self.notice(
            state.community,
            "Raid mode enabled",
            reason or "Raid protection is active",
            severity=10,
            trigger=state.trigger.value,
            action=policy.raid_action.value,
            expires_at=state.expires_at,
        )))
        if state.trigger is RaidTrigger.AUTO:
            self.spawn(self._bump(state.community, "raids_detected"))

    def _on_raid_exit(self, state: RaidState, trigger: RaidTrigger, reason: str) -> None:
        self.spawn(self.execute(self.notice(
            state.community,
            "Raid mode disabled",
            reason or "Raid protection is off",
            trigger=trigger.value,
            active_for=round(self.clock() - state.activated_at),
        )))

    async def _bump(self, community: str, *counters: str) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, functools.partial(
                self.db.increment_stats, community, *counters
            ))
        except Exception as e:
            logger.error("Failed to update stats for %s: %s", community, e)

    def is_raid_mode_active(self, community: str) -> bool:
        return self.raid.is_active(community)

    def get_raid_status(self, community: str) -> dict[str, Any]:
        state = self.raid.get_state(community)
        if state is None:
            return {"active": False}
        return state.to_dict()

    async def enable_raid_mode(
        self,
        community: str,
        duration: Optional[float] = None,
        reason: str = "",
        trigger: RaidTrigger = RaidTrigger.MANUAL,
    ) -> bool:
        """
        Turn raid mode on for a community.

        Args:
            community: Community ID
            duration: Seconds until auto-disable (policy default if None)
            reason: Reason shown in the notification
            trigger: Manual or automatic

        Returns:
            bool: False if raid mode was already on
        """
        if duration is None:
            duration = self.get_policy(community).raid_duration
        return self.raid.enable(community, trigger, self.clock(), duration, reason)

    async def disable_raid_mode(self, community: str, reason: str = "") -> bool:
        """Turn raid mode off. Returns False if it was already off."""
        return self.raid.disable(community, RaidTrigger.MANUAL, reason)

    # ==================== Joins ====================

    def get_join_stats(self, community: str, now: Optional[float] = None) -> dict[str, int]:
        """Join counts over the last minute, five minutes and hour."""
        now = self.clock() if now is None else now
        return {
            "last_minute": self.windows.count(community, COMMUNITY_WIDE, EventCategory.JOIN, now, 60),
            "last_5_minutes": self.windows.count(community, COMMUNITY_WIDE, EventCategory.JOIN, now, 300),
            "last_hour": self.windows.count(community, COMMUNITY_WIDE, EventCategory.JOIN, now, 3600),
        }

    def flag_suspicious(self, community: str, subject: str, result: SuspicionResult, now: float) -> None:
        """Remember a suspicious join for reporting."""
        entries = self._suspicious.setdefault(community, OrderedDict())
        entries.pop(subject, None)
        entries[subject] = SuspiciousEntry(subject, result.score, list(result.reasons), now)
        while len(entries) > SUSPICIOUS_MAX:
            entries.popitem(last=False)

    def get_suspicious_subjects(self, community: str) -> list[str]:
        return list(self._suspicious.get(community, ()))

    def get_suspicious_entries(self, community: str) -> list[SuspiciousEntry]:
        return list(self._suspicious.get(community, {}).values())

    # ==================== Lists ====================

    def add_blocked_domain(
        self,
        domain: str,
        reason: str = "",
        added_by: str = "",
        community: Optional[str] = None,
    ) -> bool:
        """Block a domain globally or for one community."""
        added = self.matcher.add_domain(domain, reason, community, added_by)
        if added:
            self.db.add_blocked_domain(domain, reason, added_by, community)
        return added

    def remove_blocked_domain(self, domain: str, community: Optional[str] = None) -> bool:
        removed = self.matcher.remove_domain(domain, community)
        if removed:
            self.db.remove_blocked_domain(domain, community)
        return removed

    def list_blocked_domains(self, community: Optional[str] = None) -> list[BlockedDomain]:
        return self.matcher.list_domains(community)

    def add_profanity_word(self, word: str, added_by: str = "") -> bool:
        added = self.matcher.add_word(word)
        if added:
            self.db.add_profanity_word(word, added_by)
        return added

    def remove_profanity_word(self, word: str) -> bool:
        removed = self.matcher.remove_word(word)
        if removed:
            self.db.remove_profanity_word(word)
        return removed

    def list_profanity_words(self) -> list[str]:
        return self.matcher.list_words()

    def check_url(self, url: str, community: Optional[str] = None) -> dict[str, Any]:
        """
        Manually check a URL, reporting every rule it matches.

        Unparseable URLs are reported unsafe rather than raising.
        """
        try:
            return self.matcher.check_url(url, community, exhaustive=True).to_dict()
        except InvalidContent as e:
            return {
                "url": url,
                "domain": None,
                "safe": False,
                "matched_domain": None,
                "threats": [f"{ThreatKind.INVALID_URL.value}: {e.detail}"],
                "severity": SEVERITY[ThreatKind.INVALID_URL],
            }

    # ==================== Reporting ====================

    def get_violations(
        self,
        community: str,
        subject: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        return self.db.get_violations(community, subject, limit)

    def get_stats(self, community: str) -> dict[str, int]:
        return self.db.get_stats(community)

    # ==================== Lifecycle ====================

    def run_maintenance(self, now: Optional[float] = None) -> dict[str, int]:
        """
        Prune stale in-memory state.

        Returns:
            dict: How many entries each structure dropped
        """
        now = self.clock() if now is None else now
        result = {
            "windows": self.windows.prune(now),
            "escalations": self.escalation.sweep(now),
            "history": self.matcher.prune_history(now),
            "raids_expired": self.raid.expire_due(now),
        }
        logger.debug("Maintenance: %s", result)
        return result

    async def _maintenance_loop(self) -> None:
        interval = self.config.maintenance_interval
        while True:
            await asyncio.sleep(interval)
            try:
                self.run_maintenance()
            except Exception:
                logger.exception("Maintenance pass failed")

    async def start(self) -> None:
        """Start background maintenance."""
        if self._maintenance_task is None:
            self._maintenance_task = asyncio.get_running_loop().create_task(self._maintenance_loop())
            logger.info("Engine started with %d handler(s)", len(self._handlers))

    async def close(self) -> None:
        """Stop maintenance, cancel raid timers and flush pending work."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            try:
                await self._maintenance_task
            except asyncio.CancelledError:
                pass
            self._maintenance_task = None
        self.raid.cancel_all()
        await self.drain()
        logger.info("Engine closed")

    @property
    def uptime(self) -> float:
        """Get engine uptime in seconds."""
        return (datetime.now(timezone.utc) - self.start_time).total_seconds()
