"""
Anti-raid handler.

Scores every member join and reacts:
- Join bursts switch raid mode on automatically
- Very suspicious joins are kicked, moderately suspicious ones quarantined
- While raid mode is on, any join scoring 3+ gets the raid action

The burst trigger and the suspicion threshold are independent signals.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from raidshield.events import Action, AssignRole, Kick, MemberJoined, Violation
from raidshield.utils.logging import get_logger
from raidshield.utils.policy import RaidAction
from raidshield.utils.raid_mode import RaidTrigger
from raidshield.utils.suspicion import KICK_SCORE, QUARANTINE_SCORE, RAID_ACTION_SCORE, score_join
from raidshield.utils.windows import COMMUNITY_WIDE, EventCategory

if TYPE_CHECKING:
    from raidshield.engine import ShieldEngine
    from raidshield.utils.policy import CommunityPolicy
    from raidshield.utils.suspicion import SuspicionResult

logger = get_logger(__name__)


class AntiRaid:
    """Join burst detection and suspicious member handling."""

    def __init__(self, engine: ShieldEngine) -> None:
        self.engine = engine
        logger.info("AntiRaid handler initialized")

    async def on_member_joined(self, event: MemberJoined) -> None:
        engine = self.engine
        policy = engine.get_policy(event.community)
        if not policy.antiraid_enabled:
            return

        recent_joins = engine.windows.record(
            event.community,
            COMMUNITY_WIDE,
            EventCategory.JOIN,
            event.timestamp,
            horizon=policy.join_window,
        )
        result = score_join(
            account_created_at=event.account_created_at,
            has_avatar=event.has_avatar,
            username=event.username,
            recent_joins=recent_joins,
            min_account_age=policy.min_account_age,
            join_threshold=policy.join_threshold,
            now=event.timestamp,
        )

        if result.burst and not engine.is_raid_mode_active(event.community):
            await engine.enable_raid_mode(
                event.community,
                reason=f"Join burst: {recent_joins} joins in {policy.join_window}s",
                trigger=RaidTrigger.AUTO,
            )

        if policy.is_exempt(event.subject):
            return

        score = result.capped
        kicked = False
        if score >= policy.suspicion_threshold:
            kicked = self._handle_suspicious(event, policy, result)

        if engine.is_raid_mode_active(event.community) and score >= RAID_ACTION_SCORE and not kicked:
            self._handle_raid_join(event, policy, result)

    def _handle_suspicious(
        self,
        event: MemberJoined,
        policy: CommunityPolicy,
        result: SuspicionResult,
    ) -> bool:
        """Flag a suspicious join and act on it. Returns True if a kick was issued."""
        score = result.capped
        reasons = ", ".join(result.reasons)
        self.engine.flag_suspicious(event.community, event.subject, result, event.timestamp)
        logger.warning(
            "Suspicious join: %s in %s (score %d/10): %s",
            event.subject, event.community, score, reasons,
        )

        action: Optional[Action] = None
        if score >= KICK_SCORE and policy.auto_kick_suspicious:
            action = Kick(event.community, event.subject, f"Suspicion score {score}/10 - {reasons}")
        elif score >= QUARANTINE_SCORE and policy.quarantine_role:
            action = AssignRole(
                event.community, event.subject, policy.quarantine_role, f"Suspicion score {score}/10"
            )

        self.engine.enforce(
            Violation(
                community=event.community,
                subject=event.subject,
                category="suspicious_join",
                severity=score,
                reason=reasons,
                action=action.kind if action else "flagged",
                timestamp=event.timestamp,
                evidence=f"score={score}",
            ),
            action,
            side_actions=[self.engine.notice(
                event.community,
                "Suspicious member joined",
                reasons,
                severity=score,
                subject=event.subject,
                score=score,
                account_age_days=result.account_age_days,
            )],
            stats=["suspicious_joins"],
        )
        return isinstance(action, Kick)

    def _handle_raid_join(
        self,
        event: MemberJoined,
        policy: CommunityPolicy,
        result: SuspicionResult,
    ) -> None:
        """Apply the community's raid action to a join during raid mode."""
        reasons = ", ".join(result.reasons)
        action: Optional[Action] = None
        if policy.raid_action is RaidAction.KICK:
            action = Kick(event.community, event.subject, f"Raid mode active - {reasons}")
        elif policy.quarantine_role:
            action = AssignRole(
                event.community, event.subject, policy.quarantine_role, "Raid mode active"
            )

        if action is None:
            logger.info("Raid mode: no quarantine role set for %s, %s only flagged", event.community, event.subject)
            return

        self.engine.enforce(
            Violation(
                community=event.community,
                subject=event.subject,
                category="raid_join",
                severity=result.capped,
                reason=reasons,
                action=action.kind,
                timestamp=event.timestamp,
                evidence=f"score={result.capped}",
            ),
            action,
        )


def prepare(engine: ShieldEngine) -> None:
    """Prepare the handler for loading."""
    engine.add_handler(AntiRaid(engine))
