"""
Anti-spam handler.

Detects rate-based abuse:
- Message floods from a single subject
- Voice moderation abuse (mass mute, deafen or disconnect)

Both feed the escalation ladder, so repeat offenders get harsher penalties.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from raidshield.events import Action, DeleteContent, MessagePosted, Violation, VoiceActionObserved
from raidshield.utils.logging import get_logger
from raidshield.utils.policy import PenaltyAction
from raidshield.utils.windows import EventCategory

if TYPE_CHECKING:
    from raidshield.engine import ShieldEngine
    from raidshield.utils.escalation import EscalationResult

logger = get_logger(__name__)

SPAM_SEVERITY = 6
VOICE_ABUSE_SEVERITY = 8

# Voice actions that count towards abuse; disconnects only when aimed at someone else
ABUSIVE_VOICE_ACTIONS = frozenset({"mute", "deafen", "disconnect"})


class AntiSpam:
    """Message flood and voice abuse detection."""

    def __init__(self, engine: ShieldEngine) -> None:
        self.engine = engine
        logger.info("AntiSpam handler initialized")

    def _is_abusive(self, event: VoiceActionObserved) -> bool:
        if event.action_kind not in ABUSIVE_VOICE_ACTIONS:
            return False
        if event.action_kind == "disconnect":
            return event.target != event.executor
        return True

    async def on_message_posted(self, event: MessagePosted) -> None:
        """Count the message and escalate when the subject floods."""
        policy = self.engine.get_policy(event.community)
        if not policy.antispam_enabled:
            return

        count = self.engine.windows.record(
            event.community,
            event.subject,
            EventCategory.MESSAGE,
            event.timestamp,
            horizon=policy.message_window,
        )
        if count < policy.message_threshold:
            return

        logger.warning(
            "Spam detected: %s in %s (%d messages in %ss)",
            event.subject, event.community, count, policy.message_window,
        )
        result = self.engine.escalation.register_violation(
            event.community, event.subject, event.timestamp, policy, privileged=event.privileged
        )
        if result.skipped:
            return

        side_actions: list[Action] = []
        if event.message_id:
            side_actions.append(DeleteContent(event.community, event.message_id, event.subject))

        self._punish(
            event.community,
            event.subject,
            result,
            category="spam",
            severity=SPAM_SEVERITY,
            reason="Message spam",
            evidence=f"{count} messages in {policy.message_window}s",
            timestamp=event.timestamp,
            side_actions=side_actions,
            stat="spam_detected",
        )

    async def on_voice_action_observed(self, event: VoiceActionObserved) -> None:
        """Count moderation-level voice actions per executor."""
        policy = self.engine.get_policy(event.community)
        if not policy.voice_enabled or not self._is_abusive(event):
            return

        count = self.engine.windows.record(
            event.community,
            event.executor,
            EventCategory.VOICE,
            event.timestamp,
            horizon=policy.voice_window,
        )
        if count < policy.voice_threshold:
            return

        logger.warning(
            "Voice abuse detected: %s in %s (%d actions in %ss)",
            event.executor, event.community, count, policy.voice_window,
        )
        result = self.engine.escalation.register_violation(
            event.community, event.executor, event.timestamp, policy, privileged=event.privileged
        )
        if result.skipped:
            return

        self._punish(
            event.community,
            event.executor,
            result,
            category="voice_abuse",
            severity=VOICE_ABUSE_SEVERITY,
            reason="Voice channel abuse",
            evidence=f"{event.action_kind} x{count} in {policy.voice_window}s",
            timestamp=event.timestamp,
            side_actions=[],
            stat="voice_abuse_detected",
        )

    def _punish(
        self,
        community: str,
        subject: str,
        result: EscalationResult,
        category: str,
        severity: int,
        reason: str,
        evidence: str,
        timestamp: float,
        side_actions: list[Action],
        stat: str,
    ) -> None:
        tier = result.tier
        action: Optional[Action] = self.engine.penalty_action(
            tier, community, subject, f"{reason} (violation {result.count})"
        )

        stats = [stat]
        if tier.action is PenaltyAction.WARN:
            stats.append("warnings_issued")

        side_actions.append(self.engine.notice(
            community,
            "Violation detected",
            f"{reason}: {tier.label}",
            severity=severity,
            subject=subject,
            violation_count=result.count,
            evidence=evidence,
        ))

        self.engine.enforce(
            Violation(
                community=community,
                subject=subject,
                category=category,
                severity=severity,
                reason=reason,
                action=tier.action.value,
                timestamp=timestamp,
                evidence=evidence,
            ),
            action,
            side_actions=side_actions,
            stats=stats,
            escalated=True,
        )


def prepare(engine: ShieldEngine) -> None:
    """Prepare the handler for loading."""
    engine.add_handler(AntiSpam(engine))
