"""
Automatic moderation handler.

Runs the threat matcher over every message and acts on the combined
verdict. All fired checks are reported together with the highest
severity:
- Severity 9 and above: 5 minute timeout and delete
- Scam links (severity 8+) with auto timeout on: scam timeout and delete
- Anything else: delete and warn
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from raidshield.events import Action, DeleteContent, MessagePosted, Timeout, Violation
from raidshield.utils.logging import get_logger
from raidshield.utils.threat_matcher import ThreatKind

if TYPE_CHECKING:
    from raidshield.engine import ShieldEngine
    from raidshield.utils.policy import CommunityPolicy
    from raidshield.utils.threat_matcher import ThreatReport

logger = get_logger(__name__)

SEVERE_SEVERITY = 9
SEVERE_TIMEOUT = 300.0
SCAM_SEVERITY = 8

URL_KINDS = frozenset({
    ThreatKind.BLOCKLISTED,
    ThreatKind.PHISHING,
    ThreatKind.SHORTENER,
    ThreatKind.SCAM_KEYWORD,
    ThreatKind.INVALID_URL,
})


def choose_action(
    report: ThreatReport,
    policy: CommunityPolicy,
    community: str,
    subject: str,
) -> Optional[Action]:
    """
    Pick the enforcement action for a flagged message.

    Args:
        report: Flagged threat report
        policy: Community policy
        community: Community ID
        subject: Message author

    Returns:
        Optional[Action]: A timeout, or None for a warning
    """
    reason = f"AutoMod: {report.summary()}"
    scam = any(
        r.kind in URL_KINDS and r.severity >= SCAM_SEVERITY for r in report.reasons
    )
    if scam and policy.auto_timeout_scam:
        return Timeout(community, subject, max(SEVERE_TIMEOUT, policy.scam_timeout), reason)
    if report.severity >= SEVERE_SEVERITY:
        return Timeout(community, subject, SEVERE_TIMEOUT, reason)
    return None


class AutoMod:
    """Content moderation over chat messages."""

    def __init__(self, engine: ShieldEngine) -> None:
        self.engine = engine
        logger.info("AutoMod handler initialized")

    async def on_message_posted(self, event: MessagePosted) -> None:
        policy = self.engine.get_policy(event.community)
        if self.engine.is_privileged(policy, event.subject, event.privileged):
            return
        if not policy.automod_enabled and not policy.linkfilter_enabled:
            return

        # Fast repeats belong to the flood detector
        burst_window = 0.0
        if self.engine.config.enable_antispam and policy.antispam_enabled:
            burst_window = policy.message_window

        report = self.engine.matcher.analyze_message(
            event.community, event.subject, event.content, event.timestamp, policy, burst_window
        )
        if not report.flagged:
            return

        logger.warning(
            "AutoMod: %s in %s (severity %d): %s",
            event.subject, event.community, report.severity, report.summary(),
        )

        action = choose_action(report, policy, event.community, event.subject)
        stats = ["automod_triggers"]
        if any(kind in URL_KINDS for kind in report.kinds):
            stats.append("scam_blocked")
        if action is None:
            stats.append("warnings_issued")

        side_actions: list[Action] = []
        if event.message_id:
            side_actions.append(DeleteContent(event.community, event.message_id, event.subject))
        side_actions.append(self.engine.notice(
            event.community,
            "Automatic moderation",
            "Message removed" if action is None else f"Message removed, {action.kind} applied",
            severity=report.severity,
            subject=event.subject,
            violations=[kind.value for kind in report.kinds],
            reasons=report.summary(),
            channel=event.channel,
        ))

        self.engine.enforce(
            Violation(
                community=event.community,
                subject=event.subject,
                category="automod",
                severity=report.severity,
                reason=report.summary(),
                action="warn" if action is None else action.kind,
                timestamp=event.timestamp,
                evidence=event.content[:500],
            ),
            action,
            side_actions=side_actions,
            stats=stats,
        )


def prepare(engine: ShieldEngine) -> None:
    """Prepare the handler for loading."""
    engine.add_handler(AutoMod(engine))
