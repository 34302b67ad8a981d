"""
Link filter handler.

Checks explicitly submitted links against the domain blocklist,
phishing patterns and URL shorteners, and looks for scam wording
around them. Matching submissions are deleted; scam links can also
earn a timeout.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from raidshield.events import Action, DeleteContent, LinkSubmitted, Timeout, Violation
from raidshield.utils.logging import get_logger

if TYPE_CHECKING:
    from raidshield.engine import ShieldEngine

logger = get_logger(__name__)

SCAM_SEVERITY = 8


class LinkFilter:
    """Malicious link detection."""

    def __init__(self, engine: ShieldEngine) -> None:
        self.engine = engine
        logger.info("LinkFilter handler initialized")

    async def on_link_submitted(self, event: LinkSubmitted) -> None:
        policy = self.engine.get_policy(event.community)
        if not policy.linkfilter_enabled:
            return
        if self.engine.is_privileged(policy, event.subject, event.privileged):
            return

        report = self.engine.matcher.analyze_links(event.community, event.urls, event.content, policy)
        if not report.flagged:
            return

        logger.warning(
            "Malicious link from %s in %s: %s", event.subject, event.community, report.summary()
        )

        action: Optional[Action] = None
        if report.severity >= SCAM_SEVERITY and policy.auto_timeout_scam:
            action = Timeout(
                event.community,
                event.subject,
                policy.scam_timeout,
                f"Scam link: {report.summary()}",
            )

        side_actions: list[Action] = []
        if event.message_id:
            side_actions.append(DeleteContent(event.community, event.message_id, event.subject))
        side_actions.append(self.engine.notice(
            event.community,
            "Malicious link blocked",
            report.summary(),
            severity=report.severity,
            subject=event.subject,
            urls=list(event.urls),
        ))

        stats = ["scam_blocked"]
        if action is None:
            stats.append("warnings_issued")

        self.engine.enforce(
            Violation(
                community=event.community,
                subject=event.subject,
                category="link",
                severity=report.severity,
                reason=report.summary(),
                action="warn" if action is None else action.kind,
                timestamp=event.timestamp,
                evidence=" ".join(event.urls)[:500],
            ),
            action,
            side_actions=side_actions,
            stats=stats,
        )


def prepare(engine: ShieldEngine) -> None:
    """Prepare the handler for loading."""
    engine.add_handler(LinkFilter(engine))
