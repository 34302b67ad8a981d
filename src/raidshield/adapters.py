"""
Platform adapter that only records and logs actions.

Used for dry runs (replaying captured events to see what the engine
would do) and as the adapter in tests.
"""

from __future__ import annotations

from typing import Optional

from raidshield.errors import ActionDenied, ActionFailed
from raidshield.events import Action, AssignRole, DeleteContent, Kick, Notify, Timeout
from raidshield.utils.logging import get_logger

logger = get_logger(__name__)


class LoggingAdapter:
    """
    Records every action instead of calling a platform.

    Attributes:
        actions: Actions executed successfully, in order
        protected: Subjects the "platform" refuses to act on
        failing: Action kinds that fail (e.g. {"kick"})
    """

    def __init__(
        self,
        protected: Optional[set[str]] = None,
        failing: Optional[set[str]] = None,
    ) -> None:
        self.actions: list[Action] = []
        self.protected = set(protected or ())
        self.failing = set(failing or ())

    async def execute(self, action: Action) -> None:
        subject = getattr(action, "subject", None)
        if action.kind in self.failing:
            raise ActionFailed(action.kind, subject, "simulated platform failure")
        if subject in self.protected and not isinstance(action, (Notify, DeleteContent)):
            raise ActionDenied(subject, "protected by platform")

        self.actions.append(action)
        if isinstance(action, Timeout):
            logger.info("[dry-run] timeout %s for %ss: %s", action.subject, action.duration, action.reason)
        elif isinstance(action, Kick):
            logger.info("[dry-run] kick %s: %s", action.subject, action.reason)
        elif isinstance(action, AssignRole):
            logger.info("[dry-run] assign role %s to %s", action.role_id, action.subject)
        elif isinstance(action, DeleteContent):
            logger.info("[dry-run] delete %s", action.content_ref)
        elif isinstance(action, Notify):
            logger.info("[dry-run] notify %s: %s", action.channel_ref, action.message.get("title"))

    def of_kind(self, kind: str) -> list[Action]:
        """Recorded actions of one kind."""
        return [a for a in self.actions if a.kind == kind]
