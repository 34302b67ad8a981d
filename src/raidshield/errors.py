"""
Exceptions raised across the engine.

Missing community policies are not an error: the policy store quietly
creates a default record instead.
"""

from __future__ import annotations


class ShieldError(Exception):
    """Base class for engine errors."""


class ActionDenied(ShieldError):
    """The target of an enforcement action is privileged or exempt."""

    def __init__(self, subject: str, reason: str = "privileged") -> None:
        super().__init__(f"action against {subject} denied: {reason}")
        self.subject = subject
        self.reason = reason


class ActionFailed(ShieldError):
    """A platform adapter could not carry out an enforcement action."""

    def __init__(self, action: str, subject: str | None, detail: str = "") -> None:
        message = f"{action} against {subject or 'content'} failed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.action = action
        self.subject = subject
        self.detail = detail


class InvalidContent(ShieldError):
    """A URL (or other inspected content) could not be parsed."""

    def __init__(self, content: str, detail: str = "") -> None:
        super().__init__(f"invalid content {content!r}" + (f": {detail}" if detail else ""))
        self.content = content
        self.detail = detail
