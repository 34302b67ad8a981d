"""
Event and action types exchanged with the platform adapter.

Inbound events are produced by a platform adapter and dispatched by the
engine to handlers. Outbound actions are what the engine asks the
adapter to carry out. Times are POSIX seconds; durations are seconds.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Protocol, Union

# ==================== Inbound Events ====================


@dataclass(frozen=True)
class MessagePosted:
    """A chat message was posted."""
    event_name: ClassVar[str] = "message_posted"

    community: str
    subject: str
    content: str
    timestamp: float = field(default_factory=time.time)
    message_id: Optional[str] = None
    channel: Optional[str] = None
    privileged: bool = False


@dataclass(frozen=True)
class MemberJoined:
    """A member joined the community."""
    event_name: ClassVar[str] = "member_joined"

    community: str
    subject: str
    account_created_at: Optional[float] = None
    has_avatar: Optional[bool] = None
    username: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class VoiceActionObserved:
    """A moderator-level voice action, e.g. server mute or disconnect."""
    event_name: ClassVar[str] = "voice_action_observed"

    community: str
    executor: str
    target: str
    action_kind: str  # mute, deafen, disconnect, move, unmute, undeafen
    timestamp: float = field(default_factory=time.time)
    privileged: bool = False


@dataclass(frozen=True)
class LinkSubmitted:
    """One or more links were submitted."""
    event_name: ClassVar[str] = "link_submitted"

    community: str
    subject: str
    urls: tuple[str, ...]
    timestamp: float = field(default_factory=time.time)
    message_id: Optional[str] = None
    content: str = ""
    privileged: bool = False


Event = Union[MessagePosted, MemberJoined, VoiceActionObserved, LinkSubmitted]

EVENT_TYPES: dict[str, type] = {
    cls.event_name: cls
    for cls in (MessagePosted, MemberJoined, VoiceActionObserved, LinkSubmitted)
}


def event_from_dict(data: dict[str, Any]) -> Event:
    """
    Build an event from a plain dict with a ``type`` key.

    Args:
        data: e.g. ``{"type": "message_posted", "community": "1", ...}``

    Returns:
        Event: The typed event

    Raises:
        ValueError: If the type is unknown or fields are missing
    """
    payload = dict(data)
    event_type = payload.pop("type", None)
    cls = EVENT_TYPES.get(str(event_type))
    if cls is None:
        raise ValueError(f"Unknown event type: {event_type!r}")
    if cls is LinkSubmitted and "urls" in payload:
        payload["urls"] = tuple(payload["urls"])
    try:
        return cls(**payload)
    except TypeError as e:
        raise ValueError(f"Invalid {event_type} event: {e}") from e


# ==================== Outbound Actions ====================


@dataclass(frozen=True)
class Timeout:
    community: str
    subject: str
    duration: float
    reason: str = ""
    kind: ClassVar[str] = "timeout"


@dataclass(frozen=True)
class Kick:
    community: str
    subject: str
    reason: str = ""
    kind: ClassVar[str] = "kick"


@dataclass(frozen=True)
class AssignRole:
    community: str
    subject: str
    role_id: str
    reason: str = ""
    kind: ClassVar[str] = "assign_role"


@dataclass(frozen=True)
class DeleteContent:
    community: str
    content_ref: str
    subject: Optional[str] = None
    kind: ClassVar[str] = "delete_content"


@dataclass(frozen=True)
class Notify:
    """A structured notice; rendering is up to the adapter."""
    community: str
    channel_ref: Optional[str]
    message: dict[str, Any]
    subject: Optional[str] = None
    kind: ClassVar[str] = "notify"


Action = Union[Timeout, Kick, AssignRole, DeleteContent, Notify]


# ==================== Records ====================


@dataclass(frozen=True)
class Violation:
    """An immutable fact about one detected violation."""
    community: str
    subject: str
    category: str  # spam, voice_abuse, automod, link, suspicious_join, raid_join
    severity: int
    reason: str
    action: str
    timestamp: float
    evidence: Optional[str] = None


# ==================== Collaborators ====================


class PlatformAdapter(Protocol):
    """
    Carries out actions on the chat platform.

    ``execute`` raises ``ActionDenied`` when the platform refuses to act
    on a privileged target and ``ActionFailed`` for any other failure.
    """

    async def execute(self, action: Action) -> None: ...
