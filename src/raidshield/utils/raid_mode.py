"""
Community-wide raid mode.

Raid mode is switched on manually or automatically by a join burst.
While it is on, suspicious joins receive the community's raid action.
It switches off manually or when its duration runs out; either way the
community's join window is cleared so detection starts fresh.

Enable and disable are idempotent and serialized per community. Only the
call that actually changes state fires the enter/exit callbacks, so an
expiry racing a manual disable produces a single exit notification.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol

from raidshield.utils.keyed_lock import KeyedLock
from raidshield.utils.logging import get_logger
from raidshield.utils.windows import COMMUNITY_WIDE, EventCategory

if TYPE_CHECKING:
    from raidshield.utils.windows import SlidingWindowCounter

logger = get_logger(__name__)


class RaidTrigger(Enum):
    """What switched raid mode on or off."""
    MANUAL = "manual"
    AUTO = "auto"


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


# (delay_seconds, callback) -> handle
Scheduler = Callable[[float, Callable[[], None]], Cancellable]


@dataclass
class RaidState:
    """Raid mode state for one active community."""
    community: str
    trigger: RaidTrigger
    activated_at: float
    expires_at: Optional[float] = None
    activation_id: int = 0
    timer: Optional[Cancellable] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "active": True,
            "trigger": self.trigger.value,
            "activated_at": self.activated_at,
            "expires_at": self.expires_at,
        }


class RaidModeController:
    """
    Per-community raid mode state machine.

    Features:
    - Manual and automatic activation
    - Cancellable auto-disable timer stored with the state
    - Join window reset on exit
    - Enter/exit callbacks for notifications
    """

    def __init__(
        self,
        windows: Optional[SlidingWindowCounter] = None,
        scheduler: Optional[Scheduler] = None,
        on_enter: Optional[Callable[[RaidState, str], None]] = None,
        on_exit: Optional[Callable[[RaidState, RaidTrigger, str], None]] = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            windows: Window counter whose join windows are cleared on exit
            scheduler: Schedules the auto-disable callback
            on_enter: Called with (state, reason) after activation
            on_exit: Called with (state, trigger, reason) after deactivation
        """
        self.windows = windows
        self.scheduler = scheduler
        self.on_enter = on_enter
        self.on_exit = on_exit
        self._states: dict[str, RaidState] = {}
        self._locks = KeyedLock()
        self._ids = itertools.count(1)

    def is_active(self, community: str) -> bool:
        return community in self._states

    def get_state(self, community: str) -> Optional[RaidState]:
        return self._states.get(community)

    def active_communities(self) -> list[str]:
        return sorted(self._states)

    def enable(
        self,
        community: str,
        trigger: RaidTrigger,
        now: float,
        duration: float = 0.0,
        reason: str = "",
    ) -> bool:
        """
        Switch raid mode on.

        Args:
            community: Community ID
            trigger: Manual or automatic activation
            now: Current time in seconds
            duration: Seconds until automatic disable (0 = never)
            reason: Free-text reason for notifications

        Returns:
            bool: True if raid mode was off and is now on
        """
        with self._locks.hold(community):
            if community in self._states:
                return False

            state = RaidState(
                community=community,
                trigger=trigger,
                activated_at=now,
                expires_at=now + duration if duration > 0 else None,
                activation_id=next(self._ids),
            )
            if duration > 0 and self.scheduler is not None:
                activation_id = state.activation_id
                state.timer = self.scheduler(
                    duration, lambda: self._expire(community, activation_id)
                )
            self._states[community] = state

        logger.warning(
            "Raid mode ENABLED in %s (trigger=%s, duration=%ss)",
            community, trigger.value, duration or "none",
        )
        if self.on_enter:
            self.on_enter(state, reason)
        return True

    def disable(
        self,
        community: str,
        trigger: RaidTrigger = RaidTrigger.MANUAL,
        reason: str = "",
        activation_id: Optional[int] = None,
    ) -> bool:
        """
        Switch raid mode off.

        Args:
            community: Community ID
            trigger: Manual disable or automatic expiry
            reason: Free-text reason for notifications
            activation_id: Only disable this activation (used by timers)

        Returns:
            bool: True if raid mode was on and is now off
        """
        with self._locks.hold(community):
            state = self._states.get(community)
            if state is None:
                return False
            if activation_id is not None and state.activation_id != activation_id:
                return False

            del self._states[community]
            if state.timer is not None:
                state.timer.cancel()
            state.timer = None

            if self.windows is not None:
                self.windows.clear(community, COMMUNITY_WIDE, EventCategory.JOIN)

        logger.warning("Raid mode DISABLED in %s (trigger=%s)", community, trigger.value)
        if self.on_exit:
            self.on_exit(state, trigger, reason)
        return True

    def _expire(self, community: str, activation_id: int) -> None:
        """Timer callback for automatic disable."""
        self.disable(community, RaidTrigger.AUTO, "duration elapsed", activation_id)

    def expire_due(self, now: float) -> int:
        """
        Disable every activation whose expiry time has passed.

        Covers timers that never fired, e.g. when no scheduler is set.

        Returns:
            int: Number of communities disabled
        """
        disabled = 0
        for community, state in list(self._states.items()):
            if state.expires_at is not None and state.expires_at <= now:
                if self.disable(community, RaidTrigger.AUTO, "duration elapsed", state.activation_id):
                    disabled += 1
        return disabled

    def cancel_all(self) -> None:
        """Cancel pending timers without changing state (shutdown)."""
        for state in list(self._states.values()):
            if state.timer is not None:
                state.timer.cancel()
                state.timer = None
