"""
Detection components and support utilities for the engine.

Provides:
- logging: Logging setup with secret filtering
- keyed_lock: Per-key mutual exclusion
- windows: Sliding window event counters
- threat_matcher: Content and URL threat checks
- suspicion: Join-time suspicion scoring
- escalation: Escalating penalties for repeat offenders
- raid_mode: Community-wide raid mode state machine
- policy: Per-community policy values and store
- database: SQLite persistence
"""

from raidshield.utils.logging import get_logger, setup_logging
from raidshield.utils.keyed_lock import KeyedLock
from raidshield.utils.windows import EventCategory, SlidingWindowCounter
from raidshield.utils.threat_matcher import ThreatKind, ThreatMatcher, ThreatReport
from raidshield.utils.suspicion import SuspicionResult, score_join
from raidshield.utils.escalation import EscalationManager, EscalationResult
from raidshield.utils.raid_mode import RaidModeController, RaidTrigger
from raidshield.utils.policy import CommunityPolicy, PolicyStore, merge_policy, resolve_policy
from raidshield.utils.database import DatabaseManager, get_database

__all__ = [
    "get_logger",
    "setup_logging",
    "KeyedLock",
    "EventCategory",
    "SlidingWindowCounter",
    "ThreatKind",
    "ThreatMatcher",
    "ThreatReport",
    "SuspicionResult",
    "score_join",
    "EscalationManager",
    "EscalationResult",
    "RaidModeController",
    "RaidTrigger",
    "CommunityPolicy",
    "PolicyStore",
    "merge_policy",
    "resolve_policy",
    "DatabaseManager",
    "get_database",
]
