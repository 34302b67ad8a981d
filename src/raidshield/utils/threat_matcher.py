"""
Content and URL threat matching.

Provides independent checks for:
- Profanity (exact and obfuscated, e.g. "a_m_k")
- Excessive caps
- Emoji density (custom and Unicode)
- Mention density and @everyone/@here broadcasts
- Duplicate messages from the same subject
- Zalgo text (combining-mark spam)
- Sensitive data (auth tokens, card numbers, credentials)
- Malicious URLs (blocklist, phishing patterns, shorteners, scam wording)

Each check is independent; ``analyze_message`` runs every enabled check
and reports all fired reasons with the maximum severity.
"""

from __future__ import annotations

import re
import threading
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional
from urllib.parse import urlsplit

from raidshield.errors import InvalidContent
from raidshield.utils.keyed_lock import KeyedLock
from raidshield.utils.logging import get_logger

if TYPE_CHECKING:
    from raidshield.utils.policy import CommunityPolicy

logger = get_logger(__name__)


class ThreatKind(Enum):
    """Kinds of threat the matcher can report."""
    PROFANITY = "profanity"
    CAPS = "caps"
    EMOJI = "emoji_spam"
    MENTION = "mention_spam"
    DUPLICATE = "duplicate"
    ZALGO = "zalgo"
    SENSITIVE = "sensitive_data"
    BLOCKLISTED = "blocklisted_domain"
    PHISHING = "phishing"
    SHORTENER = "url_shortener"
    SCAM_KEYWORD = "scam_keyword"
    INVALID_URL = "invalid_url"


MAX_SEVERITY = 10

SEVERITY: dict[ThreatKind, int] = {
    ThreatKind.PROFANITY: 8,
    ThreatKind.CAPS: 5,
    ThreatKind.EMOJI: 6,
    ThreatKind.MENTION: 9,
    ThreatKind.DUPLICATE: 7,
    ThreatKind.ZALGO: 8,
    ThreatKind.SENSITIVE: MAX_SEVERITY,
    ThreatKind.BLOCKLISTED: MAX_SEVERITY,
    ThreatKind.PHISHING: 9,
    ThreatKind.SHORTENER: 5,
    ThreatKind.SCAM_KEYWORD: 8,
    ThreatKind.INVALID_URL: MAX_SEVERITY,
}

SYSTEM_BLOCK_REASON = "known scam/phishing domain"

DEFAULT_BLOCKLIST: tuple[str, ...] = (
    # Fake Discord
    "discord-nitro.com", "discordnitro.com", "discord-gift.com", "discordgift.ru",
    "discordapp.ru", "discordapp.info", "discord-app.com", "discrod.com",
    "discordapp.click", "discord-give.com", "free-nitro.com",
    # Fake Steam
    "steamcommunitv.com", "steamcommunity.ru", "steamcommunity-login.com",
    "steamcommunlty.com", "steampowered.ru", "steamcommunity.us",
    # IP loggers
    "grabify.link", "iplogger.org", "iplogger.com", "2no.co", "yip.su",
    "blasze.tk", "blasze.com",
    # Shorteners abused for phishing
    "cutt.ly", "bit.do", "tiny.cc",
)

DEFAULT_PROFANITY: tuple[str, ...] = (
    "amk", "amq", "aq", "orospu", "piç", "sik", "yarrak", "göt", "am",
    "fuck", "shit", "bitch", "damn",
)

URL_SHORTENERS: frozenset[str] = frozenset({
    "bit.ly", "tinyurl.com", "goo.gl", "t.co", "ow.ly",
    "short.link", "cutt.ly", "rebrand.ly", "is.gd", "buff.ly",
})

PHISHING_PATTERNS: list[tuple[str, str]] = [
    (r"disc[o0]r?d[-.]?(?:app|nitro|gift)", "fake_discord"),
    (r"steam[-.]?commu?nit[yi]", "fake_steam"),
    (r"free[-.]?(?:nitro|discord|steam)", "free_offer"),
    (r"nitro[-.]?(?:free|gift|giveaway)", "nitro_bait"),
    (r"click[-.]?here[-.]?(?:now|fast|urgent)", "urgency_bait"),
]

SCAM_KEYWORDS: tuple[str, ...] = (
    "free nitro", "free discord nitro", "claim nitro", "get nitro",
    "@everyone", "steam gift", "free steam", "click here now",
    "limited time", "expires soon", "verify account", "urgent action",
    "congratulations you won", "claim prize", "free robux", "free vbucks",
)

PASSWORD_KEYWORDS: tuple[str, ...] = ("password", "şifre", "pass:", "pw:")

CAPS_MIN_LENGTH = 10
ZALGO_LIMIT = 5
DUPLICATE_HORIZON = 60.0
DUPLICATE_HISTORY_MAX = 20


@dataclass(frozen=True)
class ThreatReason:
    """One fired check."""
    kind: ThreatKind
    severity: int
    detail: str = ""

    @property
    def text(self) -> str:
        if self.detail:
            return f"{self.kind.value}: {self.detail}"
        return self.kind.value


@dataclass
class ThreatReport:
    """All checks that fired for one event."""
    reasons: list[ThreatReason] = field(default_factory=list)

    @property
    def severity(self) -> int:
        """Highest severity among fired checks (0 when clean)."""
        return max((r.severity for r in self.reasons), default=0)

    @property
    def flagged(self) -> bool:
        return bool(self.reasons)

    @property
    def kinds(self) -> list[ThreatKind]:
        return [r.kind for r in self.reasons]

    def summary(self) -> str:
        return "; ".join(r.text for r in self.reasons)

    def add(self, kind: ThreatKind, detail: str = "") -> None:
        self.reasons.append(ThreatReason(kind, SEVERITY[kind], detail))


@dataclass
class UrlCheckResult:
    """Result of checking a single URL."""
    url: str
    domain: str
    threats: list[ThreatReason] = field(default_factory=list)
    matched_domain: Optional[str] = None

    @property
    def safe(self) -> bool:
        return not self.threats

    @property
    def severity(self) -> int:
        return max((t.severity for t in self.threats), default=0)

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "domain": self.domain,
            "safe": self.safe,
            "matched_domain": self.matched_domain,
            "threats": [t.text for t in self.threats],
            "severity": self.severity,
        }


@dataclass(frozen=True)
class BlockedDomain:
    """A blocklist entry."""
    domain: str
    reason: str = ""
    origin: str = "user"  # "system" for seeded defaults
    community: Optional[str] = None  # None for global entries
    added_by: str = ""


class ThreatMatcher:
    """
    Pattern and list matcher for chat content and URLs.

    Features:
    - Global and per-community domain blocklist
    - Maintained profanity list with obfuscation handling
    - Per-subject duplicate message history
    - Independent, order-insensitive checks
    """

    URL_PATTERN = re.compile(r"https?://[^\s<>]+", re.IGNORECASE)
    CUSTOM_EMOJI_PATTERN = re.compile(r"<a?:\w+:\d+>")
    UNICODE_EMOJI_PATTERN = re.compile(
        "[\U0001F600-\U0001F64F\U0001F300-\U0001F5FF\U0001F680-\U0001F6FF"
        "\u2600-\u26FF\u2700-\u27BF]"
    )
    USER_MENTION_PATTERN = re.compile(r"<@!?\d+>")
    ROLE_MENTION_PATTERN = re.compile(r"<@&\d+>")
    BROADCAST_PATTERN = re.compile(r"@(?:everyone|here)\b")
    ZALGO_PATTERN = re.compile(r"[\u0300-\u036f\u0489]")

    TOKEN_PATTERN = re.compile(r"[MN][A-Za-z\d]{23}\.[\w-]{6}\.[\w-]{27}")
    CARD_PATTERN = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b")
    EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

    def __init__(
        self,
        domains: Optional[Iterable[BlockedDomain]] = None,
        words: Optional[Iterable[str]] = None,
    ) -> None:
        """
        Initialize the matcher.

        Args:
            domains: Initial blocklist (defaults to the built-in list)
            words: Initial profanity list (defaults to the built-in list)
        """
        if domains is None:
            domains = [
                BlockedDomain(d, SYSTEM_BLOCK_REASON, "system", added_by="system")
                for d in DEFAULT_BLOCKLIST
            ]
        self._lists_lock = threading.Lock()
        self._domains: dict[tuple[str, str], BlockedDomain] = {}
        self._words: frozenset[str] = frozenset()
        self.load_domains(domains)
        self.load_words(DEFAULT_PROFANITY if words is None else words)

        self._history: dict[tuple[str, str], deque[tuple[str, float]]] = {}
        self._history_locks = KeyedLock()
        self._compile_patterns()

        logger.info(
            "ThreatMatcher initialized: %d blocked domains, %d words",
            len(self._domains), len(self._words),
        )

    def _compile_patterns(self) -> None:
        """Compile phishing regexes."""
        self._phishing: list[tuple[re.Pattern, str]] = []
        for pattern, name in PHISHING_PATTERNS:
            try:
                self._phishing.append((re.compile(pattern, re.IGNORECASE), name))
            except re.error as e:
                logger.error("Failed to compile pattern %s: %s", name, e)

    # ==================== Lists ====================

    def load_domains(self, domains: Iterable[BlockedDomain]) -> None:
        """Replace the blocklist."""
        table = {((d.community or ""), d.domain.lower()): d for d in domains}
        with self._lists_lock:
            self._domains = table

    def add_domain(
        self,
        domain: str,
        reason: str = "",
        community: Optional[str] = None,
        added_by: str = "",
        origin: str = "user",
    ) -> bool:
        """
        Add a domain to the blocklist.

        Args:
            domain: Domain to block
            reason: Why the domain is blocked
            community: Community scope (None for global)
            added_by: Who added it
            origin: "user" or "system"

        Returns:
            bool: False if the domain was already blocked in that scope
        """
        domain = domain.strip().lower()
        key = (community or "", domain)
        with self._lists_lock:
            if key in self._domains:
                return False
            table = dict(self._domains)
            table[key] = BlockedDomain(domain, reason, origin, community, added_by)
            self._domains = table
        logger.info("Blocked domain added: %s (scope=%s)", domain, community or "global")
        return True

    def remove_domain(self, domain: str, community: Optional[str] = None) -> bool:
        """Remove a domain from the blocklist scope it was added to."""
        key = (community or "", domain.strip().lower())
        with self._lists_lock:
            if key not in self._domains:
                return False
            table = dict(self._domains)
            removed = table.pop(key)
            self._domains = table
        if removed.origin == "system":
            logger.warning("System blocklist entry removed: %s", removed.domain)
        else:
            logger.info("Blocked domain removed: %s", removed.domain)
        return True

    def list_domains(self, community: Optional[str] = None) -> list[BlockedDomain]:
        """Global entries plus, when given, the community's own entries."""
        scopes = {"", community or ""}
        return sorted(
            (entry for (scope, _), entry in self._domains.items() if scope in scopes),
            key=lambda entry: entry.domain,
        )

    def load_words(self, words: Iterable[str]) -> None:
        """Replace the profanity list."""
        cleaned = frozenset(w.strip().lower() for w in words if w and w.strip())
        with self._lists_lock:
            self._words = cleaned

    def add_word(self, word: str) -> bool:
        """Add a profanity word. Returns False if it was already listed."""
        word = word.strip().lower()
        if not word:
            return False
        with self._lists_lock:
            if word in self._words:
                return False
            self._words = self._words | {word}
        return True

    def remove_word(self, word: str) -> bool:
        """Remove a profanity word. Returns False if it was not listed."""
        word = word.strip().lower()
        with self._lists_lock:
            if word not in self._words:
                return False
            self._words = self._words - {word}
        return True

    def list_words(self) -> list[str]:
        return sorted(self._words)

    # ==================== Content Checks ====================

    def check_profanity(self, content: str) -> list[str]:
        """
        Find profane tokens.

        A token matches if it is a listed word, or if its letters-only
        projection contains a listed word.

        Args:
            content: Message content

        Returns:
            list[str]: Matched tokens, deduplicated, in order of appearance
        """
        words = self._words
        matched: list[str] = []
        for token in content.lower().split():
            if token in matched:
                continue
            if token in words:
                matched.append(token)
                continue
            letters = "".join(c for c in token if c.isalpha())
            if letters and any(word in letters for word in words):
                matched.append(token)
        return matched

    def _strip_markup(self, content: str) -> str:
        """Remove URLs, mentions and custom emoji before ratio checks."""
        text = self.URL_PATTERN.sub("", content)
        text = self.CUSTOM_EMOJI_PATTERN.sub("", text)
        text = self.USER_MENTION_PATTERN.sub("", text)
        text = self.ROLE_MENTION_PATTERN.sub("", text)
        return text.strip()

    def check_caps(self, content: str, threshold: int) -> tuple[bool, int]:
        """
        Check for excessive capital letters.

        Args:
            content: Message content
            threshold: Percentage of uppercase letters that triggers

        Returns:
            tuple: (is_caps_spam, caps_percentage)
        """
        text = self._strip_markup(content)
        if len(text) < CAPS_MIN_LENGTH:
            return False, 0
        letters = [c for c in text if c.isalpha()]
        if not letters:
            return False, 0
        upper = sum(1 for c in letters if c.isupper())
        percentage = round(upper / len(letters) * 100)
        return percentage >= threshold, percentage

    def count_emoji(self, content: str) -> int:
        return (
            len(self.CUSTOM_EMOJI_PATTERN.findall(content))
            + len(self.UNICODE_EMOJI_PATTERN.findall(content))
        )

    def check_emoji(self, content: str, limit: int) -> tuple[bool, int]:
        """Returns (is_emoji_spam, emoji_count)."""
        count = self.count_emoji(content)
        return count > limit, count

    def check_mentions(self, content: str, limit: int) -> tuple[bool, int, bool]:
        """
        Check mention density.

        Returns:
            tuple: (is_mention_spam, mention_count, has_broadcast)
        """
        count = (
            len(self.USER_MENTION_PATTERN.findall(content))
            + len(self.ROLE_MENTION_PATTERN.findall(content))
        )
        broadcast = bool(self.BROADCAST_PATTERN.search(content))
        return count > limit or broadcast, count, broadcast

    def check_duplicate(
        self,
        community: str,
        subject: str,
        content: str,
        now: float,
        limit: int,
        burst_window: float = 0.0,
    ) -> tuple[bool, int]:
        """
        Record a message and check it against the subject's recent history.

        Copies sent within ``burst_window`` seconds of this message are
        left to the message rate check and do not count towards the limit.

        Args:
            community: Community ID
            subject: Author ID
            content: Message content
            now: Message time in seconds
            limit: Earlier identical messages that trigger
            burst_window: Span owned by the flood detector (0 counts every copy)

        Returns:
            tuple: (is_duplicate_spam, earlier_identical_count)
        """
        key = (community, subject)
        with self._history_locks.hold(key):
            history = deque(
                (text, t) for text, t in self._history.get(key, ())
                if now - t < DUPLICATE_HORIZON
            )
            same = [t for text, t in history if text == content]
            history.append((content, now))
            while len(history) > DUPLICATE_HISTORY_MAX:
                history.popleft()
            self._history[key] = history

        if burst_window > 0:
            counted = sum(1 for t in same if now - t >= burst_window)
        else:
            counted = len(same)
        return counted >= limit, len(same)

    def prune_history(self, now: float) -> int:
        """Drop expired duplicate history; returns keys evicted."""
        evicted = 0
        for key in list(self._history):
            with self._history_locks.hold(key):
                history = self._history.get(key)
                if history is None:
                    continue
                kept = deque((text, t) for text, t in history if now - t < DUPLICATE_HORIZON)
                if kept:
                    self._history[key] = kept
                else:
                    del self._history[key]
                    evicted += 1
        return evicted

    def check_zalgo(self, content: str) -> tuple[bool, int]:
        """Returns (is_zalgo, combining_char_count)."""
        count = len(self.ZALGO_PATTERN.findall(content))
        return count > ZALGO_LIMIT, count

    def check_sensitive(self, content: str) -> list[str]:
        """
        Find sensitive data that should never be posted publicly.

        Returns:
            list[str]: Kinds of sensitive data found
        """
        found: list[str] = []
        if self.TOKEN_PATTERN.search(content):
            found.append("auth token")
        if self.CARD_PATTERN.search(content):
            found.append("payment card number")
        lowered = content.lower()
        if self.EMAIL_PATTERN.search(content) and any(k in lowered for k in PASSWORD_KEYWORDS):
            found.append("email with password")
        return found

    # ==================== URL Checks ====================

    def extract_urls(self, content: str) -> list[str]:
        return self.URL_PATTERN.findall(content)

    def parse_domain(self, url: str) -> str:
        """
        Extract the lowercased hostname from a URL.

        Raises:
            InvalidContent: If the URL cannot be parsed or has no hostname
        """
        candidate = url.strip()
        if "://" not in candidate:
            candidate = f"http://{candidate}"
        try:
            hostname = urlsplit(candidate).hostname
        except ValueError as e:
            raise InvalidContent(url, str(e)) from e
        if not hostname or "." not in hostname:
            raise InvalidContent(url, "no hostname")
        return hostname.lower()

    def match_blocklist(self, domain: str, community: Optional[str] = None) -> Optional[BlockedDomain]:
        """Find the first blocklist entry contained in ``domain``."""
        scopes = {"", community or ""}
        for (scope, blocked), entry in self._domains.items():
            if scope in scopes and blocked in domain:
                return entry
        return None

    def is_shortener(self, domain: str) -> bool:
        # Exact host or subdomain: "t.co" must not match "microsoft.com"
        return any(
            domain == shortener or domain.endswith(f".{shortener}")
            for shortener in URL_SHORTENERS
        )

    def check_url(
        self,
        url: str,
        community: Optional[str] = None,
        block_shorteners: bool = True,
        exhaustive: bool = False,
    ) -> UrlCheckResult:
        """
        Check one URL against the blocklist, phishing patterns and shorteners.

        Rules are tried in that order; by default the first match wins.

        Args:
            url: URL to check
            community: Community whose blocklist additions apply
            block_shorteners: Whether shorteners count as a threat
            exhaustive: Report every matching rule instead of the first

        Returns:
            UrlCheckResult: Per-URL verdict

        Raises:
            InvalidContent: If the URL cannot be parsed
        """
        domain = self.parse_domain(url)
        result = UrlCheckResult(url=url, domain=domain)

        blocked = self.match_blocklist(domain, community)
        if blocked:
            result.matched_domain = blocked.domain
            result.threats.append(ThreatReason(
                ThreatKind.BLOCKLISTED, SEVERITY[ThreatKind.BLOCKLISTED], blocked.domain
            ))
            if not exhaustive:
                return result

        lowered = url.lower()
        for pattern, name in self._phishing:
            if pattern.search(lowered):
                result.threats.append(ThreatReason(
                    ThreatKind.PHISHING, SEVERITY[ThreatKind.PHISHING], name
                ))
                break
        if result.threats and not exhaustive:
            return result

        if (block_shorteners or exhaustive) and self.is_shortener(domain):
            result.threats.append(ThreatReason(
                ThreatKind.SHORTENER, SEVERITY[ThreatKind.SHORTENER], domain
            ))

        return result

    def check_urls(
        self,
        urls: Iterable[str],
        content: str,
        policy: CommunityPolicy,
        community: Optional[str] = None,
    ) -> list[ThreatReason]:
        """
        Check every URL of an event and the surrounding text for scam bait.

        Unparseable URLs are ignored unless the policy is in strict mode.
        """
        urls = list(urls)
        reasons: list[ThreatReason] = []
        for url in urls:
            try:
                result = self.check_url(url, community, policy.block_url_shorteners)
            except InvalidContent as e:
                if policy.strict_mode:
                    reasons.append(ThreatReason(
                        ThreatKind.INVALID_URL, SEVERITY[ThreatKind.INVALID_URL], url
                    ))
                else:
                    logger.debug("Ignoring unparseable URL: %s", e)
                continue
            reasons.extend(result.threats)

        if urls and not reasons:
            lowered = content.lower()
            for keyword in SCAM_KEYWORDS:
                if keyword in lowered:
                    reasons.append(ThreatReason(
                        ThreatKind.SCAM_KEYWORD, SEVERITY[ThreatKind.SCAM_KEYWORD], keyword
                    ))
                    break
        return reasons

    # ==================== Aggregation ====================

    def analyze_message(
        self,
        community: str,
        subject: str,
        content: str,
        now: float,
        policy: CommunityPolicy,
        burst_window: float = 0.0,
    ) -> ThreatReport:
        """
        Run every enabled check over a message.

        Args:
            community: Community ID
            subject: Author ID
            content: Message content
            now: Message time in seconds
            policy: Community policy
            burst_window: Repeats this recent are left to the flood detector

        Returns:
            ThreatReport: Every fired check with the overall severity
        """
        report = ThreatReport()

        if policy.automod_enabled:
            if policy.profanity_filter:
                matched = self.check_profanity(content)
                if matched:
                    report.add(ThreatKind.PROFANITY, ", ".join(matched))

            if policy.caps_filter:
                is_caps, percentage = self.check_caps(content, policy.caps_threshold)
                if is_caps:
                    report.add(ThreatKind.CAPS, f"{percentage}% capitals")

            if policy.emoji_filter:
                is_emoji, count = self.check_emoji(content, policy.emoji_limit)
                if is_emoji:
                    report.add(ThreatKind.EMOJI, f"{count} emoji")

            if policy.mention_filter:
                is_mention, count, broadcast = self.check_mentions(content, policy.mention_limit)
                if is_mention:
                    report.add(
                        ThreatKind.MENTION,
                        "@everyone/@here" if broadcast else f"{count} mentions",
                    )

            if policy.duplicate_filter:
                is_duplicate, repeats = self.check_duplicate(
                    community, subject, content, now, policy.duplicate_limit, burst_window
                )
                if is_duplicate:
                    report.add(ThreatKind.DUPLICATE, f"repeated {repeats + 1} times")

            if policy.zalgo_filter:
                is_zalgo, count = self.check_zalgo(content)
                if is_zalgo:
                    report.add(ThreatKind.ZALGO, f"{count} combining marks")

            if policy.sensitive_filter:
                found = self.check_sensitive(content)
                if found:
                    report.add(ThreatKind.SENSITIVE, ", ".join(found))

        if policy.linkfilter_enabled:
            urls = self.extract_urls(content)
            if urls:
                report.reasons.extend(self.check_urls(urls, content, policy, community))

        return report

    def analyze_links(
        self,
        community: str,
        urls: Iterable[str],
        content: str,
        policy: CommunityPolicy,
    ) -> ThreatReport:
        """Check explicitly submitted links."""
        report = ThreatReport()
        if policy.linkfilter_enabled:
            report.reasons.extend(self.check_urls(urls, content, policy, community))
        return report
