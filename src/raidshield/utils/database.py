"""
SQLite database manager for the detection engine.

Handles:
- Community policy records
- Violation log (append-only)
- Aggregate per-community counters
- Domain blocklist (system-seeded and user-added)
- Profanity word list
"""

from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional

from raidshield.utils.logging import get_logger
from raidshield.utils.threat_matcher import DEFAULT_BLOCKLIST, DEFAULT_PROFANITY, SYSTEM_BLOCK_REASON

logger = get_logger(__name__)

# Counters kept in the stats table; only these names may be incremented
STAT_COLUMNS: tuple[str, ...] = (
    "total_violations",
    "spam_detected",
    "voice_abuse_detected",
    "timeouts_issued",
    "kicks_issued",
    "quarantines_issued",
    "scam_blocked",
    "automod_triggers",
    "warnings_issued",
    "suspicious_joins",
    "raids_detected",
)

GLOBAL_SCOPE = ""


class DatabaseManager:
    """
    SQLite database manager for the detection engine.

    Every public method opens its own short-lived connection, so a
    manager can be shared between the event loop and executor threads.
    """

    def __init__(self, db_path: str = "data/raidshield.db") -> None:
        """
        Initialize the database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()
        logger.info("Database initialized at %s", self.db_path)

    @contextmanager
    def get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get a database connection with automatic cleanup.

        Yields:
            sqlite3.Connection: Database connection
        """
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error("Database error: %s", e)
            raise
        finally:
            conn.close()

    def _init_database(self) -> None:
        """Initialize database tables and seed default lists."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS community_settings (
                    community_id TEXT PRIMARY KEY,
                    settings TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS violations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    community_id TEXT NOT NULL,
                    subject_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    severity INTEGER NOT NULL,
                    reason TEXT,
                    action TEXT,
                    evidence TEXT,
                    timestamp REAL NOT NULL
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_violations_subject
                ON violations (community_id, subject_id)
            """)

            stat_columns = ",\n".join(f"{name} INTEGER DEFAULT 0" for name in STAT_COLUMNS)
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS stats (
                    community_id TEXT PRIMARY KEY,
                    {stat_columns}
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS blocked_domains (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    domain TEXT NOT NULL,
                    community_id TEXT NOT NULL DEFAULT '',
                    reason TEXT,
                    origin TEXT NOT NULL DEFAULT 'user',
                    added_by TEXT,
                    added_at REAL NOT NULL,
                    UNIQUE (domain, community_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS profanity_words (
                    word TEXT PRIMARY KEY,
                    origin TEXT NOT NULL DEFAULT 'user',
                    added_by TEXT,
                    added_at REAL NOT NULL
                )
            """)

            # ==================== Seed Data ====================
            # Only on a fresh database, so removed defaults stay removed

            now = time.time()
            cursor.execute("SELECT COUNT(*) FROM blocked_domains")
            if cursor.fetchone()[0] == 0:
                cursor.executemany(
                    """
                    INSERT OR IGNORE INTO blocked_domains
                    (domain, community_id, reason, origin, added_by, added_at)
                    VALUES (?, ?, ?, 'system', 'system', ?)
                    """,
                    [(domain, GLOBAL_SCOPE, SYSTEM_BLOCK_REASON, now) for domain in DEFAULT_BLOCKLIST],
                )
                logger.info("Seeded %d default blocked domains", len(DEFAULT_BLOCKLIST))

            cursor.execute("SELECT COUNT(*) FROM profanity_words")
            if cursor.fetchone()[0] == 0:
                cursor.executemany(
                    """
                    INSERT OR IGNORE INTO profanity_words (word, origin, added_by, added_at)
                    VALUES (?, 'system', 'system', ?)
                    """,
                    [(word, now) for word in DEFAULT_PROFANITY],
                )

    # ==================== Policy Records ====================

    def get_policy_record(self, community_id: str) -> Optional[dict[str, Any]]:
        """Get the stored policy fields for a community, or None."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT settings FROM community_settings WHERE community_id = ?",
                (community_id,),
            )
            row = cursor.fetchone()
            if row is None:
                return None
            try:
                return json.loads(row["settings"])
            except json.JSONDecodeError as e:
                logger.error("Corrupt policy record for %s: %s", community_id, e)
                return {}

    def save_policy_record(self, community_id: str, settings: dict[str, Any]) -> None:
        """Insert or replace the policy record for a community."""
        now = time.time()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO community_settings (community_id, settings, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(community_id) DO UPDATE SET
                    settings = excluded.settings,
                    updated_at = excluded.updated_at
                """,
                (community_id, json.dumps(settings, ensure_ascii=False), now, now),
            )

    def delete_policy_record(self, community_id: str) -> bool:
        """Delete a community's policy record."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM community_settings WHERE community_id = ?", (community_id,))
            return cursor.rowcount > 0

    # ==================== Violations ====================

    def add_violation(
        self,
        community_id: str,
        subject_id: str,
        category: str,
        severity: int,
        reason: str,
        action: str,
        timestamp: float,
        evidence: Optional[str] = None,
    ) -> int:
        """Append a violation record."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT INTO violations
                (community_id, subject_id, category, severity, reason, action, evidence, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (community_id, subject_id, category, severity, reason, action, evidence, timestamp),
            )
            return cursor.lastrowid or 0

    def get_violations(
        self,
        community_id: str,
        subject_id: Optional[str] = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Get recent violations for a community, newest first."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            if subject_id:
                cursor.execute(
                    """
                    SELECT * FROM violations
                    WHERE community_id = ? AND subject_id = ?
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                    """,
                    (community_id, subject_id, limit),
                )
            else:
                cursor.execute(
                    """
                    SELECT * FROM violations
                    WHERE community_id = ?
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                    """,
                    (community_id, limit),
                )
            return [dict(row) for row in cursor.fetchall()]

    # ==================== Stats ====================

    def increment_stats(self, community_id: str, *counters: str) -> None:
        """
        Increment one or more aggregate counters for a community.

        Args:
            community_id: Community ID
            *counters: Counter names from ``STAT_COLUMNS``

        Raises:
            ValueError: If a counter name is unknown
        """
        if not counters:
            return
        unknown = [c for c in counters if c not in STAT_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown stat counter(s): {', '.join(unknown)}")

        increments: dict[str, int] = {}
        for counter in counters:
            increments[counter] = increments.get(counter, 0) + 1

        columns = ", ".join(increments)
        placeholders = ", ".join("?" for _ in increments)
        updates = ", ".join(f"{c} = {c} + excluded.{c}" for c in increments)
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"""
                INSERT INTO stats (community_id, {columns})
                VALUES (?, {placeholders})
                ON CONFLICT(community_id) DO UPDATE SET {updates}
                """,
                (community_id, *increments.values()),
            )

    def get_stats(self, community_id: str) -> dict[str, int]:
        """Get aggregate counters for a community (zeros if none yet)."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM stats WHERE community_id = ?", (community_id,))
            row = cursor.fetchone()
            if row is None:
                return {name: 0 for name in STAT_COLUMNS}
            return {name: row[name] or 0 for name in STAT_COLUMNS}

    # ==================== Blocked Domains ====================

    def add_blocked_domain(
        self,
        domain: str,
        reason: str,
        added_by: str,
        community_id: Optional[str] = None,
        origin: str = "user",
    ) -> bool:
        """Add a domain to the blocklist. Returns False if already present."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO blocked_domains
                (domain, community_id, reason, origin, added_by, added_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (domain.lower(), community_id or GLOBAL_SCOPE, reason, origin, added_by, time.time()),
            )
            return cursor.rowcount > 0

    def remove_blocked_domain(self, domain: str, community_id: Optional[str] = None) -> bool:
        """Remove a domain from the blocklist scope it was added to."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "DELETE FROM blocked_domains WHERE domain = ? AND community_id = ?",
                (domain.lower(), community_id or GLOBAL_SCOPE),
            )
            return cursor.rowcount > 0

    def get_blocked_domains(self) -> list[dict[str, Any]]:
        """Get every blocklist entry, global and per-community."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT domain, community_id, reason, origin, added_by, added_at "
                "FROM blocked_domains ORDER BY domain"
            )
            return [dict(row) for row in cursor.fetchall()]

    # ==================== Profanity Words ====================

    def add_profanity_word(self, word: str, added_by: str, origin: str = "user") -> bool:
        """Add a word to the profanity list. Returns False if already present."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                INSERT OR IGNORE INTO profanity_words (word, origin, added_by, added_at)
                VALUES (?, ?, ?, ?)
                """,
                (word.lower(), origin, added_by, time.time()),
            )
            return cursor.rowcount > 0

    def remove_profanity_word(self, word: str) -> bool:
        """Remove a word from the profanity list."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM profanity_words WHERE word = ?", (word.lower(),))
            return cursor.rowcount > 0

    def get_profanity_words(self) -> list[str]:
        """Get the profanity list."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT word FROM profanity_words ORDER BY word")
            return [row["word"] for row in cursor.fetchall()]


# Global database instance
_db: Optional[DatabaseManager] = None


def get_database(db_path: Optional[str] = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        db_path: Database file (only used on first call)
    """
    global _db
    if _db is None:
        _db = DatabaseManager(db_path) if db_path else DatabaseManager()
    return _db
