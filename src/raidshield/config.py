"""
Configuration management for the RaidShield engine.

Loads configuration from environment variables and .env files,
validates numeric settings, and provides type-safe access.

Per-community moderation thresholds are not configured here; they live in
the policy store (see ``raidshield.utils.policy``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for the engine process.

    Attributes:
        database_path: SQLite file holding policies, violations and stats
        log_level: Logging level (default: INFO)
        log_file: Optional log file path
        maintenance_interval: Seconds between window/escalation prune passes
        enable_antispam: Load the message/voice rate handler
        enable_automod: Load the content check handler
        enable_linkfilter: Load the link submission handler
        enable_antiraid: Load the join screening handler
        status_host: Bind address for the status server
        status_port: Port for the status server (0 disables it)
        status_token: Optional bearer token required by the status server
        platform_token: Credential handed to platform adapters
    """

    database_path: str = "data/raidshield.db"
    log_level: str = "INFO"
    log_file: str | None = None
    maintenance_interval: float = 300.0
    enable_antispam: bool = True
    enable_automod: bool = True
    enable_linkfilter: bool = True
    enable_antiraid: bool = True
    status_host: str = "127.0.0.1"
    status_port: int = 0
    status_token: str = ""
    platform_token: str = ""

    _secrets: list[str] = field(default_factory=list, repr=False)

    def __post_init__(self) -> None:
        """Initialize secrets list for log filtering."""
        secrets = [self.status_token, self.platform_token]
        object.__setattr__(self, "_secrets", [s for s in secrets if s])

    @property
    def secrets(self) -> list[str]:
        """Get list of secret values that should be filtered from logs."""
        return self._secrets

    @property
    def status_enabled(self) -> bool:
        return self.status_port > 0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean from environment variable string."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int) -> int:
    """Parse an integer from environment variable string."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _parse_float(value: str | None, default: float) -> float:
    """Parse a float from environment variable string."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(env_file: str | Path | None = None) -> Config:
    """
    Load configuration from environment variables and .env file.

    Args:
        env_file: Optional path to .env file. If not provided,
                  looks for .env in current and parent directories.

    Returns:
        Config: Validated configuration object

    Raises:
        ValueError: If any setting is present but invalid
    """
    if env_file:
        load_dotenv(env_file)
    else:
        load_dotenv()

    errors: list[str] = []

    database_path = os.getenv("SHIELD_DATABASE_PATH", "data/raidshield.db").strip()
    if not database_path:
        errors.append("SHIELD_DATABASE_PATH must not be empty")

    raw_interval = os.getenv("MAINTENANCE_INTERVAL")
    maintenance_interval = _parse_float(raw_interval, 300.0)
    if raw_interval is not None:
        try:
            valid_interval = float(raw_interval) > 0
        except ValueError:
            valid_interval = False
        if not valid_interval:
            errors.append("MAINTENANCE_INTERVAL must be a positive number of seconds")

    raw_port = os.getenv("STATUS_PORT")
    status_port = _parse_int(raw_port, 0)
    if raw_port is not None and not raw_port.strip().isdigit():
        errors.append("STATUS_PORT must be an integer")
    elif not 0 <= status_port <= 65535:
        errors.append("STATUS_PORT must be between 0 and 65535")

    if errors:
        error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ValueError(error_msg)

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in VALID_LOG_LEVELS:
        log_level = "INFO"

    return Config(
        database_path=database_path,
        log_level=log_level,
        log_file=os.getenv("LOG_FILE") or None,
        maintenance_interval=maintenance_interval,
        enable_antispam=_parse_bool(os.getenv("ENABLE_ANTISPAM"), True),
        enable_automod=_parse_bool(os.getenv("ENABLE_AUTOMOD"), True),
        enable_linkfilter=_parse_bool(os.getenv("ENABLE_LINKFILTER"), True),
        enable_antiraid=_parse_bool(os.getenv("ENABLE_ANTIRAID"), True),
        status_host=os.getenv("STATUS_HOST", "127.0.0.1"),
        status_port=status_port,
        status_token=os.getenv("STATUS_TOKEN", ""),
        platform_token=os.getenv("PLATFORM_TOKEN", ""),
    )
