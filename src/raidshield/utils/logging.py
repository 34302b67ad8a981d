"""
Engine logging.

Every module logs through ``get_logger(__name__)`` under the ``raidshield``
namespace. ``setup_logging`` attaches a console handler (colored on a TTY),
an optional file handler, and a filter that masks configured tokens.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from raidshield.config import Config

ROOT_LOGGER = "raidshield"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
REDACTED = "[REDACTED]"

# Loggers of libraries whose output goes through our handlers
LIBRARY_LOGGERS = ("aiohttp",)


class SecretFilter(logging.Filter):
    """Masks token values in messages and arguments before they are emitted."""

    def __init__(self, secrets: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets: list[str] = []
        self._pattern: re.Pattern[str] | None = None
        self.set_secrets(secrets or ())

    @property
    def secrets(self) -> list[str]:
        return list(self._secrets)

    def set_secrets(self, secrets: Iterable[str]) -> None:
        # Values of 3 characters or fewer would mask ordinary words
        self._secrets = [s for s in secrets if s and len(s) > 3]
        self._pattern = None
        if self._secrets:
            self._pattern = re.compile(
                "|".join(re.escape(s) for s in self._secrets), re.IGNORECASE
            )

    def _mask(self, value: object) -> object:
        if self._pattern is not None and isinstance(value, str):
            return self._pattern.sub(REDACTED, value)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is None:
            return True

        record.msg = self._mask(record.msg)
        if isinstance(record.args, dict):
            record.args = {key: self._mask(arg) for key, arg in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(self._mask(arg) for arg in record.args)
        return True


class ColoredFormatter(logging.Formatter):
    """Colors whole lines by level when writing to a terminal."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = LOG_FORMAT, stream=None) -> None:
        super().__init__(fmt)
        stream = stream if stream is not None else sys.stderr
        self.use_colors = hasattr(stream, "isatty") and stream.isatty()

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelno) if self.use_colors else None
        return f"{color}{line}{self.RESET}" if color else line


def _handler(handler: logging.Handler, formatter: logging.Formatter, secrets: SecretFilter) -> logging.Handler:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(secrets)
    return handler


def setup_logging(config: Config) -> None:
    """
    Configure the ``raidshield`` logger from the engine configuration.

    Existing handlers are replaced, so calling this twice is safe.

    Args:
        config: Engine configuration (level, optional log file, secrets)
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(getattr(logging, config.log_level, logging.INFO))
    root.handlers.clear()

    secrets = SecretFilter(config.secrets)
    root.addHandler(_handler(logging.StreamHandler(sys.stderr), ColoredFormatter(), secrets))

    if config.log_file:
        path = Path(config.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        root.addHandler(_handler(
            logging.FileHandler(path, encoding="utf-8"), logging.Formatter(LOG_FORMAT), secrets
        ))

    # The status server logs requests on aiohttp.access
    for name in LIBRARY_LOGGERS:
        library = logging.getLogger(name)
        library.setLevel(logging.WARNING)
        library.handlers = list(root.handlers)

    root.debug("Logging initialized with level %s", config.log_level)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, placed under the ``raidshield`` namespace."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
