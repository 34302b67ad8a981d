"""
RaidShield - Real-time abuse detection and escalation engine for chat communities.

This package provides a platform-independent moderation engine with:
- Message flood and voice abuse detection
- Content checks (profanity, caps, emoji, mentions, duplicates, zalgo, sensitive data)
- Malicious link detection (blocklist, phishing patterns, shorteners)
- Join screening with suspicion scoring and automatic raid mode
- Escalating penalties for repeat offenders
- Per-community policies stored in SQLite
"""

import argparse
import json
from typing import IO, Optional

from raidshield.config import Config, load_config
from raidshield.engine import ShieldEngine

__version__ = "1.0.0"
__author__ = "RaidShield contributors"
__all__ = ["ShieldEngine", "Config", "load_config", "replay", "main"]


async def replay(engine: ShieldEngine, stream: IO[str]) -> int:
    """
    Feed JSON-lines events from a stream through the engine.

    Blank lines and lines starting with ``#`` are skipped; malformed
    lines are logged and skipped.

    Args:
        engine: Engine to dispatch to
        stream: Text stream with one JSON event per line

    Returns:
        int: Number of events dispatched
    """
    import asyncio

    from raidshield.events import event_from_dict
    from raidshield.utils.logging import get_logger

    logger = get_logger(__name__)
    loop = asyncio.get_running_loop()
    dispatched = 0
    line_no = 0

    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            break
        line_no += 1
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            event = event_from_dict(json.loads(line))
        except (ValueError, TypeError) as e:
            logger.warning("Skipping line %d: %s", line_no, e)
            continue
        await engine.dispatch(event)
        dispatched += 1

    return dispatched


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point: replay captured events through the engine in dry-run mode."""
    import asyncio
    import sys

    from raidshield.adapters import LoggingAdapter
    from raidshield.status import StatusServer
    from raidshield.utils.logging import get_logger, setup_logging

    parser = argparse.ArgumentParser(
        prog="raidshield",
        description="Replay JSON-lines chat events through the RaidShield engine.",
    )
    parser.add_argument("events", nargs="?", help="Events file (default: stdin)")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument(
        "--serve",
        action="store_true",
        help="Keep the status server running after the replay",
    )
    args = parser.parse_args(argv)

    # Load configuration
    try:
        config = load_config(args.env_file)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)
    logger = get_logger(__name__)

    logger.info("Starting RaidShield v%s", __version__)

    async def run() -> None:
        engine = ShieldEngine(config, LoggingAdapter())
        server: Optional[StatusServer] = None
        if config.status_enabled:
            server = StatusServer(engine, config.status_host, config.status_port, config.status_token)
            await server.start()
        await engine.start()

        try:
            if args.events:
                with open(args.events, encoding="utf-8") as stream:
                    count = await replay(engine, stream)
            else:
                count = await replay(engine, sys.stdin)
            await engine.drain()
            logger.info("Replayed %d event(s)", count)

            if server is not None and args.serve:
                logger.info("Serving status until interrupted")
                await asyncio.Event().wait()
        finally:
            if server is not None:
                await server.stop()
            await engine.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except OSError as e:
        logger.error("Could not read events: %s", e)
        sys.exit(1)
    except Exception as e:
        logger.exception("Engine crashed with error: %s", e)
        sys.exit(1)
    finally:
        logger.info("Shutdown complete")
