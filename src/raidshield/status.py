"""
HTTP status server for the engine.

Exposes read-only JSON endpoints for monitoring:
- GET /health: engine status and uptime
- GET /communities/{community}: raid status, join stats and suspicious joins

When a status token is configured every request must carry
``Authorization: Bearer <token>``.
"""

from __future__ import annotations

import hmac
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from aiohttp import web

from raidshield.utils.logging import get_logger

if TYPE_CHECKING:
    from raidshield.engine import ShieldEngine

logger = get_logger(__name__)


class StatusServer:
    """
    Small aiohttp server running inside the engine's event loop.

    Attributes:
        engine: Engine queried by the handlers
        host: Bind address
        port: Bind port
        app: aiohttp Application instance
        runner: AppRunner while the server is running
    """

    def __init__(
        self,
        engine: ShieldEngine,
        host: str = "127.0.0.1",
        port: int = 8080,
        token: str = "",
    ) -> None:
        self.engine = engine
        self.host = host
        self.port = port
        self._token = token
        self.runner: Optional[web.AppRunner] = None

        self.app = web.Application(middlewares=[self._auth_middleware])
        self.app.router.add_get("/health", self.health_handler)
        self.app.router.add_get("/communities/{community}", self.community_handler)

    # ==================== Middleware ====================

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if self._token:
            header = request.headers.get("Authorization", "")
            expected = f"Bearer {self._token}"
            if not hmac.compare_digest(header.encode(), expected.encode()):
                logger.warning("Rejected status request to %s from %s", request.path, request.remote)
                return web.json_response({"error": "unauthorized"}, status=401)
        return await handler(request)

    # ==================== Handlers ====================

    async def health_handler(self, request: web.Request) -> web.Response:
        """Engine liveness and loaded handlers."""
        return web.json_response({
            "status": "healthy",
            "uptime": round(self.engine.uptime, 1),
            "handlers": [type(h).__name__ for h in self.engine.handlers],
            "raid_mode": self.engine.raid.active_communities(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def community_handler(self, request: web.Request) -> web.Response:
        """Raid status, join stats and suspicious joins for one community."""
        community = request.match_info["community"]
        try:
            suspicious = [
                {
                    "subject": entry.subject,
                    "score": entry.score,
                    "reasons": entry.reasons,
                    "flagged_at": entry.flagged_at,
                }
                for entry in self.engine.get_suspicious_entries(community)
            ]
            return web.json_response({
                "community": community,
                "raid_mode": self.engine.get_raid_status(community),
                "join_stats": self.engine.get_join_stats(community),
                "suspicious": suspicious,
                "stats": self.engine.get_stats(community),
            })
        except Exception as e:
            logger.error("Status query failed for %s: %s", community, e)
            return web.json_response({"error": "internal error"}, status=500)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Bind and start serving."""
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, self.host, self.port)
        await site.start()
        logger.info("Status server listening on http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Stop serving. Safe to call if never started."""
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
            logger.info("Status server stopped")
