"""HTTP middleware: automation user-agent shield and security headers."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
from starlette.types import ASGIApp

from linkgate.core.errors import BotDetected
from linkgate.core.settings import settings

logger = logging.getLogger(__name__)

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; img-src 'self' data:; frame-ancestors 'none'; base-uri 'self'"
    ),
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}
HSTS_HEADER = "max-age=63072000; includeSubDomains"


class BotShieldMiddleware(BaseHTTPMiddleware):
    """Reject known automation clients on protected paths and harden every response."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        protected_prefixes: Sequence[str] | None = None,
        blocked_agents: Sequence[str] | None = None,
        hsts: bool | None = None,
    ) -> None:
        super().__init__(app)
        self.protected_prefixes = tuple(protected_prefixes or settings.protected_path_prefixes)
        self.blocked_agents = tuple(
            agent.lower() for agent in (blocked_agents or settings.bot_user_agents)
        )
        self.hsts = settings.is_production if hsts is None else hsts

    def _is_blocked(self, request: Request) -> bool:
        if not request.url.path.startswith(self.protected_prefixes):
            return False
        user_agent = request.headers.get("user-agent", "").lower()
        if not user_agent:
            return True
        return any(agent in user_agent for agent in self.blocked_agents)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self._is_blocked(request):
            logger.warning(
                "Blocked automation client on %s: %r",
                request.url.path,
                request.headers.get("user-agent", ""),
            )
            response: Response = JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN, content=BotDetected().to_dict()
            )
        else:
            response = await call_next(request)

        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        if self.hsts:
            response.headers.setdefault("Strict-Transport-Security", HSTS_HEADER)
        return response
