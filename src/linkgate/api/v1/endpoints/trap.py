"""Resource-trap pixel and honeypot endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response

from linkgate.api.v1.dependencies import ClientIpDep, ClockDep, ReputationDep, ResourceTrapDep
from linkgate.core.settings import settings
from linkgate.services.reputation import REASON_HONEYPOT
from linkgate.services.trap import BOT_FLAG_MAX_AGE, TRAP_COOKIE_MAX_AGE, TRAP_PIXEL

router = APIRouter(prefix="/trap", tags=["trap"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.get("/image")
async def trap_image(trap: ResourceTrapDep, clock: ClockDep) -> Response:
    """Serve the invisible pixel and set the signed trap cookie."""
    response = Response(content=TRAP_PIXEL, media_type="image/gif", headers=NO_STORE_HEADERS)
    token = trap.issue(clock.now_ms())
    if token is not None:
        response.set_cookie(
            settings.trap_cookie_name,
            token,
            max_age=TRAP_COOKIE_MAX_AGE,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
            path="/",
        )
    return response


@router.get("/bot")
async def trap_bot(ip: ClientIpDep, reputation: ReputationDep) -> JSONResponse:
    """Flag the client as automated and answer like a harmless endpoint."""
    reputation.record(ip, REASON_HONEYPOT)
    response = JSONResponse({"status": "ok"}, headers=NO_STORE_HEADERS)
    response.set_cookie(
        settings.bot_flag_cookie_name,
        "1",
        max_age=BOT_FLAG_MAX_AGE,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return response
