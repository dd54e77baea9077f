"""Single-use verification sessions.

``/session/verify`` trades a CAPTCHA token for a session pinned to the
caller's IP and cookie; ``/session/complete`` spends it once.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from linkgate.api.v1.dependencies import (
    CaptchaDep,
    ClientIpDep,
    ClockDep,
    ReplayGuardDep,
    ReputationDep,
    SessionManagerDep,
    require_browser_proofs,
    require_same_origin,
)
from linkgate.core.errors import RateLimited, SecurityCheckFailed
from linkgate.core.security import create_session_cookie, read_session_cookie
from linkgate.core.settings import settings
from linkgate.schemas import (
    SessionCompleteRequest,
    SessionCompleteResponse,
    SessionVerifyRequest,
    SessionVerifyResponse,
)
from linkgate.services.integrity import request_fingerprint
from linkgate.services.reputation import REASON_CAPTCHA, REASON_TOKEN_REPLAY

router = APIRouter(
    prefix="/session",
    tags=["session"],
    dependencies=[Depends(require_same_origin)],
)


@router.post(
    "/verify",
    response_model=SessionVerifyResponse,
    dependencies=[Depends(require_browser_proofs)],
)
async def verify_session(
    payload: SessionVerifyRequest,
    request: Request,
    response: Response,
    ip: ClientIpDep,
    clock: ClockDep,
    reputation: ReputationDep,
    replay: ReplayGuardDep,
    captcha: CaptchaDep,
    sessions: SessionManagerDep,
) -> SessionVerifyResponse:
    """Verify a CAPTCHA token and open a single-use session for a link."""
    if reputation.is_blocked(ip):
        raise RateLimited("temporarily blocked", code="TEMPORARILY_BLOCKED")

    link = sessions.find_link(payload.slug)

    if replay.is_used(payload.captcha_token) or not replay.mark_used(payload.captcha_token, ip):
        reputation.record(ip, REASON_TOKEN_REPLAY)
        raise SecurityCheckFailed("token already used", code="TOKEN_REPLAY")

    accepted = await captcha.verify(
        payload.captcha_token,
        client_ip=ip,
        fingerprint=request_fingerprint(request.headers),
    )
    if not accepted:
        reputation.record(ip, REASON_CAPTCHA)
        raise SecurityCheckFailed("captcha verification failed", code="CAPTCHA_FAILED")

    session = sessions.create_single_use(link, ip)
    response.set_cookie(
        settings.session_cookie_name,
        create_session_cookie(session.token, settings.session_ttl_seconds, clock.now_ms()),
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.is_production,
        samesite="strict",
        path="/",
    )
    return SessionVerifyResponse(token=session.token)


@router.post("/complete", response_model=SessionCompleteResponse)
async def complete_session(
    payload: SessionCompleteRequest,
    request: Request,
    ip: ClientIpDep,
    sessions: SessionManagerDep,
) -> SessionCompleteResponse:
    """Spend a single-use session and reveal its destination."""
    cookie_token = read_session_cookie(request.cookies.get(settings.session_cookie_name))
    url = sessions.complete(payload.token, ip, cookie_token)
    return SessionCompleteResponse(url=url)
