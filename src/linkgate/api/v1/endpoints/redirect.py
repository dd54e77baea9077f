"""Protected redirect resolution.

The gate runs cheapest checks first and stops at the first failure:

1. same-origin headers
2. resource trap and honeypot (strict profile)
3. JSON body
4. IP reputation
5. submission freshness
6. whole-request dedupe
7. signed body integrity
8. challenge fields present
9. proof-of-work verification
10. CAPTCHA token replay
11. CAPTCHA verification
12. redirect session resolution
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Request, Response
from pydantic import ValidationError

from linkgate.api.v1.dependencies import (
    CaptchaDep,
    ChallengeServiceDep,
    ClientIpDep,
    ClockDep,
    ReplayGuardDep,
    ReputationDep,
    ResourceTrapDep,
    SessionManagerDep,
    enforce_browser_proofs,
    enforce_same_origin,
)
from linkgate.core.clock import MILLISECONDS_PER_SECOND
from linkgate.core.errors import (
    BadRequest,
    ConfigurationError,
    DuplicateRequest,
    RateLimited,
    SecurityCheckFailed,
)
from linkgate.core.security import create_session_cookie, read_session_cookie
from linkgate.core.settings import settings
from linkgate.schemas import RedirectRequest, RedirectResponse
from linkgate.services.integrity import request_fingerprint, unsigned_body, verify_body_signature
from linkgate.services.redirect_session import ACTION_REDIRECT
from linkgate.services.reputation import (
    REASON_CAPTCHA,
    REASON_DUPLICATE_REQUEST,
    REASON_TAMPERED,
    REASON_TOKEN_REPLAY,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["redirect"])

PROOF_HEADER = "x-client-proof"


async def _read_payload(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError as err:
        raise BadRequest("invalid JSON body") from err
    if not isinstance(payload, dict):
        raise BadRequest("invalid JSON body")
    return payload


@router.post("/redirect", response_model=RedirectResponse)
async def resolve_redirect(
    request: Request,
    response: Response,
    ip: ClientIpDep,
    clock: ClockDep,
    trap: ResourceTrapDep,
    reputation: ReputationDep,
    challenges: ChallengeServiceDep,
    replay: ReplayGuardDep,
    captcha: CaptchaDep,
    sessions: SessionManagerDep,
) -> RedirectResponse:
    """Verify a visitor and return the next hop for a protected link."""
    enforce_same_origin(request)
    enforce_browser_proofs(request, trap, reputation, ip, clock)

    payload = await _read_payload(request)

    if reputation.is_blocked(ip):
        raise RateLimited("temporarily blocked", code="TEMPORARILY_BLOCKED")

    try:
        body = RedirectRequest.model_validate(payload)
    except ValidationError as err:
        raise BadRequest(reason=str(err)) from err

    now = clock.now_ms()
    skew_ms = settings.challenge_clock_skew_seconds * MILLISECONDS_PER_SECOND
    if body.timing is not None and abs(now - body.timing) > skew_ms:
        raise SecurityCheckFailed("request expired", code="STALE_REQUEST", reason="stale timing")

    dedupe_id = body.challenge_id or ""
    if replay.is_request_processed(body.slug, dedupe_id, body.captcha_token):
        logger.warning("Duplicate request from %s for %s", ip, body.slug)
        reputation.record(ip, REASON_DUPLICATE_REQUEST)
        raise DuplicateRequest()

    if body.signature is not None or body.timestamp is not None:
        if not settings.request_signing_secret:
            raise ConfigurationError(reason="REQUEST_SIGNING_SECRET is not configured")
        integrity = verify_body_signature(
            unsigned_body(payload),
            payload.get("_ts"),
            payload.get("_sig"),
            settings.request_signing_secret,
            now,
            max_age_ms=settings.request_max_age_seconds * MILLISECONDS_PER_SECOND,
            future_tolerance_ms=settings.request_future_tolerance_seconds * MILLISECONDS_PER_SECOND,
        )
        if not integrity.ok:
            logger.warning("Tampered request from %s: %s", ip, integrity.reason)
            reputation.record(ip, REASON_TAMPERED)
            raise SecurityCheckFailed("request integrity check failed", code=integrity.code)

    proof = request.headers.get(PROOF_HEADER)
    if (
        not body.challenge_id
        or body.timing is None
        or body.entropy is None
        or body.counter is None
        or not proof
    ):
        raise SecurityCheckFailed("challenge required", code="MISSING_CHALLENGE")

    result = challenges.verify(
        body.challenge_id,
        proof,
        body.timing,
        body.entropy,
        body.counter,
        ip,
        request.headers.get("user-agent"),
    )
    if not result.valid:
        raise SecurityCheckFailed(
            "challenge verification failed", code="CHALLENGE_FAILED", reason=result.error
        )

    if replay.is_used(body.captcha_token) or not replay.mark_used(body.captcha_token, ip):
        reputation.record(ip, REASON_TOKEN_REPLAY)
        raise SecurityCheckFailed("token already used", code="TOKEN_REPLAY")

    accepted = await captcha.verify(
        body.captcha_token,
        client_ip=ip,
        fingerprint=request_fingerprint(request.headers),
    )
    if not accepted:
        reputation.record(ip, REASON_CAPTCHA)
        raise SecurityCheckFailed("captcha verification failed", code="CAPTCHA_FAILED")

    replay.mark_request_processed(body.slug, dedupe_id, body.captcha_token)

    decision = await sessions.resolve(
        body.slug,
        ip,
        settings.public_base_url,
        visit_number=body.visit_count,
        token=body.token,
        verified=body.verified,
        cookie_token=read_session_cookie(request.cookies.get(settings.session_cookie_name)),
    )
    if decision.action == ACTION_REDIRECT:
        response.set_cookie(
            settings.session_cookie_name,
            create_session_cookie(decision.token, settings.session_ttl_seconds, clock.now_ms()),
            max_age=settings.session_ttl_seconds,
            httponly=True,
            secure=settings.is_production,
            samesite="lax",
            path="/",
        )
    return RedirectResponse(url=decision.url, action=decision.action)
