"""Proof-of-work challenge issuance."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from linkgate.api.v1.dependencies import ChallengeServiceDep, ClientIpDep
from linkgate.core.errors import RateLimited
from linkgate.schemas import ChallengeResponse

router = APIRouter(tags=["challenge"])


@router.get("/challenge", response_model=ChallengeResponse)
async def issue_challenge(
    request: Request,
    response: Response,
    service: ChallengeServiceDep,
    ip: ClientIpDep,
) -> ChallengeResponse:
    """Issue a signed proof-of-work challenge bound to the caller.

    Raises:
        RateLimited: If the caller requested too many challenges recently.
    """
    challenge = service.issue(ip, request.headers.get("user-agent"))
    if challenge is None:
        raise RateLimited()

    response.headers["Cache-Control"] = "no-store"
    return ChallengeResponse(
        challenge_id=challenge.challenge_id,
        nonce=challenge.nonce,
        difficulty=challenge.difficulty,
        signature=challenge.signature,
        expires_at=challenge.expires_at,
    )
