"""Shared API dependencies for authentication, services and gateway checks."""

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from linkgate.core.clock import Clock, get_clock
from linkgate.core.errors import SecurityCheckFailed, Unauthorized
from linkgate.core.settings import settings
from linkgate.db.session import get_db
from linkgate.models import Owner
from linkgate.services.captcha import CaptchaDelegate, get_captcha_delegate
from linkgate.services.challenge import ChallengeService
from linkgate.services.integrity import check_same_origin
from linkgate.services.redirect_session import RedirectSessionManager
from linkgate.services.replay import ReplayGuard
from linkgate.services.reputation import REASON_HONEYPOT, REASON_TRAP, ReputationService
from linkgate.services.shortener import ShortenerClient, get_shortener
from linkgate.services.store import EphemeralStore, get_store
from linkgate.services.trap import HONEYPOT, ResourceTrap

# HTTP Bearer scheme for owner authentication
bearer_scheme = HTTPBearer(auto_error=False)

SessionDep = Annotated[Session, Depends(get_db)]
ClockDep = Annotated[Clock, Depends(get_clock)]
StoreDep = Annotated[EphemeralStore, Depends(get_store)]
CaptchaDep = Annotated[CaptchaDelegate, Depends(get_captcha_delegate)]
ShortenerDep = Annotated[ShortenerClient, Depends(get_shortener)]


def get_client_ip(request: Request) -> str:
    """Return the client address, preferring the first proxy-forwarded hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client is not None:
        return request.client.host
    return "unknown"


ClientIpDep = Annotated[str, Depends(get_client_ip)]


def get_current_owner(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: SessionDep,
) -> Owner:
    """Resolve the link owner from a bearer JWT.

    Raises:
        Unauthorized: If the token is missing, invalid, or names no owner.
    """
    if credentials is None:
        raise Unauthorized()
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise Unauthorized("could not validate credentials") from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise Unauthorized("could not validate credentials")
    owner = db.get(Owner, int(subject))
    if owner is None:
        raise Unauthorized("could not validate credentials")
    return owner


CurrentOwnerDep = Annotated[Owner, Depends(get_current_owner)]


def get_challenge_service(db: SessionDep, store: StoreDep, clock: ClockDep) -> ChallengeService:
    return ChallengeService(db, store, clock)


def get_replay_guard(store: StoreDep, clock: ClockDep) -> ReplayGuard:
    return ReplayGuard(store, clock)


def get_reputation(db: SessionDep, clock: ClockDep) -> ReputationService:
    return ReputationService(db, clock)


def get_resource_trap() -> ResourceTrap:
    return ResourceTrap(settings.effective_trap_secret)


ReputationDep = Annotated[ReputationService, Depends(get_reputation)]


def get_session_manager(
    db: SessionDep,
    shortener: ShortenerDep,
    clock: ClockDep,
    reputation: ReputationDep,
) -> RedirectSessionManager:
    return RedirectSessionManager(db, shortener, clock, reputation)


ChallengeServiceDep = Annotated[ChallengeService, Depends(get_challenge_service)]
ReplayGuardDep = Annotated[ReplayGuard, Depends(get_replay_guard)]
ResourceTrapDep = Annotated[ResourceTrap, Depends(get_resource_trap)]
SessionManagerDep = Annotated[RedirectSessionManager, Depends(get_session_manager)]


def enforce_same_origin(request: Request) -> None:
    """Reject cross-origin or direct calls.

    Raises:
        SecurityCheckFailed: ``DIRECT_ACCESS`` or ``CROSS_SITE``.
    """
    result = check_same_origin(request.headers)
    if not result.ok:
        message = "direct access forbidden" if result.code == "DIRECT_ACCESS" else None
        raise SecurityCheckFailed(message, code=result.code, reason=result.reason)


def enforce_browser_proofs(
    request: Request,
    trap: ResourceTrap,
    reputation: ReputationService,
    ip: str,
    clock: Clock,
) -> None:
    """Require the resource-trap cookie and the absence of the honeypot flag.

    Only active under the strict security profile. Failures are recorded as
    abuse signals.
    """
    if settings.security_profile != "strict":
        return

    if request.cookies.get(settings.bot_flag_cookie_name):
        reputation.record(ip, REASON_HONEYPOT)
        raise SecurityCheckFailed(code=HONEYPOT, reason="honeypot flag present")

    result = trap.validate(request.cookies.get(settings.trap_cookie_name), clock.now_ms())
    if not result.valid:
        reputation.record(ip, REASON_TRAP)
        raise SecurityCheckFailed(code=result.code, reason="resource trap check failed")


def require_same_origin(request: Request) -> None:
    enforce_same_origin(request)


def require_browser_proofs(
    request: Request,
    trap: ResourceTrapDep,
    reputation: ReputationDep,
    ip: ClientIpDep,
    clock: ClockDep,
) -> None:
    enforce_browser_proofs(request, trap, reputation, ip, clock)
