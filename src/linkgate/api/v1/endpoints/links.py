"""Owner link creation."""

from __future__ import annotations

import secrets
import string
from urllib.parse import urlsplit

from fastapi import APIRouter, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from linkgate.api.v1.dependencies import (
    CaptchaDep,
    ClientIpDep,
    ClockDep,
    CurrentOwnerDep,
    SessionDep,
)
from linkgate.core.errors import BadRequest, SecurityCheckFailed
from linkgate.core.settings import settings
from linkgate.models import Owner, ProtectedLink
from linkgate.schemas import LinkCreate, LinkCreated

router = APIRouter(prefix="/links", tags=["links"])

SLUG_ALPHABET = string.ascii_lowercase + string.digits
SLUG_LENGTH = 8
SLUG_ATTEMPTS = 5


def _validate_target(url: str) -> str:
    parts = urlsplit(url.strip())
    if parts.scheme not in {"http", "https"} or not parts.hostname:
        raise BadRequest("target must be an http(s) URL", code="INVALID_URL")
    host = parts.hostname.lower()
    for domain in settings.blocked_target_domains:
        if host == domain or host.endswith(f".{domain}"):
            raise BadRequest("shortened links cannot be protected", code="DOUBLE_SHORTENING")
    return parts.geturl()


def _new_slug(db: Session) -> str:
    for _ in range(SLUG_ATTEMPTS):
        slug = "".join(secrets.choice(SLUG_ALPHABET) for _ in range(SLUG_LENGTH))
        taken = db.scalars(select(ProtectedLink.id).where(ProtectedLink.slug == slug)).first()
        if taken is None:
            return slug
    raise RuntimeError("Could not allocate a unique slug")


@router.post("", response_model=LinkCreated, status_code=status.HTTP_201_CREATED)
async def create_link(
    payload: LinkCreate,
    owner: CurrentOwnerDep,
    db: SessionDep,
    ip: ClientIpDep,
    clock: ClockDep,
    captcha: CaptchaDep,
) -> LinkCreated:
    """Protect a destination URL behind the verification gate.

    Raises:
        SecurityCheckFailed: Expired subscription or failed CAPTCHA.
        BadRequest: Missing provider keys or an unacceptable target.
    """
    now = clock.now_ms()
    if not owner.subscription_active(now):
        raise SecurityCheckFailed("subscription expired", code="EXPIRED")

    accepted = await captcha.verify(
        payload.captcha_token or "",
        client_ip=ip,
        test_mode=payload.test_mode,
        caller_role=owner.role,
    )
    if not accepted:
        raise SecurityCheckFailed("captcha verification failed", code="CAPTCHA_FAILED")

    if not owner.configured_providers():
        raise BadRequest("configure a shortener API key first", code="KEY_MISSING")

    target = _validate_target(payload.url)
    link = ProtectedLink(
        slug=_new_slug(db),
        target_url=target,
        owner_id=owner.id,
        created_at=now,
        visit_count=0,
    )
    db.add(link)
    db.execute(
        update(Owner)
        .where(Owner.id == owner.id)
        .values(links_created=Owner.links_created + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return LinkCreated(slug=link.slug, link=f"{settings.public_base_url.rstrip('/')}/go/{link.slug}")
