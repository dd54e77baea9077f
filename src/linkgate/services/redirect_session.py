"""Redirect session state machine.

A session moves ``pending -> active`` when the visitor returns from the
upstream provider hop, then resolves to the target until its use count or
TTL runs out. Exhausted or expired sessions are never an error for the
visitor: resolution simply starts a new ``pending`` session.

Every mutation is a conditional UPDATE/DELETE checked by row count, so two
requests racing on the same token cannot both get past the usage cap.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal
from urllib.parse import urlencode

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from linkgate.core.clock import MILLISECONDS_PER_SECOND, Clock
from linkgate.core.errors import (
    BotDetected,
    ConfigurationError,
    NotFound,
    SecurityCheckFailed,
    SessionGone,
    UpstreamError,
)
from linkgate.core.settings import Settings, settings
from linkgate.models import ProtectedLink, RedirectSession
from linkgate.models.redirect_session import STATUS_ACTIVE, STATUS_PENDING
from linkgate.services.reputation import REASON_TOO_FAST, ReputationService
from linkgate.services.rotation import candidate_providers
from linkgate.services.shortener import ShortenerClient, ShortenerError

logger = logging.getLogger(__name__)

ACTION_SHORTEN = "shorten"
ACTION_REDIRECT = "redirect"

# One preferred provider plus a single fallback
MAX_PROVIDER_ATTEMPTS = 2


@dataclass(frozen=True)
class RedirectDecision:
    """Where to send the visitor next and which session produced it."""

    action: Literal["shorten", "redirect"]
    url: str
    token: str


class RedirectSessionManager:
    """Create, advance and expire redirect sessions for protected links."""

    def __init__(
        self,
        db: Session,
        shortener: ShortenerClient,
        clock: Clock,
        reputation: ReputationService | None = None,
        config: Settings = settings,
    ) -> None:
        self.db = db
        self.shortener = shortener
        self.clock = clock
        self.reputation = reputation
        self.config = config

    @property
    def ttl_ms(self) -> int:
        return self.config.session_ttl_seconds * MILLISECONDS_PER_SECOND

    def find_link(self, slug: str) -> ProtectedLink:
        link = self.db.scalars(select(ProtectedLink).where(ProtectedLink.slug == slug)).first()
        if link is None:
            raise NotFound("link not found")
        return link

    async def create(
        self,
        link: ProtectedLink,
        ip: str,
        base_url: str,
        visit_number: int = 1,
    ) -> RedirectDecision:
        """Start a pending session and hand out an intermediate short link.

        A live pending session for the same (IP, link) that already has a
        short link is returned as is, so page refreshes do not trigger new
        upstream calls.

        Raises:
            ConfigurationError: If the owner has no usable provider key.
            UpstreamError: If the preferred provider and its fallback both fail.
        """
        now = self.clock.now_ms()
        existing = self.db.scalars(
            select(RedirectSession)
            .where(
                RedirectSession.ip_address == ip,
                RedirectSession.link_id == link.id,
                RedirectSession.status == STATUS_PENDING,
                RedirectSession.short_link.is_not(None),
                RedirectSession.created_at > now - self.ttl_ms,
            )
            .order_by(RedirectSession.created_at.desc())
            .limit(1)
        ).first()
        if existing is not None and existing.short_link:
            return RedirectDecision(ACTION_SHORTEN, existing.short_link, existing.token)

        owner = link.owner
        if owner is None:
            raise ConfigurationError(reason=f"link {link.slug} has no owner")
        candidates = candidate_providers(visit_number, owner.configured_providers())
        if not candidates:
            raise ConfigurationError(
                code="KEY_MISSING", reason=f"owner {owner.id} has no provider keys"
            )

        token = secrets.token_hex(12)
        self.db.add(
            RedirectSession(
                token=token,
                target_url=link.target_url,
                ip_address=ip,
                link_id=link.id,
                user_id=owner.id,
                status=STATUS_PENDING,
                max_uses=self.config.session_max_uses,
                usage_count=0,
                created_at=now,
                used=False,
            )
        )
        self.db.commit()

        query = urlencode({"token": token, "verified": "true"})
        callback_url = f"{base_url.rstrip('/')}/go/{link.slug}?{query}"
        short_url, provider = await self._shorten(
            candidates[:MAX_PROVIDER_ATTEMPTS], owner.provider_keys or {}, callback_url
        )

        self.db.execute(
            update(RedirectSession)
            .where(RedirectSession.token == token)
            .values(short_link=short_url, provider=provider)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info("Created session for %s via %s", link.slug, provider)
        return RedirectDecision(ACTION_SHORTEN, short_url, token)

    async def _shorten(
        self, providers: list[str], keys: Mapping[str, str], url: str
    ) -> tuple[str, str]:
        for provider in providers:
            try:
                return await self.shortener.shorten(provider, keys[provider], url), provider
            except ShortenerError as exc:
                logger.warning("Provider %s failed: %s", provider, exc)
        raise UpstreamError(reason=f"providers failed: {', '.join(providers)}")

    def callback(self, session: RedirectSession, ip: str) -> RedirectDecision | None:
        """Activate a pending session when the visitor returns from the provider.

        Returns None when the session is no longer pending or has expired, in
        which case the caller starts over.

        Raises:
            BotDetected: If the round trip was faster than the configured
                minimum. The session is deleted first.
        """
        token, link_id, target = session.token, session.link_id, session.target_url
        if session.status != STATUS_PENDING:
            return None

        now = self.clock.now_ms()
        elapsed = now - session.created_at
        if elapsed > self.ttl_ms:
            return None
        if elapsed < self.config.session_callback_min_seconds * MILLISECONDS_PER_SECOND:
            self.db.execute(
                delete(RedirectSession)
                .where(RedirectSession.token == token)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if self.reputation is not None:
                self.reputation.record(ip, REASON_TOO_FAST)
            raise BotDetected(reason=f"provider round trip took {elapsed} ms")

        result = self.db.execute(
            update(RedirectSession)
            .where(
                RedirectSession.token == token,
                RedirectSession.status == STATUS_PENDING,
            )
            .values(status=STATUS_ACTIVE, usage_count=RedirectSession.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            return None
        self._count_visit(link_id, now)
        self.db.commit()
        return RedirectDecision(ACTION_REDIRECT, target, token)

    def visit(self, session: RedirectSession) -> RedirectDecision | None:
        """Spend one use of an active session.

        Returns None when the session is exhausted or expired.
        """
        token, link_id, target = session.token, session.link_id, session.target_url
        now = self.clock.now_ms()
        result = self.db.execute(
            update(RedirectSession)
            .where(
                RedirectSession.token == token,
                RedirectSession.status == STATUS_ACTIVE,
                RedirectSession.used.is_(False),
                RedirectSession.usage_count < RedirectSession.max_uses,
                RedirectSession.created_at > now - self.ttl_ms,
            )
            .values(usage_count=RedirectSession.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.info("Session %s exhausted or expired", token[:8])
            return None
        self._count_visit(link_id, now)
        self.db.commit()
        return RedirectDecision(ACTION_REDIRECT, target, token)

    async def resolve(
        self,
        slug: str,
        ip: str,
        base_url: str,
        *,
        visit_number: int = 1,
        token: str | None = None,
        verified: bool = False,
        cookie_token: str | None = None,
    ) -> RedirectDecision:
        """Decide the next hop for a verified visitor.

        A returning visitor (``token`` with ``verified``) completes the
        provider hop; a visitor holding an active session spends one use;
        anyone else gets a new or reused pending session.
        """
        link = self.find_link(slug)
        session_token = token or cookie_token
        if session_token:
            session = self.db.get(RedirectSession, session_token)
            if session is not None and session.link_id == link.id:
                decision: RedirectDecision | None = None
                if session.status == STATUS_PENDING and verified and token:
                    decision = self.callback(session, ip)
                elif session.status == STATUS_ACTIVE:
                    decision = self.visit(session)
                if decision is not None:
                    return decision
        return await self.create(link, ip, base_url, visit_number)

    def create_single_use(self, link: ProtectedLink, ip: str) -> RedirectSession:
        """Create an active session that can be completed exactly once."""
        session = RedirectSession(
            token=secrets.token_hex(12),
            target_url=link.target_url,
            ip_address=ip,
            link_id=link.id,
            user_id=link.owner_id,
            status=STATUS_ACTIVE,
            max_uses=1,
            usage_count=0,
            created_at=self.clock.now_ms(),
            used=False,
        )
        self.db.add(session)
        self.db.commit()
        return session

    def complete(self, token: str, ip: str, cookie_token: str | None) -> str:
        """Consume a single-use session and return its target.

        Raises:
            NotFound: Unknown token.
            SessionGone: Already used, expired, or consumed concurrently.
            SecurityCheckFailed: IP, cookie or timing mismatch in production.
        """
        session = self.db.get(RedirectSession, token)
        if session is None:
            raise NotFound("session not found")
        if session.used or session.usage_count >= session.max_uses:
            raise SessionGone(reason="already used")

        now = self.clock.now_ms()
        elapsed = now - session.created_at
        if elapsed > self.ttl_ms:
            raise SessionGone(reason="expired")
        if session.ip_address != ip:
            self._pinning_violation("ip_mismatch", token)
        if cookie_token != token:
            self._pinning_violation("cookie_mismatch", token)
        if elapsed < self.config.session_complete_min_seconds * MILLISECONDS_PER_SECOND:
            self._pinning_violation("too_fast", token)

        link_id, target = session.link_id, session.target_url
        result = self.db.execute(
            update(RedirectSession)
            .where(
                RedirectSession.token == token,
                RedirectSession.used.is_(False),
                RedirectSession.usage_count < RedirectSession.max_uses,
            )
            .values(used=True, usage_count=RedirectSession.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise SessionGone(reason="consumed concurrently")
        self._count_visit(link_id, now)
        self.db.commit()
        return target

    def _pinning_violation(self, reason: str, token: str) -> None:
        if not self.config.is_production:
            logger.warning("Session %s completion check failed (%s); allowed outside production",
                           token[:8], reason)
            return
        if reason == "too_fast":
            raise BotDetected(reason=reason)
        raise SecurityCheckFailed(reason=reason)

    def _count_visit(self, link_id: int, now: int) -> None:
        self.db.execute(
            update(ProtectedLink)
            .where(ProtectedLink.id == link_id)
            .values(visit_count=ProtectedLink.visit_count + 1, last_visited_at=now)
            .execution_options(synchronize_session=False)
        )

    def purge_expired(self) -> int:
        """Delete sessions older than the TTL."""
        cutoff = self.clock.now_ms() - self.ttl_ms
        result = self.db.execute(
            delete(RedirectSession)
            .where(RedirectSession.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return int(result.rowcount or 0)
