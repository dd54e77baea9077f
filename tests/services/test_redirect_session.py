# mypy: ignore-errors
# tests/services/test_redirect_session.py
"""Tests for the redirect session state machine."""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy import func, select, update

from linkgate.core.errors import (
    BotDetected,
    ConfigurationError,
    NotFound,
    SecurityCheckFailed,
    SessionGone,
    UpstreamError,
)
from linkgate.core.settings import settings
from linkgate.models import ProtectedLink, RedirectSession, SuspiciousIP
from linkgate.models.redirect_session import STATUS_ACTIVE, STATUS_PENDING
from linkgate.services.redirect_session import (
    ACTION_REDIRECT,
    ACTION_SHORTEN,
    RedirectSessionManager,
)
from linkgate.services.reputation import REASON_TOO_FAST, ReputationService

IP = "203.0.113.7"
BASE_URL = "https://gate.example"
TARGET = "https://example.com/final"


@pytest.fixture
def manager(db_session, fake_shortener, clock) -> RedirectSessionManager:
    return RedirectSessionManager(
        db_session, fake_shortener, clock, ReputationService(db_session, clock)
    )


def _session(db_session, token) -> RedirectSession:
    return db_session.scalars(select(RedirectSession).where(RedirectSession.token == token)).one()


def _callback_token(url: str) -> str:
    return parse_qs(urlsplit(url).query)["token"][0]


def _session_count(db_session) -> int:
    return db_session.scalar(select(func.count()).select_from(RedirectSession))


@pytest.mark.asyncio
async def test_first_visit_starts_pending_session(manager, db_session, fake_shortener, link) -> None:
    decision = await manager.resolve(link.slug, IP, BASE_URL)

    assert decision.action == ACTION_SHORTEN
    provider, api_key, callback = fake_shortener.calls[0]
    assert (provider, api_key) == ("linkshortify", "key-ls")
    assert callback.startswith(f"{BASE_URL}/go/{link.slug}?")
    assert parse_qs(urlsplit(callback).query)["verified"] == ["true"]
    assert _callback_token(callback) == decision.token

    session = _session(db_session, decision.token)
    assert session.status == STATUS_PENDING
    assert session.short_link == decision.url
    assert session.provider == "linkshortify"
    assert session.max_uses == settings.session_max_uses


@pytest.mark.asyncio
async def test_refresh_reuses_pending_session(manager, db_session, fake_shortener, link) -> None:
    first = await manager.resolve(link.slug, IP, BASE_URL)
    second = await manager.resolve(link.slug, IP, BASE_URL)

    assert second == first
    assert len(fake_shortener.calls) == 1
    assert _session_count(db_session) == 1


@pytest.mark.asyncio
async def test_other_ip_gets_its_own_session(manager, fake_shortener, link) -> None:
    first = await manager.resolve(link.slug, IP, BASE_URL)
    second = await manager.resolve(link.slug, "198.51.100.20", BASE_URL)

    assert second.token != first.token
    assert len(fake_shortener.calls) == 2


@pytest.mark.asyncio
async def test_visit_number_rotates_provider(manager, fake_shortener, link) -> None:
    await manager.resolve(link.slug, IP, BASE_URL, visit_number=2)
    assert fake_shortener.calls[0][0] == "arolinks"


@pytest.mark.asyncio
async def test_falls_back_to_next_provider(manager, db_session, fake_shortener, link) -> None:
    fake_shortener.failing = {"linkshortify"}

    decision = await manager.resolve(link.slug, IP, BASE_URL)

    assert [call[0] for call in fake_shortener.calls] == ["linkshortify", "arolinks"]
    assert _session(db_session, decision.token).provider == "arolinks"


@pytest.mark.asyncio
async def test_stops_after_one_fallback(manager, db_session, fake_shortener, owner, link) -> None:
    owner.provider_keys = {"linkshortify": "a", "arolinks": "b", "vplink": "c"}
    db_session.commit()
    fake_shortener.failing = {"linkshortify", "arolinks"}

    with pytest.raises(UpstreamError) as excinfo:
        await manager.resolve(link.slug, IP, BASE_URL)

    assert excinfo.value.status_code == 502
    assert [call[0] for call in fake_shortener.calls] == ["linkshortify", "arolinks"]


@pytest.mark.asyncio
async def test_owner_without_keys(manager, db_session, fake_shortener, owner, link) -> None:
    owner.provider_keys = {}
    db_session.commit()

    with pytest.raises(ConfigurationError) as excinfo:
        await manager.resolve(link.slug, IP, BASE_URL)

    assert excinfo.value.code == "KEY_MISSING"
    assert fake_shortener.calls == []


@pytest.mark.asyncio
async def test_unknown_slug(manager) -> None:
    with pytest.raises(NotFound):
        await manager.resolve("missing", IP, BASE_URL)


@pytest.mark.asyncio
async def test_full_session_lifecycle(manager, db_session, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=80)

    first = await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)
    assert first.action == ACTION_REDIRECT
    assert first.url == TARGET
    session = _session(db_session, pending.token)
    assert session.status == STATUS_ACTIVE
    assert session.usage_count == 1

    for expected_uses in (2, 3):
        decision = await manager.resolve(link.slug, IP, BASE_URL, cookie_token=pending.token)
        assert decision.action == ACTION_REDIRECT
        assert _session(db_session, pending.token).usage_count == expected_uses

    exhausted = await manager.resolve(link.slug, IP, BASE_URL, cookie_token=pending.token)
    assert exhausted.action == ACTION_SHORTEN
    assert exhausted.token != pending.token
    assert db_session.get(ProtectedLink, link.id).visit_count == 3


@pytest.mark.asyncio
async def test_fast_round_trip_is_a_bot(manager, db_session, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=10)

    with pytest.raises(BotDetected) as excinfo:
        await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)

    assert excinfo.value.status_code == 403
    assert _session_count(db_session) == 0
    reasons = db_session.scalars(select(SuspiciousIP.reason)).all()
    assert reasons == [REASON_TOO_FAST]


@pytest.mark.asyncio
async def test_late_callback_starts_over(manager, db_session, fake_shortener, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=settings.session_ttl_seconds + 1)

    decision = await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)

    assert decision.action == ACTION_SHORTEN
    assert decision.token != pending.token
    assert len(fake_shortener.calls) == 2


@pytest.mark.asyncio
async def test_callback_without_verified_flag_does_not_activate(manager, db_session, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=80)

    decision = await manager.resolve(link.slug, IP, BASE_URL, token=pending.token)

    assert decision.action == ACTION_SHORTEN
    assert _session(db_session, pending.token).status == STATUS_PENDING


@pytest.mark.asyncio
async def test_active_session_expires(manager, db_session, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=80)
    await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)
    clock.advance(seconds=settings.session_ttl_seconds)

    decision = await manager.resolve(link.slug, IP, BASE_URL, cookie_token=pending.token)
    assert decision.action == ACTION_SHORTEN


@pytest.mark.asyncio
async def test_session_for_another_link_is_ignored(manager, db_session, clock, owner, link) -> None:
    other = ProtectedLink(slug="zzz999", target_url="https://other.example/", owner_id=owner.id,
                          created_at=clock.now_ms(), visit_count=0)
    db_session.add(other)
    db_session.commit()
    pending = await manager.resolve(other.slug, IP, BASE_URL)
    clock.advance(seconds=80)

    decision = await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)
    assert decision.action == ACTION_SHORTEN
    assert _session(db_session, pending.token).status == STATUS_PENDING


@pytest.mark.asyncio
async def test_stale_view_cannot_exceed_usage_cap(manager, db_session, clock, link) -> None:
    pending = await manager.resolve(link.slug, IP, BASE_URL)
    clock.advance(seconds=80)
    await manager.resolve(link.slug, IP, BASE_URL, token=pending.token, verified=True)
    stale = _session(db_session, pending.token)
    db_session.execute(
        update(RedirectSession)
        .where(RedirectSession.token == pending.token)
        .values(usage_count=settings.session_max_uses)
        .execution_options(synchronize_session=False)
    )
    db_session.commit()

    assert manager.visit(stale) is None
    assert _session(db_session, pending.token).usage_count == settings.session_max_uses


class TestSingleUse:
    @pytest.fixture
    def session(self, manager, link) -> RedirectSession:
        return manager.create_single_use(link, IP)

    def test_complete_once(self, manager, db_session, clock, session, link) -> None:
        token = session.token
        clock.advance(seconds=6)

        assert manager.complete(token, IP, token) == TARGET
        with pytest.raises(SessionGone) as excinfo:
            manager.complete(token, IP, token)
        assert excinfo.value.status_code == 410
        assert db_session.get(ProtectedLink, link.id).visit_count == 1

    def test_unknown_token(self, manager) -> None:
        with pytest.raises(NotFound):
            manager.complete("missing", IP, "missing")

    def test_expired(self, manager, clock, session) -> None:
        token = session.token
        clock.advance(seconds=settings.session_ttl_seconds + 1)
        with pytest.raises(SessionGone):
            manager.complete(token, IP, token)

    def test_single_use_session_cannot_be_visited(self, manager, clock, session) -> None:
        token = session.token
        clock.advance(seconds=6)
        manager.complete(token, IP, token)

        assert manager.visit(session) is None

    def test_pinning_is_advisory_outside_production(self, manager, clock, session) -> None:
        token = session.token
        assert manager.complete(token, "198.51.100.20", None) == TARGET

    @pytest.mark.parametrize(
        ("ip", "use_cookie", "wait", "error"),
        [
            ("198.51.100.20", True, 6, SecurityCheckFailed),
            (IP, False, 6, SecurityCheckFailed),
            (IP, True, 1, BotDetected),
        ],
        ids=["ip-mismatch", "cookie-mismatch", "too-fast"],
    )
    def test_pinning_is_enforced_in_production(
        self, db_session, fake_shortener, clock, session, ip, use_cookie, wait, error
    ) -> None:
        config = settings.model_copy(update={"app_env": "production"})
        manager = RedirectSessionManager(db_session, fake_shortener, clock, config=config)
        token = session.token
        clock.advance(seconds=wait)

        with pytest.raises(error):
            manager.complete(token, ip, token if use_cookie else "other-token")
        assert _session(db_session, token).used is False


def test_purge_expired(manager, db_session, clock, link) -> None:
    manager.create_single_use(link, IP)
    clock.advance(seconds=settings.session_ttl_seconds + 1)
    manager.create_single_use(link, IP)

    assert manager.purge_expired() == 1
    assert _session_count(db_session) == 1
