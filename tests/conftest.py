# tests/conftest.py
from __future__ import annotations

import os
import secrets
import time
from collections.abc import Callable, Generator, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CHALLENGE_SECRET", "test-challenge-secret")
os.environ.setdefault("REQUEST_SIGNING_SECRET", "test-request-signing-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MAINTENANCE_ENABLED", "false")
os.environ.setdefault("STORE_BACKEND", "memory")

from linkgate.core.clock import get_clock
from linkgate.core.security import create_access_token
from linkgate.db.session import Base, build_engine
from linkgate.db.session import get_db as app_get_session
from linkgate.main import app as fastapi_app
from linkgate.models import Owner, ProtectedLink
from linkgate.services.captcha import get_captcha_delegate
from linkgate.services.shortener import PROVIDERS, ShortenerError, get_shortener
from linkgate.services.store import MemoryStore, get_store
from linkgate.utils.pow_client import solve_challenge

TEST_DB_URL = "sqlite://"
DAY_MS = 24 * 3600 * 1000
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"
TARGET_URL = "https://example.com/final"


class FakeClock:
    """Manually advanced clock starting at the real current time."""

    def __init__(self, start_ms: int | None = None) -> None:
        self._now = start_ms if start_ms is not None else int(time.time() * 1000)

    def now_ms(self) -> int:
        return self._now

    def advance(self, *, seconds: float = 0, ms: int = 0) -> None:
        self._now += int(seconds * 1000) + ms


class FakeShortener:
    """Stands in for upstream providers; providers in `failing` raise."""

    def __init__(self) -> None:
        self.failing: set[str] = set()
        self.calls: list[tuple[str, str, str]] = []

    def supports(self, provider: str) -> bool:
        return provider in PROVIDERS

    async def shorten(self, provider: str, api_key: str, url: str) -> str:
        self.calls.append((provider, api_key, url))
        if provider in self.failing:
            raise ShortenerError(f"{provider} unavailable")
        return f"https://{provider}.example/s/{len(self.calls)}"

    async def validate_keys(self, keys: dict[str, str]) -> dict[str, bool]:
        return {name: key != "bad-key" for name, key in keys.items()}


class FakeCaptcha:
    """CAPTCHA delegate that records calls and returns `result`."""

    def __init__(self) -> None:
        self.result = True
        self.calls: list[dict[str, Any]] = []

    async def verify(self, token: str, mode: str | None = None, client_ip: str | None = None,
                     **kwargs: Any) -> bool:
        self.calls.append({"token": token, "mode": mode, "client_ip": client_ip, **kwargs})
        return self.result


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def fake_shortener() -> FakeShortener:
    return FakeShortener()


@pytest.fixture()
def fake_captcha() -> FakeCaptcha:
    return FakeCaptcha()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    clock: FakeClock,
    store: MemoryStore,
    fake_captcha: FakeCaptcha,
    fake_shortener: FakeShortener,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        app_get_session: _get_session_override,
        get_clock: lambda: clock,
        get_store: lambda: store,
        get_captcha_delegate: lambda: fake_captcha,
        get_shortener: lambda: fake_shortener,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def browser_headers() -> dict[str, str]:
    """Headers a same-origin browser fetch would carry."""
    return {
        "Origin": "http://testserver",
        "Sec-Fetch-Site": "same-origin",
        "User-Agent": BROWSER_UA,
    }


@pytest.fixture()
def owner(db_session: Session, clock: FakeClock) -> Owner:
    owner = Owner(
        email="owner@example.com",
        role="user",
        valid_until=clock.now_ms() + 30 * DAY_MS,
        provider_keys={"linkshortify": "key-ls", "arolinks": "key-aro"},
        links_created=0,
        created_at=clock.now_ms(),
    )
    db_session.add(owner)
    db_session.commit()
    return owner


@pytest.fixture()
def link(db_session: Session, owner: Owner, clock: FakeClock) -> ProtectedLink:
    link = ProtectedLink(
        slug="abc123",
        target_url=TARGET_URL,
        owner_id=owner.id,
        created_at=clock.now_ms(),
        visit_count=0,
    )
    db_session.add(link)
    db_session.commit()
    return link


@pytest.fixture()
def auth_headers(owner: Owner) -> dict[str, str]:
    """Return authorization headers for the link owner."""
    return {"Authorization": f"Bearer {create_access_token(str(owner.id))}"}


@pytest.fixture()
def redirect_request(
    client: TestClient, clock: FakeClock, browser_headers: dict[str, str]
) -> Callable[..., tuple[dict[str, Any], dict[str, str]]]:
    """Return a factory that fetches and solves a challenge, then builds a redirect body.

    The clock is advanced by `solve_seconds` between issuance and submission.
    """

    def _build(
        slug: str = "abc123",
        solve_seconds: float = 2,
        **fields: Any,
    ) -> tuple[dict[str, Any], dict[str, str]]:
        response = client.get("/api/v1/challenge", headers=browser_headers)
        assert response.status_code == 200, response.text
        challenge = response.json()
        solution = solve_challenge(
            challenge["challenge_id"],
            challenge["nonce"],
            challenge["difficulty"],
            timing=clock.now_ms(),
        )
        clock.advance(seconds=solve_seconds)
        body: dict[str, Any] = {
            "slug": slug,
            "captchaToken": f"captcha-{secrets.token_hex(8)}",
            "challenge_id": challenge["challenge_id"],
            "timing": solution.timing,
            "entropy": solution.entropy,
            "counter": solution.counter,
        }
        body.update(fields)
        headers = {**browser_headers, "X-Client-Proof": solution.proof}
        return body, headers

    return _build
