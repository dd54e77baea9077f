# mypy: ignore-errors
# tests/services/test_captcha.py
"""Tests for CAPTCHA verification and provider routing."""

from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest
from jose import jwt

from linkgate.core.settings import settings
from linkgate.models.owner import ROLE_ADMIN, ROLE_USER
from linkgate.services.captcha import (
    MODE_RECAPTCHA,
    MODE_SELF_HOSTED,
    MODE_TURNSTILE,
    CaptchaDelegate,
    RecaptchaVerifier,
    SelfHostedVerifier,
    TurnstileVerifier,
    build_captcha_delegate,
)

VERIFY_URL = "https://captcha.example/siteverify"


class Recorder:
    """httpx handler returning a canned response and keeping the requests."""

    def __init__(self, response=None, exc=None) -> None:
        self.response = response or httpx.Response(200, json={"success": True})
        self.exc = exc
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        return self.response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def _turnstile(recorder, secret="captcha-secret"):
    return TurnstileVerifier(secret, VERIFY_URL, timeout=1.0, transport=recorder.transport)


@pytest.mark.asyncio
async def test_turnstile_posts_secret_token_and_ip() -> None:
    recorder = Recorder()

    assert await _turnstile(recorder).verify("tok", ip="203.0.113.7")
    form = parse_qs(recorder.requests[0].content.decode())
    assert form == {"secret": ["captcha-secret"], "response": ["tok"], "remoteip": ["203.0.113.7"]}


@pytest.mark.asyncio
async def test_rejected_token() -> None:
    recorder = Recorder(httpx.Response(200, json={"success": False, "error-codes": ["bad"]}))
    assert not await _turnstile(recorder).verify("tok")


@pytest.mark.asyncio
async def test_missing_secret_rejects_without_network() -> None:
    recorder = Recorder()

    assert not await _turnstile(recorder, secret=None).verify("tok")
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_empty_token_is_rejected() -> None:
    recorder = Recorder()
    assert not await _turnstile(recorder).verify("")
    assert recorder.requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "recorder",
    [
        Recorder(exc=httpx.ReadTimeout("timed out")),
        Recorder(exc=httpx.ConnectError("refused")),
        Recorder(httpx.Response(500, json={"success": True})),
        Recorder(httpx.Response(200, content=b"<html>")),
        Recorder(httpx.Response(200, json=["success"])),
    ],
    ids=["timeout", "connect", "server-error", "not-json", "not-object"],
)
async def test_upstream_failures_fail_closed(recorder) -> None:
    assert not await _turnstile(recorder).verify("tok")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"success": True, "score": 0.9}, True),
        ({"success": True, "score": 0.5}, True),
        ({"success": True, "score": 0.3}, False),
        ({"success": True, "score": "n/a"}, False),
        ({"success": True}, True),
        ({"success": False, "score": 0.9}, False),
    ],
)
async def test_recaptcha_score_threshold(payload, expected) -> None:
    recorder = Recorder(httpx.Response(200, json=payload))
    verifier = RecaptchaVerifier(
        "captcha-secret", VERIFY_URL, timeout=1.0, transport=recorder.transport, min_score=0.5
    )
    assert await verifier.verify("tok") is expected


class TestSelfHosted:
    @pytest.fixture
    def recorder(self):
        return Recorder()

    @pytest.fixture
    def verifier(self, recorder, clock):
        return SelfHostedVerifier(
            "captcha-secret",
            VERIFY_URL,
            timeout=1.0,
            transport=recorder.transport,
            max_age_seconds=120,
            clock=clock,
        )

    @staticmethod
    def _token(clock, **claims):
        now = clock.now_ms() // 1000
        payload = {
            "exp": now + 60,
            "iat": now - 5,
            "ip": "203.0.113.7",
            "fingerprint": "fp",
            "status": "verified",
        }
        payload.update(claims)
        return jwt.encode(payload, "issuer-key", algorithm="HS256")

    @pytest.mark.asyncio
    async def test_plausible_token_is_sent_upstream(self, verifier, recorder, clock) -> None:
        token = self._token(clock)

        assert await verifier.verify(token, ip="203.0.113.7", fingerprint="fp")
        body = json.loads(recorder.requests[0].content)
        assert body == {"token": token, "secret": "captcha-secret", "ip": "203.0.113.7"}

    @pytest.mark.parametrize(
        ("claims", "reason"),
        [
            ({"exp": 0}, "expired"),
            ({"iat": 0}, "stale"),
            ({"ip": "198.51.100.20"}, "ip_mismatch"),
            ({"fingerprint": "other"}, "fingerprint_mismatch"),
            ({"status": "pending"}, "unverified"),
        ],
    )
    def test_precheck_reasons(self, verifier, clock, claims, reason) -> None:
        token = self._token(clock, **claims)
        assert verifier.precheck(token, "203.0.113.7", "fp") == reason

    def test_precheck_rejects_non_jwt(self, verifier) -> None:
        assert verifier.precheck("not-a-token", None, None) == "malformed"

    @pytest.mark.asyncio
    async def test_local_rejection_skips_network(self, verifier, recorder, clock) -> None:
        assert not await verifier.verify(self._token(clock, status="pending"))
        assert recorder.requests == []


class TestDelegate:
    @pytest.fixture
    def recorder(self):
        return Recorder(httpx.Response(200, json={"success": False}))

    def _delegate(self, recorder, *, production):
        return CaptchaDelegate(
            {MODE_TURNSTILE: _turnstile(recorder)}, MODE_TURNSTILE, production=production
        )

    @pytest.mark.asyncio
    async def test_admin_test_mode_bypasses_outside_production(self, recorder) -> None:
        delegate = self._delegate(recorder, production=False)

        assert await delegate.verify("tok", test_mode=True, caller_role=ROLE_ADMIN)
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_test_mode_is_ignored_in_production(self, recorder) -> None:
        delegate = self._delegate(recorder, production=True)

        assert not await delegate.verify("tok", test_mode=True, caller_role=ROLE_ADMIN)
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_test_mode_is_ignored_for_regular_owners(self, recorder) -> None:
        delegate = self._delegate(recorder, production=False)
        assert not await delegate.verify("tok", test_mode=True, caller_role=ROLE_USER)

    @pytest.mark.asyncio
    async def test_unknown_mode_rejects(self, recorder) -> None:
        delegate = self._delegate(recorder, production=False)
        assert not await delegate.verify("tok", mode=MODE_RECAPTCHA)


@pytest.mark.asyncio
async def test_default_delegate_without_secrets_rejects_everything(clock) -> None:
    recorder = Recorder()
    config = settings.model_copy(
        update={
            "recaptcha_secret_key": None,
            "turnstile_secret_key": None,
            "self_hosted_captcha_secret": None,
        }
    )
    delegate = build_captcha_delegate(config, transport=recorder.transport, clock=clock)

    for mode in (MODE_RECAPTCHA, MODE_TURNSTILE, MODE_SELF_HOSTED):
        assert not await delegate.verify("tok", mode=mode)
    assert recorder.requests == []
