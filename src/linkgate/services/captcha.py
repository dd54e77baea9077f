"""CAPTCHA verification against external siteverify endpoints.

Each provider is a ``CaptchaVerifier`` variant with the same contract,
``verify(token, ip) -> bool``. ``CaptchaDelegate`` picks the configured
variant. A verifier without its secret rejects everything.
"""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Mapping
from typing import Any, ClassVar

import httpx
from jose import JWTError, jwt

from linkgate.core.clock import MILLISECONDS_PER_SECOND, Clock, get_clock
from linkgate.core.settings import Settings, settings
from linkgate.models.owner import ROLE_ADMIN

logger = logging.getLogger(__name__)

MODE_RECAPTCHA = "recaptcha"
MODE_TURNSTILE = "turnstile"
MODE_SELF_HOSTED = "self_hosted"


class CaptchaVerifier(ABC):
    """Base verifier posting a token to a siteverify endpoint."""

    mode: ClassVar[str]

    def __init__(
        self,
        secret: str | None,
        verify_url: str | None,
        *,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret = secret
        self.verify_url = verify_url
        self.timeout = httpx.Timeout(timeout)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.secret and self.verify_url)

    async def verify(
        self, token: str, ip: str | None = None, fingerprint: str | None = None
    ) -> bool:
        if not self.configured:
            logger.error("%s CAPTCHA secret is not configured; rejecting", self.mode)
            return False
        if not token:
            return False
        data = await self._siteverify(token, ip)
        if data is None:
            return False
        return self._accept(data)

    def _form(self, token: str, ip: str | None) -> dict[str, str]:
        form = {"secret": self.secret or "", "response": token}
        if ip:
            form["remoteip"] = ip
        return form

    async def _post(self, **kwargs: Any) -> dict[str, Any] | None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.verify_url or "", **kwargs)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning("%s siteverify timed out", self.mode)
            return None
        except httpx.HTTPError as exc:
            logger.warning("%s siteverify failed: %s", self.mode, exc)
            return None
        except ValueError:
            logger.warning("%s siteverify returned malformed JSON", self.mode)
            return None
        if not isinstance(data, dict):
            logger.warning("%s siteverify returned unexpected payload", self.mode)
            return None
        return data

    async def _siteverify(self, token: str, ip: str | None) -> dict[str, Any] | None:
        return await self._post(data=self._form(token, ip))

    def _accept(self, data: Mapping[str, Any]) -> bool:
        return data.get("success") is True


class RecaptchaVerifier(CaptchaVerifier):
    """reCAPTCHA-style verifier. Scored (v3) responses must clear a threshold."""

    mode = MODE_RECAPTCHA

    def __init__(self, *args: Any, min_score: float = 0.5, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.min_score = min_score

    def _accept(self, data: Mapping[str, Any]) -> bool:
        if data.get("success") is not True:
            return False
        score = data.get("score")
        if score is None:
            return True
        try:
            return float(score) >= self.min_score
        except (TypeError, ValueError):
            return False


class TurnstileVerifier(CaptchaVerifier):
    mode = MODE_TURNSTILE


class SelfHostedVerifier(CaptchaVerifier):
    """Verifier for the self-hosted CAPTCHA service.

    Its tokens are JWTs. Cheap local checks on the unverified claims run
    first (expiry, age, IP and fingerprint binding, status) so that
    obviously unusable tokens never reach the network. The remote endpoint
    stays the authority on the signature.
    """

    mode = MODE_SELF_HOSTED

    def __init__(
        self,
        *args: Any,
        max_age_seconds: int = 120,
        clock: Clock | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.max_age_seconds = max_age_seconds
        self.clock = clock or get_clock()

    def precheck(self, token: str, ip: str | None, fingerprint: str | None) -> str | None:
        """Return a rejection reason for the token's claims, or None if plausible."""
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return "malformed"
        now = self.clock.now_ms() // MILLISECONDS_PER_SECOND
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or exp < now:
            return "expired"
        iat = claims.get("iat")
        if not isinstance(iat, (int, float)) or now - iat > self.max_age_seconds:
            return "stale"
        bound_ip = claims.get("ip")
        if bound_ip and ip and bound_ip != ip:
            return "ip_mismatch"
        bound_fingerprint = claims.get("fingerprint")
        if bound_fingerprint and fingerprint and bound_fingerprint != fingerprint:
            return "fingerprint_mismatch"
        if claims.get("status") != "verified":
            return "unverified"
        return None

    async def verify(
        self, token: str, ip: str | None = None, fingerprint: str | None = None
    ) -> bool:
        if not self.configured:
            logger.error("%s CAPTCHA secret is not configured; rejecting", self.mode)
            return False
        if not token:
            return False
        reason = self.precheck(token, ip, fingerprint)
        if reason is not None:
            logger.info("Self-hosted CAPTCHA token rejected locally: %s", reason)
            return False
        data = await self._post(json={"token": token, "secret": self.secret, "ip": ip})
        if data is None:
            return False
        return self._accept(data)


class CaptchaDelegate:
    """Route verification to the configured provider."""

    def __init__(
        self,
        verifiers: Mapping[str, CaptchaVerifier],
        default_mode: str,
        *,
        production: bool,
    ) -> None:
        self.verifiers = dict(verifiers)
        self.default_mode = default_mode
        self.production = production

    async def verify(
        self,
        token: str,
        mode: str | None = None,
        client_ip: str | None = None,
        *,
        fingerprint: str | None = None,
        test_mode: bool = False,
        caller_role: str | None = None,
    ) -> bool:
        """Return True only if the selected provider accepts the token.

        ``test_mode`` skips the provider only outside production and only for
        admin callers; otherwise it is ignored.
        """
        if test_mode:
            if not self.production and caller_role == ROLE_ADMIN:
                logger.warning("CAPTCHA bypassed by admin test mode")
                return True
            logger.warning("CAPTCHA test mode requested without privileges; ignoring")

        selected = mode or self.default_mode
        verifier = self.verifiers.get(selected)
        if verifier is None:
            logger.error("Unknown CAPTCHA mode %r; rejecting", selected)
            return False
        return await verifier.verify(token, ip=client_ip, fingerprint=fingerprint)


def build_captcha_delegate(
    config: Settings = settings,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Clock | None = None,
) -> CaptchaDelegate:
    """Create a delegate with every provider wired from configuration."""
    timeout = config.upstream_timeout_seconds
    verifiers: dict[str, CaptchaVerifier] = {
        MODE_RECAPTCHA: RecaptchaVerifier(
            config.recaptcha_secret_key,
            config.recaptcha_verify_url,
            timeout=timeout,
            transport=transport,
            min_score=config.recaptcha_min_score,
        ),
        MODE_TURNSTILE: TurnstileVerifier(
            config.turnstile_secret_key,
            config.turnstile_verify_url,
            timeout=timeout,
            transport=transport,
        ),
        MODE_SELF_HOSTED: SelfHostedVerifier(
            config.self_hosted_captcha_secret,
            config.self_hosted_captcha_url,
            timeout=timeout,
            transport=transport,
            max_age_seconds=config.self_hosted_token_max_age_seconds,
            clock=clock,
        ),
    }
    return CaptchaDelegate(verifiers, config.captcha_mode, production=config.is_production)


_DELEGATE: CaptchaDelegate | None = None


def get_captcha_delegate() -> CaptchaDelegate:
    """Return the process-wide CAPTCHA delegate."""
    global _DELEGATE
    if _DELEGATE is None:
        _DELEGATE = build_captcha_delegate()
    return _DELEGATE
