"""Challenge issuance and proof verification.

Challenges are signed with a server-only secret so a tampered database row
is detected, and they are consumed by a conditional delete so concurrent
submissions of the same solution cannot both succeed.
"""

from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from linkgate.core.clock import MILLISECONDS_PER_SECOND, Clock
from linkgate.core.errors import ConfigurationError
from linkgate.core.pow import compute_proof, has_leading_zeros, signature_payload
from linkgate.core.security import constant_time_equals, hash_user_agent, hmac_sha256_hex
from linkgate.core.settings import Settings, settings
from linkgate.models import Challenge
from linkgate.services.store import EphemeralStore

logger = logging.getLogger(__name__)

# Rejection reasons returned by ``ChallengeService.verify``
NOT_FOUND = "not_found"
EXPIRED = "expired"
INVALID_SIGNATURE = "invalid_signature"
UA_MISMATCH = "ua_mismatch"
CLOCK_SKEW = "clock_skew"
TOO_FAST = "too_fast"
INVALID_ENTROPY = "invalid_entropy"
INVALID_COUNTER = "invalid_counter"
POW_FAILED = "pow_failed"
INVALID_PROOF = "invalid_proof"


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    error: str | None = None


_OK = VerificationResult(True)


def _reject(reason: str) -> VerificationResult:
    return VerificationResult(False, reason)


def _as_counter(value: object) -> int | None:
    """Return `value` as an int if it is a finite whole number, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return None


class ChallengeService:
    """Mint and verify proof-of-work challenges."""

    def __init__(
        self,
        db: Session,
        store: EphemeralStore,
        clock: Clock,
        config: Settings = settings,
    ) -> None:
        self.db = db
        self.store = store
        self.clock = clock
        self.config = config

    def _secret(self) -> str:
        secret = self.config.challenge_secret
        if not secret:
            raise ConfigurationError(reason="CHALLENGE_SECRET is not configured")
        return secret

    def _sign(self, challenge_id: str, nonce: str, expires_at: int, difficulty: int, ip: str) -> str:
        payload = signature_payload(challenge_id, nonce, expires_at, difficulty, ip)
        return hmac_sha256_hex(self._secret(), payload)

    def issue(self, ip: str, user_agent: str | None = None) -> Challenge | None:
        """Issue a new challenge for `ip`.

        Returns:
            The persisted challenge, or None if the IP exceeded the issue rate.

        Raises:
            ConfigurationError: If the signing secret is missing.
        """
        self._secret()  # fail closed before consuming rate budget

        now = self.clock.now_ms()
        window_ms = self.config.challenge_rate_window_seconds * MILLISECONDS_PER_SECOND
        if not self.store.allow(
            f"challenge-rate:{ip}", self.config.challenge_rate_limit, window_ms, now
        ):
            logger.warning("Challenge rate limit hit for %s", ip)
            return None

        challenge_id = secrets.token_hex(16)
        nonce = secrets.token_hex(16)
        difficulty = self.config.challenge_difficulty
        expires_at = now + self.config.challenge_ttl_seconds * MILLISECONDS_PER_SECOND

        challenge = Challenge(
            challenge_id=challenge_id,
            nonce=nonce,
            difficulty=difficulty,
            signature=self._sign(challenge_id, nonce, expires_at, difficulty, ip),
            expires_at=expires_at,
            ip=ip,
            ua_hash=(
                hash_user_agent(user_agent)
                if user_agent and self.config.challenge_bind_user_agent
                else None
            ),
            created_at=now,
        )
        self.db.add(challenge)
        self.db.commit()
        return challenge

    def verify(
        self,
        challenge_id: str,
        proof: str | None,
        timing: object,
        entropy: str | None,
        counter: object,
        ip: str,
        user_agent: str | None = None,
    ) -> VerificationResult:
        """Check a submitted solution and consume the challenge on success.

        Checks run in a fixed order and the first failure is returned as the
        result's ``error``.
        """
        challenge = self.db.scalars(
            select(Challenge).where(Challenge.challenge_id == challenge_id)
        ).first()
        if challenge is None:
            return _reject(NOT_FOUND)

        now = self.clock.now_ms()
        if now > challenge.expires_at:
            self._discard(challenge_id)
            return _reject(EXPIRED)

        expected_signature = self._sign(
            challenge.challenge_id,
            challenge.nonce,
            challenge.expires_at,
            challenge.difficulty,
            challenge.ip,
        )
        if not constant_time_equals(expected_signature, challenge.signature):
            logger.error("Stored challenge %s failed its signature check", challenge_id)
            self._discard(challenge_id)
            return _reject(INVALID_SIGNATURE)

        if challenge.ua_hash is not None and (
            not user_agent
            or not constant_time_equals(hash_user_agent(user_agent), challenge.ua_hash)
        ):
            return _reject(UA_MISMATCH)

        if challenge.ip != ip:
            # Mobile networks rotate addresses mid-solve; recorded, not enforced.
            logger.info("Challenge %s solved from %s, issued to %s", challenge_id, ip, challenge.ip)

        timing_ms = _as_counter(timing)
        skew_ms = self.config.challenge_clock_skew_seconds * MILLISECONDS_PER_SECOND
        if timing_ms is None or abs(now - timing_ms) > skew_ms:
            return _reject(CLOCK_SKEW)

        if now - challenge.created_at < self.config.challenge_min_solve_ms:
            return _reject(TOO_FAST)

        if not entropy or len(entropy) < self.config.challenge_min_entropy_length:
            return _reject(INVALID_ENTROPY)

        counter_value = _as_counter(counter)
        if counter_value is None or not (0 <= counter_value <= self.config.challenge_max_counter):
            return _reject(INVALID_COUNTER)

        expected = compute_proof(
            challenge.challenge_id, challenge.nonce, timing_ms, entropy, counter_value
        )
        if not has_leading_zeros(expected, challenge.difficulty):
            return _reject(POW_FAILED)
        if not constant_time_equals(expected, proof):
            return _reject(INVALID_PROOF)

        if self._discard(challenge_id) != 1:
            # A concurrent request consumed it between lookup and delete.
            return _reject(NOT_FOUND)
        return _OK

    def _discard(self, challenge_id: str) -> int:
        result = self.db.execute(delete(Challenge).where(Challenge.challenge_id == challenge_id))
        self.db.commit()
        return int(result.rowcount or 0)

    def purge_expired(self) -> int:
        """Delete challenges past expiry or older than the absolute TTL ceiling."""
        now = self.clock.now_ms()
        ceiling = now - self.config.challenge_ttl_seconds * MILLISECONDS_PER_SECOND
        result = self.db.execute(
            delete(Challenge).where(
                (Challenge.expires_at < now) | (Challenge.created_at < ceiling)
            )
        )
        self.db.commit()
        return int(result.rowcount or 0)
