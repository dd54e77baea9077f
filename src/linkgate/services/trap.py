"""Resource-trap tokens and the honeypot flag.

The trap pixel sets ``nonce.bucket.signature`` where ``bucket`` is the hour
of issue and the signature is ``HMAC(secret, "trap-proof:<nonce>:<bucket>")``.
A token stays valid for the hour it was issued in and the following one.
"""

from __future__ import annotations

import base64
import logging
import re
import secrets
from dataclasses import dataclass

from linkgate.core.security import constant_time_equals, hmac_sha256_hex

logger = logging.getLogger(__name__)

BUCKET_MS = 3_600_000
VALID_BUCKETS = 2
TRAP_COOKIE_MAX_AGE = VALID_BUCKETS * BUCKET_MS // 1000
BOT_FLAG_MAX_AGE = 365 * 24 * 3600

# Transparent 1x1 GIF
TRAP_PIXEL = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

RESOURCE_TRAP = "RESOURCE_TRAP"
INVALID_PROOF_FMT = "INVALID_PROOF_FMT"
EXPIRED_PROOF = "EXPIRED_PROOF"
INVALID_SIG = "INVALID_SIG"
HONEYPOT = "HONEYPOT"

_NONCE_RE = re.compile(r"^[0-9a-f]{8,64}$")
_SIG_RE = re.compile(r"^[0-9a-f]{64}$")


@dataclass(frozen=True)
class TrapResult:
    valid: bool
    code: str | None = None


class ResourceTrap:
    """Sign and check resource-trap tokens."""

    def __init__(self, secret: str | None) -> None:
        self._secret = secret

    @staticmethod
    def bucket_for(now_ms: int) -> int:
        return now_ms // BUCKET_MS

    def _signature(self, secret: str, nonce: str, bucket: int) -> str:
        return hmac_sha256_hex(secret, f"trap-proof:{nonce}:{bucket}")

    def issue(self, now_ms: int) -> str | None:
        """Return a fresh trap token, or None when no signing secret is configured."""
        if not self._secret:
            logger.error("Resource trap secret is not configured; trap cookies disabled")
            return None
        nonce = secrets.token_hex(16)
        bucket = self.bucket_for(now_ms)
        return f"{nonce}.{bucket}.{self._signature(self._secret, nonce, bucket)}"

    def validate(self, token: str | None, now_ms: int) -> TrapResult:
        """Check a trap cookie value."""
        if not token:
            return TrapResult(False, RESOURCE_TRAP)

        parts = token.split(".")
        if len(parts) != 3:
            return TrapResult(False, INVALID_PROOF_FMT)
        nonce, bucket_raw, signature = parts
        if not _NONCE_RE.match(nonce) or not bucket_raw.isdigit() or not _SIG_RE.match(signature):
            return TrapResult(False, INVALID_PROOF_FMT)

        bucket = int(bucket_raw)
        age = self.bucket_for(now_ms) - bucket
        if not (0 <= age < VALID_BUCKETS):
            return TrapResult(False, EXPIRED_PROOF)

        if not self._secret:
            logger.error("Resource trap secret is not configured; rejecting trap proof")
            return TrapResult(False, INVALID_SIG)
        if not constant_time_equals(self._signature(self._secret, nonce, bucket), signature):
            return TrapResult(False, INVALID_SIG)
        return TrapResult(True)
