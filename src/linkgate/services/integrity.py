"""Stateless request authenticity checks.

Same-origin headers are checked before any heavier verification. Signed
bodies are optional: a body without ``_sig``/``_ts`` passes, a body that
carries them must verify.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from linkgate.core.security import constant_time_equals, hmac_sha256_hex, sha256_hex

DIRECT_ACCESS = "DIRECT_ACCESS"
CROSS_SITE = "CROSS_SITE"
TAMPERED = "TAMPERED"

SIGNATURE_FIELDS = ("_sig", "_ts")

FINGERPRINT_HEADERS = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "sec-ch-ua",
    "sec-ch-ua-mobile",
    "sec-ch-ua-platform",
)


@dataclass(frozen=True)
class AuthenticityResult:
    ok: bool
    code: str | None = None
    reason: str | None = None


_PASS = AuthenticityResult(True)


def check_same_origin(headers: Mapping[str, str]) -> AuthenticityResult:
    """Require Origin (or Referer) to name our Host and Sec-Fetch-Site to agree.

    `headers` must be a case-insensitive mapping such as Starlette's ``Headers``.
    """
    host = headers.get("host") or ""
    if not host or not any(host in (headers.get(name) or "") for name in ("origin", "referer")):
        return AuthenticityResult(False, DIRECT_ACCESS, "origin does not match host")

    fetch_site = headers.get("sec-fetch-site")
    if fetch_site is not None and fetch_site != "same-origin":
        return AuthenticityResult(False, CROSS_SITE, f"sec-fetch-site={fetch_site}")
    return _PASS


def unsigned_body(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return the payload without its signature fields."""
    return {key: value for key, value in payload.items() if key not in SIGNATURE_FIELDS}


def canonical_payload(body: Mapping[str, Any], timestamp: int) -> str:
    return json.dumps(
        {"body": body, "timestamp": timestamp},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def sign_body(body: Mapping[str, Any], timestamp: int, secret: str) -> str:
    """Return the HMAC a client attaches as ``_sig``."""
    return hmac_sha256_hex(secret, canonical_payload(body, timestamp))


def verify_body_signature(
    body: Mapping[str, Any],
    timestamp: object,
    signature: object,
    secret: str | None,
    now_ms: int,
    *,
    max_age_ms: int,
    future_tolerance_ms: int,
) -> AuthenticityResult:
    """Verify an HMAC over ``{"body": body, "timestamp": timestamp}``."""
    if not secret:
        return AuthenticityResult(False, TAMPERED, "request signing secret is not configured")
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        return AuthenticityResult(False, TAMPERED, "malformed timestamp")
    if not isinstance(signature, str) or not signature:
        return AuthenticityResult(False, TAMPERED, "malformed signature")

    age = now_ms - timestamp
    if age > max_age_ms:
        return AuthenticityResult(False, TAMPERED, "signed body is stale")
    if age < -future_tolerance_ms:
        return AuthenticityResult(False, TAMPERED, "signed body is from the future")

    if not constant_time_equals(sign_body(body, timestamp, secret), signature):
        return AuthenticityResult(False, TAMPERED, "signature mismatch")
    return _PASS


def request_fingerprint(headers: Mapping[str, str]) -> str:
    """Return a hash of the browser headers that rarely change within a visit."""
    material = "|".join(headers.get(name) or "" for name in FINGERPRINT_HEADERS)
    return sha256_hex(material)
