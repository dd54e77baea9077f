"""Proof-of-Work helpers.

A challenge is solved by finding a counter for which
``sha256(challenge_id | nonce | timing | entropy | counter)`` starts with
``difficulty`` hex zeros. Fields are concatenated as plain strings with no
separator, matching what browser clients compute.
"""
from __future__ import annotations

import hashlib

HEX_ZERO = "0"
MAX_DIFFICULTY = 64


def signature_payload(
    challenge_id: str, nonce: str, expires_at: int, difficulty: int, ip: str
) -> str:
    """Return the string covered by a challenge signature."""
    return f"{challenge_id}{nonce}{expires_at}{difficulty}{ip}"


def compute_proof(challenge_id: str, nonce: str, timing: int, entropy: str, counter: int) -> str:
    """Return the hex digest a client must submit for the given inputs."""
    material = f"{challenge_id}{nonce}{timing}{entropy}{counter}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def has_leading_zeros(digest_hex: str, difficulty: int) -> bool:
    """Return True if `digest_hex` starts with `difficulty` hex zero characters."""
    if not (0 <= difficulty <= MAX_DIFFICULTY):
        return False
    return digest_hex.startswith(HEX_ZERO * difficulty)
