"""BLAKE3 hashing helpers used for storage keys."""

from __future__ import annotations

from blake3 import blake3


def blake3_hexdigest(data: bytes) -> str:
    """Return the hexadecimal digest of the supplied data."""
    return blake3(data).hexdigest()


def storage_key(*parts: str) -> str:
    """Return a stable hex key for a tuple of strings without storing them raw."""
    return blake3_hexdigest(":".join(parts).encode("utf-8"))
