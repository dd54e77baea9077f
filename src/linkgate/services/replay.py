"""Replay protection for CAPTCHA tokens and whole redirect requests."""

from __future__ import annotations

import logging

from linkgate.core.clock import MILLISECONDS_PER_SECOND, Clock
from linkgate.core.settings import Settings, settings
from linkgate.services.store import EphemeralStore
from linkgate.utils.hash import storage_key

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "replay:token:"
REQUEST_PREFIX = "replay:request:"
TOKEN_PREFIX_LENGTH = 50


class ReplayGuard:
    """Remember hashed tokens and request fingerprints for a bounded window.

    Raw tokens are never stored; keys are BLAKE3 digests.
    """

    def __init__(self, store: EphemeralStore, clock: Clock, config: Settings = settings) -> None:
        self.store = store
        self.clock = clock
        self._token_ttl_ms = config.replay_token_window_seconds * MILLISECONDS_PER_SECOND
        self._request_ttl_ms = config.replay_request_window_seconds * MILLISECONDS_PER_SECOND

    @staticmethod
    def _token_key(token: str) -> str:
        return TOKEN_PREFIX + storage_key(token)

    @staticmethod
    def _request_key(slug: str, challenge_id: str, token: str) -> str:
        return REQUEST_PREFIX + storage_key(slug, challenge_id, token[:TOKEN_PREFIX_LENGTH])

    def is_used(self, token: str) -> bool:
        """Return True if the token was seen within the token window."""
        return self.store.exists(self._token_key(token), self.clock.now_ms())

    def mark_used(self, token: str, ip: str) -> bool:
        """Record the token. Return False if another request recorded it first."""
        claimed = self.store.claim(
            self._token_key(token), self._token_ttl_ms, self.clock.now_ms(), value=ip
        )
        if not claimed:
            logger.warning("Token replay from %s", ip)
        return claimed

    def is_request_processed(self, slug: str, challenge_id: str, token: str) -> bool:
        return self.store.exists(
            self._request_key(slug, challenge_id, token), self.clock.now_ms()
        )

    def mark_request_processed(self, slug: str, challenge_id: str, token: str) -> bool:
        return self.store.claim(
            self._request_key(slug, challenge_id, token),
            self._request_ttl_ms,
            self.clock.now_ms(),
        )

    def stats(self) -> dict[str, int]:
        """Return how many tokens and request fingerprints are currently tracked."""
        return {
            "tokens": self.store.size(TOKEN_PREFIX),
            "requests": self.store.size(REQUEST_PREFIX),
        }
