"""Client for upstream monetized URL-shortening providers.

Every supported provider exposes the same API shape: a GET with ``api`` (the
owner's key), ``url`` and ``format=json`` that answers with
``{"status": "success", "shortenedUrl": ...}`` or an error status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from linkgate.core.settings import settings

logger = logging.getLogger(__name__)

KEY_PROBE_URL = "https://example.com/"


class ShortenerError(RuntimeError):
    """Raised when a provider cannot shorten a URL."""


@dataclass(frozen=True)
class ProviderSpec:
    name: str
    api_url: str


PROVIDERS: dict[str, ProviderSpec] = {
    spec.name: spec
    for spec in (
        ProviderSpec("linkshortify", "https://linkshortify.com/api"),
        ProviderSpec("arolinks", "https://arolinks.com/api"),
        ProviderSpec("vplink", "https://vplink.in/api"),
        ProviderSpec("inshorturl", "https://inshorturl.com/api"),
    )
}


class ShortenerClient:
    """Shorten URLs through a named provider with a bounded timeout."""

    def __init__(
        self,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        providers: Mapping[str, ProviderSpec] | None = None,
    ) -> None:
        self.timeout = httpx.Timeout(timeout or settings.upstream_timeout_seconds)
        self.providers = dict(providers or PROVIDERS)
        self._transport = transport

    def supports(self, provider: str) -> bool:
        return provider in self.providers

    async def shorten(self, provider: str, api_key: str, url: str) -> str:
        """Return the provider's short URL for `url`.

        Raises:
            ShortenerError: On unknown provider, timeout, transport failure or
                a response without a usable short URL.
        """
        spec = self.providers.get(provider)
        if spec is None:
            raise ShortenerError(f"Unknown provider {provider!r}")

        params = {"api": api_key, "url": url, "format": "json"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(spec.api_url, params=params)
                response.raise_for_status()
                payload: Any = response.json()
        except httpx.TimeoutException as exc:
            raise ShortenerError(f"{provider} timed out") from exc
        except httpx.HTTPError as exc:
            raise ShortenerError(f"{provider} request failed: {exc}") from exc
        except ValueError as exc:
            raise ShortenerError(f"{provider} returned malformed JSON") from exc

        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise ShortenerError(f"{provider} rejected the request")
        short_url = payload.get("shortenedUrl")
        if not isinstance(short_url, str) or not short_url.startswith(("http://", "https://")):
            raise ShortenerError(f"{provider} returned no short URL")
        return short_url

    async def validate_key(self, provider: str, api_key: str) -> bool:
        """Return True if the provider accepts `api_key`."""
        try:
            await self.shorten(provider, api_key, KEY_PROBE_URL)
        except ShortenerError as exc:
            logger.info("Key validation failed for %s: %s", provider, exc)
            return False
        return True

    async def validate_keys(self, keys: Mapping[str, str]) -> dict[str, bool]:
        """Validate several provider keys concurrently."""
        names = list(keys)
        results = await asyncio.gather(*(self.validate_key(name, keys[name]) for name in names))
        return dict(zip(names, results, strict=True))


_CLIENT: ShortenerClient | None = None


def get_shortener() -> ShortenerClient:
    """Return the process-wide shortener client."""
    global _CLIENT
    if _CLIENT is None:
        _CLIENT = ShortenerClient()
    return _CLIENT
