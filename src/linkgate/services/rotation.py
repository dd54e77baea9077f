"""Provider rotation across repeated visits to the same link.

Visit ``v`` starts its chain at ``providerIndex = ((v - 1) mod N) + 1`` and
wraps around, so each visit prefers a different provider while every
provider remains a fallback. Visits without an entry use the default chain.
"""

from __future__ import annotations

from collections.abc import Collection

PROVIDER_ORDER: tuple[str, ...] = ("linkshortify", "arolinks", "vplink", "inshorturl")
DEFAULT_PROVIDER = PROVIDER_ORDER[0]


def _chain(visit_number: int) -> tuple[str, ...]:
    n = len(PROVIDER_ORDER)
    start = (visit_number - 1) % n
    return tuple(PROVIDER_ORDER[(start + offset) % n] for offset in range(n))


PRIORITY_CHAINS: dict[int, tuple[str, ...]] = {
    visit: _chain(visit) for visit in range(1, len(PROVIDER_ORDER) + 1)
}
DEFAULT_CHAIN = PRIORITY_CHAINS[1]


def provider_chain(visit_number: int) -> tuple[str, ...]:
    return PRIORITY_CHAINS.get(visit_number, DEFAULT_CHAIN)


def candidate_providers(visit_number: int, configured: Collection[str]) -> list[str]:
    """Return configured providers in the order they should be tried."""
    return [name for name in provider_chain(visit_number) if name in configured]


def select_provider(visit_number: int, configured: Collection[str]) -> str | None:
    """Return the provider for this visit, or None if the owner configured none."""
    candidates = candidate_providers(visit_number, configured)
    return candidates[0] if candidates else None
