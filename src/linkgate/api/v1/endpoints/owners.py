"""Owner provider-key management."""

from __future__ import annotations

from fastapi import APIRouter

from linkgate.api.v1.dependencies import CurrentOwnerDep, SessionDep, ShortenerDep
from linkgate.core.errors import BadRequest
from linkgate.schemas import ProviderKeysResponse, ProviderKeysUpdate

router = APIRouter(prefix="/owners", tags=["owners"])


@router.put("/me/provider-keys", response_model=ProviderKeysResponse)
async def update_provider_keys(
    payload: ProviderKeysUpdate,
    owner: CurrentOwnerDep,
    db: SessionDep,
    shortener: ShortenerDep,
) -> ProviderKeysResponse:
    """Validate submitted keys against their providers and store them.

    Empty values remove a stored key. Nothing is saved if any key is rejected.
    """
    unknown = sorted(name for name in payload.keys if not shortener.supports(name))
    if unknown:
        raise BadRequest(f"unknown provider: {', '.join(unknown)}", code="UNKNOWN_PROVIDER")

    to_check = {name: key.strip() for name, key in payload.keys.items() if key.strip()}
    results = await shortener.validate_keys(to_check)
    rejected = sorted(name for name, ok in results.items() if not ok)
    if rejected:
        raise BadRequest(f"invalid provider key: {', '.join(rejected)}", code="INVALID_KEY")

    keys = dict(owner.provider_keys or {})
    for name, key in payload.keys.items():
        if key.strip():
            keys[name] = key.strip()
        else:
            keys.pop(name, None)
    owner.provider_keys = keys
    db.commit()
    return ProviderKeysResponse(providers=sorted(owner.configured_providers()))
