"""
Pydantic schemas for API request/response models.

Field aliases follow the camelCase names browser clients send.
"""

from .challenge import ChallengeResponse
from .link import LinkCreate, LinkCreated, ProviderKeysResponse, ProviderKeysUpdate
from .redirect import RedirectRequest, RedirectResponse
from .session import (
    SessionCompleteRequest,
    SessionCompleteResponse,
    SessionVerifyRequest,
    SessionVerifyResponse,
)

__all__ = [
    "ChallengeResponse",
    "LinkCreate", "LinkCreated", "ProviderKeysResponse", "ProviderKeysUpdate",
    "RedirectRequest", "RedirectResponse",
    "SessionCompleteRequest", "SessionCompleteResponse",
    "SessionVerifyRequest", "SessionVerifyResponse",
]
