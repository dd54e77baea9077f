"""Owner-facing schemas for links and provider credentials."""

from pydantic import BaseModel, ConfigDict, Field


class LinkCreate(BaseModel):
    """Request to protect a destination URL."""

    url: str = Field(..., min_length=1, max_length=2048, description="Destination URL")
    captcha_token: str | None = Field(None, alias="captchaToken")
    test_mode: bool = Field(False, alias="testMode")

    model_config = ConfigDict(populate_by_name=True)


class LinkCreated(BaseModel):
    slug: str
    link: str = Field(..., description="Public URL visitors open")


class ProviderKeysUpdate(BaseModel):
    """Provider API keys to validate and store; an empty value removes a key."""

    keys: dict[str, str] = Field(default_factory=dict)


class ProviderKeysResponse(BaseModel):
    providers: list[str] = Field(..., description="Providers with a stored key")
