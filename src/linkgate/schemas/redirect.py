"""Protected redirect schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RedirectRequest(BaseModel):
    """Body of a redirect resolution attempt.

    ``_sig`` and ``_ts`` carry the optional HMAC over the remaining fields.
    """

    slug: str = Field(..., min_length=1, max_length=32)
    captcha_token: str = Field(..., alias="captchaToken", min_length=1)
    challenge_id: str | None = Field(None, description="Identifier of the solved challenge")
    timing: int | None = Field(None, description="Client solve timestamp in epoch ms")
    entropy: str | None = Field(None, description="Client randomness mixed into the proof")
    counter: int | None = Field(None, description="Counter that satisfied the puzzle")
    visit_count: int = Field(1, alias="visitCount", ge=1)
    token: str | None = Field(None, description="Session token returned by the provider hop")
    verified: bool = Field(False, description="Set when returning from the provider hop")
    signature: str | None = Field(None, alias="_sig")
    timestamp: int | None = Field(None, alias="_ts")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RedirectResponse(BaseModel):
    """Next hop for the visitor."""

    url: str
    action: Literal["shorten", "redirect"]
