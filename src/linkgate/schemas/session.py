"""Single-use session schemas."""

from pydantic import BaseModel, ConfigDict, Field


class SessionVerifyRequest(BaseModel):
    slug: str = Field(..., min_length=1, max_length=32)
    captcha_token: str = Field(..., alias="captchaToken", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class SessionVerifyResponse(BaseModel):
    token: str


class SessionCompleteRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=48)


class SessionCompleteResponse(BaseModel):
    url: str
