"""Challenge issuance schemas."""

from pydantic import BaseModel, ConfigDict, Field


class ChallengeResponse(BaseModel):
    """Public parameters of an issued proof-of-work challenge."""

    challenge_id: str = Field(..., description="Opaque single-use challenge identifier")
    nonce: str = Field(..., description="Server nonce mixed into the puzzle")
    difficulty: int = Field(..., description="Required count of leading hex zeros")
    signature: str = Field(..., description="Server HMAC over the challenge parameters")
    expires_at: int = Field(..., alias="expiresAt", description="Expiry in epoch milliseconds")

    model_config = ConfigDict(populate_by_name=True)
