from datetime import datetime

from pydantic import BaseModel, Field


class AuthContext(BaseModel):
    """
    The validated bearer access token of a request to a protected endpoint.
    """

    is_valid: bool
    token_hash: str
    scopes: list[str]
    expires_at: datetime | None
    client_id: str | None
    user_id: str | None = Field(None, description="Subject identifier for the user")
