from datetime import datetime

from pydantic import BaseModel, Field


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Health status")
    version: str = Field(..., description="Server version")
    timestamp: datetime = Field(..., description="Current server time")
    grant_types: list[str] = Field(..., description="Grant types the token endpoint accepts")
    extension_grants_loaded: int = Field(..., description="Number of registered extension grants")
