"""Health check endpoint handler."""

from datetime import UTC, datetime

from fastapi import Request
from fastapi.responses import JSONResponse

from tokenserver.host.wiring import TokenServer
from tokenserver.models.health import HealthCheckResponse
from tokenserver.validation.grants import BUILT_IN_GRANT_TYPES

VERSION = "0.1.0"


async def health_check(token_server: TokenServer) -> JSONResponse:
    """
    Handles the health check request.
    Returns a JSON response with the server's health status.
    """
    extension_grants = token_server.extension_grants.get_registered_grant_types()
    response_model = HealthCheckResponse(
        status="healthy",
        version=VERSION,
        timestamp=datetime.now(UTC),
        grant_types=sorted(BUILT_IN_GRANT_TYPES) + extension_grants,
        extension_grants_loaded=len(extension_grants),
    )
    return JSONResponse(content=response_model.model_dump(mode="json"))


async def health(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return await health_check(request.app.state.token_server)
