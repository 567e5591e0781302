"""UserInfo endpoint handler. Runs behind the bearer token middleware."""

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette import status

from tokenserver.middleware.oauth import _build_oauth_error_response_json
from tokenserver.models.auth import AuthContext
from tokenserver.models.resources import OPENID, ResolvedResources
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)


async def userinfo_endpoint(request: Request) -> JSONResponse:
    """Claims about the token's subject, limited to the identity scopes the token carries."""
    auth_context: AuthContext = request.state.auth_context
    token_server = request.app.state.token_server
    bound_logger = logger.bind(client_id=auth_context.client_id, token_hash=auth_context.token_hash[:8])

    if OPENID not in auth_context.scopes:
        bound_logger.info("userinfo_insufficient_scope", scopes=auth_context.scopes)
        return _build_oauth_error_response_json(
            "insufficient_scope", "The access token lacks the openid scope", status.HTTP_403_FORBIDDEN
        )

    subject = auth_context.user_id
    if not subject or not await token_server.users.is_active(subject):
        bound_logger.info("userinfo_subject_not_active", user_id=subject)
        return _build_oauth_error_response_json("invalid_token", "The access token is invalid")

    identity_resources = await token_server.resources.find_identity_resources(auth_context.scopes)
    claims: dict[str, Any] = await token_server.claims.identity_claims(
        subject, ResolvedResources(identity_resources=tuple(identity_resources))
    )
    bound_logger.info("userinfo_returned", user_id=subject, claim_types=sorted(claims))
    return JSONResponse(content={"sub": subject, **claims}, headers={"Cache-Control": "no-store"})
