import hashlib
import time
from datetime import UTC, datetime

from authlib.jose import JoseError, JsonWebToken, KeySet
from starlette import status
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from tokenserver.config import get_config
from tokenserver.models.auth import AuthContext
from tokenserver.services.token_issuer import SUPPORTED_ALGORITHMS
from tokenserver.utils.context import auth_context_var
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)

OAUTH_VALIDATION_TIMEOUT_MS = 50

ACCESS_TOKEN_TYPES = frozenset({"at+jwt", "application/at+jwt"})

_access_token_jwt = JsonWebToken(SUPPORTED_ALGORITHMS)


class OAuthError(Exception):
    """Custom exception for OAuth related errors."""

    def __init__(self, error: str, description: str, status_code: int):
        self.error = error
        self.description = description
        self.status_code = status_code
        super().__init__(f"{error}: {description}")


def _scopes(claims: dict) -> list[str]:
    scope = claims.get("scope") or []
    if isinstance(scope, str):
        return scope.split()
    return [str(value) for value in scope]


def validate_access_token(token: str, token_hash: str, issuer: str, key_set: KeySet) -> AuthContext:
    """Validates an access token issued by this server against its own signing keys."""
    start_time = time.monotonic()

    try:
        claims = _access_token_jwt.decode(
            token,
            key_set,
            claims_options={
                "iss": {"essential": True, "value": issuer},
                "exp": {"essential": True},
                "iat": {"essential": True},
                "nbf": {"essential": False},
            },
        )
        claims.validate()
    except JoseError as e:
        logger.warning("oauth_jwt_validation_failed", token_hash=token_hash[:8], error=str(e))
        raise OAuthError("invalid_token", "The access token is invalid", status.HTTP_401_UNAUTHORIZED) from e
    except ValueError as e:
        # Unknown kid or a malformed token
        logger.warning("oauth_jwt_malformed", token_hash=token_hash[:8], error=str(e))
        raise OAuthError("invalid_token", "The access token is invalid", status.HTTP_401_UNAUTHORIZED) from e

    # Identity tokens are signed with the same keys; only access tokens are accepted here
    token_type = str(claims.header.get("typ", "")).lower()
    if token_type not in ACCESS_TOKEN_TYPES:
        logger.warning("oauth_jwt_wrong_type", token_hash=token_hash[:8], typ=token_type)
        raise OAuthError("invalid_token", "The access token is invalid", status.HTTP_401_UNAUTHORIZED)

    auth_context = AuthContext(
        is_valid=True,
        token_hash=token_hash,
        scopes=_scopes(claims),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=UTC),
        client_id=claims.get("client_id"),
        user_id=claims.get("sub"),
    )

    validation_duration_ms = (time.monotonic() - start_time) * 1000
    logger.info(
        "oauth_token_validated",
        token_hash=token_hash[:8],
        client_id=auth_context.client_id,
        user_id=auth_context.user_id,
        duration_ms=round(validation_duration_ms, 2),
    )
    if validation_duration_ms > OAUTH_VALIDATION_TIMEOUT_MS:
        logger.warning(
            "oauth_validation_performance_alert",
            duration_ms=round(validation_duration_ms, 2),
            threshold_ms=OAUTH_VALIDATION_TIMEOUT_MS,
        )
    return auth_context


def _build_oauth_error_response_json(
    error: str, description: str, status_code: int = status.HTTP_401_UNAUTHORIZED
) -> JSONResponse:
    """Builds an OAuth 2.0 compliant error JSONResponse."""
    content = {"error": error, "error_description": description}
    headers = {"WWW-Authenticate": f'Bearer error="{error}", error_description="{description}"'}
    return JSONResponse(content=content, status_code=status_code, headers=headers)


class BearerTokenMiddleware(BaseHTTPMiddleware):
    """
    Validates bearer access tokens minted by this server.

    The signing keys are read from `app.state.token_server`, which the
    application lifespan sets before the first request is served.
    """

    def __init__(
        self, app: ASGIApp, exclude_paths: list[str] | None = None, issuer: str | None = None
    ) -> None:
        super().__init__(app)
        self.exclude_paths = set(exclude_paths or [])
        self.issuer = issuer or get_config().issuer_uri

        logger.info(
            "oauth_middleware_initialized",
            issuer=self.issuer,
            exclude_paths=sorted(self.exclude_paths),
        )

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        authorization_header = request.headers.get("authorization")
        if not authorization_header:
            return _build_oauth_error_response_json("invalid_request", "Authorization header is missing")

        if not authorization_header.startswith("Bearer "):
            return _build_oauth_error_response_json(
                "invalid_request", "Authorization header must be in 'Bearer <token>' format"
            )

        bearer_token = authorization_header[7:]
        token_hash = hashlib.sha256(bearer_token.encode()).hexdigest()

        try:
            auth_context = validate_access_token(
                bearer_token, token_hash, self.issuer, request.app.state.token_server.keys.public_key_set()
            )
        except OAuthError as e:
            return _build_oauth_error_response_json(e.error, e.description, e.status_code)

        request.state.auth_context = auth_context
        token = auth_context_var.set(auth_context)
        try:
            response = await call_next(request)
        finally:
            auth_context_var.reset(token)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Cache-Control"] = "no-store"
        return response
