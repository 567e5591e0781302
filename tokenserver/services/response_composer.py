"""Builds the token endpoint's wire envelope."""

from starlette import status

from tokenserver.models.errors import TokenErrorCode
from tokenserver.models.results import CustomResponse, GrantValidationError, IssuedToken, TokenResponse

# Custom response properties can never replace these
PROTOCOL_FIELDS = frozenset(
    {
        "access_token",
        "token_type",
        "expires_in",
        "scope",
        "identity_token",
        "refresh_token",
        "error",
        "error_description",
    }
)

NO_CACHE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _merge(body: dict, custom_response: CustomResponse) -> CustomResponse:
    for key, value in custom_response.items():
        if key not in PROTOCOL_FIELDS:
            body[key] = value
    return body


def compose_success(token: IssuedToken, custom_response: CustomResponse) -> TokenResponse:
    body: dict = {
        "access_token": token.access_token,
        "token_type": token.token_type,
        "expires_in": token.expires_in,
        "scope": token.scope,
    }
    if token.identity_token is not None:
        body["identity_token"] = token.identity_token
    if token.refresh_token is not None:
        body["refresh_token"] = token.refresh_token
    return TokenResponse(
        status_code=status.HTTP_200_OK,
        body=_merge(body, custom_response),
        headers=dict(NO_CACHE_HEADERS),
    )


def compose_error(result: GrantValidationError) -> TokenResponse:
    body: dict = {"error": result.error.value, "error_description": result.error_description}
    headers = dict(NO_CACHE_HEADERS)

    if result.error == TokenErrorCode.SERVER_ERROR:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif result.error == TokenErrorCode.INVALID_CLIENT and result.credentials_missing:
        status_code = status.HTTP_401_UNAUTHORIZED
        headers["WWW-Authenticate"] = 'Basic realm="token", error="invalid_client"'
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    return TokenResponse(
        status_code=status_code,
        body=_merge(body, result.custom_response),
        headers=headers,
    )
