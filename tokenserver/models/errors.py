"""Error codes and exception types."""

from enum import Enum


class TokenErrorCode(str, Enum):
    """OAuth 2.0 token endpoint error codes (RFC 6749 section 5.2)."""

    INVALID_REQUEST = "invalid_request"
    INVALID_CLIENT = "invalid_client"
    INVALID_GRANT = "invalid_grant"
    INVALID_SCOPE = "invalid_scope"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    UNSUPPORTED_GRANT_TYPE = "unsupported_grant_type"
    SERVER_ERROR = "server_error"


class ErrorDescription:
    """Fixed, stage-specific error descriptions. Never echo exception text to callers."""

    INVALID_CONTENT_TYPE = "token requests must be application/x-www-form-urlencoded"
    MISSING_GRANT_TYPE = "grant_type is missing"
    REPEATED_PARAMETER = "parameters must not be repeated"
    INVALID_CLIENT = "client authentication failed"
    MISSING_CREDENTIALS = "client credentials are missing"
    UNSUPPORTED_GRANT_TYPE = "grant type is not supported"
    UNAUTHORIZED_CLIENT = "client is not allowed to use this grant type"
    INVALID_SCOPE = "requested scope is invalid"
    MISSING_SCOPE = "no scope requested"
    IDENTITY_SCOPE_WITHOUT_SUBJECT = "identity scopes require a subject"
    INVALID_RESOURCE = "unknown resource indicator"
    MISSING_USERNAME_PASSWORD = "username and password are required"
    INVALID_CREDENTIAL = "invalid_credential"
    INACTIVE_USER = "user is not active"
    MISSING_REFRESH_TOKEN = "refresh_token is missing"
    INVALID_REFRESH_TOKEN = "invalid refresh token"
    OFFLINE_ACCESS_DENIED = "client is not allowed offline access"
    INVALID_EXTENSION_PARAMETERS = "extension grant parameters are invalid"
    SERVER_ERROR = "an unexpected error occurred"


class CollaboratorError(Exception):
    """
    Raised by an external collaborator (store, profile service) that could not answer.
    The pipeline reports it as server_error and never retries.
    """


class ExtensionGrantRegistrationError(Exception):
    """Invalid extension grant configuration, detected at startup."""


class SigningKeyNotFoundError(Exception):
    """No signing key is available for the requested algorithm."""

    def __init__(self, algorithm: str) -> None:
        self.algorithm = algorithm
        super().__init__(f"No signing key registered for algorithm '{algorithm}'")
