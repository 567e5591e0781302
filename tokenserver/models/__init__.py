"""Data models for the token server."""

from tokenserver.models.auth import AuthContext
from tokenserver.models.clients import Client, ClientSecret, RefreshTokenUsage, SecretType
from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.health import HealthCheckResponse
from tokenserver.models.requests import TokenRequest, TransportEvidence
from tokenserver.models.resources import ApiResource, ApiScope, IdentityResource, ParsedScope, ResolvedResources
from tokenserver.models.results import (
    GrantValidationError,
    GrantValidationResult,
    GrantValidationSuccess,
    IssuedToken,
    TokenResponse,
)

__all__ = [
    "ApiResource",
    "ApiScope",
    "AuthContext",
    "Client",
    "ClientSecret",
    "ErrorDescription",
    "GrantValidationError",
    "GrantValidationResult",
    "GrantValidationSuccess",
    "HealthCheckResponse",
    "IdentityResource",
    "IssuedToken",
    "ParsedScope",
    "RefreshTokenUsage",
    "ResolvedResources",
    "SecretType",
    "TokenErrorCode",
    "TokenRequest",
    "TokenResponse",
    "TransportEvidence",
]
