"""Typed outcomes passed between pipeline stages."""

from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter

from tokenserver.models.clients import Client
from tokenserver.models.errors import TokenErrorCode
from tokenserver.models.resources import ResolvedResources

CustomResponse = dict[str, JsonValue]

_custom_response_adapter: TypeAdapter[CustomResponse] = TypeAdapter(CustomResponse)


def validate_custom_response(values: dict) -> CustomResponse:
    """Restrict host-supplied values to JSON strings, numbers, booleans, null, mappings and lists."""
    return _custom_response_adapter.validate_python(values)


class ClientAuthenticationResult(BaseModel):
    """The authenticated client and how it proved its identity."""

    model_config = ConfigDict(frozen=True)

    client: Client
    credential_kind: Literal["shared_secret", "client_assertion", "client_certificate"]
    certificate_thumbprint: str | None = Field(
        default=None, description="x5t#S256 of the client certificate, for certificate-bound tokens"
    )


class GrantValidationSuccess(BaseModel):
    """
    A grant that validated.

    `resources` is set only by grants that decide the granted scopes themselves
    (refresh_token carries the original grant forward); otherwise the scopes
    validated from the request are granted.
    """

    model_config = ConfigDict(frozen=True)

    outcome: Literal["success"] = "success"
    subject: str | None = None
    amr: tuple[str, ...] = ()
    auth_time: int | None = None
    idp: str | None = None
    claims: CustomResponse = Field(default_factory=dict)
    custom_response: CustomResponse = Field(default_factory=dict)
    resources: ResolvedResources | None = None
    consumed_refresh_token: str | None = None

    @property
    def is_error(self) -> bool:
        return False

    def with_custom_response(self, values: dict) -> "GrantValidationSuccess":
        merged = {**self.custom_response, **validate_custom_response(values)}
        return self.model_copy(update={"custom_response": merged})

    def with_claims(self, values: dict) -> "GrantValidationSuccess":
        merged = {**self.claims, **validate_custom_response(values)}
        return self.model_copy(update={"claims": merged})


class GrantValidationError(BaseModel):
    """A failed stage. No later stage may turn this back into a success."""

    model_config = ConfigDict(frozen=True)

    outcome: Literal["error"] = "error"
    error: TokenErrorCode
    error_description: str
    custom_response: CustomResponse = Field(default_factory=dict)
    credentials_missing: bool = False

    @property
    def is_error(self) -> bool:
        return True

    def with_custom_response(self, values: dict) -> "GrantValidationError":
        merged = {**self.custom_response, **validate_custom_response(values)}
        return self.model_copy(update={"custom_response": merged})


GrantValidationResult = GrantValidationSuccess | GrantValidationError


def grant_error(
    error: TokenErrorCode, description: str, custom_response: dict | None = None
) -> GrantValidationError:
    return GrantValidationError(
        error=error,
        error_description=description,
        custom_response=validate_custom_response(custom_response or {}),
    )


class RefreshTokenGrant(BaseModel):
    """Grant state kept by the refresh token store, keyed by the opaque handle."""

    model_config = ConfigDict(frozen=True)

    handle: str
    client_id: str
    subject: str | None
    amr: tuple[str, ...] = ()
    auth_time: int | None = None
    idp: str | None = None
    scopes: tuple[str, ...] = ()
    claims: CustomResponse = Field(default_factory=dict)
    created_at: datetime
    lifetime: int

    @property
    def expires_at(self) -> datetime:
        return self.created_at + timedelta(seconds=self.lifetime)

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.now(UTC))


class IssuedToken(BaseModel):
    """Tokens minted for one successful request. Discarded once the response is written."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    identity_token: str | None = None
    refresh_token: str | None = None


class TokenResponse(BaseModel):
    """The wire response of the token endpoint."""

    model_config = ConfigDict(frozen=True)

    status_code: int
    body: CustomResponse
    headers: dict[str, str] = Field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return "error" in self.body
