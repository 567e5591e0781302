"""Token request and client credential models."""

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

JWT_BEARER_ASSERTION_TYPE = "urn:ietf:params:oauth:client-assertion-type:jwt-bearer"


class TokenRequest(BaseModel):
    """A token request as received. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    grant_type: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
    parameters: dict[str, str] = Field(
        default_factory=dict, description="Every single-valued form field of the request"
    )
    resources: tuple[str, ...] = Field(default=(), description="Requested resource indicators")

    def get(self, name: str) -> str | None:
        """A grant-specific parameter, with empty values treated as absent."""
        value = self.parameters.get(name)
        return value if value else None


class TransportEvidence(BaseModel):
    """What the transport layer knows about the caller, beyond the form body."""

    model_config = ConfigDict(frozen=True)

    authorization_header: str | None = None
    client_certificate: str | None = Field(
        default=None, description="PEM of a client certificate already validated by the TLS layer"
    )


class SharedSecret(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["shared_secret"] = "shared_secret"
    client_id: str
    secret: str


class ClientAssertion(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["client_assertion"] = "client_assertion"
    client_id: str
    assertion: str


class ClientCertificate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["client_certificate"] = "client_certificate"
    client_id: str
    certificate: str


ClientCredential = Annotated[
    SharedSecret | ClientAssertion | ClientCertificate, Field(discriminator="kind")
]
