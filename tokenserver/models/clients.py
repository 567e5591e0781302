"""Client registration models, as looked up from the client catalog."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tokenserver.utils.crypto import hash_secret


class SecretType(str, Enum):
    """Kinds of credential a client can be registered with."""

    SHARED_SECRET = "SharedSecret"
    JSON_WEB_KEY = "JsonWebKey"
    X509_THUMBPRINT = "X509Thumbprint"
    X509_PUBLIC_KEY_HASH = "X509PublicKeyHash"


class RefreshTokenUsage(str, Enum):
    ONE_TIME_ONLY = "one_time_only"
    REUSE = "reuse"


class ClientSecret(BaseModel):
    """
    A registered client credential.

    For SharedSecret the value is the SHA-256 hash (base64) of the secret, never the secret.
    For JsonWebKey the value is a public JWK serialized as JSON.
    For X509Thumbprint it is the SHA-1 certificate thumbprint in hex.
    For X509PublicKeyHash it is the base64url SHA-256 of the SubjectPublicKeyInfo.
    """

    model_config = ConfigDict(frozen=True)

    type: SecretType
    value: str
    description: str | None = None
    expiration: datetime | None = None

    @classmethod
    def shared(cls, secret: str, description: str | None = None) -> "ClientSecret":
        """Register a plain-text shared secret by its hash."""
        return cls(type=SecretType.SHARED_SECRET, value=hash_secret(secret), description=description)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiration is None:
            return False
        return self.expiration <= (now or datetime.now(UTC))


class Client(BaseModel):
    """A registered OAuth client. Read-only for the duration of a request."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_name: str | None = None
    enabled: bool = True
    client_secrets: tuple[ClientSecret, ...] = ()
    allowed_grant_types: frozenset[str] = Field(default_factory=frozenset)
    allowed_scopes: frozenset[str] = Field(default_factory=frozenset)
    allow_offline_access: bool = False
    require_mtls: bool = Field(
        default=False, description="Bind the client to its registered TLS client certificate"
    )
    access_token_lifetime: int = Field(default=3600, gt=0)
    identity_token_lifetime: int = Field(default=300, gt=0)
    refresh_token_lifetime: int = Field(default=2592000, gt=0)
    refresh_token_usage: RefreshTokenUsage = RefreshTokenUsage.ONE_TIME_ONLY
    claims: dict[str, Any] = Field(default_factory=dict, description="Client claims, prefixed 'client_'")
    always_include_user_claims_in_id_token: bool = False

    def secrets_of(self, *types: SecretType) -> list[ClientSecret]:
        """Unexpired secrets of the given types."""
        now = datetime.now(UTC)
        return [s for s in self.client_secrets if s.type in types and not s.is_expired(now)]
