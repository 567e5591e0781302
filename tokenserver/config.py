"""Configuration management using environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Token server configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server Configuration
    server_host: str = Field(default="0.0.0.0", description="Server bind address")
    server_port: int = Field(default=5000, description="Token server port", ge=1, le=65535)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    environment: str = Field(default="development", description="Environment name")

    # Protocol
    issuer_uri: str = Field(default="https://idsvr8", description="Value of the 'iss' claim")
    token_endpoint_path: str = Field(default="/connect/token", description="Token endpoint path")
    userinfo_endpoint_path: str = Field(
        default="/connect/userinfo", description="UserInfo endpoint path"
    )
    emit_scopes_as_space_delimited_string: bool = Field(
        default=False, description="Emit the access token 'scope' claim as a string, not a list"
    )

    # Signing
    signing_algorithm: Literal["RS256", "PS256", "ES256"] = Field(
        default="RS256", description="JWS algorithm for issued tokens"
    )
    signing_key_path: str | None = Field(
        default=None, description="PEM private key; a key is generated at startup if unset"
    )

    # Client authentication
    mutual_tls_enabled: bool = Field(
        default=True, description="Accept certificate-bound client credentials"
    )
    client_assertion_clock_skew: int = Field(
        default=300, description="Allowed clock skew for client assertions in seconds", ge=0
    )

    # Events
    raise_success_events: bool = Field(default=True)
    raise_failure_events: bool = Field(default=True)
    raise_error_events: bool = Field(default=True)
    raise_information_events: bool = Field(default=False)

    seed_host_configuration: bool = Field(
        default=True, description="Load the sample clients, resources and users at startup"
    )
    host_profile: Literal["default", "custom_token_responses"] = Field(
        default="default",
        description="Which sample extension grants and validators the host wires in",
    )

    @property
    def token_endpoint_url(self) -> str:
        """Absolute token endpoint URL, an accepted client assertion audience."""
        return f"{self.issuer_uri.rstrip('/')}{self.token_endpoint_path}"


@lru_cache
def get_config() -> Config:
    """Get cached configuration instance."""
    return Config()
