"""Identity resources, API scopes and API resources served by the catalog."""

from pydantic import BaseModel, ConfigDict, Field

OPENID = "openid"
OFFLINE_ACCESS = "offline_access"


class IdentityResource(BaseModel):
    """A scope that grants access to identity claims about the subject."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str | None = None
    user_claims: frozenset[str] = Field(default_factory=frozenset)
    enabled: bool = True


class ApiScope(BaseModel):
    """A scope that grants access to an API."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str | None = None
    user_claims: frozenset[str] = Field(default_factory=frozenset)
    enabled: bool = True


class ApiResource(BaseModel):
    """An API (audience) grouping one or more API scopes."""

    model_config = ConfigDict(frozen=True)

    name: str
    scopes: frozenset[str] = Field(default_factory=frozenset)
    user_claims: frozenset[str] = Field(default_factory=frozenset)
    enabled: bool = True


class ParsedScope(BaseModel):
    """
    One entry of the requested scope string.

    `name` is what is checked against the catalog and the client's allowed scopes;
    `raw_value` is what is echoed back and written into tokens.
    """

    model_config = ConfigDict(frozen=True)

    raw_value: str
    name: str
    resource: str | None = None
    parameter: str | None = None


class ResolvedResources(BaseModel):
    """The catalog entries that back a validated list of parsed scopes."""

    model_config = ConfigDict(frozen=True)

    parsed_scopes: tuple[ParsedScope, ...] = ()
    identity_resources: tuple[IdentityResource, ...] = ()
    api_scopes: tuple[ApiScope, ...] = ()
    api_resources: tuple[ApiResource, ...] = ()
    offline_access: bool = False

    @property
    def scope_values(self) -> list[str]:
        return [scope.raw_value for scope in self.parsed_scopes]

    @property
    def scope_names(self) -> set[str]:
        return {scope.name for scope in self.parsed_scopes}

    @property
    def has_openid(self) -> bool:
        return any(resource.name == OPENID for resource in self.identity_resources)

    @property
    def audiences(self) -> list[str]:
        return [resource.name for resource in self.api_resources]

    def identity_claim_types(self) -> set[str]:
        return {claim for resource in self.identity_resources for claim in resource.user_claims}

    def api_claim_types(self) -> set[str]:
        claims = {claim for scope in self.api_scopes for claim in scope.user_claims}
        claims.update(claim for resource in self.api_resources for claim in resource.user_claims)
        return claims
