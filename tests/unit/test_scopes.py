"""Unit tests for scope parsing and validation."""

import pytest

from tokenserver.host.catalog import API_RESOURCES, API_SCOPES, IDENTITY_RESOURCES
from tokenserver.host.extensions import ParameterizedScopeParser
from tokenserver.models.clients import Client
from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.resources import ApiResource, ApiScope, ResolvedResources
from tokenserver.models.results import GrantValidationError
from tokenserver.stores.memory import InMemoryResourceCatalog
from tokenserver.validation.scopes import (
    DefaultScopeParser,
    ResourceQualifiedScopeParser,
    ScopeValidator,
    split_scopes,
)


@pytest.fixture
def validator() -> ScopeValidator:
    return ScopeValidator(InMemoryResourceCatalog(IDENTITY_RESOURCES, API_SCOPES, API_RESOURCES))


@pytest.fixture
def client() -> Client:
    return Client(
        client_id="roclient",
        allowed_scopes=frozenset({"openid", "email", "api1", "api2", "api4.with.roles"}),
        allow_offline_access=True,
    )


def test_split_scopes_drops_blanks_and_duplicates():
    assert split_scopes("  api1   api2 api1\t openid ") == ["api1", "api2", "openid"]
    assert split_scopes(None) == []
    assert split_scopes("") == []


def test_default_parser_keeps_values_verbatim():
    parsed = DefaultScopeParser().parse("openid api1")
    assert [(p.raw_value, p.name) for p in parsed] == [("openid", "openid"), ("api1", "api1")]


def test_resource_qualified_parser():
    parsed = ResourceQualifiedScopeParser().parse("read@orders plain @broken")
    assert parsed[0].name == "read" and parsed[0].resource == "orders"
    assert parsed[1].resource is None
    assert parsed[2].name == "@broken" and parsed[2].resource is None


def test_parameterized_parser_splits_transaction_id():
    parsed = ParameterizedScopeParser().parse("transaction:123 api1")
    assert parsed[0].name == "transaction"
    assert parsed[0].parameter == "123"
    assert parsed[0].raw_value == "transaction:123"
    assert parsed[1].parameter is None


@pytest.mark.asyncio
async def test_resolves_identity_and_api_scopes(validator, client):
    result = await validator.validate(client, DefaultScopeParser().parse("openid email api1 offline_access"))

    assert isinstance(result, ResolvedResources)
    assert result.scope_values == ["openid", "email", "api1", "offline_access"]
    assert {r.name for r in result.identity_resources} == {"openid", "email"}
    assert [s.name for s in result.api_scopes] == ["api1"]
    assert result.audiences == ["api"]
    assert result.offline_access is True
    assert result.has_openid


@pytest.mark.asyncio
async def test_scope_not_allowed_for_client(validator, client):
    result = await validator.validate(client, DefaultScopeParser().parse("api1 api3"))
    assert isinstance(result, GrantValidationError)
    assert result.error == TokenErrorCode.INVALID_SCOPE


@pytest.mark.asyncio
async def test_scope_unknown_to_catalog(validator):
    client = Client(client_id="c", allowed_scopes=frozenset({"ghost"}))
    result = await validator.validate(client, DefaultScopeParser().parse("ghost"))
    assert isinstance(result, GrantValidationError)


@pytest.mark.asyncio
async def test_offline_access_requires_client_permission(validator):
    client = Client(client_id="c", allowed_scopes=frozenset({"api1"}))
    result = await validator.validate(client, DefaultScopeParser().parse("api1 offline_access"))
    assert isinstance(result, GrantValidationError)
    assert result.error == TokenErrorCode.INVALID_SCOPE
    assert result.error_description == ErrorDescription.OFFLINE_ACCESS_DENIED


@pytest.mark.asyncio
async def test_identity_scopes_rejected_when_not_allowed(validator, client):
    result = await validator.validate(
        client, DefaultScopeParser().parse("openid api1"), allow_identity_scopes=False
    )
    assert isinstance(result, GrantValidationError)


@pytest.mark.asyncio
async def test_defaults_to_allowed_scopes(validator, client):
    result = await validator.validate(client, [])

    assert isinstance(result, ResolvedResources)
    assert sorted(result.scope_values) == ["api1", "api2", "api4.with.roles", "email", "openid"]
    assert result.offline_access is False


@pytest.mark.asyncio
async def test_defaults_skip_identity_scopes_for_client_only_grants(validator, client):
    result = await validator.validate(client, [], allow_identity_scopes=False)
    assert sorted(result.scope_values) == ["api1", "api2", "api4.with.roles"]


@pytest.mark.asyncio
async def test_no_scope_at_all_is_invalid_scope(validator):
    client = Client(client_id="c")
    result = await validator.validate(client, [])
    assert isinstance(result, GrantValidationError)
    assert result.error_description == ErrorDescription.MISSING_SCOPE


@pytest.mark.asyncio
async def test_resource_indicators_narrow_audience(validator, client):
    result = await validator.validate(
        client, DefaultScopeParser().parse("api1 api4.with.roles"), requested_resources=("api4",)
    )
    assert isinstance(result, ResolvedResources)
    assert result.audiences == ["api4"]


@pytest.mark.asyncio
async def test_unknown_resource_indicator(validator, client):
    result = await validator.validate(
        client, DefaultScopeParser().parse("api1"), requested_resources=("nowhere",)
    )
    assert isinstance(result, GrantValidationError)
    assert result.error == TokenErrorCode.INVALID_SCOPE
    assert result.error_description == ErrorDescription.INVALID_RESOURCE


@pytest.mark.asyncio
async def test_resource_qualified_scope_selects_one_resource():
    catalog = InMemoryResourceCatalog(
        api_scopes=[ApiScope(name="read")],
        api_resources=[
            ApiResource(name="orders", scopes=frozenset({"read"})),
            ApiResource(name="invoices", scopes=frozenset({"read"})),
        ],
    )
    client = Client(client_id="c", allowed_scopes=frozenset({"read"}))
    validator = ScopeValidator(catalog)

    result = await validator.validate(client, ResourceQualifiedScopeParser().parse("read@orders"))
    assert result.audiences == ["orders"]

    result = await validator.validate(client, ResourceQualifiedScopeParser().parse("read@payments"))
    assert isinstance(result, GrantValidationError)


def test_catalog_rejects_overlapping_scope_names():
    with pytest.raises(ValueError, match="identity resources and API scopes"):
        InMemoryResourceCatalog(IDENTITY_RESOURCES, [ApiScope(name="openid")])
