from typing import Any
from unittest.mock import AsyncMock

import pytest

from tokenserver.models.clients import Client
from tokenserver.models.errors import ErrorDescription, ExtensionGrantRegistrationError, TokenErrorCode
from tokenserver.models.requests import TokenRequest
from tokenserver.models.results import ClientAuthenticationResult, GrantValidationSuccess
from tokenserver.registry.extension_grants import BaseExtensionGrantValidator, ExtensionGrantRegistry
from tokenserver.services.dispatcher import GrantDispatcher
from tokenserver.validation.grants import ClientCredentialsGrantValidator, GrantValidationContext


class MockExtensionGrant(BaseExtensionGrantValidator):
    def __init__(self, grant_type: str, schema: Any = None, validate: AsyncMock | None = None):
        self._grant_type = grant_type
        self._schema = schema
        self._validate = validate or AsyncMock(return_value=GrantValidationSuccess(subject="alice"))

    @property
    def grant_type(self) -> str:
        return self._grant_type

    @property
    def parameter_schema(self) -> Any:
        return self._schema

    async def validate(self, context: GrantValidationContext):
        return await self._validate(context)


class SyncExtensionGrant(BaseExtensionGrantValidator):
    @property
    def grant_type(self) -> str:
        return "sync"

    def validate(self, context):  # type: ignore[override]
        return GrantValidationSuccess()


def context_for(grant_type: str, **parameters) -> GrantValidationContext:
    client = Client(client_id="client.custom", allowed_grant_types=frozenset({grant_type}))
    return GrantValidationContext(
        request=TokenRequest(grant_type=grant_type, parameters={"grant_type": grant_type, **parameters}),
        client_auth=ClientAuthenticationResult(client=client, credential_kind="shared_secret"),
        parsed_scopes=[],
        resources=None,
    )


def test_register_and_get():
    registry = ExtensionGrantRegistry()
    grant = MockExtensionGrant("custom")
    registry.register(grant)

    assert registry.get("custom") is grant
    assert registry.get("other") is None
    assert registry.get_registered_grant_types() == ["custom"]


def test_register_duplicate_name_raises():
    registry = ExtensionGrantRegistry()
    registry.register(MockExtensionGrant("custom"))
    with pytest.raises(ExtensionGrantRegistrationError, match="already registered"):
        registry.register(MockExtensionGrant("custom"))


@pytest.mark.parametrize("name", ["password", "client_credentials", "refresh_token"])
def test_register_built_in_name_raises(name):
    with pytest.raises(ExtensionGrantRegistrationError, match="built in"):
        ExtensionGrantRegistry().register(MockExtensionGrant(name))


@pytest.mark.parametrize("name", ["", "  custom"])
def test_register_invalid_name_raises(name):
    with pytest.raises(ExtensionGrantRegistrationError, match="non-empty"):
        ExtensionGrantRegistry().register(MockExtensionGrant(name))


def test_register_non_validator_raises():
    with pytest.raises(ExtensionGrantRegistrationError, match="not an instance"):
        ExtensionGrantRegistry().register(object())  # type: ignore[arg-type]


def test_register_sync_validate_raises():
    with pytest.raises(ExtensionGrantRegistrationError, match="async"):
        ExtensionGrantRegistry().register(SyncExtensionGrant())


def test_register_invalid_schema_raises():
    with pytest.raises(ExtensionGrantRegistrationError, match="invalid 'parameter_schema'"):
        ExtensionGrantRegistry().register(MockExtensionGrant("custom", schema={"type": "not-a-type"}))


def test_register_non_dict_schema_raises():
    with pytest.raises(ExtensionGrantRegistrationError, match="of type dict"):
        ExtensionGrantRegistry().register(MockExtensionGrant("custom", schema=["custom_credential"]))


def test_parameters_valid():
    registry = ExtensionGrantRegistry()
    registry.register(
        MockExtensionGrant("custom", schema={"type": "object", "required": ["custom_credential"]})
    )
    registry.register(MockExtensionGrant("open"))

    assert registry.parameters_valid("custom", {"custom_credential": "x"})
    assert not registry.parameters_valid("custom", {})
    assert registry.parameters_valid("open", {})


# --- dispatcher ---


@pytest.fixture
def dispatcher() -> GrantDispatcher:
    registry = ExtensionGrantRegistry()
    registry.register(
        MockExtensionGrant("custom", schema={"type": "object", "required": ["custom_credential"]})
    )
    return GrantDispatcher([ClientCredentialsGrantValidator()], registry)


def test_dispatcher_resolves_exact_names(dispatcher):
    assert isinstance(dispatcher.resolve("client_credentials"), ClientCredentialsGrantValidator)
    assert dispatcher.resolve("custom").grant_type == "custom"
    assert dispatcher.resolve("Custom") is None
    assert dispatcher.resolve("urn:unknown") is None
    assert dispatcher.supported_grant_types() == ["client_credentials", "custom"]


@pytest.mark.asyncio
async def test_dispatcher_rejects_invalid_extension_parameters(dispatcher):
    validator = dispatcher.resolve("custom")
    result = await dispatcher.dispatch(validator, context_for("custom"))

    assert result.error == TokenErrorCode.INVALID_GRANT
    assert result.error_description == ErrorDescription.INVALID_EXTENSION_PARAMETERS
    validator._validate.assert_not_awaited()


@pytest.mark.asyncio
async def test_dispatcher_invokes_extension_validator(dispatcher):
    validator = dispatcher.resolve("custom")
    result = await dispatcher.dispatch(validator, context_for("custom", custom_credential="x"))

    assert result.subject == "alice"
    validator._validate.assert_awaited_once()
