"""
Sample extensibility points wired by the development host: extension grants,
a parameterised scope parser and custom token request validators.
"""

import time
from typing import Any

from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.resources import ParsedScope
from tokenserver.models.results import GrantValidationResult, GrantValidationSuccess, grant_error
from tokenserver.registry.extension_grants import BaseExtensionGrantValidator
from tokenserver.validation.custom import CustomTokenRequestContext, CustomTokenRequestValidator
from tokenserver.validation.grants import (
    GrantValidationContext,
    ResourceOwnerPasswordContext,
    ResourceOwnerPasswordValidator,
    UserStorePasswordValidator,
)
from tokenserver.validation.scopes import ScopeParser

CUSTOM_CREDENTIAL_SCHEMA = {
    "type": "object",
    "properties": {"custom_credential": {"type": "string", "minLength": 1}},
    "required": ["custom_credential"],
}


class CustomGrantValidator(BaseExtensionGrantValidator):
    """
    Grant type `custom`. Requires `custom_credential`; `outcome=fail` rejects
    the request even when the credential is present.
    """

    @property
    def grant_type(self) -> str:
        return "custom"

    @property
    def parameter_schema(self) -> dict[str, Any]:
        return CUSTOM_CREDENTIAL_SCHEMA

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        if context.request.get("custom_credential") is None:
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_EXTENSION_PARAMETERS)
        if context.request.get("outcome") == "fail":
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_CREDENTIAL)
        return GrantValidationSuccess(
            subject="818727", amr=("custom",), auth_time=int(time.time()), idp="local"
        )


class NoSubjectExtensionGrantValidator(BaseExtensionGrantValidator):
    """Grant type `custom.nosubject`: a client-only extension grant."""

    @property
    def grant_type(self) -> str:
        return "custom.nosubject"

    @property
    def parameter_schema(self) -> dict[str, Any]:
        return CUSTOM_CREDENTIAL_SCHEMA

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        return GrantValidationSuccess()


class ParameterizedScopeParser(ScopeParser):
    """`transaction:123` requests scope `transaction` with parameter `123`."""

    def parse_value(self, value: str) -> ParsedScope:
        if value.startswith("transaction:"):
            name, _, parameter = value.partition(":")
            return ParsedScope(raw_value=value, name=name, parameter=parameter or None)
        return ParsedScope(raw_value=value, name=value)


class ParameterizedScopeTokenRequestValidator(CustomTokenRequestValidator):
    """Copies the transaction id out of `transaction:<id>` into a `transaction` claim."""

    async def validate(self, context: CustomTokenRequestContext) -> GrantValidationResult:
        for scope in context.resources.parsed_scopes:
            if scope.name == "transaction" and scope.parameter:
                return context.result.with_claims({"transaction": scope.parameter})
        return context.result


class CustomFieldTokenRequestValidator(CustomTokenRequestValidator):
    """Adds `"custom": "custom"` to every successful token response."""

    async def validate(self, context: CustomTokenRequestContext) -> GrantValidationResult:
        return context.result.with_custom_response({"custom": "custom"})


# --- Custom token responses ----------------------------------------------------


def custom_response_dto() -> dict[str, Any]:
    """The payload merged into both success and error responses by the custom-response host."""
    return {
        "string_value": "some_string",
        "int_value": 42,
        "dto": {
            "string_value": "dto_string",
            "int_value": 43,
            "nested": {"string_value": "dto_nested_string", "int_value": 44},
        },
    }


class CustomResponsePasswordValidator(ResourceOwnerPasswordValidator):
    """Delegates to the user store and attaches the custom DTO whatever the outcome."""

    def __init__(self, inner: UserStorePasswordValidator) -> None:
        self.inner = inner

    async def validate(self, context: ResourceOwnerPasswordContext) -> GrantValidationResult:
        result = await self.inner.validate(context)
        return result.with_custom_response(custom_response_dto())


class CustomResponseExtensionGrantValidator(BaseExtensionGrantValidator):
    """Grant type `custom` for the custom-response host: `outcome` decides, the DTO is always attached."""

    @property
    def grant_type(self) -> str:
        return "custom"

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        if context.request.get("outcome") == "succeed":
            return GrantValidationSuccess(
                subject="88421113",
                amr=("custom",),
                auth_time=int(time.time()),
                idp="local",
                custom_response=custom_response_dto(),
            )
        return grant_error(
            TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_CREDENTIAL, custom_response_dto()
        )


class CustomResponseTokenRequestValidator(CustomTokenRequestValidator):
    async def validate(self, context: CustomTokenRequestContext) -> GrantValidationResult:
        return context.result.with_custom_response(custom_response_dto())
