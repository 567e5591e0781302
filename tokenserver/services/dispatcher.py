"""Routes a token request to the validator for its grant_type."""

from collections.abc import Iterable

from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.results import GrantValidationResult, grant_error
from tokenserver.registry.extension_grants import BaseExtensionGrantValidator, ExtensionGrantRegistry
from tokenserver.validation.grants import GrantValidationContext, GrantValidator, describe_parameters


class GrantDispatcher:
    """
    Exact-match lookup of built-in grants, then registered extension grants.
    There is no fallback between handlers and no retry.
    """

    def __init__(self, built_in: Iterable[GrantValidator], extensions: ExtensionGrantRegistry) -> None:
        self.built_in = {validator.grant_type: validator for validator in built_in}
        self.extensions = extensions

    def resolve(self, grant_type: str) -> GrantValidator | None:
        return self.built_in.get(grant_type) or self.extensions.get(grant_type)

    def supported_grant_types(self) -> list[str]:
        return list(self.built_in) + self.extensions.get_registered_grant_types()

    async def dispatch(
        self, validator: GrantValidator, context: GrantValidationContext
    ) -> GrantValidationResult:
        if isinstance(validator, BaseExtensionGrantValidator) and not self.extensions.parameters_valid(
            validator.grant_type, context.parameters
        ):
            context.logger.info(
                "extension_grant_parameters_invalid",
                grant_type=validator.grant_type,
                parameters=describe_parameters(context.parameters),
            )
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_EXTENSION_PARAMETERS)

        result = await validator.validate(context)
        context.logger.debug(
            "grant_validated", grant_type=validator.grant_type, outcome=result.outcome
        )
        return result
