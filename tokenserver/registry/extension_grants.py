from inspect import iscoroutinefunction
from typing import Any

from jsonschema import Draft202012Validator, SchemaError

from tokenserver.models.errors import ExtensionGrantRegistrationError
from tokenserver.validation.grants import BUILT_IN_GRANT_TYPES, GrantValidator


class BaseExtensionGrantValidator(GrantValidator):
    """
    Base class for host-supplied extension grants.

    Subclasses name their grant type and implement `validate`. They may declare a
    JSON schema for the request parameters; requests that do not satisfy it are
    rejected with invalid_grant before `validate` runs. Passing the schema does not
    oblige the validator to succeed.
    """

    @property
    def parameter_schema(self) -> dict[str, Any] | None:
        """JSON schema for the form parameters of this grant, or None."""
        return None


class ExtensionGrantRegistry:
    """
    Extension grant validators by grant type name.
    Populated at startup; only read while requests are served.
    """

    def __init__(self) -> None:
        self._validators: dict[str, BaseExtensionGrantValidator] = {}
        self._schema_validators: dict[str, Draft202012Validator] = {}

    def register(self, validator: BaseExtensionGrantValidator) -> None:
        """
        Registers an extension grant validator after checking it is well formed.

        Args:
            validator: An instance of a BaseExtensionGrantValidator subclass.

        Raises:
            ExtensionGrantRegistrationError: If the validator is invalid or its name is taken.
        """
        self._validate_instance(validator)
        self._validate_grant_type(validator)
        self._validate_duplicate_name(validator)
        schema_validator = self._validate_parameter_schema(validator)

        self._validators[validator.grant_type] = validator
        if schema_validator is not None:
            self._schema_validators[validator.grant_type] = schema_validator

    def _validate_instance(self, validator: Any) -> None:
        if not isinstance(validator, BaseExtensionGrantValidator):
            raise ExtensionGrantRegistrationError(
                f"Provided object is not an instance of BaseExtensionGrantValidator: {type(validator)}"
            )
        if not iscoroutinefunction(validator.validate):
            raise ExtensionGrantRegistrationError(
                f"Extension grant '{validator.grant_type}' must have an async 'validate' method."
            )

    def _validate_grant_type(self, validator: BaseExtensionGrantValidator) -> None:
        name = validator.grant_type
        if not name or not isinstance(name, str) or name != name.strip():
            raise ExtensionGrantRegistrationError("Extension grant must have a non-empty string 'grant_type'.")
        if name in BUILT_IN_GRANT_TYPES:
            raise ExtensionGrantRegistrationError(f"Grant type '{name}' is built in and cannot be replaced.")

    def _validate_duplicate_name(self, validator: BaseExtensionGrantValidator) -> None:
        if validator.grant_type in self._validators:
            raise ExtensionGrantRegistrationError(
                f"Extension grant with name '{validator.grant_type}' already registered."
            )

    def _validate_parameter_schema(
        self, validator: BaseExtensionGrantValidator
    ) -> Draft202012Validator | None:
        schema = validator.parameter_schema
        if schema is None:
            return None
        if not isinstance(schema, dict):
            raise ExtensionGrantRegistrationError(
                f"Extension grant '{validator.grant_type}' must have a 'parameter_schema' of type dict."
            )
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as e:
            raise ExtensionGrantRegistrationError(
                f"Extension grant '{validator.grant_type}' has an invalid 'parameter_schema': {e.message}"
            ) from e
        return Draft202012Validator(schema)

    def get(self, grant_type: str) -> BaseExtensionGrantValidator | None:
        return self._validators.get(grant_type)

    def parameters_valid(self, grant_type: str, parameters: dict[str, str]) -> bool:
        """Whether the parameters satisfy the grant's declared schema, if it has one."""
        schema_validator = self._schema_validators.get(grant_type)
        return schema_validator is None or schema_validator.is_valid(parameters)

    def get_registered_grant_types(self) -> list[str]:
        return list(self._validators.keys())
