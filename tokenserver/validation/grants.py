"""Built-in grant validators: password, client_credentials and refresh_token."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import structlog

from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.requests import TokenRequest
from tokenserver.models.resources import ParsedScope, ResolvedResources
from tokenserver.models.results import (
    ClientAuthenticationResult,
    GrantValidationError,
    GrantValidationResult,
    GrantValidationSuccess,
    grant_error,
)
from tokenserver.stores.base import ProfileService, RefreshTokenStore, UserStore
from tokenserver.utils.logging import fingerprint, get_logger
from tokenserver.validation.scopes import ScopeParser, ScopeValidator

logger = get_logger(__name__)

PASSWORD = "password"
CLIENT_CREDENTIALS = "client_credentials"
REFRESH_TOKEN = "refresh_token"

BUILT_IN_GRANT_TYPES = frozenset({PASSWORD, CLIENT_CREDENTIALS, REFRESH_TOKEN})

LOCAL_IDP = "local"


@dataclass(frozen=True)
class ScopePolicy:
    """How the pipeline validates requested scopes before a grant validator runs."""

    resolve: bool = True
    require_scope: bool = True
    apply_defaults: bool = True
    allow_identity_scopes: bool = True


@dataclass
class GrantValidationContext:
    """
    Everything a grant validator may look at.
    `resources` is None for grants whose policy resolves scopes themselves.
    """

    request: TokenRequest
    client_auth: ClientAuthenticationResult
    parsed_scopes: list[ParsedScope]
    resources: ResolvedResources | None
    logger: structlog.stdlib.BoundLogger = field(default_factory=lambda: get_logger(__name__))

    @property
    def client(self):
        return self.client_auth.client

    @property
    def parameters(self) -> dict[str, str]:
        return self.request.parameters


class GrantValidator(ABC):
    """A handler for one grant_type value."""

    scope_policy: ScopePolicy = ScopePolicy()

    @property
    @abstractmethod
    def grant_type(self) -> str:
        raise NotImplementedError

    def is_allowed_for(self, client_auth: ClientAuthenticationResult) -> bool:
        return self.grant_type in client_auth.client.allowed_grant_types

    @abstractmethod
    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        raise NotImplementedError


# --- Resource owner password -------------------------------------------------


@dataclass
class ResourceOwnerPasswordContext:
    username: str
    password: str
    request: TokenRequest
    client_auth: ClientAuthenticationResult


class ResourceOwnerPasswordValidator(ABC):
    """Verifies the resource owner's username and password. Hosts may substitute their own."""

    @abstractmethod
    async def validate(self, context: ResourceOwnerPasswordContext) -> GrantValidationResult:
        raise NotImplementedError


class UserStorePasswordValidator(ResourceOwnerPasswordValidator):
    """Checks the credentials against the user store."""

    def __init__(self, user_store: UserStore) -> None:
        self.user_store = user_store

    async def validate(self, context: ResourceOwnerPasswordContext) -> GrantValidationResult:
        subject = await self.user_store.verify(context.username, context.password)
        if subject is None:
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_CREDENTIAL)
        return GrantValidationSuccess(
            subject=subject, amr=(PASSWORD,), auth_time=int(time.time()), idp=LOCAL_IDP
        )


class PasswordGrantValidator(GrantValidator):
    def __init__(
        self, password_validator: ResourceOwnerPasswordValidator, profile_service: ProfileService
    ) -> None:
        self.password_validator = password_validator
        self.profile_service = profile_service

    @property
    def grant_type(self) -> str:
        return PASSWORD

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        username = context.request.get("username")
        password = context.request.get("password")
        if username is None or password is None:
            return grant_error(TokenErrorCode.INVALID_REQUEST, ErrorDescription.MISSING_USERNAME_PASSWORD)

        result = await self.password_validator.validate(
            ResourceOwnerPasswordContext(
                username=username,
                password=password,
                request=context.request,
                client_auth=context.client_auth,
            )
        )
        if result.is_error:
            context.logger.info("password_grant_rejected", client_id=context.client.client_id)
            return result

        if not result.subject:
            return grant_error(
                TokenErrorCode.INVALID_GRANT,
                ErrorDescription.INVALID_CREDENTIAL,
                result.custom_response,
            )
        if not await self.profile_service.is_active(result.subject):
            context.logger.info("password_grant_inactive_user", subject=result.subject)
            return grant_error(
                TokenErrorCode.INVALID_GRANT, ErrorDescription.INACTIVE_USER, result.custom_response
            )
        return result


# --- Client credentials ------------------------------------------------------


class ClientCredentialsGrantValidator(GrantValidator):
    """No user is involved: no subject, no amr, API scopes only."""

    scope_policy = ScopePolicy(allow_identity_scopes=False)

    @property
    def grant_type(self) -> str:
        return CLIENT_CREDENTIALS

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        return GrantValidationSuccess()


# --- Refresh token -----------------------------------------------------------


class RefreshTokenGrantValidator(GrantValidator):
    """
    Exchanges a refresh token for new tokens, carrying the original subject,
    amr and scopes forward. A requested scope set must be a subset of the original.
    """

    scope_policy = ScopePolicy(resolve=False)

    def __init__(
        self,
        store: RefreshTokenStore,
        profile_service: ProfileService,
        scope_parser: ScopeParser,
        scope_validator: ScopeValidator,
    ) -> None:
        self.store = store
        self.profile_service = profile_service
        self.scope_parser = scope_parser
        self.scope_validator = scope_validator

    @property
    def grant_type(self) -> str:
        return REFRESH_TOKEN

    def is_allowed_for(self, client_auth: ClientAuthenticationResult) -> bool:
        return client_auth.client.allow_offline_access

    async def validate(self, context: GrantValidationContext) -> GrantValidationResult:
        handle = context.request.get("refresh_token")
        if handle is None:
            return grant_error(TokenErrorCode.INVALID_REQUEST, ErrorDescription.MISSING_REFRESH_TOKEN)

        grant = await self.store.resolve(handle)
        reason = None
        if grant is None:
            reason = "unknown"
        elif grant.is_expired():
            reason = "expired"
        elif grant.client_id != context.client.client_id:
            reason = "client mismatch"
        if reason is not None:
            context.logger.info("refresh_token_rejected", reason=reason, handle=fingerprint(handle))
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INVALID_REFRESH_TOKEN)

        if grant.subject is not None and not await self.profile_service.is_active(grant.subject):
            context.logger.info("refresh_token_inactive_user", subject=grant.subject)
            return grant_error(TokenErrorCode.INVALID_GRANT, ErrorDescription.INACTIVE_USER)

        original = self.scope_parser.parse(" ".join(grant.scopes))
        if context.parsed_scopes:
            granted = {scope.raw_value for scope in original}
            if any(scope.raw_value not in granted for scope in context.parsed_scopes):
                context.logger.info("refresh_token_scope_not_subset", handle=fingerprint(handle))
                return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.INVALID_SCOPE)
            scopes = context.parsed_scopes
        else:
            scopes = original

        resources = await self.scope_validator.validate(
            context.client,
            scopes,
            context.request.resources,
            require_scope=False,
            apply_defaults=False,
        )
        if isinstance(resources, GrantValidationError):
            return resources

        return GrantValidationSuccess(
            subject=grant.subject,
            amr=grant.amr,
            auth_time=grant.auth_time,
            idp=grant.idp,
            claims=grant.claims,
            resources=resources,
            consumed_refresh_token=handle,
        )


def describe_parameters(parameters: dict[str, Any]) -> list[str]:
    """Parameter names that are safe to log; values may be credentials."""
    return sorted(parameters)
