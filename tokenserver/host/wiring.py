"""Assembles the token pipeline and its collaborators for a host."""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from tokenserver.config import Config
from tokenserver.host import catalog
from tokenserver.host.extensions import (
    CustomFieldTokenRequestValidator,
    CustomGrantValidator,
    CustomResponseExtensionGrantValidator,
    CustomResponsePasswordValidator,
    CustomResponseTokenRequestValidator,
    NoSubjectExtensionGrantValidator,
    ParameterizedScopeParser,
    ParameterizedScopeTokenRequestValidator,
)
from tokenserver.models.clients import Client
from tokenserver.models.resources import ApiResource, ApiScope, IdentityResource
from tokenserver.registry.extension_grants import ExtensionGrantRegistry
from tokenserver.services.claims import ClaimsAugmenter
from tokenserver.services.dispatcher import GrantDispatcher
from tokenserver.services.events import EventService, TokenEventSink
from tokenserver.services.pipeline import TokenRequestPipeline
from tokenserver.services.token_issuer import SigningKeyProvider, TokenIssuer
from tokenserver.stores.memory import (
    InMemoryClientCatalog,
    InMemoryRefreshTokenStore,
    InMemoryResourceCatalog,
    TestUser,
    TestUserStore,
)
from tokenserver.utils.logging import get_logger
from tokenserver.validation.client_authenticator import ClientAuthenticator
from tokenserver.validation.custom import CustomTokenRequestValidator
from tokenserver.validation.grants import (
    ClientCredentialsGrantValidator,
    PasswordGrantValidator,
    RefreshTokenGrantValidator,
    ResourceOwnerPasswordValidator,
    UserStorePasswordValidator,
)
from tokenserver.validation.scopes import ScopeValidator

logger = get_logger(__name__)


@dataclass
class TokenServer:
    """The collaborators a running host needs, built once at startup."""

    config: Config
    keys: SigningKeyProvider
    pipeline: TokenRequestPipeline
    resources: InMemoryResourceCatalog
    users: TestUserStore
    refresh_tokens: InMemoryRefreshTokenStore
    claims: ClaimsAugmenter
    extension_grants: ExtensionGrantRegistry


def build_token_server(
    config: Config,
    keys: SigningKeyProvider | None = None,
    clients: Iterable[Client] | None = None,
    identity_resources: Iterable[IdentityResource] | None = None,
    api_scopes: Iterable[ApiScope] | None = None,
    api_resources: Iterable[ApiResource] | None = None,
    users: Iterable[TestUser] | None = None,
    event_sinks: list[TokenEventSink] | None = None,
) -> TokenServer:
    """
    Build every collaborator of the token pipeline.

    Anything not passed in comes from the sample catalog when
    `config.seed_host_configuration` is set, and is empty otherwise.
    """
    seed = config.seed_host_configuration

    def _or_seed(value, sample):
        if value is not None:
            return value
        return sample if seed else []

    keys = keys or SigningKeyProvider.from_config(config)
    client_catalog = InMemoryClientCatalog(_or_seed(clients, catalog.CLIENTS))
    resource_catalog = InMemoryResourceCatalog(
        identity_resources=_or_seed(identity_resources, catalog.IDENTITY_RESOURCES),
        api_scopes=_or_seed(api_scopes, catalog.API_SCOPES),
        api_resources=_or_seed(api_resources, catalog.API_RESOURCES),
    )
    user_store = TestUserStore(_or_seed(users, catalog.USERS))
    refresh_tokens = InMemoryRefreshTokenStore()

    scope_parser = ParameterizedScopeParser()
    scope_validator = ScopeValidator(resource_catalog)
    claims = ClaimsAugmenter(user_store)

    password_validator, extensions, custom_validators = _host_profile(config, user_store)
    registry = ExtensionGrantRegistry()
    for extension in extensions:
        registry.register(extension)

    dispatcher = GrantDispatcher(
        built_in=[
            PasswordGrantValidator(password_validator, user_store),
            ClientCredentialsGrantValidator(),
            RefreshTokenGrantValidator(refresh_tokens, user_store, scope_parser, scope_validator),
        ],
        extensions=registry,
    )
    pipeline = TokenRequestPipeline(
        authenticator=ClientAuthenticator(client_catalog, config),
        scope_parser=scope_parser,
        scope_validator=scope_validator,
        dispatcher=dispatcher,
        issuer=TokenIssuer(config, keys, refresh_tokens, claims),
        event_service=EventService(config, event_sinks),
        custom_validators=custom_validators,
    )

    logger.info(
        "token_server_built",
        host_profile=config.host_profile,
        grant_types=dispatcher.supported_grant_types(),
        seeded=seed,
    )
    return TokenServer(
        config=config,
        keys=keys,
        pipeline=pipeline,
        resources=resource_catalog,
        users=user_store,
        refresh_tokens=refresh_tokens,
        claims=claims,
        extension_grants=registry,
    )


def _host_profile(
    config: Config, user_store: TestUserStore
) -> tuple[ResourceOwnerPasswordValidator, list, Sequence[CustomTokenRequestValidator]]:
    password_validator = UserStorePasswordValidator(user_store)
    if config.host_profile == "custom_token_responses":
        return (
            CustomResponsePasswordValidator(password_validator),
            [CustomResponseExtensionGrantValidator(), NoSubjectExtensionGrantValidator()],
            [CustomResponseTokenRequestValidator()],
        )
    return (
        password_validator,
        [CustomGrantValidator(), NoSubjectExtensionGrantValidator()],
        [ParameterizedScopeTokenRequestValidator(), CustomFieldTokenRequestValidator()],
    )
