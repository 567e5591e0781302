"""Scope parsing and validation against the client and the resource catalog."""

from abc import ABC, abstractmethod

from tokenserver.models.clients import Client
from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.resources import OFFLINE_ACCESS, ParsedScope, ResolvedResources
from tokenserver.models.results import GrantValidationError, grant_error
from tokenserver.stores.base import ResourceCatalog
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)


def split_scopes(raw: str | None) -> list[str]:
    """Whitespace-split, empty tokens dropped, duplicates removed keeping first-seen order."""
    return list(dict.fromkeys((raw or "").split()))


class ScopeParser(ABC):
    """Turns the raw scope string into ParsedScope entries. Hosts may substitute their own."""

    def parse(self, raw: str | None) -> list[ParsedScope]:
        return [self.parse_value(value) for value in split_scopes(raw)]

    @abstractmethod
    def parse_value(self, value: str) -> ParsedScope:
        raise NotImplementedError


class DefaultScopeParser(ScopeParser):
    """Every token is a flat scope name."""

    def parse_value(self, value: str) -> ParsedScope:
        return ParsedScope(raw_value=value, name=value)


class ResourceQualifiedScopeParser(ScopeParser):
    """
    `read@orders` asks for scope `read` on API resource `orders` only.
    Used when several APIs share scope names.
    """

    def __init__(self, separator: str = "@") -> None:
        self.separator = separator

    def parse_value(self, value: str) -> ParsedScope:
        name, separator, resource = value.partition(self.separator)
        if not separator or not name or not resource:
            return ParsedScope(raw_value=value, name=value)
        return ParsedScope(raw_value=value, name=name, resource=resource)


class ScopeValidator:
    """Checks parsed scopes against the client's allowed scopes and the catalog."""

    def __init__(self, catalog: ResourceCatalog) -> None:
        self.catalog = catalog

    async def validate(
        self,
        client: Client,
        parsed_scopes: list[ParsedScope],
        requested_resources: tuple[str, ...] = (),
        require_scope: bool = True,
        apply_defaults: bool = True,
        allow_identity_scopes: bool = True,
    ) -> ResolvedResources | GrantValidationError:
        """
        Resolve the requested scopes to catalog entries.

        With no scopes requested the client's allowed scopes are used when
        `apply_defaults` is set. Grants without a user (`allow_identity_scopes`
        False) reject identity scopes and offline_access when asked for
        explicitly and silently leave them out of the defaults.
        """
        defaulted = False
        if not parsed_scopes and apply_defaults:
            parsed_scopes = await self.default_scopes(client, allow_identity_scopes)
            defaulted = True

        if not parsed_scopes:
            if require_scope:
                logger.info("scope_validation_failed", client_id=client.client_id, reason="no scope")
                return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.MISSING_SCOPE)
            return ResolvedResources()

        offline_access = False
        names: list[str] = []
        for scope in parsed_scopes:
            if scope.name == OFFLINE_ACCESS:
                if not client.allow_offline_access:
                    logger.info("offline_access_denied", client_id=client.client_id)
                    return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.OFFLINE_ACCESS_DENIED)
                if not allow_identity_scopes:
                    return self._invalid(client, scope.raw_value)
                offline_access = True
                continue
            if scope.name not in client.allowed_scopes:
                return self._invalid(client, scope.raw_value)
            names.append(scope.name)

        names = list(dict.fromkeys(names))
        identity_resources = [r for r in await self.catalog.find_identity_resources(names) if r.enabled]
        api_scopes = [s for s in await self.catalog.find_api_scopes(names) if s.enabled]
        if identity_resources and not allow_identity_scopes:
            return self._invalid(client, identity_resources[0].name)

        known = {r.name for r in identity_resources} | {s.name for s in api_scopes}
        for scope in parsed_scopes:
            if scope.name != OFFLINE_ACCESS and scope.name not in known:
                return self._invalid(client, scope.raw_value)

        api_resources = await self._api_resources(parsed_scopes, api_scopes, requested_resources)
        if isinstance(api_resources, GrantValidationError):
            return api_resources

        logger.debug(
            "scopes_validated",
            client_id=client.client_id,
            scopes=[s.raw_value for s in parsed_scopes],
            defaulted=defaulted,
        )
        return ResolvedResources(
            parsed_scopes=tuple(parsed_scopes),
            identity_resources=tuple(identity_resources),
            api_scopes=tuple(api_scopes),
            api_resources=tuple(api_resources),
            offline_access=offline_access,
        )

    async def default_scopes(self, client: Client, allow_identity_scopes: bool = True) -> list[ParsedScope]:
        """The client's allowed scopes that exist in the catalog, in a stable order."""
        names = sorted(client.allowed_scopes)
        api_scope_names = {s.name for s in await self.catalog.find_api_scopes(names) if s.enabled}
        if allow_identity_scopes:
            identity_names = {r.name for r in await self.catalog.find_identity_resources(names) if r.enabled}
        else:
            identity_names = set()
        return [
            ParsedScope(raw_value=name, name=name)
            for name in names
            if name in api_scope_names or name in identity_names
        ]

    async def _api_resources(self, parsed_scopes, api_scopes, requested_resources):
        api_scope_names = {s.name for s in api_scopes}
        unqualified = [s.name for s in parsed_scopes if s.name in api_scope_names and s.resource is None]
        resources = {r.name: r for r in await self.catalog.find_api_resources_by_scope(unqualified)}

        qualified = [s for s in parsed_scopes if s.name in api_scope_names and s.resource is not None]
        if qualified:
            found = {r.name: r for r in await self.catalog.find_api_resources([s.resource for s in qualified])}
            for scope in qualified:
                resource = found.get(scope.resource)
                if resource is None or scope.name not in resource.scopes:
                    return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.INVALID_SCOPE)
                resources[resource.name] = resource

        if requested_resources:
            unknown = [name for name in requested_resources if name not in resources]
            if unknown:
                logger.info("resource_indicator_rejected", resources=unknown)
                return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.INVALID_RESOURCE)
            resources = {name: resources[name] for name in requested_resources}

        return [r for r in resources.values() if r.enabled]

    def _invalid(self, client: Client, scope: str) -> GrantValidationError:
        logger.info("scope_validation_failed", client_id=client.client_id, scope=scope)
        return grant_error(TokenErrorCode.INVALID_SCOPE, ErrorDescription.INVALID_SCOPE)
