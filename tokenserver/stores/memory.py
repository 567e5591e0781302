"""In-memory collaborators, loaded once at startup."""

import hmac
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from tokenserver.models.clients import Client
from tokenserver.models.errors import CollaboratorError
from tokenserver.models.resources import ApiResource, ApiScope, IdentityResource
from tokenserver.models.results import RefreshTokenGrant
from tokenserver.stores.base import (
    ClientCatalog,
    ProfileService,
    RefreshTokenStore,
    ResourceCatalog,
    UserStore,
)
from tokenserver.utils.logging import fingerprint, get_logger

logger = get_logger(__name__)

_UNKNOWN_USER_PASSWORD = b"unknown-user-placeholder-password"


class InMemoryClientCatalog(ClientCatalog):
    def __init__(self, clients: Iterable[Client]) -> None:
        self._clients: dict[str, Client] = {}
        for client in clients:
            if client.client_id in self._clients:
                raise ValueError(f"Client '{client.client_id}' is registered twice.")
            self._clients[client.client_id] = client

    async def find_client(self, client_id: str) -> Client | None:
        return self._clients.get(client_id)


class InMemoryResourceCatalog(ResourceCatalog):
    def __init__(
        self,
        identity_resources: Iterable[IdentityResource] = (),
        api_scopes: Iterable[ApiScope] = (),
        api_resources: Iterable[ApiResource] = (),
    ) -> None:
        self._identity_resources = {r.name: r for r in identity_resources}
        self._api_scopes = {s.name: s for s in api_scopes}
        self._api_resources = {r.name: r for r in api_resources}

        overlap = self._identity_resources.keys() & self._api_scopes.keys()
        if overlap:
            raise ValueError(f"Scope names used by both identity resources and API scopes: {sorted(overlap)}")

    async def find_identity_resources(self, names: Iterable[str]) -> list[IdentityResource]:
        return [self._identity_resources[n] for n in names if n in self._identity_resources]

    async def find_api_scopes(self, names: Iterable[str]) -> list[ApiScope]:
        return [self._api_scopes[n] for n in names if n in self._api_scopes]

    async def find_api_resources_by_scope(self, scope_names: Iterable[str]) -> list[ApiResource]:
        wanted = set(scope_names)
        return [r for r in self._api_resources.values() if r.scopes & wanted]

    async def find_api_resources(self, names: Iterable[str]) -> list[ApiResource]:
        return [self._api_resources[n] for n in names if n in self._api_resources]


class TestUser(BaseModel):
    """A user held in memory, for development hosts and tests."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    subject_id: str
    username: str
    password: str
    is_active: bool = True
    claims: dict[str, Any] = Field(default_factory=dict)


class TestUserStore(UserStore, ProfileService):
    """User store and profile service over a fixed list of TestUsers."""

    __test__ = False

    def __init__(self, users: Iterable[TestUser]) -> None:
        self._by_username: dict[str, TestUser] = {}
        self._by_subject: dict[str, TestUser] = {}
        for user in users:
            self._by_username[user.username] = user
            self._by_subject[user.subject_id] = user

    async def verify(self, username: str, password: str) -> str | None:
        user = self._by_username.get(username)
        if user is None:
            # Compare anyway so an unknown user costs the same as a wrong password
            hmac.compare_digest(_UNKNOWN_USER_PASSWORD, password.encode())
            return None
        if not hmac.compare_digest(user.password.encode(), password.encode()):
            return None
        return user.subject_id

    async def get_claims(self, subject: str, claim_types: Iterable[str]) -> dict[str, Any]:
        user = self._by_subject.get(subject)
        if user is None:
            return {}
        wanted = set(claim_types)
        return {k: v for k, v in user.claims.items() if k in wanted}

    async def is_active(self, subject: str) -> bool:
        user = self._by_subject.get(subject)
        return user is not None and user.is_active


class InMemoryRefreshTokenStore(RefreshTokenStore):
    """
    Process-local refresh token store.
    Grants are replaced wholesale; entries are never mutated in place.
    """

    def __init__(self) -> None:
        self._grants: dict[str, RefreshTokenGrant] = {}

    async def resolve(self, handle: str) -> RefreshTokenGrant | None:
        grant = self._grants.get(handle)
        if grant is not None and grant.is_expired():
            self._grants.pop(handle, None)
            logger.debug("refresh_token_expired", handle=fingerprint(handle), client_id=grant.client_id)
            return None
        return grant

    async def store(self, grant: RefreshTokenGrant) -> None:
        self._evict_expired()
        if grant.handle in self._grants:
            raise CollaboratorError("Refresh token handle collision.")
        self._grants[grant.handle] = grant
        logger.debug("refresh_token_stored", handle=fingerprint(grant.handle), client_id=grant.client_id)

    async def remove(self, handle: str) -> None:
        self._grants.pop(handle, None)

    def __len__(self) -> int:
        return len(self._grants)

    def _evict_expired(self) -> None:
        now = datetime.now(UTC)
        expired = [handle for handle, grant in self._grants.items() if grant.is_expired(now)]
        for handle in expired:
            del self._grants[handle]
        if expired:
            logger.debug("refresh_tokens_evicted", count=len(expired))
