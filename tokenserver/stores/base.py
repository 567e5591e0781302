"""
Collaborator interfaces consumed by the token pipeline.

Implementations may perform blocking or network I/O; every call is awaited and
any failure should surface as a CollaboratorError.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from tokenserver.models.clients import Client
from tokenserver.models.resources import ApiResource, ApiScope, IdentityResource
from tokenserver.models.results import RefreshTokenGrant


class ClientCatalog(ABC):
    @abstractmethod
    async def find_client(self, client_id: str) -> Client | None:
        """The registered client, or None if unknown."""
        raise NotImplementedError


class ResourceCatalog(ABC):
    @abstractmethod
    async def find_identity_resources(self, names: Iterable[str]) -> list[IdentityResource]:
        raise NotImplementedError

    @abstractmethod
    async def find_api_scopes(self, names: Iterable[str]) -> list[ApiScope]:
        raise NotImplementedError

    @abstractmethod
    async def find_api_resources_by_scope(self, scope_names: Iterable[str]) -> list[ApiResource]:
        raise NotImplementedError

    @abstractmethod
    async def find_api_resources(self, names: Iterable[str]) -> list[ApiResource]:
        raise NotImplementedError


class UserStore(ABC):
    @abstractmethod
    async def verify(self, username: str, password: str) -> str | None:
        """
        The subject id when the username and password match, otherwise None.
        Missing user and wrong password are not distinguished.
        """
        raise NotImplementedError


class RefreshTokenStore(ABC):
    @abstractmethod
    async def resolve(self, handle: str) -> RefreshTokenGrant | None:
        raise NotImplementedError

    @abstractmethod
    async def store(self, grant: RefreshTokenGrant) -> None:
        raise NotImplementedError

    @abstractmethod
    async def remove(self, handle: str) -> None:
        raise NotImplementedError


class ProfileService(ABC):
    @abstractmethod
    async def get_claims(self, subject: str, claim_types: Iterable[str]) -> dict[str, Any]:
        """
        Claims about the subject for the requested claim types.
        Callers filter the result; returning extra claims is harmless.
        """
        raise NotImplementedError

    @abstractmethod
    async def is_active(self, subject: str) -> bool:
        raise NotImplementedError
