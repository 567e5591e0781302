"""Hooks run after a grant validated, before any token is issued."""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from tokenserver.models.requests import TokenRequest
from tokenserver.models.resources import ResolvedResources
from tokenserver.models.results import (
    ClientAuthenticationResult,
    GrantValidationResult,
    GrantValidationSuccess,
)


@dataclass(frozen=True)
class CustomTokenRequestContext:
    request: TokenRequest
    client_auth: ClientAuthenticationResult
    resources: ResolvedResources
    result: GrantValidationSuccess


class CustomTokenRequestValidator(ABC):
    """
    Cross-cutting business rules for token requests.

    Return `context.result` unchanged, a copy enriched with custom response
    properties or claims, or a GrantValidationError to reject the request.
    Hooks only ever see successful results.
    """

    @abstractmethod
    async def validate(self, context: CustomTokenRequestContext) -> GrantValidationResult:
        raise NotImplementedError
