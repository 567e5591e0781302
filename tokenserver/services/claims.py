"""Profile claims for issued tokens, restricted to what the granted scopes allow."""

from typing import Any

from tokenserver.models.resources import ResolvedResources
from tokenserver.stores.base import ProfileService
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)

# Set by the token issuer only; a profile service can never supply these
PROTOCOL_CLAIMS = frozenset(
    {"sub", "iss", "aud", "exp", "nbf", "iat", "jti", "amr", "auth_time", "idp", "client_id", "scope", "cnf", "at_hash", "nonce"}
)


class ClaimsAugmenter:
    """Asks the profile service for claims and drops any the grant does not cover."""

    def __init__(self, profile_service: ProfileService) -> None:
        self.profile_service = profile_service

    async def access_token_claims(self, subject: str | None, resources: ResolvedResources) -> dict[str, Any]:
        """Claims requested by the granted API scopes and API resources."""
        return await self._claims(subject, resources.api_claim_types())

    async def identity_claims(self, subject: str | None, resources: ResolvedResources) -> dict[str, Any]:
        """Claims requested by the granted identity resources (identity token, userinfo)."""
        return await self._claims(subject, resources.identity_claim_types())

    async def _claims(self, subject: str | None, claim_types: set[str]) -> dict[str, Any]:
        allowed = claim_types - PROTOCOL_CLAIMS
        if not subject or not allowed:
            return {}

        claims = await self.profile_service.get_claims(subject, sorted(allowed))
        dropped = sorted(set(claims) - allowed)
        if dropped:
            logger.debug("profile_claims_dropped", subject=subject, claim_types=dropped)
        return {name: claims[name] for name in sorted(claims) if name in allowed}
