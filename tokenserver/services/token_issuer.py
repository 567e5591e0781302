"""Signing keys and token minting."""

import asyncio
import secrets
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from authlib.jose import JsonWebKey, JsonWebToken, Key, KeySet

from tokenserver.config import Config
from tokenserver.models.clients import RefreshTokenUsage
from tokenserver.models.errors import SigningKeyNotFoundError
from tokenserver.models.resources import ResolvedResources
from tokenserver.models.results import (
    ClientAuthenticationResult,
    GrantValidationSuccess,
    IssuedToken,
    RefreshTokenGrant,
)
from tokenserver.services.claims import ClaimsAugmenter
from tokenserver.stores.base import RefreshTokenStore
from tokenserver.utils.crypto import left_half_hash
from tokenserver.utils.logging import fingerprint, get_logger

logger = get_logger(__name__)

SUPPORTED_ALGORITHMS = ["RS256", "PS256", "ES256"]


@dataclass(frozen=True)
class SigningKey:
    algorithm: str
    kid: str
    key: Key


class SigningKeyProvider:
    """Signing keys by JWS algorithm. Loading and rotating keys happens elsewhere."""

    def __init__(self, keys: list[SigningKey]) -> None:
        self._keys = {key.algorithm: key for key in keys}
        self._jwt = JsonWebToken(SUPPORTED_ALGORITHMS)

    @classmethod
    def generate(cls, algorithm: str = "RS256") -> "SigningKeyProvider":
        """A throwaway key for development hosts and tests."""
        if algorithm == "ES256":
            key = JsonWebKey.generate_key("EC", "P-256", is_private=True)
        else:
            key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
        logger.warning("signing_key_generated", algorithm=algorithm)
        return cls([SigningKey(algorithm=algorithm, kid=key.thumbprint(), key=key)])

    @classmethod
    def from_pem(cls, path: str | Path, algorithm: str = "RS256") -> "SigningKeyProvider":
        key = JsonWebKey.import_key(Path(path).read_bytes())
        logger.info("signing_key_loaded", algorithm=algorithm, path=str(path))
        return cls([SigningKey(algorithm=algorithm, kid=key.thumbprint(), key=key)])

    @classmethod
    def from_config(cls, config: Config) -> "SigningKeyProvider":
        if config.signing_key_path:
            return cls.from_pem(config.signing_key_path, config.signing_algorithm)
        return cls.generate(config.signing_algorithm)

    def get(self, algorithm: str) -> SigningKey:
        try:
            return self._keys[algorithm]
        except KeyError as e:
            raise SigningKeyNotFoundError(algorithm) from e

    def sign(self, claims: dict[str, Any], algorithm: str, token_type: str = "JWT") -> str:
        signing_key = self.get(algorithm)
        header = {"alg": algorithm, "kid": signing_key.kid, "typ": token_type}
        return self._jwt.encode(header, claims, signing_key.key).decode("ascii")

    def public_key_set(self) -> KeySet:
        """Public halves of every signing key, for validating tokens this server issued."""
        return JsonWebKey.import_key_set(
            {
                "keys": [
                    {**k.key.as_dict(is_private=False), "kid": k.kid, "alg": k.algorithm, "use": "sig"}
                    for k in self._keys.values()
                ]
            }
        )


def _audience(audiences: list[str]) -> str | list[str] | None:
    if not audiences:
        return None
    return audiences[0] if len(audiences) == 1 else audiences


class TokenIssuer:
    """
    Mints the access token, identity token and refresh token for a validated request.
    Writing the refresh token grant is the only external state this pipeline commits.
    """

    def __init__(
        self,
        config: Config,
        keys: SigningKeyProvider,
        refresh_tokens: RefreshTokenStore,
        claims: ClaimsAugmenter,
    ) -> None:
        self.config = config
        self.keys = keys
        self.refresh_tokens = refresh_tokens
        self.claims = claims

    async def issue(
        self,
        client_auth: ClientAuthenticationResult,
        result: GrantValidationSuccess,
        resources: ResolvedResources,
    ) -> IssuedToken:
        client = client_auth.client
        now = int(time.time())
        scopes = resources.scope_values

        access_claims = await self.access_token_claims(client_auth, result, resources, now)
        access_token = self.keys.sign(access_claims, self.config.signing_algorithm, token_type="at+jwt")

        identity_token = None
        if resources.has_openid and result.subject:
            identity_token = await self.identity_token(client_auth, result, resources, access_token, now)

        refresh_token = await self.refresh_token(client_auth, result, resources, now)

        logger.info(
            "tokens_issued",
            client_id=client.client_id,
            subject=result.subject,
            scopes=scopes,
            jti=access_claims["jti"],
            identity_token=identity_token is not None,
            refresh_token=fingerprint(refresh_token),
        )
        return IssuedToken(
            access_token=access_token,
            expires_in=client.access_token_lifetime,
            scope=" ".join(scopes),
            identity_token=identity_token,
            refresh_token=refresh_token,
        )

    async def access_token_claims(
        self,
        client_auth: ClientAuthenticationResult,
        result: GrantValidationSuccess,
        resources: ResolvedResources,
        now: int,
    ) -> dict[str, Any]:
        client = client_auth.client
        claims: dict[str, Any] = {}

        # Lowest precedence first; protocol claims are written last and always win
        claims.update(await self.claims.access_token_claims(result.subject, resources))
        for name, value in client.claims.items():
            claims[name if name.startswith("client_") else f"client_{name}"] = value
        claims.update(result.claims)

        scopes = resources.scope_values
        claims.update(
            {
                "iss": self.config.issuer_uri,
                "nbf": now,
                "iat": now,
                "exp": now + client.access_token_lifetime,
                "client_id": client.client_id,
                "jti": secrets.token_hex(16),
                "scope": " ".join(scopes) if self.config.emit_scopes_as_space_delimited_string else scopes,
            }
        )
        audience = _audience(resources.audiences)
        if audience is not None:
            claims["aud"] = audience
        else:
            claims.pop("aud", None)

        if result.subject:
            claims["sub"] = result.subject
            claims["auth_time"] = result.auth_time or now
            claims["idp"] = result.idp or "local"
            claims["amr"] = list(result.amr)
        else:
            for name in ("sub", "auth_time", "idp", "amr"):
                claims.pop(name, None)

        if client_auth.certificate_thumbprint:
            claims["cnf"] = {"x5t#S256": client_auth.certificate_thumbprint}
        else:
            claims.pop("cnf", None)
        return claims

    async def identity_token(
        self,
        client_auth: ClientAuthenticationResult,
        result: GrantValidationSuccess,
        resources: ResolvedResources,
        access_token: str,
        now: int,
    ) -> str:
        client = client_auth.client
        claims: dict[str, Any] = {}
        if client.always_include_user_claims_in_id_token:
            claims.update(await self.claims.identity_claims(result.subject, resources))
        claims.update(
            {
                "iss": self.config.issuer_uri,
                "aud": client.client_id,
                "nbf": now,
                "iat": now,
                "exp": now + client.identity_token_lifetime,
                "sub": result.subject,
                "amr": list(result.amr),
                "auth_time": result.auth_time or now,
                "idp": result.idp or "local",
                "at_hash": left_half_hash(access_token, self.config.signing_algorithm),
            }
        )
        return self.keys.sign(claims, self.config.signing_algorithm)

    async def refresh_token(
        self,
        client_auth: ClientAuthenticationResult,
        result: GrantValidationSuccess,
        resources: ResolvedResources,
        now: int,
    ) -> str | None:
        client = client_auth.client
        consumed = result.consumed_refresh_token
        reuse = client.refresh_token_usage == RefreshTokenUsage.REUSE

        if not (resources.offline_access and client.allow_offline_access and result.subject):
            if consumed and not reuse:
                await self.refresh_tokens.remove(consumed)
            return None

        if consumed and reuse:
            return consumed

        grant = RefreshTokenGrant(
            handle=secrets.token_urlsafe(32),
            client_id=client.client_id,
            subject=result.subject,
            amr=result.amr,
            auth_time=result.auth_time or now,
            idp=result.idp,
            scopes=tuple(resources.scope_values),
            claims=result.claims,
            created_at=datetime.fromtimestamp(now, tz=UTC),
            lifetime=client.refresh_token_lifetime,
        )
        try:
            await self.refresh_tokens.store(grant)
            if consumed:
                await self.refresh_tokens.remove(consumed)
        except asyncio.CancelledError:
            # The grant may already be stored while the caller never sees the handle
            logger.warning(
                "refresh_token_issuance_cancelled",
                client_id=client.client_id,
                subject=result.subject,
                handle=fingerprint(grant.handle),
                replaces=fingerprint(consumed),
            )
            raise
        logger.info(
            "refresh_token_issued",
            client_id=client.client_id,
            subject=result.subject,
            handle=fingerprint(grant.handle),
            replaces=fingerprint(consumed),
        )
        return grant.handle
