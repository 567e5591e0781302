"""Unit tests for token minting and refresh token handling."""

import pytest
from authlib.jose import JsonWebToken
from jose import jwt as jose_jwt

from tokenserver.host.catalog import API_RESOURCES, API_SCOPES, IDENTITY_RESOURCES
from tokenserver.models.clients import Client, RefreshTokenUsage
from tokenserver.models.errors import SigningKeyNotFoundError
from tokenserver.models.results import ClientAuthenticationResult, GrantValidationSuccess
from tokenserver.services.claims import ClaimsAugmenter
from tokenserver.services.token_issuer import TokenIssuer
from tokenserver.stores.memory import (
    InMemoryRefreshTokenStore,
    InMemoryResourceCatalog,
    TestUser,
    TestUserStore,
)
from tokenserver.utils.crypto import left_half_hash
from tokenserver.validation.scopes import DefaultScopeParser, ScopeValidator

ROCLIENT = Client(
    client_id="roclient",
    allowed_scopes=frozenset({"openid", "email", "api1", "api4.with.roles"}),
    allow_offline_access=True,
    claims={"tier": "gold"},
)

BOB = TestUser(
    subject_id="88421113",
    username="bob",
    password="bob",
    claims={"email": "BobSmith@email.com", "email_verified": True, "role": ["Geek", "Developer"]},
)


@pytest.fixture
def refresh_store() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def issuer(config, signing_keys, refresh_store) -> TokenIssuer:
    return TokenIssuer(config, signing_keys, refresh_store, ClaimsAugmenter(TestUserStore([BOB])))


async def resolve(scope: str, client: Client = ROCLIENT):
    validator = ScopeValidator(InMemoryResourceCatalog(IDENTITY_RESOURCES, API_SCOPES, API_RESOURCES))
    return await validator.validate(client, DefaultScopeParser().parse(scope))


def auth_for(client: Client = ROCLIENT, thumbprint: str | None = None) -> ClientAuthenticationResult:
    return ClientAuthenticationResult(
        client=client,
        credential_kind="client_certificate" if thumbprint else "shared_secret",
        certificate_thumbprint=thumbprint,
    )


def bob_result(**overrides) -> GrantValidationSuccess:
    values = {"subject": "88421113", "amr": ("password",), "auth_time": 1700000000, "idp": "local"}
    values.update(overrides)
    return GrantValidationSuccess(**values)


@pytest.mark.asyncio
async def test_access_token_claims(issuer):
    token = await issuer.issue(auth_for(), bob_result(), await resolve("openid email api1 offline_access"))
    claims = jose_jwt.get_unverified_claims(token.access_token)

    assert set(claims) == {
        "iss", "nbf", "iat", "exp", "aud", "scope", "amr", "client_id",
        "sub", "auth_time", "idp", "jti", "client_tier",
    }
    assert claims["iss"] == "https://idsvr8"
    assert claims["aud"] == "api"
    assert claims["scope"] == ["openid", "email", "api1", "offline_access"]
    assert claims["amr"] == ["password"]
    assert claims["sub"] == "88421113"
    assert claims["client_tier"] == "gold"
    assert claims["exp"] - claims["iat"] == 3600
    assert token.expires_in == 3600
    assert token.scope == "openid email api1 offline_access"


@pytest.mark.asyncio
async def test_access_token_header(issuer, signing_keys):
    token = await issuer.issue(auth_for(), bob_result(), await resolve("api1"))
    header = jose_jwt.get_unverified_header(token.access_token)

    assert header["typ"] == "at+jwt"
    assert header["alg"] == "RS256"
    assert header["kid"] == signing_keys.get("RS256").kid

    claims = JsonWebToken(["RS256"]).decode(token.access_token, signing_keys.public_key_set())
    assert claims["client_id"] == "roclient"


@pytest.mark.asyncio
async def test_api_scope_user_claims_are_included(issuer):
    token = await issuer.issue(auth_for(), bob_result(), await resolve("api4.with.roles"))
    claims = jose_jwt.get_unverified_claims(token.access_token)

    assert claims["role"] == ["Geek", "Developer"]
    assert claims["aud"] == "api4"
    assert "email" not in claims


@pytest.mark.asyncio
async def test_protocol_claims_cannot_be_overridden(issuer):
    result = bob_result(claims={"sub": "someone-else", "iss": "https://evil", "transaction": "123"})
    token = await issuer.issue(auth_for(), result, await resolve("api1"))
    claims = jose_jwt.get_unverified_claims(token.access_token)

    assert claims["sub"] == "88421113"
    assert claims["iss"] == "https://idsvr8"
    assert claims["transaction"] == "123"


@pytest.mark.asyncio
async def test_scope_claim_as_string(config, signing_keys, refresh_store):
    config = config.model_copy(update={"emit_scopes_as_space_delimited_string": True})
    issuer = TokenIssuer(config, signing_keys, refresh_store, ClaimsAugmenter(TestUserStore([BOB])))
    token = await issuer.issue(auth_for(), bob_result(), await resolve("openid api1"))
    assert jose_jwt.get_unverified_claims(token.access_token)["scope"] == "openid api1"


@pytest.mark.asyncio
async def test_client_only_token_has_no_user_claims(issuer):
    token = await issuer.issue(auth_for(), GrantValidationSuccess(), await resolve("api1"))
    claims = jose_jwt.get_unverified_claims(token.access_token)

    for name in ("sub", "amr", "auth_time", "idp"):
        assert name not in claims
    assert token.identity_token is None
    assert token.refresh_token is None


@pytest.mark.asyncio
async def test_certificate_bound_token_has_cnf(issuer):
    token = await issuer.issue(auth_for(thumbprint="abc123"), bob_result(), await resolve("api1"))
    assert jose_jwt.get_unverified_claims(token.access_token)["cnf"] == {"x5t#S256": "abc123"}


@pytest.mark.asyncio
async def test_identity_token_only_with_openid(issuer):
    without = await issuer.issue(auth_for(), bob_result(), await resolve("api1"))
    assert without.identity_token is None

    with_openid = await issuer.issue(auth_for(), bob_result(), await resolve("openid email"))
    claims = jose_jwt.get_unverified_claims(with_openid.identity_token)

    assert claims["aud"] == "roclient"
    assert claims["sub"] == "88421113"
    assert claims["amr"] == ["password"]
    assert claims["at_hash"] == left_half_hash(with_openid.access_token, "RS256")
    assert "email" not in claims


@pytest.mark.asyncio
async def test_identity_token_user_claims_when_configured(issuer):
    client = ROCLIENT.model_copy(update={"always_include_user_claims_in_id_token": True})
    token = await issuer.issue(auth_for(client), bob_result(), await resolve("openid email", client))
    claims = jose_jwt.get_unverified_claims(token.identity_token)
    assert claims["email"] == "BobSmith@email.com"


@pytest.mark.asyncio
async def test_refresh_token_only_with_offline_access(issuer, refresh_store):
    token = await issuer.issue(auth_for(), bob_result(), await resolve("api1"))
    assert token.refresh_token is None
    assert len(refresh_store) == 0

    token = await issuer.issue(auth_for(), bob_result(), await resolve("api1 offline_access"))
    grant = await refresh_store.resolve(token.refresh_token)
    assert grant.subject == "88421113"
    assert grant.amr == ("password",)
    assert grant.scopes == ("api1", "offline_access")


@pytest.mark.asyncio
async def test_one_time_refresh_token_is_rotated(issuer, refresh_store):
    first = await issuer.issue(auth_for(), bob_result(), await resolve("api1 offline_access"))
    second = await issuer.issue(
        auth_for(), bob_result(consumed_refresh_token=first.refresh_token), await resolve("api1 offline_access")
    )

    assert second.refresh_token != first.refresh_token
    assert await refresh_store.resolve(first.refresh_token) is None
    assert await refresh_store.resolve(second.refresh_token) is not None


@pytest.mark.asyncio
async def test_reusable_refresh_token_is_returned_again(issuer, refresh_store):
    client = ROCLIENT.model_copy(update={"refresh_token_usage": RefreshTokenUsage.REUSE})
    first = await issuer.issue(auth_for(client), bob_result(), await resolve("api1 offline_access", client))
    second = await issuer.issue(
        auth_for(client),
        bob_result(consumed_refresh_token=first.refresh_token),
        await resolve("api1 offline_access", client),
    )

    assert second.refresh_token == first.refresh_token
    assert len(refresh_store) == 1


def test_missing_signing_key(signing_keys):
    with pytest.raises(SigningKeyNotFoundError):
        signing_keys.sign({"sub": "x"}, "ES256")
