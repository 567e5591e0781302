"""
Client authentication for the token endpoint.

Credential kind is chosen by priority:
    1. TLS client certificate, when mutual TLS is enabled and the client is bound to one
    2. JWT client assertion (private_key_jwt)
    3. Shared secret, from the Basic Authorization header or the form body

Every failure after the client id is known is reported with the same error and
description, so a caller cannot tell an unknown client from a wrong credential.
"""

import base64
import binascii
import hmac
import json
from typing import Any
from urllib.parse import unquote

from authlib.jose import JoseError, JsonWebKey, JsonWebToken
from pydantic import BaseModel, ConfigDict

from tokenserver.config import Config
from tokenserver.models.clients import Client, SecretType
from tokenserver.models.errors import ErrorDescription, TokenErrorCode
from tokenserver.models.requests import (
    JWT_BEARER_ASSERTION_TYPE,
    ClientAssertion,
    ClientCertificate,
    ClientCredential,
    SharedSecret,
    TokenRequest,
    TransportEvidence,
)
from tokenserver.models.results import ClientAuthenticationResult, GrantValidationError
from tokenserver.stores.base import ClientCatalog
from tokenserver.utils.crypto import (
    certificate_sha256_thumbprint,
    certificate_thumbprint,
    load_certificate,
    public_key_hash,
    secret_matches,
)
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)

# Symmetric and "none" algorithms are never accepted for client assertions
ASSERTION_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "PS384", "PS512", "ES256", "ES384", "ES512"]

_assertion_jwt = JsonWebToken(ASSERTION_ALGORITHMS)


class ClientAuthenticationFailure(Exception):
    """Internal signal carrying the reason a credential was rejected; never shown to callers."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def _invalid_client(credentials_missing: bool = False) -> GrantValidationError:
    return GrantValidationError(
        error=TokenErrorCode.INVALID_CLIENT,
        error_description=(
            ErrorDescription.MISSING_CREDENTIALS if credentials_missing else ErrorDescription.INVALID_CLIENT
        ),
        credentials_missing=credentials_missing,
    )


def parse_basic_authorization(header: str | None) -> tuple[str, str] | None:
    """
    Client id and secret from a Basic Authorization header (RFC 6749 section 2.3.1).
    Both parts are form-url-encoded before base64 encoding.
    """
    if not header or not header.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(header[6:].strip(), validate=True).decode("utf-8")
    except ValueError as e:
        raise ClientAuthenticationFailure("malformed basic authorization header") from e
    client_id, separator, secret = decoded.partition(":")
    if not separator or not client_id:
        raise ClientAuthenticationFailure("malformed basic authorization header")
    return unquote(client_id.replace("+", " ")), unquote(secret.replace("+", " "))


def _unverified_claims(assertion: str) -> dict[str, Any]:
    """Payload of a compact JWS, read without verification to locate the client."""
    try:
        payload = assertion.split(".")[1]
        padded = payload + "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(padded))
    except (IndexError, ValueError, binascii.Error) as e:
        raise ClientAuthenticationFailure("client assertion is not a JWT") from e
    if not isinstance(claims, dict):
        raise ClientAuthenticationFailure("client assertion is not a JWT")
    return claims


class PresentedCredentials(BaseModel):
    """Raw credential material found on the request, before the client is known."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    secret: str | None = None
    assertion: str | None = None
    certificate: str | None = None


class ClientAuthenticator:
    """Resolves and verifies the calling client."""

    def __init__(self, catalog: ClientCatalog, config: Config) -> None:
        self.catalog = catalog
        self.config = config
        self.assertion_audiences = [config.issuer_uri, config.token_endpoint_url]

    async def authenticate(
        self, request: TokenRequest, evidence: TransportEvidence
    ) -> ClientAuthenticationResult | GrantValidationError:
        try:
            presented = self.collect_credentials(request, evidence)
        except ClientAuthenticationFailure as e:
            logger.warning("client_authentication_failed", reason=e.reason, client_id=request.client_id)
            return _invalid_client()

        if presented is None:
            logger.info("client_credentials_missing")
            return _invalid_client(credentials_missing=True)

        client = await self.catalog.find_client(presented.client_id)

        try:
            if client is None:
                raise ClientAuthenticationFailure("unknown client")
            if not client.enabled:
                raise ClientAuthenticationFailure("client disabled")
            credential = self.select_credential(client, presented)
            thumbprint = self.verify(client, credential)
        except ClientAuthenticationFailure as e:
            logger.warning(
                "client_authentication_failed", reason=e.reason, client_id=presented.client_id
            )
            return _invalid_client()

        logger.info(
            "client_authenticated", client_id=client.client_id, credential_kind=credential.kind
        )
        return ClientAuthenticationResult(
            client=client, credential_kind=credential.kind, certificate_thumbprint=thumbprint
        )

    def collect_credentials(
        self, request: TokenRequest, evidence: TransportEvidence
    ) -> PresentedCredentials | None:
        """
        Gather the credential material from the header, the body and the connection.
        Returns None when there is no client id or no credential material at all.
        """
        basic = parse_basic_authorization(evidence.authorization_header)
        assertion = request.get("client_assertion")

        client_id = request.client_id
        secret = request.client_secret
        if basic is not None:
            if client_id and client_id != basic[0]:
                raise ClientAuthenticationFailure("client id in header and body differ")
            client_id, secret = basic

        if assertion is not None:
            if request.get("client_assertion_type") != JWT_BEARER_ASSERTION_TYPE:
                raise ClientAuthenticationFailure("unsupported client assertion type")
            if client_id is None:
                subject = _unverified_claims(assertion).get("sub")
                if not isinstance(subject, str):
                    raise ClientAuthenticationFailure("client assertion subject is not a string")
                client_id = subject

        certificate = evidence.client_certificate if self.config.mutual_tls_enabled else None

        if not client_id or (secret is None and assertion is None and certificate is None):
            return None
        return PresentedCredentials(
            client_id=client_id, secret=secret, assertion=assertion, certificate=certificate
        )

    def select_credential(self, client: Client, presented: PresentedCredentials) -> ClientCredential:
        """Pick the single credential kind used for this client, by priority."""
        if client.require_mtls:
            if presented.certificate is None:
                raise ClientAuthenticationFailure("client requires a TLS client certificate")
            return ClientCertificate(client_id=client.client_id, certificate=presented.certificate)
        if presented.assertion is not None:
            return ClientAssertion(client_id=client.client_id, assertion=presented.assertion)
        if presented.secret is not None:
            return SharedSecret(client_id=client.client_id, secret=presented.secret)
        raise ClientAuthenticationFailure("client is not configured for mutual TLS")

    def verify(self, client: Client, credential: ClientCredential) -> str | None:
        """
        Check the credential against the client's registered secrets.
        Returns the certificate's x5t#S256 for certificate-bound clients.
        """
        if isinstance(credential, ClientCertificate):
            return self._verify_certificate(client, credential)
        if isinstance(credential, ClientAssertion):
            self._verify_assertion(client, credential)
        else:
            self._verify_shared_secret(client, credential)
        return None

    def _verify_shared_secret(self, client: Client, credential: SharedSecret) -> None:
        secrets = client.secrets_of(SecretType.SHARED_SECRET)
        if not secrets:
            raise ClientAuthenticationFailure("client has no shared secret")
        # Evaluate every registered secret so the match position does not leak through timing
        matches = [secret_matches(credential.secret, s.value) for s in secrets]
        if not any(matches):
            raise ClientAuthenticationFailure("shared secret mismatch")

    def _verify_assertion(self, client: Client, credential: ClientAssertion) -> None:
        keys = client.secrets_of(SecretType.JSON_WEB_KEY)
        if not keys:
            raise ClientAuthenticationFailure("client has no JSON web keys")
        try:
            key_set = JsonWebKey.import_key_set({"keys": [json.loads(k.value) for k in keys]})
        except (ValueError, JoseError) as e:
            raise ClientAuthenticationFailure("client JSON web key is malformed") from e

        try:
            claims = _assertion_jwt.decode(
                credential.assertion,
                key_set,
                claims_options={
                    "iss": {"essential": True, "value": client.client_id},
                    "sub": {"essential": True, "value": client.client_id},
                    "aud": {"essential": True, "values": self.assertion_audiences},
                    "exp": {"essential": True},
                    "jti": {"essential": True},
                },
            )
            claims.validate(leeway=self.config.client_assertion_clock_skew)
        except (JoseError, ValueError) as e:
            raise ClientAuthenticationFailure(f"client assertion rejected: {e}") from e

    def _verify_certificate(self, client: Client, credential: ClientCertificate) -> str:
        try:
            certificate = load_certificate(credential.certificate)
        except ValueError as e:
            raise ClientAuthenticationFailure("client certificate could not be parsed") from e

        thumbprint = certificate_thumbprint(certificate)
        key_hash = public_key_hash(certificate)

        matches = [
            hmac.compare_digest(s.value.replace(":", "").upper(), thumbprint)
            for s in client.secrets_of(SecretType.X509_THUMBPRINT)
        ]
        matches += [
            hmac.compare_digest(s.value, key_hash)
            for s in client.secrets_of(SecretType.X509_PUBLIC_KEY_HASH)
        ]
        if not any(matches):
            raise ClientAuthenticationFailure("client certificate is not registered for this client")
        return certificate_sha256_thumbprint(certificate)
