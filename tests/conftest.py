import base64
import json
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from authlib.jose import JsonWebKey
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient
from jose import jwt as jose_jwt

from tokenserver.config import Config, get_config
from tokenserver.host.wiring import build_token_server
from tokenserver.models.clients import ClientSecret, SecretType
from tokenserver.server import create_app
from tokenserver.services.events import TokenEvent, TokenEventSink
from tokenserver.services.token_issuer import SigningKeyProvider

ISSUER = "https://idsvr8"
TOKEN_ENDPOINT = "/connect/token"
USERINFO_ENDPOINT = "/connect/userinfo"


def pytest_configure(config):
    """Loads a local .env, if any, before the test session."""
    from dotenv import load_dotenv

    load_dotenv()


@pytest.fixture(autouse=True)
def clear_config_cache():
    get_config.cache_clear()
    yield
    get_config.cache_clear()


class RecordingEventSink(TokenEventSink):
    """Keeps every raised event for later assertions."""

    def __init__(self) -> None:
        self.events: list[TokenEvent] = []

    async def raise_event(self, event: TokenEvent) -> None:
        self.events.append(event)

    @property
    def names(self) -> list[str]:
        return [event.name for event in self.events]


@pytest.fixture(scope="session")
def signing_keys() -> SigningKeyProvider:
    """One RS256 key for the whole session; generating RSA keys is slow."""
    return SigningKeyProvider.generate("RS256")


@pytest.fixture
def config() -> Config:
    return Config(_env_file=None, raise_information_events=True)


@pytest.fixture
def event_sink() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def token_server(config, signing_keys, event_sink):
    return build_token_server(config, keys=signing_keys, event_sinks=[event_sink])


@pytest.fixture
def app_client(config, token_server):
    with TestClient(create_app(config, token_server)) as client:
        yield client


@pytest.fixture
def request_token(app_client):
    """Posts a form to the token endpoint, with Basic authentication when `auth` is given."""

    def _request(data: dict, auth: tuple[str, str] | None = None, headers: dict | None = None):
        request_headers = dict(headers or {})
        if auth is not None:
            encoded = base64.b64encode(f"{auth[0]}:{auth[1]}".encode()).decode()
            request_headers["Authorization"] = f"Basic {encoded}"
        return app_client.post(TOKEN_ENDPOINT, data=data, headers=request_headers)

    return _request


@pytest.fixture(scope="session")
def rsa_key_pair():
    """
    An RSA key pair for client assertions.
    Returns:
        tuple: (private_pem, public_jwk_dict)
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_jwk = {**JsonWebKey.import_key(private_pem).as_dict(is_private=False), "kid": "assertion-key"}
    return private_pem, public_jwk


@pytest.fixture
def jwk_secret(rsa_key_pair) -> ClientSecret:
    _, public_jwk = rsa_key_pair
    return ClientSecret(type=SecretType.JSON_WEB_KEY, value=json.dumps(public_jwk))


@pytest.fixture
def client_assertion(rsa_key_pair):
    """Factory for signed private_key_jwt client assertions."""
    private_pem, _ = rsa_key_pair

    def _factory(client_id: str, claims_override: dict | None = None, kid: str = "assertion-key") -> str:
        now = datetime.now(UTC)
        claims = {
            "iss": client_id,
            "sub": client_id,
            "aud": f"{ISSUER}{TOKEN_ENDPOINT}",
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(minutes=5)).timestamp()),
            "jti": str(uuid.uuid4()),
        }
        claims.update(claims_override or {})
        return jose_jwt.encode(claims, private_pem, algorithm="RS256", headers={"kid": kid})

    return _factory


@pytest.fixture(scope="session")
def certificate_factory():
    """Factory for self-signed client certificates, returned as PEM."""

    def _factory(common_name: str) -> str:
        key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        now = datetime.now(UTC)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=1))
            .sign(key, hashes.SHA256())
        )
        return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    return _factory
