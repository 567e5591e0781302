"""Hashing helpers for secrets, certificates and token hashes."""

import base64
import hashlib
import hmac

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization


def base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def hash_secret(secret: str) -> str:
    """SHA-256 of a shared secret, base64 encoded. Only the hash is ever stored."""
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest()).decode("ascii")


def secret_matches(presented: str, stored_hash: str) -> bool:
    """Constant-time comparison of a presented secret against a stored hash."""
    return hmac.compare_digest(hash_secret(presented), stored_hash)


def load_certificate(data: str | bytes) -> x509.Certificate:
    """Load a PEM or DER encoded X.509 certificate."""
    raw = data.encode("ascii") if isinstance(data, str) else data
    if raw.lstrip().startswith(b"-----BEGIN"):
        return x509.load_pem_x509_certificate(raw)
    return x509.load_der_x509_certificate(raw)


def certificate_thumbprint(certificate: x509.Certificate) -> str:
    """SHA-1 thumbprint in upper-case hex, the form certificate stores display."""
    return certificate.fingerprint(hashes.SHA1()).hex().upper()


def certificate_sha256_thumbprint(certificate: x509.Certificate) -> str:
    """base64url SHA-256 of the DER certificate (the 'x5t#S256' confirmation value)."""
    return base64url(certificate.fingerprint(hashes.SHA256()))


def public_key_hash(certificate: x509.Certificate) -> str:
    """base64url SHA-256 of the SubjectPublicKeyInfo."""
    spki = certificate.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64url(hashlib.sha256(spki).digest())


def left_half_hash(value: str, algorithm: str) -> str:
    """
    OIDC at_hash: base64url of the left half of the hash of the ASCII token,
    using the hash size of the JWS algorithm.
    """
    digest = {"256": hashlib.sha256, "384": hashlib.sha384, "512": hashlib.sha512}[algorithm[-3:]]
    full = digest(value.encode("ascii")).digest()
    return base64url(full[: len(full) // 2])
