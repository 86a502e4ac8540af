"""Key and certificate material helpers.

Fastly never returns private key material. It reports the SHA-1 of the
PEM-encoded public key instead, so the local fingerprint must be computed
from exactly the same bytes Fastly hashes.
"""

from __future__ import annotations

import hashlib

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .models import TLSSecret

# Keys of a kubernetes.io/tls secret issued by cert-manager
TLS_KEY = "tls.key"
TLS_CERT = "tls.crt"
CA_CERT = "ca.crt"

_PEM_BEGIN = b"-----BEGIN "


class KeyMaterialError(Exception):
    """Raised when key or certificate material cannot be decoded."""

    pass


def public_key_sha1(key_pem: bytes) -> str:
    """Compute the Fastly-style fingerprint of a PEM-encoded RSA private key.

    The public key is re-encoded as a SubjectPublicKeyInfo ``PUBLIC KEY``
    PEM block and the SHA-1 of those PEM bytes is returned as 40 hex chars.

    Raises:
        KeyMaterialError: If no PEM block is present or it is not an RSA key.
    """
    if _PEM_BEGIN not in key_pem:
        raise KeyMaterialError("failed to parse PEM block")

    try:
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise KeyMaterialError(f"failed to parse RSA private key: {e}") from e

    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise KeyMaterialError(
            f"failed to parse RSA private key: unsupported key type {type(private_key).__name__}"
        )

    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha1(public_pem, usedforsecurity=False).hexdigest()


def certificate_blob(secret: TLSSecret, allow_untrusted_root: bool) -> bytes:
    """Build the certificate bytes to upload to Fastly.

    In production only the leaf is sent; Fastly already trusts the issuer.
    Local clusters use a self-signed root, so ``ca.crt`` is appended and must
    be present.
    """
    cert_pem = secret.data.get(TLS_CERT)
    if cert_pem is None:
        raise KeyMaterialError(f"secret {secret.key} does not contain {TLS_CERT}")

    if not allow_untrusted_root:
        return cert_pem

    ca_pem = secret.data.get(CA_CERT)
    if ca_pem is None:
        raise KeyMaterialError(f"secret {secret.key} does not contain {CA_CERT}")
    return cert_pem + ca_pem


def certificate_serial(cert_pem: bytes) -> str:
    """Return the decimal serial number of the first certificate in a blob."""
    if _PEM_BEGIN not in cert_pem:
        raise KeyMaterialError("failed to decode PEM block containing the certificate")

    try:
        certificate = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as e:
        raise KeyMaterialError(f"failed to parse certificate: {e}") from e

    return str(certificate.serial_number)


def private_key_pem(secret: TLSSecret) -> bytes:
    """Return the private key bytes of a TLS secret."""
    key_pem = secret.data.get(TLS_KEY)
    if key_pem is None:
        raise KeyMaterialError(f"secret {secret.key} does not contain {TLS_KEY}")
    return key_pem
