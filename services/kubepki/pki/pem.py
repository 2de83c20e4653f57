"""PEM encoding and decoding of certificates and RSA private keys.

Decoding distinguishes two failure modes: text that contains no usable PEM
block (MalformedPEMError) and a PEM block whose DER payload is not the
expected structure (InvalidEncodingError).
"""

import base64
import re

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .errors import InvalidEncodingError, MalformedPEMError

CERTIFICATE_LABEL = "CERTIFICATE"
RSA_PRIVATE_KEY_LABEL = "RSA PRIVATE KEY"
PKCS8_PRIVATE_KEY_LABEL = "PRIVATE KEY"

# Text before the first block and after the last one is ignored
_PEM_BLOCK = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----(?P<body>.*?)-----END (?P=label)-----",
    re.DOTALL,
)


def _first_block(pem_text: str | bytes, labels: tuple[str, ...]) -> bytes:
    """Return the DER payload of the first PEM block carrying one of ``labels``."""
    if isinstance(pem_text, bytes):
        try:
            pem_text = pem_text.decode("ascii")
        except UnicodeDecodeError as e:
            raise MalformedPEMError("PEM data is not ASCII text") from e

    blocks = list(_PEM_BLOCK.finditer(pem_text))
    if not blocks:
        raise MalformedPEMError("The raw PEM is not a valid PEM formatted block")

    for block in blocks:
        if block.group("label") not in labels:
            continue
        body = "".join(_strip_headers(block.group("body")).split())
        try:
            return base64.b64decode(body, validate=True)
        except ValueError as e:
            raise MalformedPEMError(
                f"{block.group('label')} block body is not valid base64"
            ) from e

    # Well-formed PEM, but carrying some other structure
    found = ", ".join(sorted({b.group("label") for b in blocks}))
    raise InvalidEncodingError(f"Expected a {' or '.join(labels)} block, found: {found}")


def _strip_headers(body: str) -> str:
    """Drop RFC 1421 headers (``Proc-Type: ...``) that precede the base64 body."""
    lines = body.strip().splitlines()
    if not lines or ":" not in lines[0]:
        return body
    for index, line in enumerate(lines):
        if not line.strip():
            return "\n".join(lines[index + 1 :])
    return ""


def public_keys_match(certificate: x509.Certificate, key: rsa.RSAPrivateKey) -> bool:
    """Whether ``key`` is the private half of the key in ``certificate``."""
    spki = serialization.PublicFormat.SubjectPublicKeyInfo
    return certificate.public_key().public_bytes(
        serialization.Encoding.DER, spki
    ) == key.public_key().public_bytes(serialization.Encoding.DER, spki)


# ── Encoding ─────────────────────────────────────────────────────────────


def encode_certificate(certificate: x509.Certificate | bytes) -> str:
    """Encode a certificate (parsed, or raw DER bytes) as PEM text."""
    if isinstance(certificate, bytes):
        try:
            certificate = x509.load_der_x509_certificate(certificate)
        except ValueError as e:
            raise InvalidEncodingError(f"DER bytes are not a valid X.509 certificate: {e}") from e
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


def encode_private_key(key: rsa.RSAPrivateKey) -> str:
    """Encode an RSA private key as unencrypted PKCS#1 PEM text."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


# ── Decoding ─────────────────────────────────────────────────────────────


def decode_certificate(pem_text: str | bytes) -> x509.Certificate:
    """Decode the first CERTIFICATE block in ``pem_text``."""
    der = _first_block(pem_text, (CERTIFICATE_LABEL,))
    try:
        return x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise InvalidEncodingError(f"PEM block is not a valid X.509 certificate: {e}") from e


def decode_private_key(pem_text: str | bytes) -> rsa.RSAPrivateKey:
    """Decode the first RSA private key block (PKCS#1 or PKCS#8) in ``pem_text``."""
    der = _first_block(pem_text, (RSA_PRIVATE_KEY_LABEL, PKCS8_PRIVATE_KEY_LABEL))
    try:
        key = serialization.load_der_private_key(der, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise InvalidEncodingError(f"PEM block is not a valid private key: {e}") from e

    if not isinstance(key, rsa.RSAPrivateKey):
        raise InvalidEncodingError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    """Get SHA256 fingerprint of certificate."""
    return certificate.fingerprint(hashes.SHA256()).hex()
