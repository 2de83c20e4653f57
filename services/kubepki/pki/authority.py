"""Certificate Authority handle.

Wraps a decoded root certificate and key. The root is either generated here
(self-signed, see build_template for the RootCA shape) or supplied by the
caller as a PEM pair; kubepki never discovers a CA on its own.
"""

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from kubepki.logging_config import get_logger

from .errors import InvalidEncodingError
from .issuer import issue
from .models import KeyCertPair
from .pem import (
    certificate_fingerprint,
    decode_certificate,
    decode_private_key,
    encode_certificate,
    encode_private_key,
    public_keys_match,
)
from .templates import CertificateRequest, IdentityRole, build_template

logger = get_logger(__name__)

DEFAULT_CA_COMMON_NAME = "ca"


class CertificateAuthority:
    """Root of trust for one cluster's leaf certificates."""

    def __init__(
        self,
        ca_cert: x509.Certificate,
        ca_key: rsa.RSAPrivateKey,
    ):
        self._ca_cert = ca_cert
        self._ca_key = ca_key

    @property
    def ca_cert(self) -> x509.Certificate:
        return self._ca_cert

    @property
    def ca_key(self) -> rsa.RSAPrivateKey:
        return self._ca_key

    @property
    def ca_cert_pem(self) -> str:
        """Return the CA certificate as a PEM string."""
        return encode_certificate(self._ca_cert)

    def to_pair(self) -> KeyCertPair:
        return KeyCertPair(
            certificate_pem=self.ca_cert_pem,
            private_key_pem=encode_private_key(self._ca_key),
        )

    # ── CA Generation ────────────────────────────────────────────────────

    @classmethod
    def generate(cls, common_name: str = DEFAULT_CA_COMMON_NAME) -> "CertificateAuthority":
        """Generate a new self-signed root certificate and RSA key."""
        request = CertificateRequest(common_name=common_name, role=IdentityRole.ROOT_CA)
        template, private_key = build_template(request)
        cert = issue(template, private_key)

        logger.info(
            "Generated new CA certificate",
            common_name=common_name,
            fingerprint=certificate_fingerprint(cert)[:16],
            expires=cert.not_valid_after_utc.isoformat(),
        )

        return cls(ca_cert=cert, ca_key=private_key)

    @classmethod
    def load(cls, pair: KeyCertPair) -> "CertificateAuthority":
        """Load CA from a PEM-encoded certificate and key.

        Raises:
            MalformedPEMError: either half is not PEM.
            InvalidEncodingError: either half does not decode, or the key
                does not belong to the certificate.
        """
        cert = decode_certificate(pair.certificate_pem)
        key = decode_private_key(pair.private_key_pem)
        if not public_keys_match(cert, key):
            raise InvalidEncodingError("CA private key does not match the CA certificate")
        return cls(ca_cert=cert, ca_key=key)

    # ── Certificate Issuance ─────────────────────────────────────────────

    def issue(self, request: CertificateRequest) -> KeyCertPair:
        """Build, sign and PEM-encode one leaf certificate.

        Safe to call from several threads at once: the CA certificate and
        key are only read.
        """
        if request.role is IdentityRole.ROOT_CA:
            raise ValueError("Root certificates are self-signed, use CertificateAuthority.generate")

        template, private_key = build_template(request)
        cert = issue(
            template,
            private_key,
            signer_certificate=self._ca_cert,
            signer_key=self._ca_key,
        )

        logger.info(
            "Issued certificate",
            common_name=request.common_name,
            role=str(request.role),
            serial=format(cert.serial_number, "x"),
            expires=cert.not_valid_after_utc.isoformat(),
        )

        return KeyCertPair(
            certificate_pem=encode_certificate(cert),
            private_key_pem=encode_private_key(private_key),
        )


def create_ca_pair(common_name: str = DEFAULT_CA_COMMON_NAME) -> KeyCertPair:
    """Generate a root CA and return it as a PEM pair."""
    return CertificateAuthority.generate(common_name).to_pair()
