"""Certificate derivation and concurrent issuance for cluster bootstrap."""

from .authority import CertificateAuthority, create_ca_pair
from .bootstrap import bootstrap_pki, create_pki
from .errors import (
    CodecError,
    CryptoError,
    GenerationFailedError,
    InvalidEncodingError,
    IssuanceTimeoutError,
    MalformedPEMError,
    ParseFailedError,
    PKIError,
    SigningFailedError,
)
from .models import ClusterTopology, KeyCertPair, PKIBundle
from .templates import CertificateRequest, IdentityRole, canonical_service_names

__all__ = [
    "CertificateAuthority",
    "CertificateRequest",
    "ClusterTopology",
    "CodecError",
    "CryptoError",
    "GenerationFailedError",
    "IdentityRole",
    "InvalidEncodingError",
    "IssuanceTimeoutError",
    "KeyCertPair",
    "MalformedPEMError",
    "PKIBundle",
    "PKIError",
    "ParseFailedError",
    "SigningFailedError",
    "bootstrap_pki",
    "canonical_service_names",
    "create_ca_pair",
    "create_pki",
]
