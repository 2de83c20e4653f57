"""Pytest configuration and fixtures."""

import datetime
import logging
from collections.abc import Generator

import pytest
import structlog
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import NameOID

from kubepki.pki import templates
from kubepki.pki.authority import CertificateAuthority
from kubepki.pki.models import ClusterTopology, KeyCertPair
from kubepki.pki.pem import encode_certificate, encode_private_key

# Production keys are 4096-bit; tests that don't check key strength use smaller ones
TEST_KEY_SIZE = 2048


@pytest.fixture
def fast_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    """Generate 2048-bit keys for the duration of a test."""
    monkeypatch.setattr(templates, "KEY_SIZE", TEST_KEY_SIZE)


@pytest.fixture(scope="session")
def ca() -> CertificateAuthority:
    """Root CA shared by the whole test session."""
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr(templates, "KEY_SIZE", TEST_KEY_SIZE)
        return CertificateAuthority.generate("ca")


@pytest.fixture
def ca_pair(ca: CertificateAuthority) -> KeyCertPair:
    """PEM form of the session CA."""
    return ca.to_pair()


@pytest.fixture
def ed25519_ca_pair(ca: CertificateAuthority) -> KeyCertPair:
    """Self-signed Ed25519 CA certificate paired with the session CA's RSA key."""
    key = ed25519.Ed25519PrivateKey.generate()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "ca")])
    now = datetime.datetime.now(datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, None)
    )
    return KeyCertPair(
        certificate_pem=encode_certificate(cert),
        private_key_pem=encode_private_key(ca.ca_key),
    )


@pytest.fixture
def topology() -> ClusterTopology:
    """Three-member etcd cluster on the default domain."""
    return ClusterTopology(
        extra_fqdns=("api.example.com",),
        extra_ips=("10.0.0.10",),
        cluster_domain="cluster.local",
        etcd_peer_count=3,
    )


@pytest.fixture
def reset_logging() -> Generator[None]:
    """Restore structlog and stdlib logging defaults after a test."""
    yield
    structlog.reset_defaults()
    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
