"""Certificate template builder.

Turns a semantic identity role into a fully shaped X.509 template:
- RootCA:     key cert sign, CA flag, no EKU, no SANs
- Server:     serverAuth, DNS + IP SANs (API endpoint)
- Client:     clientAuth, no SANs (admin / kubeconfig)
- EtcdServer: serverAuth, IP SANs
- EtcdClient: clientAuth, IP SANs
- EtcdPeer:   serverAuth + clientAuth, IP SANs (peers authenticate both ways)

Every template gets a fresh RSA key, a random 128-bit serial number and a
two year validity window starting now.
"""

import datetime
import ipaddress
import secrets
from dataclasses import dataclass
from enum import StrEnum

from cryptography import x509
from cryptography.exceptions import InternalError, UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from .errors import GenerationFailedError

VALIDITY_DURATION = datetime.timedelta(days=365 * 2)
KEY_SIZE = 4096
PUBLIC_EXPONENT = 65537
SERIAL_NUMBER_BITS = 128

SERVICE_NAME = "kubernetes"
SERVICE_NAMESPACES = ("default", "kube-system")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class IdentityRole(StrEnum):
    """Semantic role a certificate is issued for."""

    ROOT_CA = "root-ca"
    SERVER = "server"
    CLIENT = "client"
    ETCD_SERVER = "etcd-server"
    ETCD_CLIENT = "etcd-client"
    ETCD_PEER = "etcd-peer"


_EXTENDED_KEY_USAGE: dict[IdentityRole, tuple[x509.ObjectIdentifier, ...]] = {
    IdentityRole.ROOT_CA: (),
    IdentityRole.SERVER: (ExtendedKeyUsageOID.SERVER_AUTH,),
    IdentityRole.CLIENT: (ExtendedKeyUsageOID.CLIENT_AUTH,),
    IdentityRole.ETCD_SERVER: (ExtendedKeyUsageOID.SERVER_AUTH,),
    IdentityRole.ETCD_CLIENT: (ExtendedKeyUsageOID.CLIENT_AUTH,),
    IdentityRole.ETCD_PEER: (ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH),
}

_DNS_SAN_ROLES = frozenset({IdentityRole.SERVER})
_IP_SAN_ROLES = frozenset(
    {
        IdentityRole.SERVER,
        IdentityRole.ETCD_SERVER,
        IdentityRole.ETCD_CLIENT,
        IdentityRole.ETCD_PEER,
    }
)


@dataclass(frozen=True)
class CertificateRequest:
    """Input to the template builder for a single identity."""

    common_name: str
    role: IdentityRole
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[IPAddress, ...] = ()
    organization: tuple[str, ...] | None = None

    def __post_init__(self) -> None:
        if not self.common_name:
            raise ValueError("common_name must not be empty")

        # Accept any iterable from callers, store tuples
        object.__setattr__(self, "dns_names", tuple(self.dns_names))
        object.__setattr__(
            self, "ip_addresses", tuple(ipaddress.ip_address(ip) for ip in self.ip_addresses)
        )
        if self.organization is not None:
            object.__setattr__(self, "organization", tuple(self.organization))

        if self.dns_names and self.role not in _DNS_SAN_ROLES:
            raise ValueError(f"{self.role} certificates do not carry DNS names")
        if self.ip_addresses and self.role not in _IP_SAN_ROLES:
            raise ValueError(f"{self.role} certificates do not carry IP addresses")


@dataclass(frozen=True)
class CertificateTemplate:
    """Everything the issuer needs besides the keys."""

    subject: x509.Name
    serial_number: int
    not_valid_before: datetime.datetime
    not_valid_after: datetime.datetime
    key_usage: x509.KeyUsage
    is_ca: bool
    extended_key_usage: tuple[x509.ObjectIdentifier, ...] = ()
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[IPAddress, ...] = ()

    @property
    def subject_alternative_names(self) -> list[x509.GeneralName]:
        names: list[x509.GeneralName] = [x509.DNSName(name) for name in self.dns_names]
        names.extend(x509.IPAddress(ip) for ip in self.ip_addresses)
        return names


def canonical_service_names(cluster_domain: str) -> tuple[str, ...]:
    """In-cluster DNS names of the API service, for the given domain suffix."""
    domain = cluster_domain.strip(".")
    if not domain:
        raise ValueError(f"Cluster domain has no labels: {cluster_domain!r}")
    names = [SERVICE_NAME]
    for namespace in SERVICE_NAMESPACES:
        names.append(f"{SERVICE_NAME}.{namespace}")
        names.append(f"{SERVICE_NAME}.{namespace}.svc")
        names.append(f"{SERVICE_NAME}.{namespace}.svc.{domain}")
    return tuple(names)


def random_serial_number() -> int:
    """Draw a serial number uniformly from [0, 2**128)."""
    try:
        return secrets.randbelow(1 << SERIAL_NUMBER_BITS)
    except OSError as e:
        raise GenerationFailedError(f"Failed to draw a random serial number: {e}") from e


def generate_private_key() -> rsa.RSAPrivateKey:
    """Generate a fresh RSA key of the fixed strength."""
    try:
        return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
    except (ValueError, OSError, UnsupportedAlgorithm, InternalError) as e:
        raise GenerationFailedError(f"Failed to generate {KEY_SIZE}-bit RSA key: {e}") from e


def build_template(request: CertificateRequest) -> tuple[CertificateTemplate, rsa.RSAPrivateKey]:
    """Shape the template for ``request`` and generate its key pair.

    Raises:
        GenerationFailedError: the serial number or the key could not be generated.
    """
    is_ca = request.role is IdentityRole.ROOT_CA

    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, request.common_name)]
    if request.organization is not None:
        attributes.extend(
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, org) for org in request.organization
        )

    key_usage = x509.KeyUsage(
        digital_signature=True,
        key_encipherment=True,
        key_cert_sign=is_ca,
        content_commitment=False,
        data_encipherment=False,
        key_agreement=False,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )

    serial_number = random_serial_number()
    private_key = generate_private_key()

    now = datetime.datetime.now(datetime.UTC)
    template = CertificateTemplate(
        subject=x509.Name(attributes),
        serial_number=serial_number,
        not_valid_before=now,
        not_valid_after=now + VALIDITY_DURATION,
        key_usage=key_usage,
        is_ca=is_ca,
        extended_key_usage=_EXTENDED_KEY_USAGE[request.role],
        dns_names=request.dns_names if request.role in _DNS_SAN_ROLES else (),
        ip_addresses=request.ip_addresses if request.role in _IP_SAN_ROLES else (),
    )
    return template, private_key
