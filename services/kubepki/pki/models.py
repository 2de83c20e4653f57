"""Pydantic models for PKI inputs and outputs."""

from collections.abc import Iterator

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, field_validator

# Roster slot names, in roster order
API_SERVER_SLOT = "apiserver"
ADMIN_CLIENT_SLOT = "admin-client"
KUBECONFIG_SLOT = "kubeconfig"
ETCD_SERVER_SLOT = "etcd-server"
ETCD_CLIENT_SLOT = "etcd-client"
ETCD_PEER_SLOT_PREFIX = "etcd-peer-"


def etcd_peer_slot(index: int) -> str:
    return f"{ETCD_PEER_SLOT_PREFIX}{index}"


class PKIBaseModel(BaseModel):
    """Base model with common configuration. Instances are immutable."""

    model_config = ConfigDict(frozen=True)


class KeyCertPair(PKIBaseModel):
    """A PEM-encoded certificate and its PEM-encoded private key."""

    certificate_pem: str = Field(description="PEM-encoded x509 certificate")
    private_key_pem: str = Field(description="PEM-encoded RSA private key")


class ClusterTopology(PKIBaseModel):
    """Cluster shape that determines SANs and the number of etcd peers."""

    extra_fqdns: tuple[str, ...] = Field(
        default=(),
        description="Additional DNS names for the API server certificate",
    )
    extra_ips: tuple[IPvAnyAddress, ...] = Field(
        default=(),
        description="Additional IP addresses for the API server and etcd certificates",
    )
    cluster_domain: str = Field(
        default="cluster.local",
        min_length=1,
        description="Service discovery domain suffix (e.g. 'cluster.local')",
    )
    etcd_peer_count: int = Field(
        default=0,
        ge=0,
        description="Number of etcd members, one peer certificate each",
    )

    @field_validator("cluster_domain")
    @classmethod
    def _normalize_cluster_domain(cls, value: str) -> str:
        domain = value.strip(".")
        if not domain:
            raise ValueError("cluster_domain must contain at least one label")
        return domain


class PKIBundle(PKIBaseModel):
    """Complete leaf roster produced by one bootstrap call."""

    api_server: KeyCertPair
    admin_client: KeyCertPair
    kubeconfig_client: KeyCertPair
    etcd_server: KeyCertPair
    etcd_client: KeyCertPair
    etcd_peers: tuple[KeyCertPair, ...] = Field(
        default=(),
        description="One pair per etcd member; index i is peer i",
    )

    def all_pairs(self) -> Iterator[tuple[str, KeyCertPair]]:
        """Yield (slot name, pair) for every leaf in roster order."""
        yield API_SERVER_SLOT, self.api_server
        yield ADMIN_CLIENT_SLOT, self.admin_client
        yield KUBECONFIG_SLOT, self.kubeconfig_client
        yield ETCD_SERVER_SLOT, self.etcd_server
        yield ETCD_CLIENT_SLOT, self.etcd_client
        for index, pair in enumerate(self.etcd_peers):
            yield etcd_peer_slot(index), pair
