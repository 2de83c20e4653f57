"""PKI bootstrap orchestrator.

Issues the whole leaf roster of a cluster against one root CA:

    apiserver     Server      DNS: extra FQDNs + kubernetes service names, IP: extra IPs
    admin-client  Client      O=system:masters
    kubeconfig    Client      O=system:masters
    etcd-server   EtcdServer  IP: extra IPs + 127.0.0.1
    etcd-client   EtcdClient  IP: extra IPs + 127.0.0.1
    etcd-peer-i   EtcdPeer    IP: extra IPs + 127.0.0.1   (one per etcd member)

The CA pair is decoded before anything else runs. Every slot is then issued
in its own worker thread, all at once, and joined together. If any slot
fails the whole call fails with the first error observed and no partial
roster is returned.
"""

import asyncio
import ipaddress
import threading
import time
from collections.abc import Callable
from functools import partial

import structlog

from kubepki.config import settings
from kubepki.logging_config import get_logger

from .authority import CertificateAuthority
from .errors import IssuanceTimeoutError, PKIError
from .models import (
    ADMIN_CLIENT_SLOT,
    API_SERVER_SLOT,
    ETCD_CLIENT_SLOT,
    ETCD_SERVER_SLOT,
    KUBECONFIG_SLOT,
    ClusterTopology,
    KeyCertPair,
    PKIBundle,
    etcd_peer_slot,
)
from .pem import certificate_fingerprint
from .templates import CertificateRequest, IdentityRole, IPAddress, canonical_service_names

logger = get_logger(__name__)

LOCALHOST = ipaddress.IPv4Address("127.0.0.1")
MASTERS_ORGANIZATION = ("system:masters",)

RequestFactory = Callable[[], CertificateRequest]


def _with_localhost(
    base_ips: tuple[IPAddress, ...],
    lock: threading.Lock,
) -> tuple[IPAddress, ...]:
    """Copy ``base_ips`` with the loopback address appended."""
    with lock:
        addresses = [*base_ips, LOCALHOST]
    return tuple(addresses)


def _etcd_request(
    common_name: str,
    role: IdentityRole,
    base_ips: tuple[IPAddress, ...],
    lock: threading.Lock,
) -> CertificateRequest:
    return CertificateRequest(
        common_name=common_name,
        role=role,
        ip_addresses=_with_localhost(base_ips, lock),
    )


def _roster(topology: ClusterTopology, lock: threading.Lock) -> list[tuple[str, RequestFactory]]:
    """Slot names paired with the factory that builds each slot's request."""
    api_dns_names = (*topology.extra_fqdns, *canonical_service_names(topology.cluster_domain))
    base_ips = tuple(topology.extra_ips)

    client_request = partial(
        CertificateRequest,
        common_name="client",
        role=IdentityRole.CLIENT,
        organization=MASTERS_ORGANIZATION,
    )

    roster: list[tuple[str, RequestFactory]] = [
        (
            API_SERVER_SLOT,
            partial(
                CertificateRequest,
                common_name="apiserver",
                role=IdentityRole.SERVER,
                dns_names=api_dns_names,
                ip_addresses=base_ips,
            ),
        ),
        (ADMIN_CLIENT_SLOT, client_request),
        (KUBECONFIG_SLOT, client_request),
        (
            ETCD_SERVER_SLOT,
            partial(_etcd_request, "etcdserver", IdentityRole.ETCD_SERVER, base_ips, lock),
        ),
        (
            ETCD_CLIENT_SLOT,
            partial(_etcd_request, "etcdclient", IdentityRole.ETCD_CLIENT, base_ips, lock),
        ),
    ]
    for index in range(topology.etcd_peer_count):
        roster.append(
            (
                etcd_peer_slot(index),
                partial(_etcd_request, "etcdpeer", IdentityRole.ETCD_PEER, base_ips, lock),
            )
        )
    return roster


def _issue_slot(
    authority: CertificateAuthority,
    slot: str,
    make_request: RequestFactory,
) -> KeyCertPair:
    """Worker thread body for one roster slot."""
    with structlog.contextvars.bound_contextvars(slot=slot):
        return authority.issue(make_request())


async def _run_slot(
    authority: CertificateAuthority,
    slot: str,
    make_request: RequestFactory,
) -> tuple[str, KeyCertPair]:
    try:
        pair = await asyncio.to_thread(_issue_slot, authority, slot, make_request)
    except Exception as e:
        logger.warning("Certificate issuance failed", slot=slot, error=str(e))
        if isinstance(e, PKIError):
            e.slot = slot
        raise
    return slot, pair


async def bootstrap_pki(ca_pair: KeyCertPair, topology: ClusterTopology) -> PKIBundle:
    """Issue every leaf certificate of the cluster against ``ca_pair``.

    Args:
        ca_pair: PEM-encoded root certificate and key.
        topology: Extra SANs, cluster domain and etcd member count.

    Returns:
        The full roster; ``etcd_peers[i]`` is always peer i.

    Raises:
        CodecError: the CA pair could not be decoded. Nothing was issued.
        CryptoError: a slot failed to build, sign or parse. Tagged with the slot.
        IssuanceTimeoutError: the batch exceeded settings.issuance_timeout_seconds.
    """
    start = time.monotonic()

    authority = CertificateAuthority.load(ca_pair)
    logger.info(
        "Bootstrapping cluster PKI",
        ca_fingerprint=certificate_fingerprint(authority.ca_cert)[:16],
        cluster_domain=topology.cluster_domain,
        etcd_peers=topology.etcd_peer_count,
    )

    lock = threading.Lock()
    pending = [
        asyncio.create_task(_run_slot(authority, slot, make_request), name=slot)
        for slot, make_request in _roster(topology, lock)
    ]

    results: dict[str, KeyCertPair] = {}
    first_error: Exception | None = None
    timeout = settings.issuance_timeout_seconds

    try:
        async with asyncio.timeout(timeout):
            for completed in asyncio.as_completed(pending):
                try:
                    slot, pair = await completed
                except Exception as e:
                    if first_error is None:
                        first_error = e
                    continue
                results[slot] = pair
    except TimeoutError:
        raise IssuanceTimeoutError(
            f"Certificate issuance did not finish within {timeout}s "
            f"({len(results)} of {len(pending)} slots done)"
        ) from None
    finally:
        for task in pending:
            if not task.done():
                task.cancel()

    if first_error is not None:
        raise first_error

    bundle = PKIBundle(
        api_server=results[API_SERVER_SLOT],
        admin_client=results[ADMIN_CLIENT_SLOT],
        kubeconfig_client=results[KUBECONFIG_SLOT],
        etcd_server=results[ETCD_SERVER_SLOT],
        etcd_client=results[ETCD_CLIENT_SLOT],
        etcd_peers=tuple(
            results[etcd_peer_slot(index)] for index in range(topology.etcd_peer_count)
        ),
    )

    logger.debug(
        "PKI asset creation finished",
        certificates=len(results),
        duration_ms=round((time.monotonic() - start) * 1000, 1),
    )
    return bundle


def create_pki(ca_pair: KeyCertPair, topology: ClusterTopology) -> PKIBundle:
    """Synchronous entry point for callers without an event loop."""
    return asyncio.run(bootstrap_pki(ca_pair, topology))
