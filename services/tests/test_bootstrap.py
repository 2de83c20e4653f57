"""Tests for the PKI bootstrap orchestrator."""

import ipaddress
import threading
import time
from unittest.mock import MagicMock, patch

import pytest
from cryptography import x509
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from kubepki.config import settings
from kubepki.pki.bootstrap import (
    LOCALHOST,
    _roster,
    _with_localhost,
    bootstrap_pki,
    create_pki,
)
from kubepki.pki.errors import (
    CodecError,
    GenerationFailedError,
    IssuanceTimeoutError,
    MalformedPEMError,
    SigningFailedError,
)
from kubepki.pki.models import ClusterTopology, KeyCertPair
from kubepki.pki.pem import decode_certificate

SERVER_AUTH = ExtendedKeyUsageOID.SERVER_AUTH
CLIENT_AUTH = ExtendedKeyUsageOID.CLIENT_AUTH


def _eku(cert: x509.Certificate) -> list[x509.ObjectIdentifier]:
    return list(cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value)


def _san(cert: x509.Certificate, kind: type) -> list:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return []
    return san.value.get_values_for_type(kind)


def _fake_pair(slot: str) -> KeyCertPair:
    return KeyCertPair(certificate_pem=f"cert:{slot}", private_key_pem=f"key:{slot}")


class TestRoster:
    """Test roster construction."""

    def test_slot_order(self, topology):
        """Test the five fixed slots come first, then one slot per peer."""
        slots = [slot for slot, _ in _roster(topology, threading.Lock())]

        assert slots == [
            "apiserver",
            "admin-client",
            "kubeconfig",
            "etcd-server",
            "etcd-client",
            "etcd-peer-0",
            "etcd-peer-1",
            "etcd-peer-2",
        ]

    def test_api_server_request(self, topology):
        """Test the API server request combines extra and canonical names."""
        roster = dict(_roster(topology, threading.Lock()))
        request = roster["apiserver"]()

        assert request.dns_names[0] == "api.example.com"
        assert "kubernetes.default.svc.cluster.local" in request.dns_names
        assert request.ip_addresses == (ipaddress.IPv4Address("10.0.0.10"),)

    def test_with_localhost_copies(self):
        """Test the loopback append leaves the base list untouched."""
        base = (ipaddress.IPv4Address("10.0.0.1"),)

        addresses = _with_localhost(base, threading.Lock())

        assert addresses == (ipaddress.IPv4Address("10.0.0.1"), LOCALHOST)
        assert base == (ipaddress.IPv4Address("10.0.0.1"),)


@pytest.mark.usefixtures("fast_keys")
class TestBootstrapEndToEnd:
    """Test full roster issuance with real keys."""

    @pytest.mark.asyncio
    async def test_full_roster(self, ca, ca_pair):
        """Test a 3-peer cluster yields 5 named pairs and 3 peers, all chained to the CA."""
        topology = ClusterTopology(cluster_domain="cluster.local", etcd_peer_count=3)

        bundle = await bootstrap_pki(ca_pair, topology)

        pairs = list(bundle.all_pairs())
        assert len(pairs) == 8
        assert len(bundle.etcd_peers) == 3
        for _, pair in pairs:
            decode_certificate(pair.certificate_pem).verify_directly_issued_by(ca.ca_cert)

        api_server = decode_certificate(bundle.api_server.certificate_pem)
        assert "kubernetes.default.svc.cluster.local" in _san(api_server, x509.DNSName)

    @pytest.mark.asyncio
    async def test_identity_shapes(self, ca_pair, topology):
        """Test EKU, SANs and organization of every slot."""
        bundle = await bootstrap_pki(ca_pair, topology)
        certs = {
            slot: decode_certificate(pair.certificate_pem) for slot, pair in bundle.all_pairs()
        }
        extra_ip = ipaddress.IPv4Address("10.0.0.10")

        api_server = certs["apiserver"]
        assert _eku(api_server) == [SERVER_AUTH]
        dns_names = _san(api_server, x509.DNSName)
        assert dns_names[0] == "api.example.com"
        assert "kubernetes.kube-system.svc.cluster.local" in dns_names
        assert _san(api_server, x509.IPAddress) == [extra_ip]

        for slot in ("admin-client", "kubeconfig"):
            cert = certs[slot]
            assert _eku(cert) == [CLIENT_AUTH]
            assert _san(cert, x509.DNSName) == []
            assert _san(cert, x509.IPAddress) == []
            org = cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)
            assert [attr.value for attr in org] == ["system:masters"]

        assert _eku(certs["etcd-server"]) == [SERVER_AUTH]
        assert _eku(certs["etcd-client"]) == [CLIENT_AUTH]
        for slot in ("etcd-server", "etcd-client", "etcd-peer-0", "etcd-peer-1", "etcd-peer-2"):
            assert _san(certs[slot], x509.IPAddress) == [extra_ip, LOCALHOST]
            assert _san(certs[slot], x509.DNSName) == []
        for index in range(3):
            assert _eku(certs[f"etcd-peer-{index}"]) == [SERVER_AUTH, CLIENT_AUTH]

    @pytest.mark.asyncio
    async def test_admin_and_kubeconfig_are_distinct(self, ca_pair):
        """Test the two client slots get separate keys and serials."""
        bundle = await bootstrap_pki(ca_pair, ClusterTopology())

        admin = decode_certificate(bundle.admin_client.certificate_pem)
        kubeconfig = decode_certificate(bundle.kubeconfig_client.certificate_pem)
        assert admin.serial_number != kubeconfig.serial_number
        assert bundle.admin_client.private_key_pem != bundle.kubeconfig_client.private_key_pem

    @pytest.mark.asyncio
    async def test_zero_peers(self, ca_pair):
        """Test a cluster without etcd members gets no peer certificates."""
        bundle = await bootstrap_pki(ca_pair, ClusterTopology(etcd_peer_count=0))

        assert bundle.etcd_peers == ()
        assert len(list(bundle.all_pairs())) == 5

    @pytest.mark.asyncio
    async def test_serial_numbers_unique(self, ca_pair):
        """Test no serial collisions across a 50-certificate batch."""
        bundle = await bootstrap_pki(ca_pair, ClusterTopology(etcd_peer_count=45))

        serials = [
            decode_certificate(pair.certificate_pem).serial_number
            for _, pair in bundle.all_pairs()
        ]
        assert len(serials) == 50
        assert len(set(serials)) == 50

    def test_create_pki_sync(self, ca, ca_pair):
        """Test the synchronous wrapper runs the same bootstrap."""
        bundle = create_pki(ca_pair, ClusterTopology(etcd_peer_count=1))

        assert len(bundle.etcd_peers) == 1
        peer = decode_certificate(bundle.etcd_peers[0].certificate_pem)
        peer.verify_directly_issued_by(ca.ca_cert)


class TestBootstrapFailures:
    """Test fail-fast decoding and all-or-nothing joining."""

    @pytest.mark.asyncio
    async def test_corrupted_ca_issues_nothing(self, ca_pair, topology):
        """Test a bad CA PEM fails before any slot is started."""
        pair = KeyCertPair(
            certificate_pem=ca_pair.certificate_pem.replace("-----BEGIN", "-----BROKEN"),
            private_key_pem=ca_pair.private_key_pem,
        )
        issue_slot = MagicMock()

        with patch("kubepki.pki.bootstrap._issue_slot", issue_slot):
            with pytest.raises(MalformedPEMError):
                await bootstrap_pki(pair, topology)

        issue_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_rsa_ca_certificate_issues_nothing(self, ed25519_ca_pair, topology):
        """Test an Ed25519 CA certificate fails decoding before any slot is started."""
        issue_slot = MagicMock()

        with patch("kubepki.pki.bootstrap._issue_slot", issue_slot):
            with pytest.raises(CodecError):
                await bootstrap_pki(ed25519_ca_pair, topology)

        issue_slot.assert_not_called()

    @pytest.mark.asyncio
    async def test_slot_failure_fails_whole_call(self, ca_pair, topology):
        """Test one failing slot fails the batch and is tagged with its slot."""

        def fake_issue_slot(authority, slot, make_request):
            if slot == "etcd-client":
                raise GenerationFailedError("entropy source failed")
            return _fake_pair(slot)

        with patch("kubepki.pki.bootstrap._issue_slot", side_effect=fake_issue_slot):
            with pytest.raises(GenerationFailedError) as exc_info:
                await bootstrap_pki(ca_pair, topology)

        assert exc_info.value.slot == "etcd-client"
        assert str(exc_info.value).startswith("[build:etcd-client]")

    @pytest.mark.asyncio
    async def test_first_observed_error_wins(self, ca_pair, topology):
        """Test the earliest failure is reported and every slot still finishes."""
        finished: list[str] = []
        lock = threading.Lock()

        def fake_issue_slot(authority, slot, make_request):
            try:
                if slot == "apiserver":
                    time.sleep(0.3)
                    raise SigningFailedError("late failure")
                if slot == "etcd-peer-1":
                    raise GenerationFailedError("early failure")
                time.sleep(0.05)
                return _fake_pair(slot)
            finally:
                with lock:
                    finished.append(slot)

        with patch("kubepki.pki.bootstrap._issue_slot", side_effect=fake_issue_slot):
            with pytest.raises(GenerationFailedError) as exc_info:
                await bootstrap_pki(ca_pair, topology)

        assert exc_info.value.slot == "etcd-peer-1"
        assert len(finished) == 8

    @pytest.mark.asyncio
    async def test_timeout(self, ca_pair, topology, monkeypatch):
        """Test a batch exceeding the deadline raises IssuanceTimeoutError."""
        monkeypatch.setattr(settings, "issuance_timeout_seconds", 0.05)

        def slow_issue_slot(authority, slot, make_request):
            time.sleep(0.3)
            return _fake_pair(slot)

        with patch("kubepki.pki.bootstrap._issue_slot", side_effect=slow_issue_slot):
            with pytest.raises(IssuanceTimeoutError) as exc_info:
                await bootstrap_pki(ca_pair, topology)

        assert exc_info.value.stage == "join"


class TestPeerOrdering:
    """Test peer results keep their slot index regardless of completion order."""

    @pytest.mark.asyncio
    async def test_delayed_peer_keeps_its_index(self, ca_pair):
        """Test a slow peer 2 and a slower peer 0 still land at index 2 and 0."""
        delays = {"etcd-peer-0": 0.3, "etcd-peer-2": 0.15}

        def delayed_issue_slot(authority, slot, make_request):
            make_request()
            time.sleep(delays.get(slot, 0))
            return _fake_pair(slot)

        topology = ClusterTopology(etcd_peer_count=5)
        with patch("kubepki.pki.bootstrap._issue_slot", side_effect=delayed_issue_slot):
            bundle = await bootstrap_pki(ca_pair, topology)

        assert [pair.certificate_pem for pair in bundle.etcd_peers] == [
            f"cert:etcd-peer-{index}" for index in range(5)
        ]
        assert bundle.api_server.certificate_pem == "cert:apiserver"
