"""
Shared fixtures: socket pairs, a loopback transport that serves requests
with FileServer.handle_connection, and throwaway TLS material.
"""

import datetime
import ipaddress
import socket
import threading

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from lanshare.errors import TransportError
from lanshare.events import PeerListener

KEY_PASSWORD = "s3cret"


# ---------------------------------------------------------------------------
# Sockets
# ---------------------------------------------------------------------------


def make_socket_pair():
    """Return a connected (client, server) socket pair."""
    server_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server_sock.bind(("127.0.0.1", 0))
    server_sock.listen(1)
    port = server_sock.getsockname()[1]

    client = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    client.connect(("127.0.0.1", port))
    server, _ = server_sock.accept()
    server_sock.close()
    return client, server


class LoopbackTransport:
    """Stands in for SecureTransport: every connect() gets a plain socket
    whose far end is served on a thread by *handler* (default: the
    FileServer's own request handling)."""

    def __init__(self, server=None, handler=None, peer_ip="127.0.0.1"):
        self.server = server
        self.handler = handler
        self.peer_ip = peer_ip
        self.threads: list[threading.Thread] = []
        self.connects = 0

    def connect(self, host, port):
        self.connects += 1
        client, server_side = make_socket_pair()
        t = threading.Thread(target=self._serve, args=(server_side,), daemon=True)
        t.start()
        self.threads.append(t)
        return client

    def _serve(self, conn):
        try:
            if self.handler is not None:
                self.handler(conn)
            else:
                self.server.handle_connection(conn, (self.peer_ip, 40000))
        finally:
            conn.close()

    def join(self, timeout=5):
        for t in self.threads:
            t.join(timeout)


class FailingTransport:
    """Every connect() fails like an unreachable peer."""

    def __init__(self):
        self.connects = 0

    def connect(self, host, port):
        self.connects += 1
        raise TransportError("[Errno 111] Connection refused")


class RecordingListener(PeerListener):
    def __init__(self):
        self.messages = []
        self.results = []
        self.progress = []
        self.statuses = []
        self.histories = []

    def on_message(self, message):
        self.messages.append(message)

    def on_search_results(self, host, port, results):
        self.results.append((host, port, results))

    def on_download_progress(self, file_name, total_bytes, downloaded_bytes):
        self.progress.append((file_name, total_bytes, downloaded_bytes))

    def on_peer_status(self, status):
        self.statuses.append(status)

    def on_transfer_history(self, history):
        self.histories.append(history)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def dirs(tmp_path):
    shared = tmp_path / "shared"
    downloads = tmp_path / "downloads"
    shared.mkdir()
    downloads.mkdir()
    return shared, downloads


# ---------------------------------------------------------------------------
# TLS material
# ---------------------------------------------------------------------------


def _name(common_name):
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _make_ca(common_name):
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(_name(common_name))
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .sign(key, hashes.SHA256())
    )
    return key, cert


def _make_leaf(ca_key, ca_cert, common_name):
    key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage(
                [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectAlternativeName(
                [x509.IPAddress(ipaddress.ip_address("127.0.0.1"))]
            ),
            critical=False,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )
    return key, cert


def _write_material(directory, ca_name):
    directory.mkdir()
    ca_key, ca_cert = _make_ca(ca_name)
    key, cert = _make_leaf(ca_key, ca_cert, "lanshare-node")

    certfile = directory / "node.crt"
    keyfile = directory / "node.key"
    trustfile = directory / "trust.pem"
    certfile.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    keyfile.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.BestAvailableEncryption(KEY_PASSWORD.encode()),
        )
    )
    trustfile.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    return {
        "certfile": str(certfile),
        "keyfile": str(keyfile),
        "password": KEY_PASSWORD,
        "trustfile": str(trustfile),
    }


@pytest.fixture
def tls_material(tmp_path):
    """PEM cert, encrypted key and trust bundle for one CA."""
    return _write_material(tmp_path / "tls", "lanshare-test-ca")


@pytest.fixture
def other_tls_material(tmp_path):
    """Material issued by an unrelated CA."""
    return _write_material(tmp_path / "tls-other", "unrelated-ca")
