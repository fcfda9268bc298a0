"""
Tests for discovery.py — announcement parsing, self-exclusion, dedupe,
expiry and a loopback run of the real UDP loops.
"""

import socket
import threading
import time

import pytest

from lanshare import discovery
from lanshare.discovery import PeerDiscovery, parse_announcement


def free_udp_port() -> int:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    s.bind(("127.0.0.1", 0))
    port = s.getsockname()[1]
    s.close()
    return port


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


class TestParseAnnouncement:
    def test_valid(self):
        assert parse_announcement(b"PEER:5000") == 5000
        assert parse_announcement(b"PEER:6001\n") == 6001

    @pytest.mark.parametrize(
        "payload",
        [b"", b"PEER", b"PEER:", b"PEER:abc", b"PEER:0", b"PEER:70000",
         b"HELLO:5000", b"PEER:5000:1", b"\xff\xfe", b"peer:5000"],
    )
    def test_malformed(self, payload):
        assert parse_announcement(payload) is None


class TestHandleDatagram:
    def test_own_announcement_is_ignored(self):
        d = PeerDiscovery(tcp_port=5000)
        assert not d.handle_datagram(b"PEER:5000", "127.0.0.1")
        assert d.get_peers() == []

    def test_same_host_other_port_is_a_peer(self):
        d = PeerDiscovery(tcp_port=5000)
        assert d.handle_datagram(b"PEER:5001", "127.0.0.1")
        assert d.get_peers() == ["127.0.0.1:5001"]

    def test_other_host_same_port_is_a_peer(self):
        d = PeerDiscovery(tcp_port=5000)
        assert d.handle_datagram(b"PEER:5000", "192.168.1.20")
        assert d.get_peers() == ["192.168.1.20:5000"]

    def test_malformed_is_dropped(self):
        d = PeerDiscovery(tcp_port=5000)
        assert not d.handle_datagram(b"garbage", "192.168.1.20")
        assert d.get_peers() == []

    def test_repeated_announcements_dedupe(self):
        d = PeerDiscovery(tcp_port=5000)
        for _ in range(3):
            d.handle_datagram(b"PEER:5000", "192.168.1.20")
        d.handle_datagram(b"PEER:5000", "192.168.1.10")
        assert d.get_peers() == ["192.168.1.10:5000", "192.168.1.20:5000"]


class TestPeerExpiry:
    def test_no_ttl_keeps_peers_forever(self, monkeypatch):
        d = PeerDiscovery(tcp_port=5000)
        monkeypatch.setattr(discovery.time, "time", lambda: 1000.0)
        d.handle_datagram(b"PEER:5000", "10.0.0.2")
        monkeypatch.setattr(discovery.time, "time", lambda: 10**9)
        assert d.get_peers() == ["10.0.0.2:5000"]

    def test_stale_peers_are_evicted(self, monkeypatch):
        d = PeerDiscovery(tcp_port=5000, peer_ttl=90)
        monkeypatch.setattr(discovery.time, "time", lambda: 1000.0)
        d.handle_datagram(b"PEER:5000", "10.0.0.2")
        monkeypatch.setattr(discovery.time, "time", lambda: 1060.0)
        d.handle_datagram(b"PEER:5000", "10.0.0.3")

        monkeypatch.setattr(discovery.time, "time", lambda: 1100.0)
        assert d.get_peers() == ["10.0.0.3:5000"]

    def test_fresh_announcement_renews(self, monkeypatch):
        d = PeerDiscovery(tcp_port=5000, peer_ttl=90)
        monkeypatch.setattr(discovery.time, "time", lambda: 1000.0)
        d.handle_datagram(b"PEER:5000", "10.0.0.2")
        monkeypatch.setattr(discovery.time, "time", lambda: 1080.0)
        d.handle_datagram(b"PEER:5000", "10.0.0.2")
        monkeypatch.setattr(discovery.time, "time", lambda: 1150.0)
        assert d.get_peers() == ["10.0.0.2:5000"]


class TestDiscoveryLoops:
    @pytest.fixture
    def running(self, monkeypatch):
        monkeypatch.setattr(discovery, "get_broadcast_addresses", lambda: ["127.0.0.1"])
        messages = []
        d = PeerDiscovery(
            tcp_port=5000,
            discovery_port=free_udp_port(),
            interval=0.2,
            on_message=messages.append,
        )
        d.start()
        yield d
        d.stop()

    def test_own_broadcasts_never_show_up(self, running):
        time.sleep(0.5)
        assert running.get_peers() == []

    def test_announcement_from_another_node(self, running):
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.sendto(b"PEER:6000", ("127.0.0.1", running.discovery_port))
        finally:
            s.close()
        assert wait_for(lambda: running.get_peers() == ["127.0.0.1:6000"])

    def test_announces_port_assigned_after_start(self, running):
        seen = []
        running.handle_datagram = lambda payload, sender_ip: seen.append(payload)
        running.tcp_port = 6123
        assert wait_for(lambda: b"PEER:6123" in seen)

    def test_start_fails_when_port_taken(self):
        blocker = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        blocker.bind(("", 0))
        try:
            d = PeerDiscovery(discovery_port=blocker.getsockname()[1])
            with pytest.raises(OSError):
                d.start()
        finally:
            blocker.close()


class TestListenerErrors:
    def test_persistent_receive_error_backs_off(self):
        class BrokenSocket:
            def __init__(self):
                self.calls = 0

            def recvfrom(self, size):
                self.calls += 1
                raise OSError("Network is down")

            def fileno(self):
                return 99

        messages = []
        d = PeerDiscovery(on_message=messages.append)
        d._sock = BrokenSocket()
        t = threading.Thread(target=d._listener_loop, daemon=True)
        t.start()
        time.sleep(0.3)
        d._stop.set()
        t.join(2)

        assert not t.is_alive()
        assert d._sock.calls == 1
        assert messages == ["Error listening for peers: Network is down"]


class TestAnnouncement:
    def test_tracks_current_port(self):
        d = PeerDiscovery(tcp_port=0)
        assert d.announcement() == b"PEER:0"
        d.tcp_port = 40123
        assert d.announcement() == b"PEER:40123"
