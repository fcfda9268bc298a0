"""
Peer discovery via UDP broadcast.

Each node periodically broadcasts its TLS port on the LAN and listens on
the same UDP port for announcements from other nodes, collecting them into
a deduplicated set of ``ip:port`` endpoints.

Datagram payload format (ASCII):
    PEER:<tcp_port>

Announcements from this node's own address and port are ignored; malformed
datagrams are dropped silently.
"""

import logging
import socket
import threading
import time

import psutil
from typing_extensions import Callable

from .config import (
    BROADCAST_ADDRESS,
    BROADCAST_INTERVAL,
    DISCOVERY_PORT,
    PEER_TTL,
    TCP_PORT,
)

logger = logging.getLogger(__name__)

PREFIX = "PEER"


def get_broadcast_addresses() -> list[str]:
    """Get the limited broadcast address plus each interface's subnet broadcast."""
    broadcasts = [BROADCAST_ADDRESS]
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family != socket.AF_INET or not addr.netmask:
                continue
            if addr.address.startswith("127."):
                continue
            ip_parts = addr.address.split(".")
            mask_parts = addr.netmask.split(".")
            broadcast = ".".join(
                str(int(ip_parts[i]) | (255 - int(mask_parts[i])))
                for i in range(4)
            )
            if broadcast not in broadcasts:
                broadcasts.append(broadcast)
    return broadcasts


def get_local_addresses() -> set[str]:
    """All IPv4 addresses that refer to this host."""
    local = {"127.0.0.1"}
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET:
                local.add(addr.address)
    try:
        local.add(socket.gethostbyname(socket.gethostname()))
    except OSError:
        pass
    return local


def parse_announcement(payload: bytes) -> int | None:
    """Return the port from a ``PEER:<port>`` datagram, or None if malformed."""
    try:
        message = payload.decode("ascii").strip()
    except UnicodeDecodeError:
        return None
    parts = message.split(":")
    if len(parts) != 2 or parts[0] != PREFIX:
        return None
    try:
        port = int(parts[1])
    except ValueError:
        return None
    if not 0 < port < 65536:
        return None
    return port


class PeerDiscovery:
    """Manages LAN peer discovery using UDP broadcast."""

    def __init__(
        self,
        tcp_port: int = TCP_PORT,
        discovery_port: int = DISCOVERY_PORT,
        interval: float = BROADCAST_INTERVAL,
        peer_ttl: float | None = PEER_TTL,
        on_message: Callable[[str], None] | None = None,
    ):
        self.tcp_port = tcp_port
        self.discovery_port = discovery_port
        self.interval = interval
        self.peer_ttl = peer_ttl
        self.on_message = on_message

        # endpoint -> last seen (unix time)
        self._peers: dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sock: socket.socket | None = None
        self._local_addresses: set[str] = {"127.0.0.1"}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind the discovery socket and start the broadcast and listener threads.

        Raises OSError if the discovery port cannot be bound.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
            except OSError:
                pass
        try:
            sock.bind(("", self.discovery_port))
        except OSError:
            sock.close()
            raise

        self._sock = sock
        self._local_addresses = get_local_addresses()
        self._stop.clear()

        threading.Thread(
            target=self._broadcast_loop, name="lanshare-broadcast", daemon=True
        ).start()
        threading.Thread(
            target=self._listener_loop, name="lanshare-discovery", daemon=True
        ).start()
        logger.info("Discovery started on UDP port %d", self.discovery_port)

    def stop(self) -> None:
        self._stop.set()
        if self._sock:
            self._sock.close()

    def get_peers(self) -> list[str]:
        """Return a sorted snapshot of discovered ``ip:port`` endpoints."""
        with self._lock:
            if self.peer_ttl is not None:
                cutoff = time.time() - self.peer_ttl
                for endpoint in [e for e, seen in self._peers.items() if seen < cutoff]:
                    del self._peers[endpoint]
            return sorted(self._peers)

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _report(self, message: str) -> None:
        logger.warning(message)
        if self.on_message:
            self.on_message(message)

    def announcement(self) -> bytes:
        """The datagram announcing the current TCP port."""
        return f"{PREFIX}:{self.tcp_port}".encode("ascii")

    def _broadcast_loop(self) -> None:
        while not self._stop.is_set():
            # Rebuilt each round; tcp_port changes once an ephemeral port is bound.
            data = self.announcement()
            try:
                targets = get_broadcast_addresses()
            except OSError:
                targets = [BROADCAST_ADDRESS]
            for addr in targets:
                try:
                    self._sock.sendto(data, (addr, self.discovery_port))
                except OSError as e:
                    if self._stop.is_set():
                        return
                    self._report(f"Error broadcasting presence to {addr}: {e}")
            self._stop.wait(self.interval)

    def _listener_loop(self) -> None:
        while not self._stop.is_set():
            try:
                payload, (sender_ip, _) = self._sock.recvfrom(256)
            except OSError as e:
                if self._stop.is_set() or self._sock.fileno() == -1:
                    break
                self._report(f"Error listening for peers: {e}")
                self._stop.wait(1)
                continue
            self.handle_datagram(payload, sender_ip)
        logger.info("Discovery listener stopped")

    def handle_datagram(self, payload: bytes, sender_ip: str) -> bool:
        """Record the sender of a valid announcement. Returns True if recorded."""
        port = parse_announcement(payload)
        if port is None:
            return False
        if sender_ip in self._local_addresses and port == self.tcp_port:
            return False

        endpoint = f"{sender_ip}:{port}"
        with self._lock:
            is_new = endpoint not in self._peers
            self._peers[endpoint] = time.time()
        if is_new:
            logger.info("Discovered peer %s", endpoint)
        return True
