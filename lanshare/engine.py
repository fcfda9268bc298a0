"""
The peer engine — one object that is simultaneously a server and a client.

Peer owns discovery, the request server, the outbound sessions and all
process state (peer status, failure counters, transfer ledger).  Front ends
drive it through the public operations and receive results through a
PeerListener.
"""

import logging
import os
import threading

from .client import PeerSession
from .config import (
    BROADCAST_INTERVAL,
    DISCOVERY_PORT,
    DOWNLOAD_DIR,
    FAILURE_THRESHOLD,
    PEER_TTL,
    SHARED_DIR,
    TCP_PORT,
    WORKER_POOL_SIZE,
)
from .discovery import PeerDiscovery
from .errors import ProtocolError
from .events import Notifier, PeerListener
from .protocol import validate_filename
from .server import FileServer
from .state import PeerStatusTracker, TransferLedger, TransferRecord

logger = logging.getLogger(__name__)


class Peer:
    """A file-sharing node."""

    def __init__(
        self,
        port: int = TCP_PORT,
        transport=None,
        shared_dir: str = SHARED_DIR,
        download_dir: str = DOWNLOAD_DIR,
        listener: PeerListener | None = None,
        failure_threshold: int = FAILURE_THRESHOLD,
        pool_size: int = WORKER_POOL_SIZE,
        discovery_port: int = DISCOVERY_PORT,
        broadcast_interval: float = BROADCAST_INTERVAL,
        peer_ttl: float | None = PEER_TTL,
        parallel_fanout: bool = False,
        host: str = "0.0.0.0",
    ):
        self.port = port
        self.transport = transport
        self.parallel_fanout = parallel_fanout
        self._shared_dir = shared_dir
        self._download_dir = download_dir

        self.notifier = Notifier(listener)
        self.status = PeerStatusTracker(failure_threshold)
        self.ledger = TransferLedger()

        self._sessions: dict[str, PeerSession] = {}
        self._sessions_lock = threading.Lock()

        self.discovery = PeerDiscovery(
            tcp_port=port,
            discovery_port=discovery_port,
            interval=broadcast_interval,
            peer_ttl=peer_ttl,
            on_message=self.notifier.message,
        )
        self.server = FileServer(
            transport,
            get_shared_dir=lambda: self._shared_dir,
            port=port,
            host=host,
            pool_size=pool_size,
            on_transfer=self._record_transfer,
            notifier=self.notifier,
        )

    # ------------------------------------------------------------------
    # Listener & accessors
    # ------------------------------------------------------------------

    def set_listener(self, listener: PeerListener | None) -> None:
        self.notifier.listener = listener

    @property
    def shared_dir(self) -> str:
        return self._shared_dir

    @property
    def download_dir(self) -> str:
        return self._download_dir

    @property
    def sessions(self) -> list[PeerSession]:
        with self._sessions_lock:
            return list(self._sessions.values())

    def peer_status(self) -> dict[str, bool]:
        return self.status.snapshot()

    def transfer_history(self) -> list[TransferRecord]:
        return self.ledger.snapshot()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the storage directories and start discovery and the server."""
        for path in (self._shared_dir, self._download_dir):
            try:
                os.makedirs(path, exist_ok=True)
            except OSError as e:
                self.notifier.message(f"Error creating directory {path}: {e}")

        # Bind first so discovery announces the real port when port 0 is used.
        if self.transport is None:
            self.notifier.message(
                "Secured transport unavailable: not accepting connections"
            )
        else:
            try:
                self.server.start()
                self.port = self.discovery.tcp_port = self.server.port
            except OSError as e:
                self.notifier.message(f"Server error: {e}")

        try:
            self.discovery.start()
        except OSError as e:
            self.notifier.message(f"Error starting peer discovery: {e}")

    def shutdown(self) -> None:
        self.discovery.stop()
        self.server.stop()
        logger.info("Peer on port %s shut down", self.port)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def set_shared_directory(self, path: str) -> bool:
        """Point inbound search/download at *path*, creating it if needed."""
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as e:
            self.notifier.message(f"Failed to set shared directory: {e}")
            return False
        self._shared_dir = path
        self.notifier.message(f"Shared directory set to: {os.path.abspath(path)}")
        return True

    def connect(self, host: str, port: int) -> PeerSession:
        """Track the endpoint *host*:*port* for subsequent commands."""
        endpoint = f"{host}:{port}"
        with self._sessions_lock:
            session = self._sessions.get(endpoint)
            if session is None:
                session = PeerSession(
                    host,
                    port,
                    self.transport,
                    get_download_dir=lambda: self._download_dir,
                    status=self.status,
                    on_transfer=self._record_transfer,
                    notifier=self.notifier,
                )
                self._sessions[endpoint] = session
        self.notifier.peer_status(self.status.mark_online(endpoint))
        self.notifier.message(f"Connected to {endpoint}")
        return session

    def search(self, keyword: str) -> None:
        keyword = keyword.strip()
        if not keyword:
            self.notifier.message("Search keyword must not be empty.")
            return
        self._fan_out(f"search {keyword}")

    def download(self, file_name: str) -> None:
        try:
            validate_filename(file_name)
        except ProtocolError as e:
            self.notifier.message(str(e))
            return
        self._fan_out(f"download {file_name}")

    def discover_peers(self) -> list[str]:
        """Report and return the endpoints found by discovery so far."""
        peers = self.discovery.get_peers()
        self.notifier.message("Discovered peers:")
        if not peers:
            self.notifier.message("No peers found. Waiting for broadcasts...")
        for endpoint in peers:
            self.notifier.message(endpoint)
        return peers

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fan_out(self, command: str) -> None:
        sessions = self.sessions
        if not sessions:
            self.notifier.message(
                "No active connections. Use 'connect' or 'discover' first."
            )
            return

        if not self.parallel_fanout:
            for session in sessions:
                session.send_command(command)
            return

        threads = [
            threading.Thread(
                target=session.send_command,
                args=(command,),
                name=f"lanshare-session-{session.endpoint}",
                daemon=True,
            )
            for session in sessions
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def _record_transfer(self, record: TransferRecord) -> None:
        self.notifier.transfer_history(self.ledger.append(record))
