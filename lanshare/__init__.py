"""
lanshare - P2P File Sharing Engine

Every node is both a TLS server answering search/download requests and a
client that discovers peers, queries them and pulls files with resumable,
checksum-verified transfers.
"""

__version__ = "1.0.0"

from .checksum import file_checksum
from .client import PeerSession, fetch_file, fetch_search_results, format_size
from .config import (
    BROADCAST_INTERVAL,
    BUFFER_SIZE,
    DISCOVERY_PORT,
    DOWNLOAD_DIR,
    FAILURE_THRESHOLD,
    SHARED_DIR,
    TCP_PORT,
)
from .discovery import PeerDiscovery
from .engine import Peer
from .errors import (
    IntegrityError,
    LanshareError,
    NotFoundError,
    ProtocolError,
    SecurityInitializationError,
    TransportError,
)
from .events import PeerListener
from .security import SecureTransport
from .server import FileServer
from .state import Direction, Outcome, TransferRecord

__all__ = [
    "TCP_PORT",
    "DISCOVERY_PORT",
    "BUFFER_SIZE",
    "BROADCAST_INTERVAL",
    "FAILURE_THRESHOLD",
    "SHARED_DIR",
    "DOWNLOAD_DIR",
    "Peer",
    "PeerListener",
    "PeerDiscovery",
    "PeerSession",
    "FileServer",
    "SecureTransport",
    "TransferRecord",
    "Direction",
    "Outcome",
    "LanshareError",
    "TransportError",
    "ProtocolError",
    "IntegrityError",
    "NotFoundError",
    "SecurityInitializationError",
    "file_checksum",
    "fetch_file",
    "fetch_search_results",
    "format_size",
]
