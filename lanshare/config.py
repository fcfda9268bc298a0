"""
Configuration constants for the lanshare P2P engine.

Everything here is a default; the engine and services accept keyword
overrides so tests and the CLI can run several nodes side by side.
"""

import os

# --- Networking ---
TCP_PORT = 5000              # Default TLS port for search/download requests
DISCOVERY_PORT = 9876        # UDP port for PEER:<port> announcements
BROADCAST_ADDRESS = "255.255.255.255"
BROADCAST_INTERVAL = 30      # Seconds between discovery announcements
PEER_TTL = None              # Seconds before a discovered peer is evicted (None = never)
BUFFER_SIZE = 4096           # Chunk size (bytes) for file transfer and hashing

# --- Connections ---
WORKER_POOL_SIZE = 10        # Concurrent inbound request handlers
LISTEN_BACKLOG = 50
CONNECT_TIMEOUT = 10         # Seconds to establish an outbound connection
IO_TIMEOUT = 30              # Seconds a single socket read/write may block
CONNECT_RETRIES = 0          # Extra connect attempts after the first one
RETRY_DELAY = 1              # Seconds between connect attempts
FAILURE_THRESHOLD = 3        # Consecutive failures before a peer is offline

# --- Protocol ---
MAX_LINE_LENGTH = 8192       # Longest command / response line accepted
NO_CHECKSUM = "NOCHECKSUM"   # Digest sentinel sent for missing files
END_MARKER = "END"           # Terminates a search result stream

# --- File Storage ---
SHARED_DIR = "shared"
DOWNLOAD_DIR = "downloads"

# --- Security ---
CERT_FILE = os.path.join("ssl", "node.crt")
KEY_FILE = os.path.join("ssl", "node.key")
TRUST_FILE = os.path.join("ssl", "trust.pem")
KEY_PASSWORD_ENV = "LANSHARE_KEY_PASSWORD"
