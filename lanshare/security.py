"""
TLS transport built from externally provisioned certificate material.

One SecureTransport holds a server context (our identity) and a client
context (our trust bundle).  Peers are addressed by IP, so hostname checks
are disabled; a peer is trusted when its certificate chain validates
against the trust bundle.
"""

import logging
import os
import socket
import ssl
import time

from .config import CONNECT_RETRIES, CONNECT_TIMEOUT, IO_TIMEOUT, RETRY_DELAY
from .errors import SecurityInitializationError, TransportError

logger = logging.getLogger(__name__)


class SecureTransport:
    """Factory for TLS listening and outbound sockets."""

    def __init__(
        self,
        server_context: ssl.SSLContext,
        client_context: ssl.SSLContext,
        connect_timeout: float = CONNECT_TIMEOUT,
        io_timeout: float | None = IO_TIMEOUT,
        connect_retries: int = CONNECT_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        self.server_context = server_context
        self.client_context = client_context
        self.connect_timeout = connect_timeout
        self.io_timeout = io_timeout
        self.connect_retries = connect_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_files(
        cls,
        certfile: str,
        keyfile: str | None,
        password: str | None,
        trustfile: str,
        require_client_cert: bool = False,
        **options,
    ) -> "SecureTransport":
        """Load identity and trust material from PEM files.

        *keyfile* may be None when the key is bundled in *certfile*.
        *password* decrypts the private key.  Raises
        SecurityInitializationError if anything cannot be loaded.
        """
        for path in (certfile, keyfile, trustfile):
            if path is not None and not os.path.isfile(path):
                raise SecurityInitializationError(f"cannot load {path}: no such file")

        try:
            server_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            server_context.minimum_version = ssl.TLSVersion.TLSv1_2
            server_context.load_cert_chain(
                certfile=certfile, keyfile=keyfile, password=password
            )
            server_context.load_verify_locations(cafile=trustfile)
            server_context.verify_mode = (
                ssl.CERT_REQUIRED if require_client_cert else ssl.CERT_OPTIONAL
            )

            client_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            client_context.minimum_version = ssl.TLSVersion.TLSv1_2
            client_context.check_hostname = False
            client_context.verify_mode = ssl.CERT_REQUIRED
            client_context.load_verify_locations(cafile=trustfile)
            # Present our identity too, for peers that require client certs.
            client_context.load_cert_chain(
                certfile=certfile, keyfile=keyfile, password=password
            )
        except (OSError, ssl.SSLError, ValueError) as e:
            raise SecurityInitializationError(
                f"invalid certificate material: {e}"
            ) from e

        logger.info("TLS transport initialised from %s", certfile)
        return cls(server_context, client_context, **options)

    # ------------------------------------------------------------------
    # Server side
    # ------------------------------------------------------------------

    def listen(self, host: str, port: int, backlog: int) -> socket.socket:
        """Bind a plain TCP listening socket.

        Handshakes happen per connection in wrap_server(), on a worker
        thread, so a slow client cannot stall the accept loop.
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
            sock.listen(backlog)
        except OSError:
            sock.close()
            raise
        return sock

    def wrap_server(self, conn: socket.socket) -> ssl.SSLSocket:
        """Perform the server-side handshake on an accepted connection."""
        conn.settimeout(self.io_timeout)
        try:
            return self.server_context.wrap_socket(conn, server_side=True)
        except (OSError, ssl.SSLError) as e:
            raise TransportError(f"TLS handshake failed: {e}") from e

    # ------------------------------------------------------------------
    # Client side
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int) -> ssl.SSLSocket:
        """Open a TLS connection to *host*:*port* with the handshake done."""
        attempts = self.connect_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            if attempt:
                time.sleep(self.retry_delay)
            try:
                return self._connect_once(host, port)
            except (OSError, ssl.SSLError) as e:
                last_error = e
                logger.debug(
                    "Connect to %s:%s failed (attempt %d/%d): %s",
                    host, port, attempt + 1, attempts, e,
                )
        raise TransportError(str(last_error)) from last_error

    def _connect_once(self, host: str, port: int) -> ssl.SSLSocket:
        sock = socket.create_connection((host, port), timeout=self.connect_timeout)
        secure = None
        try:
            sock.settimeout(self.io_timeout)
            secure = self.client_context.wrap_socket(
                sock, server_hostname=host, do_handshake_on_connect=False
            )
            secure.do_handshake()
        except Exception:
            (secure or sock).close()
            raise
        return secure
