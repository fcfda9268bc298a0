"""
TLS request server — answers search and download commands from other
peers out of the local shared directory.

Each accepted connection is handed to a fixed-size worker pool.  The worker
performs the TLS handshake, reads exactly one command line, serves it and
closes the connection:

    ACCEPTED -> COMMAND_READ -> SEARCH_SERVED | DOWNLOAD_SERVED | IGNORED -> CLOSED

Unknown or malformed commands are closed without a response.
"""

import logging
import os
import re
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from typing_extensions import Callable

from .checksum import file_checksum
from .config import (
    END_MARKER,
    LISTEN_BACKLOG,
    NO_CHECKSUM,
    TCP_PORT,
    WORKER_POOL_SIZE,
)
from .errors import LanshareError, ProtocolError
from .events import Notifier
from .protocol import (
    recv_line,
    send_file_range,
    send_line,
    send_long,
    send_utf,
    validate_filename,
)
from .state import Direction, Outcome, TransferRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def match_filename(name: str, keyword: str) -> bool:
    """Decide whether *name* matches a search *keyword*.

    - contains ``*``: glob, whole-name, case-insensitive
    - ``regex:<pattern>``: whole-name, case-sensitive
    - otherwise: case-insensitive substring

    A pattern that fails to compile falls back to substring matching.
    """
    if "*" in keyword:
        pattern = ".*".join(re.escape(part) for part in keyword.split("*"))
        return re.fullmatch(pattern, name, re.IGNORECASE) is not None
    if keyword.startswith("regex:"):
        keyword = keyword[len("regex:"):]
        try:
            return re.fullmatch(keyword, name) is not None
        except re.error:
            pass
    return keyword.lower() in name.lower()


def format_result(path: str) -> str:
    """Render one search result line: name, size and modification time."""
    st = os.stat(path)
    modified = datetime.fromtimestamp(st.st_mtime).strftime("%Y-%m-%d %H:%M:%S")
    return f"{os.path.basename(path)}\t{st.st_size}\t{modified}"


def search_directory(root: str, keyword: str) -> list[str]:
    """Walk *root* recursively and return result lines for matching files."""
    results = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for name in sorted(filenames):
            try:
                name.encode("utf-8")
            except UnicodeEncodeError:
                # Undecodable on-disk name; it cannot travel in a result line.
                logger.debug("Skipping undecodable file name %r in %s", name, dirpath)
                continue
            path = os.path.join(dirpath, name)
            if not os.path.isfile(path) or not match_filename(name, keyword):
                continue
            try:
                results.append(format_result(path))
            except OSError:
                # Removed between listing and stat
                continue
    return results


def parse_download_args(args: str) -> tuple[str, int]:
    """Split ``<fileName> <offset>``; the name may itself contain spaces."""
    name, sep, offset_str = args.rpartition(" ")
    if not sep:
        raise ProtocolError(f"Malformed download request: {args!r}")
    try:
        offset = int(offset_str)
    except ValueError:
        raise ProtocolError(f"Invalid offset: {offset_str!r}")
    if offset < 0:
        raise ProtocolError(f"Offset must not be negative: {offset}")
    return validate_filename(name), offset


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class FileServer:
    """Accept loop plus a bounded worker pool for inbound requests."""

    def __init__(
        self,
        transport,
        get_shared_dir: Callable[[], str],
        port: int = TCP_PORT,
        host: str = "0.0.0.0",
        pool_size: int = WORKER_POOL_SIZE,
        on_transfer: Callable[[TransferRecord], None] | None = None,
        notifier: Notifier | None = None,
    ):
        self.transport = transport
        self.get_shared_dir = get_shared_dir
        self.port = port
        self.host = host
        self.pool_size = pool_size
        self.on_transfer = on_transfer
        self.notifier = notifier or Notifier()
        self._running = False
        self._sock: socket.socket | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind the listening socket and start accepting in a daemon thread.

        Raises OSError if the port cannot be bound.
        """
        self._sock = self.transport.listen(self.host, self.port, LISTEN_BACKLOG)
        self._sock.settimeout(2)  # so we can check self._running periodically
        self.port = self._sock.getsockname()[1]
        self._pool = ThreadPoolExecutor(
            max_workers=self.pool_size, thread_name_prefix="lanshare-worker"
        )
        self._running = True
        self._thread = threading.Thread(
            target=self._accept_loop, name="lanshare-acceptor", daemon=True
        )
        self._thread.start()
        self.notifier.message(f"Listening for peers securely on port {self.port}...")

    def stop(self) -> None:
        self._running = False
        if self._sock:
            self._sock.close()
        if self._pool:
            self._pool.shutdown(wait=False, cancel_futures=True)

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Accept loop
    # ------------------------------------------------------------------

    def _accept_loop(self) -> None:
        while self._running:
            try:
                conn, addr = self._sock.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    self.notifier.message(f"Server error: {e}")
                break

            try:
                # Excess connections queue inside the executor.
                self._pool.submit(self._serve, conn, addr)
            except RuntimeError:
                # Pool already shut down
                conn.close()
                break

        self._running = False
        logger.info("Accept loop on port %s stopped", self.port)

    def _serve(self, conn: socket.socket, addr: tuple) -> None:
        try:
            secure = self.transport.wrap_server(conn)
        except LanshareError as e:
            logger.warning("Rejected connection from %s: %s", addr[0], e)
            conn.close()
            return
        try:
            self.handle_connection(secure, addr)
        finally:
            secure.close()

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handle_connection(self, conn, addr: tuple) -> None:
        """Read one command from an established connection and serve it."""
        stream = conn.makefile("rb")
        try:
            command = recv_line(stream)
            if command is None:
                return

            verb, _, args = command.partition(" ")
            if verb == "search" and args.strip():
                self._handle_search(conn, args.strip())
            elif verb == "download":
                file_name, offset = parse_download_args(args)
                self._handle_download(conn, file_name, offset, addr[0])
            else:
                logger.debug("Ignoring unknown command from %s: %r", addr[0], command)
        except ProtocolError as e:
            logger.warning("Malformed request from %s: %s", addr[0], e)
        except UnicodeError as e:
            logger.warning("Unencodable response for %s: %s", addr[0], e)
        except OSError as e:
            self.notifier.message(f"Client handling error: {e}")
        finally:
            stream.close()

    def _handle_search(self, conn, keyword: str) -> None:
        shared_dir = self.get_shared_dir()
        try:
            results = search_directory(shared_dir, keyword)
        except OSError as e:
            logger.warning("Search of %s failed: %s", shared_dir, e)
            results = []
        for line in results:
            send_line(conn, line)
        send_line(conn, END_MARKER)

    def _handle_download(self, conn, file_name: str, offset: int, peer_ip: str) -> None:
        filepath = os.path.join(self.get_shared_dir(), file_name)

        if not os.path.isfile(filepath):
            send_utf(conn, NO_CHECKSUM)
            send_long(conn, -1)
            return

        # Digest always covers the whole file, whatever the offset.
        checksum = file_checksum(filepath)
        filesize = os.path.getsize(filepath)
        send_utf(conn, checksum)

        if offset >= filesize:
            send_long(conn, 0)
            return

        remaining = filesize - offset
        send_long(conn, remaining)
        sent = send_file_range(conn, filepath, offset, remaining)

        if sent == remaining:
            logger.info("Sent %s to %s (%d bytes from offset %d)",
                        file_name, peer_ip, sent, offset)
            if self.on_transfer:
                self.on_transfer(
                    TransferRecord(file_name, Direction.UPLOAD, Outcome.SUCCESS, peer_ip)
                )
        else:
            logger.warning("Short send of %s to %s: %d/%d bytes",
                           file_name, peer_ip, sent, remaining)
