"""
Outbound sessions — the client side of the peer protocol.

Every command opens a fresh TLS connection, runs one exchange and closes
the connection; nothing is kept alive between commands.

Two API layers:
  - Core functions (fetch_search_results, fetch_file) speak the protocol
    over an already-connected socket and return structured data.
  - PeerSession wraps them per endpoint: it opens the connection, verifies
    the download, updates peer status and the ledger, and reports to the
    front end.
"""

import logging
import os
from dataclasses import dataclass

from typing_extensions import Callable

from .checksum import file_checksum
from .config import END_MARKER, NO_CHECKSUM
from .errors import (
    IntegrityError,
    NotFoundError,
    ProtocolError,
    TransportError,
)
from .events import Notifier
from .protocol import (
    recv_into_file,
    recv_line,
    recv_long,
    recv_utf,
    send_line,
    validate_filename,
)
from .state import Direction, Outcome, PeerStatusTracker, TransferRecord

logger = logging.getLogger(__name__)


def format_size(size_bytes: int | float) -> str:
    """Human-readable file size."""
    for unit in ("B", "KB", "MB", "GB"):
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


@dataclass
class DownloadResult:
    """What a download exchange produced on disk."""

    path: str
    remote_checksum: str
    resumed_from: int
    remaining: int
    received: int

    @property
    def total_size(self) -> int:
        return self.resumed_from + self.remaining

    @property
    def complete(self) -> bool:
        return self.received == self.remaining


# ======================================================================
# Core API — speaks the protocol over a connected socket
# ======================================================================


def fetch_search_results(sock, keyword: str) -> list[str]:
    """
    Send ``search <keyword>`` and collect result lines up to END.

    Raises TransportError if the peer disconnects before END.
    """
    send_line(sock, f"search {keyword}")
    stream = sock.makefile("rb")
    try:
        results = []
        while True:
            line = recv_line(stream)
            if line is None:
                raise TransportError("Connection closed before END of search results")
            if line == END_MARKER:
                return results
            results.append(line)
    finally:
        stream.close()


def fetch_file(
    sock,
    file_name: str,
    download_dir: str,
    progress_callback: Callable[[int, int], None] | None = None,
) -> DownloadResult:
    """
    Download *file_name* into *download_dir*, resuming from any partial copy.

    The local file length is sent as the offset; received bytes are written
    after it.  A short read leaves the partial file in place so the next
    attempt resumes from it.
    Raises NotFoundError if the peer does not have the file.
    progress_callback: optional callable(downloaded_bytes, total_bytes),
    where downloaded_bytes includes the resumed prefix.
    """
    validate_filename(file_name)
    os.makedirs(download_dir, exist_ok=True)
    dest = os.path.join(download_dir, file_name)
    existing = os.path.getsize(dest) if os.path.isfile(dest) else 0

    send_line(sock, f"download {file_name} {existing}")
    stream = sock.makefile("rb")
    try:
        remote_checksum = recv_utf(stream)
        remaining = recv_long(stream)
        if remaining == -1:
            raise NotFoundError(f"{file_name} not found on peer")
        if remaining < 0:
            raise ProtocolError(f"Invalid remaining length: {remaining}")

        result = DownloadResult(dest, remote_checksum, existing, remaining, 0)
        if remaining == 0:
            return result

        def on_chunk(received: int) -> None:
            if progress_callback:
                progress_callback(existing + received, result.total_size)

        mode = "r+b" if os.path.exists(dest) else "w+b"
        with open(dest, mode) as f:
            f.seek(existing)
            result.received = recv_into_file(stream, f, remaining, on_chunk)
        return result
    finally:
        stream.close()


def verify_download(path: str, remote_checksum: str) -> str:
    """Compare the whole local file against *remote_checksum*.

    Returns the local digest; raises IntegrityError on mismatch.
    """
    local_checksum = file_checksum(path)
    if remote_checksum == NO_CHECKSUM or local_checksum != remote_checksum:
        raise IntegrityError(os.path.basename(path), remote_checksum, local_checksum)
    return local_checksum


# ======================================================================
# PeerSession — one per connected endpoint
# ======================================================================


class PeerSession:
    """Runs user-issued commands against one remote endpoint."""

    def __init__(
        self,
        host: str,
        port: int,
        transport,
        get_download_dir: Callable[[], str],
        status: PeerStatusTracker,
        on_transfer: Callable[[TransferRecord], None] | None = None,
        notifier: Notifier | None = None,
    ):
        self.host = host
        self.port = port
        self.transport = transport
        self.get_download_dir = get_download_dir
        self.status = status
        self.on_transfer = on_transfer
        self.notifier = notifier or Notifier()

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    def __repr__(self) -> str:
        return f"PeerSession({self.endpoint})"

    def send_command(self, command: str) -> bool:
        """Run a ``search <keyword>`` or ``download <fileName>`` command.

        Blocks until the exchange finishes.  Returns True if the exchange
        completed, False if it failed; failures are reported, not raised.
        """
        verb, _, argument = command.partition(" ")
        argument = argument.strip()
        if verb == "search" and argument:
            return self.search(argument)
        if verb == "download" and argument:
            return self.download(argument)
        self.notifier.message(f"Unknown command: {command!r}")
        return False

    def search(self, keyword: str) -> bool:
        def exchange(sock) -> None:
            results = fetch_search_results(sock, keyword)
            self.notifier.search_results(self.host, self.port, results)

        return self._run(exchange)

    def download(self, file_name: str) -> bool:
        def exchange(sock) -> None:
            self._download(sock, file_name)

        return self._run(exchange)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, exchange: Callable) -> bool:
        endpoint = self.endpoint
        if self.transport is None:
            self.notifier.message(
                f"Secured transport unavailable; cannot reach {endpoint}"
            )
            return False

        try:
            sock = self.transport.connect(self.host, self.port)
            try:
                exchange(sock)
            finally:
                sock.close()
        except ProtocolError as e:
            self.notifier.message(f"Error talking to peer {endpoint}: {e}")
            return False
        except (TransportError, OSError) as e:
            count, snapshot = self.status.record_failure(endpoint)
            logger.debug("Failure %d for %s: %s", count, endpoint, e)
            if snapshot is not None:
                self.notifier.peer_status(snapshot)
            self.notifier.message(f"Connection to {endpoint} failed: {e}")
            return False

        self.notifier.peer_status(self.status.mark_online(endpoint))
        return True

    def _download(self, sock, file_name: str) -> None:
        def progress(downloaded: int, total: int) -> None:
            self.notifier.download_progress(file_name, total, downloaded)

        try:
            result = fetch_file(sock, file_name, self.get_download_dir(), progress)
        except NotFoundError:
            self.notifier.message(f"File not found on peer {self.endpoint}: {file_name}")
            return

        if result.remaining == 0:
            self.notifier.message(f"File already fully downloaded: {file_name}")
            return

        if not result.complete:
            self._record(file_name, Outcome.FAILED)
            raise TransportError(
                f"connection closed after {result.received} of "
                f"{result.remaining} bytes of {file_name}; partial file kept"
            )

        try:
            verify_download(result.path, result.remote_checksum)
        except IntegrityError as e:
            self._record(file_name, Outcome.FAILED)
            self.notifier.message(
                f"Checksum mismatch for: {file_name} "
                f"(remote {e.expected}, local {e.actual})"
            )
            return

        self._record(file_name, Outcome.SUCCESS)
        self.notifier.message(
            f"File downloaded successfully: {file_name} "
            f"({format_size(result.total_size)}) from {self.endpoint}"
        )

    def _record(self, file_name: str, outcome: Outcome) -> None:
        if self.on_transfer:
            self.on_transfer(
                TransferRecord(file_name, Direction.DOWNLOAD, outcome, self.endpoint)
            )
