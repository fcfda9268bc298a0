"""
Wire helpers for the peer protocol.

Requests are a single newline-terminated command line.  Download responses
use a small binary framing on top of the same stream:

    [ 2 bytes: length ][ N bytes: UTF-8 digest ]
    [ 8 bytes: signed big-endian remaining length ]
    [ remaining bytes: raw file content ]

Writers take the (possibly TLS-wrapped) socket; readers take a buffered
binary stream obtained from ``sock.makefile("rb")`` so that a command line
and the raw bytes that follow it can be consumed from one buffer.
"""

import os
import struct

from typing_extensions import Callable

from .config import BUFFER_SIZE, MAX_LINE_LENGTH
from .errors import ProtocolError, TransportError

_UTF_LENGTH = struct.Struct("!H")
_LONG = struct.Struct("!q")


# ---------------------------------------------------------------------------
# Filename validation
# ---------------------------------------------------------------------------


def validate_filename(name: str) -> str:
    """Return *name* unchanged if it is a bare file name.

    Raises ProtocolError for anything that could resolve outside the
    directory it is joined with: separators, dot entries, absolute paths
    and NUL bytes.  Line breaks are refused too, since a name travels
    inside a single command line.
    """
    if not name or name in (".", ".."):
        raise ProtocolError(f"Invalid file name: {name!r}")
    if "/" in name or "\\" in name or "\x00" in name:
        raise ProtocolError(f"File name must not contain a path: {name!r}")
    if "\r" in name or "\n" in name:
        raise ProtocolError(f"File name must not contain a line break: {name!r}")
    if os.path.isabs(name) or os.path.basename(name) != name:
        raise ProtocolError(f"File name must not contain a path: {name!r}")
    return name


# ---------------------------------------------------------------------------
# Line framing (commands and search results)
# ---------------------------------------------------------------------------


def send_line(sock, text: str) -> None:
    """Send *text* as one UTF-8 line."""
    sock.sendall(text.encode("utf-8") + b"\n")


def recv_line(stream) -> str | None:
    """Read one line without its terminator. Returns None on disconnect.

    Raises ProtocolError if the line exceeds MAX_LINE_LENGTH or is not
    valid UTF-8.
    """
    raw = stream.readline(MAX_LINE_LENGTH + 1)
    if not raw:
        return None
    if len(raw) > MAX_LINE_LENGTH:
        raise ProtocolError(f"Line too long (max {MAX_LINE_LENGTH} bytes)")
    try:
        return raw.decode("utf-8").rstrip("\r\n")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Line is not valid UTF-8: {e}") from e


# ---------------------------------------------------------------------------
# Download response framing
# ---------------------------------------------------------------------------


def send_utf(sock, text: str) -> None:
    """Send a UTF-8 string with a 2-byte big-endian length prefix."""
    data = text.encode("utf-8")
    if len(data) > 0xFFFF:
        raise ProtocolError(f"String too long for UTF framing: {len(data)} bytes")
    sock.sendall(_UTF_LENGTH.pack(len(data)) + data)


def recv_utf(stream) -> str:
    """Receive a 2-byte length-prefixed UTF-8 string."""
    raw_len = recv_exactly(stream, _UTF_LENGTH.size)
    if raw_len is None:
        raise TransportError("Connection closed while reading digest")
    (length,) = _UTF_LENGTH.unpack(raw_len)
    data = recv_exactly(stream, length)
    if data is None:
        raise TransportError("Connection closed while reading digest")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Digest is not valid UTF-8: {e}") from e


def send_long(sock, value: int) -> None:
    """Send a signed 64-bit big-endian integer."""
    sock.sendall(_LONG.pack(value))


def recv_long(stream) -> int:
    """Receive a signed 64-bit big-endian integer."""
    raw = recv_exactly(stream, _LONG.size)
    if raw is None:
        raise TransportError("Connection closed while reading length")
    return _LONG.unpack(raw)[0]


# ---------------------------------------------------------------------------
# Raw file content
# ---------------------------------------------------------------------------


def send_file_range(
    sock, filepath: str, offset: int = 0, count: int | None = None
) -> int:
    """Send *count* bytes of *filepath* starting at *offset* (default: to EOF).

    Uses socket.sendfile(), which falls back to a send loop for TLS
    sockets.  Returns the number of bytes sent.
    """
    with open(filepath, "rb") as f:
        return sock.sendfile(f, offset=offset, count=count)


def recv_into_file(
    stream,
    f,
    count: int,
    progress_callback: Callable[[int], None] | None = None,
) -> int:
    """
    Copy up to *count* bytes from *stream* into the open file *f*.

    Returns the number of bytes copied, which is less than *count* only if
    the peer disconnected early.
    progress_callback: optional callable(bytes_copied_so_far)
    """
    received = 0
    while received < count:
        chunk = stream.read(min(BUFFER_SIZE, count - received))
        if not chunk:
            break
        f.write(chunk)
        received += len(chunk)
        if progress_callback:
            progress_callback(received)
    return received


def recv_exactly(stream, num_bytes: int) -> bytes | None:
    """Read exactly *num_bytes* from *stream*. Returns None on disconnect."""
    data = bytearray()
    while len(data) < num_bytes:
        packet = stream.read(num_bytes - len(data))
        if not packet:
            return None
        data.extend(packet)
    return bytes(data)
