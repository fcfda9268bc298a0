"""SHA-256 file digests used on both ends of a transfer."""

import hashlib

from .config import BUFFER_SIZE


def file_checksum(filepath: str) -> str:
    """Stream *filepath* through SHA-256 and return the lowercase hex digest."""
    digest = hashlib.sha256()
    with open(filepath, "rb") as f:
        while True:
            chunk = f.read(BUFFER_SIZE)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()
