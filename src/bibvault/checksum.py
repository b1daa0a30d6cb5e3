"""Content digests: the address of every blob in the store.

A digest is the SHA-256 of a file's bytes rendered as 64 lowercase hex
characters. Files are streamed in fixed-size chunks so multi-hundred-MB
data attachments never have to fit in memory.
"""

from __future__ import annotations

import hashlib
import re
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 65536  # 64 KB read chunks
DIGEST_LENGTH = 64

_DIGEST_RE = re.compile(r"[0-9a-f]{64}")


def sha256_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Digest everything remaining in an open binary stream."""
    h = hashlib.sha256()
    for chunk in iter(lambda: stream.read(chunk_size), b""):
        h.update(chunk)
    return h.hexdigest()


def sha256_file(path: Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Compute the content digest of a file on disk.

    Args:
        path: Path to the file.
        chunk_size: Bytes read per iteration.

    Returns:
        Lowercase hex digest string (64 chars).

    Raises:
        FileNotFoundError: If path does not exist (or vanished mid-scan).
        IsADirectoryError: If path is a directory.
        PermissionError: If the file cannot be opened for reading.

    Read errors are never retried here; the caller decides what to do.
    """
    with open(path, "rb") as f:
        return sha256_stream(f, chunk_size)


def sha256_bytes(data: bytes) -> str:
    """Compute the content digest of an in-memory buffer."""
    return hashlib.sha256(data).hexdigest()


def is_digest(value: str) -> bool:
    """True if *value* looks like a digest produced by this module."""
    return isinstance(value, str) and _DIGEST_RE.fullmatch(value) is not None
