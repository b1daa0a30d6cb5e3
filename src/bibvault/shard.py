"""Map a content digest to its place in the sharded blob tree.

Blobs live at ``files/<first two hex chars>/<digest><ext>``. Two hex
characters give at most 256 shard directories, so no single directory
holds more than roughly 1/256th of the library.
"""

from __future__ import annotations

from bibvault.checksum import DIGEST_LENGTH, is_digest
from bibvault.errors import InvalidDigest
from bibvault.kinds import normalize_extension

SHARD_PREFIX_LENGTH = 2


def shard_prefix(digest: str) -> str:
    """Return the shard directory name for a digest."""
    if not is_digest(digest):
        raise InvalidDigest(digest)
    return digest[:SHARD_PREFIX_LENGTH]


def shard_path(digest: str, extension: str) -> tuple[str, str]:
    """Return ``(prefix_dir, filename)`` for a digest and original extension.

    Pure: the same digest and extension always give the same pair. The
    extension is lowercased, so ``.PDF`` and ``.pdf`` share one blob.
    """
    return shard_prefix(digest), f"{digest}{normalize_extension(extension)}"


def digest_from_filename(name: str) -> str | None:
    """Recover the digest from a blob file name, or None if it isn't one."""
    candidate = name[:DIGEST_LENGTH]
    rest = name[DIGEST_LENGTH:]
    if not is_digest(candidate):
        return None
    if rest and not rest.startswith("."):
        return None
    return candidate
