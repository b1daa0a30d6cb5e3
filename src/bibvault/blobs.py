"""Blob store: places file bytes at their content-addressed location once.

The store owns everything under ``<library>/files/``. A blob is written
only if no file exists yet for its digest; a second file with the same
content is discarded (``place``) or simply not copied (``store_copy``),
whatever extension it arrived with.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from bibvault.errors import BlobConflict
from bibvault.shard import digest_from_filename, shard_path, shard_prefix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlaceResult:
    """Where a blob ended up and whether it was already there."""

    path: Path
    duplicate: bool


class BlobStore:
    """Content-addressed file tree rooted at *files_dir*."""

    def __init__(self, files_dir: Path):
        self.files_dir = Path(files_dir)

    def path_for(self, digest: str, extension: str) -> Path:
        prefix, filename = shard_path(digest, extension)
        return self.files_dir / prefix / filename

    def exists(self, digest: str, extension: str) -> bool:
        return self.path_for(digest, extension).is_file()

    def find(self, digest: str) -> Path | None:
        """The blob stored for *digest* under any extension, or None."""
        shard = self.files_dir / shard_prefix(digest)
        if not shard.is_dir():
            return None
        for path in sorted(shard.glob(f"{digest}*")):
            if path.name.endswith(".tmp") or not path.is_file():
                continue
            if digest_from_filename(path.name) == digest:
                return path
        return None

    def resolve(self, digest: str, extension: str) -> Path:
        """Where bytes with *digest* live, or will live once placed.

        An existing blob wins over the extension of the incoming file, so
        one digest never has two physical copies.
        """
        existing = self.find(digest)
        return existing if existing is not None else self.path_for(digest, extension)

    def _prepare(self, digest: str, extension: str) -> Path:
        dest = self.resolve(digest, extension)
        dest.parent.mkdir(parents=True, exist_ok=True)
        return dest

    @staticmethod
    def _check_same_size(dest: Path, source: Path, digest: str) -> None:
        existing = dest.stat().st_size
        incoming = source.stat().st_size
        if existing != incoming:
            raise BlobConflict(digest, existing, incoming)

    def place(self, source: Path, digest: str, extension: str) -> PlaceResult:
        """Move *source* into the store, consuming it.

        If a blob for *digest* is already present, the source is deleted and
        the existing blob reused. A rename is used whenever source and store
        share a filesystem, so large files are never copied.

        Raises:
            BlobConflict: Existing blob differs in size from *source*
                (source is left in place).
            OSError: Directory creation, move, or delete failed.
        """
        source = Path(source)
        dest = self._prepare(digest, extension)
        if dest.exists():
            self._check_same_size(dest, source, digest)
            source.unlink()
            logger.debug("Discarded duplicate %s (blob %s exists)", source.name, dest.name)
            return PlaceResult(dest, duplicate=True)

        try:
            os.rename(source, dest)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            # different filesystem, copy then remove
            shutil.move(str(source), str(dest))
        logger.debug("Moved %s -> %s", source.name, dest.relative_to(self.files_dir))
        return PlaceResult(dest, duplicate=False)

    def store_copy(self, source: Path, digest: str, extension: str) -> PlaceResult:
        """Copy *source* into the store, leaving the original untouched."""
        source = Path(source)
        dest = self._prepare(digest, extension)
        if dest.exists():
            self._check_same_size(dest, source, digest)
            return PlaceResult(dest, duplicate=True)

        # Copy to a temp name first so a crash never leaves a truncated blob
        tmp = dest.with_name(dest.name + ".tmp")
        shutil.copyfile(source, tmp)
        tmp.replace(dest)
        logger.debug("Copied %s -> %s", source.name, dest.relative_to(self.files_dir))
        return PlaceResult(dest, duplicate=False)

    def remove(self, digest: str, extension: str) -> bool:
        """Delete a blob. Also removes its shard directory once empty.

        Returns True if a blob was deleted.
        """
        path = self.path_for(digest, extension)
        if not path.exists():
            return False
        path.unlink()
        self._prune_shard(path.parent)
        return True

    def _prune_shard(self, shard: Path) -> None:
        try:
            shard.rmdir()
        except OSError:
            pass  # not empty

    def shard_dirs(self) -> list[Path]:
        """All shard directories currently present (sorted)."""
        if not self.files_dir.is_dir():
            return []
        return sorted(p for p in self.files_dir.iterdir() if p.is_dir())

    def iter_blobs(self) -> Iterator[tuple[str, Path]]:
        """Yield ``(digest, path)`` for every blob in the store (sorted).

        Files that don't look like blobs (editor droppings, ``.tmp`` leftovers)
        are skipped.
        """
        for shard in self.shard_dirs():
            for path in sorted(shard.iterdir()):
                if not path.is_file():
                    continue
                digest = digest_from_filename(path.name)
                if digest is None or path.name.endswith(".tmp"):
                    continue
                yield digest, path
