"""Day-to-day file operations on a migrated library.

FileManager is what the host calls after migration: attach a file to a
paper, list and remove attachments, pick the PDF to open, and sweep blobs
nobody references any more.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from bibvault import links
from bibvault.blobs import BlobStore
from bibvault.catalog import FileAssociation, NewFile, SqliteCatalog
from bibvault.checksum import sha256_file
from bibvault.errors import AssociationConflict, FileNotInCatalog, PaperNotFound, SourceFileMissing
from bibvault.filelock import file_lock
from bibvault.kinds import FileRole, FileStatus, mime_type_for, normalize_extension, source_rank
from bibvault.paths import ensure_library_dirs, files_dir, lock_path, papers_dir

logger = logging.getLogger(__name__)

# Extension given to files that arrive without one.
FALLBACK_EXTENSION = ".bin"


@dataclass
class CleanupResult:
    removed: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class FileManager:
    """Attach, look up and remove content-addressed files for papers."""

    def __init__(self, repo: SqliteCatalog, library_root: Path):
        self.repo = repo
        self.root = Path(library_root)
        self.store = BlobStore(files_dir(self.root))
        self.papers = papers_dir(self.root)

    def add_file(
        self,
        paper_id: int,
        source: Path,
        *,
        role: FileRole = FileRole.OTHER,
        source_type: str | None = None,
        original_name: str | None = None,
        source_url: str | None = None,
        bibcode: str | None = None,
    ) -> FileAssociation:
        """Copy *source* into the store and attach it to a paper.

        The source file is left where it is. Adding the same content to the
        same paper twice returns the existing row.

        Raises:
            SourceFileMissing: *source* does not exist.
            PaperNotFound: No paper with *paper_id*.
            AssociationConflict: The paper already has this content recorded
                under another stored name (nothing is copied).
        """
        source = Path(source)
        if not source.is_file():
            raise SourceFileMissing(str(source))
        if self.repo.get_paper_by_id(paper_id) is None:
            raise PaperNotFound(paper_id)

        ensure_library_dirs(self.root)
        digest = sha256_file(source)
        ext = normalize_extension(source.suffix) or FALLBACK_EXTENSION
        stored_filename = self.store.resolve(digest, ext).name

        existing = [a for a in self.repo.get_file_by_hash(digest) if a.paper_id == paper_id]
        if existing and existing[0].stored_filename != stored_filename:
            raise AssociationConflict(
                paper_id, digest, existing[0].stored_filename, stored_filename
            )
        placed = self.store.store_copy(source, digest, ext)

        if existing:
            record = existing[0]
            logger.info("Paper %s already has %s", paper_id, placed.path.name)
        else:
            file_id = self.repo.add_paper_file(
                paper_id,
                NewFile(
                    digest=digest,
                    stored_filename=placed.path.name,
                    original_name=original_name or source.name,
                    mime_type=mime_type_for(ext),
                    byte_size=placed.path.stat().st_size,
                    role=role.value,
                    source_type=source_type,
                    source_url=source_url,
                    status=FileStatus.READY.value,
                ),
            )
            record = self.repo.get_paper_file(file_id)
            logger.info("Attached %s to paper %s as %s", source.name, paper_id, placed.path.name)

        if bibcode:
            unique = not links.is_source_alias(record.role, record.source_type)
            try:
                links.project(
                    self.papers,
                    bibcode,
                    links.association_link_name(record),
                    placed.path,
                    unique=unique,
                )
            except OSError as exc:
                # aliases are a convenience; the row is already saved
                logger.warning("Could not create alias for %s: %s", placed.path.name, exc)
        return record

    def remove_file(self, file_id: int) -> bool:
        """Delete a file row, and its blob if no other row points at that blob.

        Raises:
            FileNotInCatalog: No row with *file_id*.
        """
        record = self.repo.get_paper_file(file_id)
        if record is None:
            raise FileNotInCatalog(file_id)

        shared = False
        if record.digest:
            shared = any(
                a.id != file_id and a.stored_filename == record.stored_filename
                for a in self.repo.get_file_by_hash(record.digest)
            )

        self.repo.delete_paper_file(file_id)
        if record.digest and not shared:
            if self.store.remove(record.digest, record.extension):
                logger.info("Deleted blob %s", record.stored_filename)
        # aliases pointing at the deleted blob now dangle; relink or verify cleans them up
        return True

    def files_for_paper(
        self,
        paper_id: int,
        role: str | None = None,
        status: str | None = None,
        source_type: str | None = None,
    ) -> list[FileAssociation]:
        return self.repo.get_paper_files(
            paper_id, role=role, status=status, source_type=source_type
        )

    def primary_pdf(self, paper_id: int) -> FileAssociation | None:
        """The PDF a reader opens by default.

        A PDF chosen with set_primary_pdf() wins. Otherwise priority is
        publisher > arxiv > ads_scan > manual > anything else.
        """
        pdfs = self.files_for_paper(paper_id, role=FileRole.PDF.value)
        if not pdfs:
            return None
        chosen = [f for f in pdfs if f.is_primary]
        if chosen:
            return chosen[0]
        return min(pdfs, key=lambda f: source_rank(f.source_type))

    def set_primary_pdf(self, paper_id: int, file_id: int) -> FileAssociation:
        """Make *file_id* the paper's primary PDF, overriding source priority.

        Raises:
            FileNotInCatalog: *file_id* is not one of the paper's PDF rows.
        """
        pdfs = self.files_for_paper(paper_id, role=FileRole.PDF.value)
        if not any(f.id == file_id for f in pdfs):
            raise FileNotInCatalog(file_id, paper_id=paper_id)
        self.repo.set_primary_file(paper_id, file_id)
        logger.info("File %d is now the primary PDF of paper %d", file_id, paper_id)
        return self.repo.get_paper_file(file_id)

    def set_status(
        self, file_id: int, status: FileStatus, error_message: str | None = None
    ) -> None:
        updated = self.repo.update_paper_file(
            file_id, status=status.value, error_message=error_message
        )
        if not updated:
            raise FileNotInCatalog(file_id)

    def file_path(self, file_id: int) -> Path | None:
        """Where a ready file's bytes are, or None.

        Rows created before migration have no digest and still point into
        the flat ``papers/`` folder.
        """
        record = self.repo.get_paper_file(file_id)
        if record is None or record.status != FileStatus.READY.value:
            return None
        if record.digest:
            blob = self.store.path_for(record.digest, record.extension)
            if blob.is_file():
                return blob
            logger.warning("Blob missing for file %d: %s", file_id, blob)
        legacy = self.papers / record.stored_filename
        if legacy.is_file():
            return legacy
        return None

    def cleanup_orphaned_blobs(self, lock_timeout: float | None = None) -> CleanupResult:
        """Delete blobs whose file name no catalog row records."""
        result = CleanupResult()
        kwargs = {} if lock_timeout is None else {"timeout": lock_timeout}
        with file_lock(lock_path(self.root), timeout_msg="cleanup", **kwargs):
            referenced = {r.stored_filename for r, _ in self.repo.all_paper_files() if r.digest}
            for _digest, path in list(self.store.iter_blobs()):
                if path.name in referenced:
                    continue
                try:
                    path.unlink()
                    result.removed.append(path.name)
                except OSError as exc:
                    result.errors.append(f"{path.name}: {exc}")
            for shard in self.store.shard_dirs():
                try:
                    shard.rmdir()
                except OSError:
                    pass  # still has blobs
        logger.info("Removed %d orphaned blobs", len(result.removed))
        return result
