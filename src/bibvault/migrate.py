"""One-time migration of a library into content-addressed storage.

Before schema version 2, downloads lived flat in ``papers/`` as
``<bibcode>_<TAG>.<ext>`` and attachments were rows of an ``attachments``
table pointing at files in the same folder. Migration moves every such
file into ``files/<prefix>/<digest><ext>``, records one ``paper_files``
row per (paper, digest), and leaves a readable alias behind in
``papers/<bibcode>/``.

Each file goes through the same strict pipeline:

    resolve owner → hash → check association → place blob → record → project alias

Failures are collected per file and never abort the pass. The schema
version is only advanced once every candidate has been visited, and each
step is idempotent (blobs dedupe by digest, rows are looked up before
insert), so an interrupted run simply converges on the next start.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from bibvault import links
from bibvault.blobs import BlobStore
from bibvault.catalog import MetadataRepository, NewFile, PaperRecord
from bibvault.checksum import sha256_file
from bibvault.config import LibraryConfig, load_config
from bibvault.errors import AssociationConflict, LegacyScanError
from bibvault.filelock import file_lock
from bibvault.kinds import FileRole, FileStatus, SourceType, attachment_role, mime_type_for
from bibvault.paths import files_dir, lock_path, papers_dir
from bibvault.scanner import (
    LegacyAttachment,
    LegacyRecordFile,
    scan_attachments,
    scan_papers_dir,
)

logger = logging.getLogger(__name__)

CONTENT_ADDRESSED_VERSION = 2

LogSink = Callable[[str], None]


@dataclass
class MigrationResult:
    """Summary returned to the host: counts plus verbatim error messages."""

    migrated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def needs_migration(repo: MetadataRepository) -> bool:
    """True while the library is still on the legacy layout."""
    return repo.get_schema_version() < CONTENT_ADDRESSED_VERSION


def migrate_library(
    repo: MetadataRepository,
    library_root: Path,
    log: LogSink | None = None,
    *,
    config: LibraryConfig | None = None,
) -> MigrationResult:
    """Migrate legacy files into the content-addressed store.

    Args:
        repo: Catalog holding papers, attachments and the schema version.
        library_root: The library folder (contains ``papers/``).
        log: Optional sink receiving one human-readable line per event.
            Lines also go to the ``bibvault.migrate`` logger.
        config: Library settings; read from ``bibvault.yaml`` when omitted.

    Returns:
        Counts of migrated and skipped files and per-file error messages.
        A library that is already migrated returns an all-zero result.

    Raises:
        LockTimeout: Another process holds the library lock.
    """
    library_root = Path(library_root)
    if not needs_migration(repo):
        return MigrationResult()

    cfg = config if config is not None else load_config(library_root)
    with file_lock(lock_path(library_root), timeout=cfg.lock_timeout, timeout_msg="migration"):
        # another process may have finished while we waited
        if not needs_migration(repo):
            return MigrationResult()
        return _Migration(repo, library_root, cfg, log).run()


class _Migration:
    """State for one pass. Not reusable."""

    def __init__(
        self,
        repo: MetadataRepository,
        root: Path,
        config: LibraryConfig,
        log: LogSink | None,
    ):
        self.repo = repo
        self.root = root
        self.config = config
        self.sink = log
        self.papers = papers_dir(root)
        self.store = BlobStore(files_dir(root))
        self.result = MigrationResult()

    def _say(self, msg: str, level: int = logging.INFO) -> None:
        logger.log(level, msg)
        if self.sink is not None:
            self.sink(f"[Migration] {msg}")

    def run(self) -> MigrationResult:
        self._say("Starting migration to content-addressed storage")
        self.store.files_dir.mkdir(parents=True, exist_ok=True)
        complete = True

        try:
            attachments = scan_attachments(self.repo, self.papers)
        except Exception as exc:
            self._say(f"Could not read attachments: {exc}", logging.ERROR)
            self.result.errors.append(f"Could not read attachments: {exc}")
            attachments = []
            complete = False

        reserved = frozenset(a.filename for a in attachments)
        try:
            scan = scan_papers_dir(self.papers, reserved=reserved)
        except LegacyScanError as exc:
            self._say(str(exc), logging.ERROR)
            self.result.errors.append(str(exc))
            complete = False
        else:
            self._say(
                f"Found {len(scan.candidates)} legacy files "
                f"({len(scan.unmatched)} with unrecognized names)"
            )
            for name in scan.unmatched:
                self._say(f"Skipping {name} - unrecognized filename format")
                self.result.skipped += 1
            for candidate in scan.candidates:
                self._record_file(candidate)

        self._say(f"Processing {len(attachments)} attachments")
        for attachment in attachments:
            self._attachment(attachment)

        if complete:
            self.repo.set_schema_version(CONTENT_ADDRESSED_VERSION)
        else:
            self._say(
                "Schema version left unchanged; migration will run again on next start",
                logging.WARNING,
            )

        self._say(
            f"Migration complete. Migrated: {self.result.migrated}, "
            f"Skipped: {self.result.skipped}, Errors: {len(self.result.errors)}"
        )
        return self.result

    # -- candidates --------------------------------------------------------

    def _record_file(self, candidate: LegacyRecordFile) -> None:
        name = candidate.filename
        if not candidate.path.is_file():
            self._say(f"Skipping {name} - file not found")
            self.result.skipped += 1
            return

        paper = self.repo.get_paper_by_bibcode(candidate.bibcode)
        if paper is None:
            self._say(f"Skipping {name} - no matching paper for bibcode {candidate.bibcode}")
            self.result.skipped += 1
            return

        ext = candidate.extension
        role = FileRole.PDF if ext == ".pdf" else attachment_role(ext)
        try:
            self._ingest(
                paper,
                candidate.path,
                ext,
                role=role,
                source_type=candidate.source_type,
                mime_type=mime_type_for(ext),
                added_date="",
                alias=links.alias_name(role.value, candidate.source_type.value, name, ext),
                unique_alias=not links.is_source_alias(role.value, candidate.source_type.value),
            )
        except Exception as exc:
            self._say(f"Error processing {name}: {exc}", logging.ERROR)
            self.result.errors.append(f"{name}: {exc}")
            return
        self.result.migrated += 1

    def _attachment(self, attachment: LegacyAttachment) -> None:
        name = attachment.filename
        if not attachment.path.is_file():
            self._say(f"Skipping attachment {name} - file not found")
            self.result.skipped += 1
            return

        paper = self.repo.get_paper_by_id(attachment.paper_id)
        if paper is None:
            self._say(f"Skipping attachment {name} - no paper with id {attachment.paper_id}")
            self.result.skipped += 1
            return

        try:
            self._ingest(
                paper,
                attachment.path,
                attachment.extension,
                role=attachment.role,
                source_type=SourceType.MANUAL,
                mime_type=mime_type_for(attachment.extension),
                added_date=attachment.added_date or "",
                alias=links.attachment_link_name(attachment.original_name),
                unique_alias=True,
                original_name=attachment.original_name,
            )
        except Exception as exc:
            self._say(f"Error processing attachment {name}: {exc}", logging.ERROR)
            self.result.errors.append(f"Attachment {name}: {exc}")
            return
        self.result.migrated += 1

    # -- pipeline ----------------------------------------------------------

    def _ingest(
        self,
        paper: PaperRecord,
        source: Path,
        extension: str,
        *,
        role: FileRole,
        source_type: SourceType,
        mime_type: str,
        added_date: str,
        alias: str,
        unique_alias: bool,
        original_name: str | None = None,
    ) -> None:
        name = source.name
        digest = sha256_file(source, self.config.hash_chunk_size)
        stored_filename = self.store.resolve(digest, extension).name

        # checked before placing so a conflicting file stays in papers/
        existing = [a for a in self.repo.get_file_by_hash(digest) if a.paper_id == paper.id]
        if existing and existing[0].stored_filename != stored_filename:
            recorded = existing[0].stored_filename
            raise AssociationConflict(paper.id, digest, recorded, stored_filename)

        placed = self.store.place(source, digest, extension)
        where = f"{placed.path.parent.name}/{placed.path.name}"
        if placed.duplicate:
            self._say(f"Removed duplicate {name} (blob {where} exists)")
        else:
            self._say(f"Moved {name} to files/{where}")

        if existing:
            self._say(f"{name} already recorded for paper {paper.id}, not adding a row")
        else:
            self.repo.add_paper_file(
                paper.id,
                NewFile(
                    digest=digest,
                    stored_filename=placed.path.name,
                    original_name=original_name or name,
                    mime_type=mime_type,
                    byte_size=placed.path.stat().st_size,
                    role=role.value,
                    source_type=source_type.value,
                    added_date=added_date or datetime.now(UTC).isoformat(),
                    status=FileStatus.READY.value,
                ),
            )

        if self.config.symlinks:
            key = paper.bibcode or str(paper.id)
            try:
                links.project(self.papers, key, alias, placed.path, unique=unique_alias)
            except OSError as exc:
                self._say(f"Could not create alias {alias} for {key}: {exc}", logging.WARNING)
