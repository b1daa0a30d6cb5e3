"""Discover files stored under the legacy one-file-per-record scheme.

Before content addressing, downloads were saved flat as
``papers/<bibcode>_<TAG>.<ext>`` and user attachments were listed in an
``attachments`` table naming a file in ``papers/``. This module finds both
shapes and classifies them; it never touches file contents.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from bibvault.catalog import MetadataRepository
from bibvault.errors import LegacyScanError
from bibvault.kinds import FileRole, SourceTag, SourceType, attachment_role, normalize_extension

logger = logging.getLogger(__name__)

_TAGS = "|".join(t.value for t in SourceTag)
# Greedy bibcode: "2020A_B_PUB_PDF.pdf" → bibcode "2020A_B". Extension is
# whatever follows the last dot after the tag.
_LEGACY_NAME_RE = re.compile(rf"^(?P<bibcode>.+)_(?P<tag>{_TAGS})(?P<ext>\.[^.]+)$")


@dataclass(frozen=True)
class LegacyName:
    bibcode: str
    tag: SourceTag
    extension: str


@dataclass(frozen=True)
class LegacyRecordFile:
    """A ``<bibcode>_<TAG>.<ext>`` download found in papers/."""

    path: Path
    bibcode: str
    tag: SourceTag

    @property
    def source_type(self) -> SourceType:
        return self.tag.source_type

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        return normalize_extension(self.path.suffix)


@dataclass(frozen=True)
class LegacyAttachment:
    """A file named by a row of the legacy attachments table."""

    path: Path
    paper_id: int
    original_name: str
    file_type: str | None
    added_date: str | None = None

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def extension(self) -> str:
        # The stored name may have lost its extension; the original kept it.
        return normalize_extension(Path(self.original_name).suffix or self.path.suffix)

    @property
    def role(self) -> FileRole:
        return attachment_role(self.extension, self.file_type)


@dataclass
class ScanResult:
    """Per-record candidates in scan order plus names that didn't match."""

    candidates: list[LegacyRecordFile] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)


def parse_legacy_name(filename: str) -> LegacyName | None:
    """Split a legacy download name into bibcode, tag and extension.

    Returns None when the name doesn't follow ``<bibcode>_<TAG>.<ext>``.
    """
    m = _LEGACY_NAME_RE.match(filename)
    if not m:
        return None
    return LegacyName(
        bibcode=m.group("bibcode"),
        tag=SourceTag(m.group("tag")),
        extension=normalize_extension(m.group("ext")),
    )


def scan_papers_dir(
    papers_dir: Path,
    reserved: frozenset[str] | set[str] = frozenset(),
) -> ScanResult:
    """List legacy per-record files directly inside *papers_dir*.

    Only regular files are considered. Sub-directories and symlinks are
    aliases written by an earlier (possibly interrupted) migration and are
    ignored, as are names in *reserved* (files owned by attachment rows).

    Raises:
        LegacyScanError: The directory exists but cannot be listed.
    """
    result = ScanResult()
    try:
        with os.scandir(papers_dir) as it:
            entries = sorted(it, key=lambda e: e.name)
    except FileNotFoundError:
        return result
    except OSError as exc:
        raise LegacyScanError(str(papers_dir), exc.strerror or str(exc)) from exc

    for entry in entries:
        if entry.is_symlink() or not entry.is_file(follow_symlinks=False):
            continue
        if entry.name in reserved or entry.name.startswith("."):
            continue
        parsed = parse_legacy_name(entry.name)
        if parsed is None:
            result.unmatched.append(entry.name)
            continue
        result.candidates.append(
            LegacyRecordFile(path=Path(entry.path), bibcode=parsed.bibcode, tag=parsed.tag)
        )

    logger.debug(
        "Scanned %s: %d candidates, %d unmatched",
        papers_dir,
        len(result.candidates),
        len(result.unmatched),
    )
    return result


def scan_attachments(repo: MetadataRepository, papers_dir: Path) -> list[LegacyAttachment]:
    """Turn legacy attachment rows into candidates, in table order.

    Existence on disk is not checked here; the orchestrator does that so a
    missing file is counted like any other skip.
    """
    found = []
    for row in repo.get_all_attachments():
        found.append(
            LegacyAttachment(
                path=papers_dir / row.filename,
                paper_id=row.paper_id,
                original_name=row.original_name or row.filename,
                file_type=row.file_type,
                added_date=row.added_date,
            )
        )
    return found
