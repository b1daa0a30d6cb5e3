"""Consistency check between the catalog and the files on disk.

Reports, without changing anything:
  missing_blobs    catalog rows whose blob is gone
  corrupt_blobs    blobs whose bytes no longer hash to their name (rehash only)
  orphan_blobs     blobs whose file name no row records
  dangling_links   aliases in papers/<bibcode>/ that resolve to nothing
  legacy_files     files still sitting flat in papers/ (unmigrated or unknown)
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from bibvault.blobs import BlobStore
from bibvault.catalog import SqliteCatalog
from bibvault.checksum import sha256_file
from bibvault.paths import files_dir, papers_dir

logger = logging.getLogger(__name__)


@dataclass
class IntegrityReport:
    blobs: int = 0
    records: int = 0
    missing_blobs: list[str] = field(default_factory=list)
    corrupt_blobs: list[str] = field(default_factory=list)
    orphan_blobs: list[str] = field(default_factory=list)
    dangling_links: list[str] = field(default_factory=list)
    legacy_files: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (
            self.missing_blobs or self.corrupt_blobs or self.orphan_blobs or self.dangling_links
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["ok"] = self.ok
        return d


def verify_library(
    repo: SqliteCatalog,
    library_root: Path,
    *,
    rehash: bool = False,
) -> IntegrityReport:
    """Compare catalog rows, blobs and aliases.

    Args:
        repo: The library catalog.
        library_root: The library folder.
        rehash: Also re-digest every blob (slow on big libraries).
    """
    root = Path(library_root)
    store = BlobStore(files_dir(root))
    report = IntegrityReport()

    referenced: set[str] = set()
    for record, _paper in repo.all_paper_files():
        report.records += 1
        if not record.digest:
            continue
        referenced.add(record.stored_filename)
        if not store.path_for(record.digest, record.extension).is_file():
            report.missing_blobs.append(record.stored_filename)

    for digest, path in store.iter_blobs():
        report.blobs += 1
        if path.name not in referenced:
            report.orphan_blobs.append(path.name)
        if rehash:
            try:
                actual = sha256_file(path)
            except OSError as exc:
                logger.warning("Could not read blob %s: %s", path.name, exc)
                report.corrupt_blobs.append(path.name)
                continue
            if actual != digest:
                report.corrupt_blobs.append(path.name)

    papers = papers_dir(root)
    if papers.is_dir():
        for entry in sorted(papers.iterdir()):
            if entry.is_dir() and not entry.is_symlink():
                for alias in sorted(entry.iterdir()):
                    if alias.is_symlink() and not alias.exists():
                        report.dangling_links.append(f"{entry.name}/{alias.name}")
            elif entry.is_file() and not entry.is_symlink() and not entry.name.startswith("."):
                report.legacy_files.append(entry.name)

    logger.info(
        "Verified %d blobs / %d records: %d missing, %d corrupt, %d orphaned, %d dangling",
        report.blobs,
        report.records,
        len(report.missing_blobs),
        len(report.corrupt_blobs),
        len(report.orphan_blobs),
        len(report.dangling_links),
    )
    return report
