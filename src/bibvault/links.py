"""Human-readable aliases into the content-addressed tree.

``papers/<bibcode>/<source>.<ext>`` is a symlink to
``../../files/<prefix>/<digest><ext>``. Targets are relative to the
alias directory so the library keeps working when moved as a whole.
Aliases carry no information of their own: regenerate_links() rebuilds
every one of them from the catalog.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from bibvault.blobs import BlobStore
from bibvault.catalog import FileAssociation, SqliteCatalog
from bibvault.filelock import DEFAULT_LOCK_TIMEOUT, file_lock
from bibvault.kinds import FileRole, normalize_extension
from bibvault.paths import files_dir, lock_path, papers_dir, sanitize_bibcode

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = '/\\:*?"<>|\x00'


def link_name(source_label: str, extension: str) -> str:
    """Alias file name for a download, e.g. ``arxiv.pdf``."""
    return f"{source_label}{extension}"


def attachment_link_name(original_name: str) -> str:
    """Alias file name for an attachment: its original name, made path-safe."""
    name = "".join("_" if c in _UNSAFE_NAME_CHARS else c for c in Path(original_name).name)
    return name if name.strip(".") else "attachment"


def is_source_alias(role: str, source_type: str | None) -> bool:
    """PDFs with a known source own the ``<source><ext>`` alias of their paper."""
    return role == FileRole.PDF.value and bool(source_type)


def alias_name(
    role: str,
    source_type: str | None,
    original_name: str | None,
    extension: str,
    fallback: str = "attachment",
) -> str:
    """Alias name for a stored file: source label for PDFs, original name otherwise."""
    if is_source_alias(role, source_type):
        return link_name(source_type, extension)
    if original_name:
        return attachment_link_name(original_name)
    return fallback


def association_link_name(record: FileAssociation) -> str:
    """Alias name for a catalog row.

    The extension comes from the name the file arrived with, since a
    deduplicated blob may carry the extension of an earlier copy.
    """
    ext = normalize_extension(Path(record.original_name or "").suffix) or record.extension
    return alias_name(
        record.role, record.source_type, record.original_name, ext, record.stored_filename
    )


def _free_name(paper_dir: Path, name: str, target: str) -> str:
    """First of ``name``, ``stem-2.ext``, ``stem-3.ext``... not taken by another blob.

    A slot is free when nothing is there, when a dangling link is there, or
    when the link there already points at *target*.
    """
    stem, suffix = os.path.splitext(name)
    candidate = name
    n = 1
    while True:
        alias = paper_dir / candidate
        if not alias.is_symlink() and not alias.exists():
            return candidate
        if alias.is_symlink() and (os.readlink(alias) == target or not alias.exists()):
            return candidate
        n += 1
        candidate = f"{stem}-{n}{suffix}"


def project(
    papers_root: Path,
    paper_key: str | None,
    name: str,
    blob_path: Path,
    *,
    unique: bool = False,
) -> Path:
    """Create or replace the alias ``papers_root/<key>/<name>`` → *blob_path*.

    With ``unique=False`` (source-label aliases) any existing entry at the
    alias path is replaced. With ``unique=True`` (attachments) an alias
    that already points at a different blob is left alone and a numbered
    name is used instead.

    Returns:
        The alias path.

    Raises:
        OSError: Directory creation, removal or symlinking failed.
    """
    paper_dir = papers_root / sanitize_bibcode(paper_key)
    paper_dir.mkdir(parents=True, exist_ok=True)
    target = os.path.relpath(blob_path, paper_dir)
    if unique:
        name = _free_name(paper_dir, name, target)
    alias = paper_dir / name

    if alias.is_symlink() and os.readlink(alias) == target:
        return alias
    if alias.is_symlink() or alias.exists():
        alias.unlink()

    alias.symlink_to(target)
    return alias


@dataclass
class RelinkResult:
    linked: int = 0
    missing: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def regenerate_links(
    repo: SqliteCatalog,
    library_root: Path,
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
) -> RelinkResult:
    """Recreate the alias for every ready catalog row whose blob is present."""
    with file_lock(lock_path(library_root), timeout=lock_timeout, timeout_msg="relink"):
        result = _relink(repo, library_root)
    logger.info(
        "Relinked %d files (%d blobs missing, %d errors)",
        result.linked,
        len(result.missing),
        len(result.errors),
    )
    return result


def _relink(repo: SqliteCatalog, library_root: Path) -> RelinkResult:
    store = BlobStore(files_dir(library_root))
    papers_root = papers_dir(library_root)
    result = RelinkResult()

    # source-label aliases first so attachments never take their names
    rows = sorted(
        repo.all_paper_files(),
        key=lambda rp: not is_source_alias(rp[0].role, rp[0].source_type),
    )
    for record, paper in rows:
        if not record.digest or record.status != "ready":
            continue
        blob = store.path_for(record.digest, record.extension)
        if not blob.is_file():
            result.missing.append(record.stored_filename)
            continue
        key = paper.bibcode or str(paper.id)
        unique = not is_source_alias(record.role, record.source_type)
        try:
            project(papers_root, key, association_link_name(record), blob, unique=unique)
            result.linked += 1
        except OSError as exc:
            logger.warning("Could not link %s for %s: %s", record.stored_filename, key, exc)
            result.errors.append(f"{record.stored_filename}: {exc}")
    return result
