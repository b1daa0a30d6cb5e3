"""Canonical file and directory names inside a library folder.

Single source of truth for the library layout. All code should import
from here rather than hard-coding names.

Layout:
  <library>/library.sqlite                       catalog_path()
  <library>/bibvault.yaml                        config_path()
  <library>/files/<prefix>/<digest><ext>         files_dir()   blobs
  <library>/papers/<bibcode>/<label><ext>        papers_dir()  aliases
"""

from __future__ import annotations

import re
from pathlib import Path

FILES_DIR = "files"
PAPERS_DIR = "papers"
CATALOG_NAME = "library.sqlite"
CONFIG_NAME = "bibvault.yaml"
LOG_NAME = "bibvault.log"
LOCK_NAME = ".migration"

# Anything outside this set is replaced when a bibcode becomes a directory name.
_UNSAFE_BIBCODE_RE = re.compile(r"[^a-zA-Z0-9._-]")


def files_dir(root: Path) -> Path:
    """Return <library>/files/ (content-addressed blobs)."""
    return root / FILES_DIR


def papers_dir(root: Path) -> Path:
    """Return <library>/papers/ (legacy files and human-readable aliases)."""
    return root / PAPERS_DIR


def catalog_path(root: Path) -> Path:
    return root / CATALOG_NAME


def config_path(root: Path) -> Path:
    return root / CONFIG_NAME


def log_path(root: Path) -> Path:
    return root / LOG_NAME


def lock_path(root: Path) -> Path:
    """Path protected by the migration lock (the lock file is ``.migration.lock``)."""
    return root / LOCK_NAME


def sanitize_bibcode(bibcode: str | None) -> str:
    """Make a bibcode safe to use as a single directory name.

    ``2019ApJ...871..133S`` stays as-is; ``1998A&A/330..123B`` becomes
    ``1998A_A_330..123B``. Empty input maps to ``unknown``.
    """
    if not bibcode:
        return "unknown"
    safe = _UNSAFE_BIBCODE_RE.sub("_", bibcode)
    # "." and ".." would escape the papers/ directory
    if safe.strip(".") == "":
        return safe.replace(".", "_")
    return safe


def ensure_library_dirs(root: Path) -> None:
    """Create files/ and papers/ if they don't exist."""
    files_dir(root).mkdir(parents=True, exist_ok=True)
    papers_dir(root).mkdir(parents=True, exist_ok=True)
