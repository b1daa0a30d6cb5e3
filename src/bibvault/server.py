"""bibvault MCP server: exposes a library's file store to an MCP client.

Run with: python -m bibvault.server  (library folder from BIBVAULT_LIBRARY)
The server uses stdio transport for MCP client communication.

On first use the library is opened and, if it is still on the legacy
layout, migrated before any tool runs.
"""

from __future__ import annotations

import functools
import json
import logging
import logging.handlers
import os
import sys
import time
import traceback
from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from bibvault import links
from bibvault import paths as bv_paths
from bibvault.blobs import BlobStore
from bibvault.catalog import SqliteCatalog
from bibvault.config import load_config
from bibvault.errors import BibvaultError, LibraryNotSet
from bibvault.files import FileManager
from bibvault.integrity import verify_library
from bibvault.kinds import FileRole
from bibvault.migrate import migrate_library, needs_migration

mcp_server = FastMCP("Bibvault")

# ---------------------------------------------------------------------------
# Logging: stderr always, file handler added once the library is known
# ---------------------------------------------------------------------------

logger = logging.getLogger("bibvault")
logger.setLevel(logging.DEBUG)

_stderr_handler = logging.StreamHandler(sys.stderr)
_stderr_handler.setLevel(logging.WARNING)
_stderr_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S"
    )
)
logger.addHandler(_stderr_handler)

_file_handler: logging.Handler | None = None


def _attach_file_log(root: Path) -> None:
    """Attach a rotating file handler to <library>/bibvault.log (idempotent)."""
    global _file_handler
    if _file_handler is not None:
        return
    root.mkdir(parents=True, exist_ok=True)
    log_path = bv_paths.log_path(root)
    fh = logging.handlers.RotatingFileHandler(
        log_path,
        maxBytes=2_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(
        logging.Formatter("%(asctime)s [%(process)d] %(levelname)s %(name)s: %(message)s")
    )
    logger.addHandler(fh)
    _file_handler = fh
    logger.info("bibvault server started, log attached to %s", log_path)


# ---------------------------------------------------------------------------
# Tool invocation logging. Each call runs in a worker thread via
# anyio.to_thread so blocking file I/O never stalls the event loop.
# Tools are still serialised.
# ---------------------------------------------------------------------------

_original_tool = mcp_server.tool


def _logging_tool(**kwargs):
    """Drop-in replacement for ``mcp_server.tool()`` that adds timing and error logging."""
    import anyio

    decorator = _original_tool(**kwargs)

    def wrapper(fn):
        @functools.wraps(fn)
        async def logged(*args, **kw):
            name = fn.__name__
            logger.info("TOOL %s called", name)
            t0 = time.monotonic()
            try:
                result = await anyio.to_thread.run_sync(lambda: fn(*args, **kw))
            except BibvaultError as exc:
                logger.warning(
                    "TOOL %s failed (%s) after %.2fs: %s",
                    name,
                    type(exc).__name__,
                    time.monotonic() - t0,
                    exc,
                )
                raise
            except Exception as exc:
                logger.error(
                    "TOOL %s crashed after %.2fs:\n%s",
                    name,
                    time.monotonic() - t0,
                    traceback.format_exc(),
                )
                raise BibvaultError(
                    f"Internal error in {name}: {type(exc).__name__}: {exc}. "
                    f"Details are in bibvault.log in the library folder."
                ) from exc
            logger.info("TOOL %s completed in %.2fs", name, time.monotonic() - t0)
            return result

        return decorator(logged)

    return wrapper


mcp_server.tool = _logging_tool  # type: ignore[assignment]


# ---------------------------------------------------------------------------
# Library root, resolved from runtime override or BIBVAULT_LIBRARY
# ---------------------------------------------------------------------------

_runtime_root: Path | None = None
_opened: set[Path] = set()


def _library_root() -> Path:
    if _runtime_root is not None:
        return _runtime_root
    root = os.environ.get("BIBVAULT_LIBRARY")
    if root:
        return Path(root).expanduser()
    raise LibraryNotSet()


def _catalog() -> SqliteCatalog:
    """Open the library catalog, migrating the library the first time it is seen."""
    root = _library_root()
    catalog = SqliteCatalog(bv_paths.catalog_path(root))
    if root in _opened:
        return catalog

    _attach_file_log(root)
    bv_paths.ensure_library_dirs(root)
    catalog.init()
    if needs_migration(catalog):
        result = migrate_library(catalog, root)
        logger.info(
            "Startup migration: %d migrated, %d skipped, %d errors",
            result.migrated,
            result.skipped,
            len(result.errors),
        )
        for err in result.errors:
            logger.warning("Migration error: %s", err)
    _opened.add(root)
    return catalog


def _dumps(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _parse_role(role: str) -> FileRole:
    try:
        return FileRole(role)
    except ValueError:
        valid = ", ".join(r.value for r in FileRole)
        raise BibvaultError(f"Unknown file role '{role}'. Valid roles: {valid}.") from None


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


@mcp_server.tool()
def library_status() -> str:
    """Schema version, migration state and store size of the library."""
    catalog = _catalog()
    root = _library_root()
    store = BlobStore(bv_paths.files_dir(root))
    return _dumps(
        {
            "library": str(root),
            "schema_version": catalog.get_schema_version(),
            "needs_migration": needs_migration(catalog),
            "file_records": catalog.count_paper_files(),
            "blobs": sum(1 for _ in store.iter_blobs()),
            "shards": len(store.shard_dirs()),
        }
    )


@mcp_server.tool()
def migrate() -> str:
    """Run the legacy-layout migration (no-op once the library is migrated)."""
    catalog = _catalog()
    result = migrate_library(catalog, _library_root())
    return _dumps(result.as_dict())


@mcp_server.tool()
def add_file(
    paper_id: int,
    path: str,
    role: str = "other",
    source_type: str = "",
    source_url: str = "",
) -> str:
    """Copy a file into the store and attach it to a paper.

    Args:
        paper_id: Catalog id of the paper.
        path: Path of the file to add (left in place).
        role: pdf, supplement, data, figure or other.
        source_type: arxiv, publisher, ads_scan or manual (PDFs).
        source_url: Where the file was downloaded from, if anywhere.
    """
    catalog = _catalog()
    paper = catalog.get_paper_by_id(paper_id)
    manager = FileManager(catalog, _library_root())
    record = manager.add_file(
        paper_id,
        Path(path).expanduser(),
        role=_parse_role(role),
        source_type=source_type or None,
        source_url=source_url or None,
        bibcode=paper.bibcode if paper else None,
    )
    return _dumps(record.to_dict())


@mcp_server.tool()
def list_files(paper_id: int, role: str = "") -> str:
    """List the files attached to a paper, with the primary PDF marked."""
    catalog = _catalog()
    manager = FileManager(catalog, _library_root())
    files = manager.files_for_paper(paper_id, role=role or None)
    primary = manager.primary_pdf(paper_id)
    rows = []
    for f in files:
        d = f.to_dict()
        d["primary"] = primary is not None and f.id == primary.id
        path = manager.file_path(f.id)
        d["path"] = str(path) if path else None
        rows.append(d)
    return _dumps({"paper_id": paper_id, "count": len(rows), "files": rows})


@mcp_server.tool()
def set_primary(paper_id: int, file_id: int) -> str:
    """Make one of a paper's PDFs the one opened by default."""
    manager = FileManager(_catalog(), _library_root())
    record = manager.set_primary_pdf(paper_id, file_id)
    return _dumps(record.to_dict())


@mcp_server.tool()
def remove_file(file_id: int) -> str:
    """Detach a file; its blob is deleted when no other paper uses it."""
    manager = FileManager(_catalog(), _library_root())
    manager.remove_file(file_id)
    return _dumps({"removed": file_id})


@mcp_server.tool()
def verify(rehash: bool = False) -> str:
    """Check catalog, blobs and aliases for consistency. rehash=True re-digests every blob."""
    report = verify_library(_catalog(), _library_root(), rehash=rehash)
    return _dumps(report.to_dict())


@mcp_server.tool()
def cleanup() -> str:
    """Delete blobs that no catalog row references."""
    root = _library_root()
    manager = FileManager(_catalog(), root)
    result = manager.cleanup_orphaned_blobs(lock_timeout=load_config(root).lock_timeout)
    return _dumps({"removed": result.removed, "errors": result.errors})


@mcp_server.tool()
def relink() -> str:
    """Rebuild every papers/<bibcode>/ alias from the catalog."""
    root = _library_root()
    catalog = _catalog()
    result = links.regenerate_links(catalog, root, lock_timeout=load_config(root).lock_timeout)
    return _dumps({"linked": result.linked, "missing": result.missing, "errors": result.errors})


def main():
    """Run the bibvault MCP server."""
    root = os.environ.get("BIBVAULT_LIBRARY")
    if root:
        try:
            _attach_file_log(Path(root).expanduser())
        except OSError:
            logger.warning("Could not attach file log in %s", root)

    try:
        mcp_server.run("stdio")
    except KeyboardInterrupt:
        logger.info("bibvault server stopped (keyboard interrupt)")
    except Exception:
        logger.critical("bibvault server crashed:\n%s", traceback.format_exc())
        raise


if __name__ == "__main__":
    main()
