"""Metadata repository: the catalog that links papers to stored blobs.

The storage core only talks to the ``MetadataRepository`` protocol. This
module also provides ``SqliteCatalog``, the implementation used by the
server and the test suite: one SQLite file (``library.sqlite``) holding

  papers        catalog records (bibcode → id)
  paper_files   FileAssociation rows, unique per (paper_id, digest)
  attachments   the legacy attachments table consumed by migration
  metadata      key/value pairs, including schema_version
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Libraries that predate the metadata table are version 1.
DEFAULT_SCHEMA_VERSION = 1


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaperRecord:
    """A catalog record that files can be attached to."""

    id: int
    bibcode: str | None
    title: str = ""


@dataclass
class NewFile:
    """Attributes for a FileAssociation about to be inserted."""

    digest: str | None
    stored_filename: str  # <digest><ext>
    original_name: str
    mime_type: str
    byte_size: int
    role: str
    source_type: str | None = None
    source_url: str | None = None
    added_date: str = ""
    status: str = "ready"


@dataclass(frozen=True)
class FileAssociation:
    """A paper_files row: one paper linked to one blob."""

    id: int
    paper_id: int
    digest: str | None
    stored_filename: str
    original_name: str | None
    mime_type: str
    byte_size: int
    role: str
    source_type: str | None
    source_url: str | None
    added_date: str
    status: str
    error_message: str | None = None
    is_primary: int = 0

    @property
    def extension(self) -> str:
        if self.digest and self.stored_filename.startswith(self.digest):
            return self.stored_filename[len(self.digest) :]
        return Path(self.stored_filename).suffix

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AttachmentRow:
    """A row of the legacy attachments table."""

    id: int
    paper_id: int
    filename: str
    original_name: str | None
    file_type: str | None
    added_date: str | None


class MetadataRepository(Protocol):
    """What the storage core needs from a catalog."""

    def get_paper_by_bibcode(self, bibcode: str) -> PaperRecord | None: ...

    def get_paper_by_id(self, paper_id: int) -> PaperRecord | None: ...

    def get_file_by_hash(self, digest: str) -> list[FileAssociation]: ...

    def add_paper_file(self, paper_id: int, record: NewFile) -> int: ...

    def get_all_attachments(self) -> list[AttachmentRow]: ...

    def get_schema_version(self) -> int: ...

    def set_schema_version(self, version: int) -> None: ...


# ---------------------------------------------------------------------------
# SQLite implementation
# ---------------------------------------------------------------------------

_SCHEMA = """
CREATE TABLE IF NOT EXISTS papers (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    bibcode     TEXT UNIQUE,
    title       TEXT NOT NULL DEFAULT '',
    added_date  TEXT
);

CREATE TABLE IF NOT EXISTS paper_files (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    paper_id        INTEGER NOT NULL REFERENCES papers(id) ON DELETE CASCADE,
    digest          TEXT,
    stored_filename TEXT NOT NULL,
    original_name   TEXT,
    mime_type       TEXT NOT NULL,
    byte_size       INTEGER DEFAULT 0,
    role            TEXT NOT NULL,
    source_type     TEXT,
    source_url      TEXT,
    added_date      TEXT NOT NULL,
    status          TEXT DEFAULT 'ready',
    error_message   TEXT,
    is_primary      INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_paper_files_paper ON paper_files(paper_id);
CREATE INDEX IF NOT EXISTS idx_paper_files_digest ON paper_files(digest);
CREATE INDEX IF NOT EXISTS idx_paper_files_status ON paper_files(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_paper_files_owner_digest
    ON paper_files(paper_id, digest) WHERE digest IS NOT NULL;

CREATE TABLE IF NOT EXISTS attachments (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    paper_id      INTEGER NOT NULL,
    filename      TEXT NOT NULL,
    original_name TEXT,
    file_type     TEXT,
    added_date    TEXT
);

CREATE TABLE IF NOT EXISTS metadata (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

# Columns update_paper_file() may touch.
_UPDATABLE = frozenset(
    {
        "digest",
        "stored_filename",
        "original_name",
        "mime_type",
        "byte_size",
        "role",
        "source_type",
        "source_url",
        "status",
        "error_message",
    }
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _paper(row: sqlite3.Row) -> PaperRecord:
    return PaperRecord(id=row["id"], bibcode=row["bibcode"], title=row["title"] or "")


def _association(row: sqlite3.Row) -> FileAssociation:
    return FileAssociation(**{k: row[k] for k in row.keys()})


def _attachment(row: sqlite3.Row) -> AttachmentRow:
    return AttachmentRow(**{k: row[k] for k in row.keys()})


class SqliteCatalog:
    """``MetadataRepository`` backed by ``library.sqlite``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        """Connection that commits on success and rolls back on error."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path))
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init(self) -> None:
        """Create tables if they don't exist, adding columns older catalogs lack."""
        with self._db() as conn:
            conn.executescript(_SCHEMA)
            columns = {r["name"] for r in conn.execute("PRAGMA table_info(paper_files)")}
            if "is_primary" not in columns:
                conn.execute(
                    "ALTER TABLE paper_files ADD COLUMN is_primary INTEGER NOT NULL DEFAULT 0"
                )

    # -- schema version ----------------------------------------------------

    def get_schema_version(self) -> int:
        with self._db() as conn:
            row = conn.execute(
                "SELECT value FROM metadata WHERE key = 'schema_version'"
            ).fetchone()
        if row is None:
            return DEFAULT_SCHEMA_VERSION
        try:
            return int(row["value"])
        except (TypeError, ValueError):
            logger.warning(
                "Unreadable schema_version %r, assuming %d", row["value"], DEFAULT_SCHEMA_VERSION
            )
            return DEFAULT_SCHEMA_VERSION

    def set_schema_version(self, version: int) -> None:
        """Persist the schema version. Never moves it backwards."""
        current = self.get_schema_version()
        if version < current:
            logger.warning("Refusing to lower schema_version from %d to %d", current, version)
            return
        with self._db() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
                (str(version),),
            )

    # -- papers ------------------------------------------------------------

    def add_paper(self, bibcode: str | None, title: str = "") -> int:
        with self._db() as conn:
            cursor = conn.execute(
                "INSERT INTO papers (bibcode, title, added_date) VALUES (?, ?, ?)",
                (bibcode, title, _now()),
            )
            return int(cursor.lastrowid)

    def get_paper_by_bibcode(self, bibcode: str) -> PaperRecord | None:
        with self._db() as conn:
            row = conn.execute("SELECT * FROM papers WHERE bibcode = ?", (bibcode,)).fetchone()
        return _paper(row) if row else None

    def get_paper_by_id(self, paper_id: int) -> PaperRecord | None:
        with self._db() as conn:
            row = conn.execute("SELECT * FROM papers WHERE id = ?", (paper_id,)).fetchone()
        return _paper(row) if row else None

    # -- paper files -------------------------------------------------------

    def add_paper_file(self, paper_id: int, record: NewFile) -> int:
        """Insert a FileAssociation and return its id.

        If the paper already has a row for this digest, nothing is inserted
        and the existing row's id is returned.
        """
        with self._db() as conn:
            cursor = conn.execute(
                """
                INSERT INTO paper_files (
                    paper_id, digest, stored_filename, original_name, mime_type,
                    byte_size, role, source_type, source_url, added_date, status
                ) VALUES (
                    :paper_id, :digest, :stored_filename, :original_name, :mime_type,
                    :byte_size, :role, :source_type, :source_url, :added_date, :status
                )
                ON CONFLICT(paper_id, digest) WHERE digest IS NOT NULL DO NOTHING
                """,
                {
                    "paper_id": paper_id,
                    "digest": record.digest,
                    "stored_filename": record.stored_filename,
                    "original_name": record.original_name or record.stored_filename,
                    "mime_type": record.mime_type,
                    "byte_size": record.byte_size,
                    "role": record.role,
                    "source_type": record.source_type,
                    "source_url": record.source_url,
                    "added_date": record.added_date or _now(),
                    "status": record.status,
                },
            )
            if cursor.rowcount:
                return int(cursor.lastrowid)
            row = conn.execute(
                "SELECT id FROM paper_files WHERE paper_id = ? AND digest = ?",
                (paper_id, record.digest),
            ).fetchone()
            return int(row["id"])

    def get_file_by_hash(self, digest: str) -> list[FileAssociation]:
        with self._db() as conn:
            rows = conn.execute(
                "SELECT * FROM paper_files WHERE digest = ? ORDER BY id", (digest,)
            ).fetchall()
        return [_association(r) for r in rows]

    def get_paper_file(self, file_id: int) -> FileAssociation | None:
        with self._db() as conn:
            row = conn.execute("SELECT * FROM paper_files WHERE id = ?", (file_id,)).fetchone()
        return _association(row) if row else None

    def get_paper_files(
        self,
        paper_id: int,
        role: str | None = None,
        status: str | None = None,
        source_type: str | None = None,
    ) -> list[FileAssociation]:
        """Files attached to a paper, newest first, optionally filtered."""
        query = "SELECT * FROM paper_files WHERE paper_id = ?"
        params: list[Any] = [paper_id]
        if role:
            query += " AND role = ?"
            params.append(role)
        if status:
            query += " AND status = ?"
            params.append(status)
        if source_type:
            query += " AND source_type = ?"
            params.append(source_type)
        query += " ORDER BY added_date DESC, id DESC"
        with self._db() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_association(r) for r in rows]

    def all_paper_files(self) -> list[tuple[FileAssociation, PaperRecord]]:
        """Every file row joined with its paper, in id order."""
        with self._db() as conn:
            rows = conn.execute(
                """
                SELECT pf.*, p.bibcode AS p_bibcode, p.title AS p_title
                FROM paper_files pf JOIN papers p ON pf.paper_id = p.id
                ORDER BY pf.id
                """
            ).fetchall()
        result = []
        for r in rows:
            data = {k: r[k] for k in r.keys() if not k.startswith("p_")}
            paper = PaperRecord(id=r["paper_id"], bibcode=r["p_bibcode"], title=r["p_title"] or "")
            result.append((FileAssociation(**data), paper))
        return result

    def update_paper_file(self, file_id: int, **fields: Any) -> bool:
        """Update whitelisted columns of a file row. Unknown keys are ignored."""
        updates = {k: v for k, v in fields.items() if k in _UPDATABLE}
        if not updates:
            return False
        assignments = ", ".join(f"{k} = :{k}" for k in updates)
        with self._db() as conn:
            cursor = conn.execute(
                f"UPDATE paper_files SET {assignments} WHERE id = :id",
                {**updates, "id": file_id},
            )
            return cursor.rowcount > 0

    def set_primary_file(self, paper_id: int, file_id: int) -> bool:
        """Flag *file_id* as the paper's primary file and clear the flag on the rest."""
        with self._db() as conn:
            conn.execute("UPDATE paper_files SET is_primary = 0 WHERE paper_id = ?", (paper_id,))
            cursor = conn.execute(
                "UPDATE paper_files SET is_primary = 1 WHERE id = ? AND paper_id = ?",
                (file_id, paper_id),
            )
            return cursor.rowcount > 0

    def delete_paper_file(self, file_id: int) -> bool:
        with self._db() as conn:
            cursor = conn.execute("DELETE FROM paper_files WHERE id = ?", (file_id,))
            return cursor.rowcount > 0

    def count_paper_files(self) -> int:
        with self._db() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM paper_files").fetchone()[0])

    # -- legacy attachments ------------------------------------------------

    def add_attachment(
        self,
        paper_id: int,
        filename: str,
        original_name: str | None = None,
        file_type: str | None = None,
        added_date: str | None = None,
    ) -> int:
        with self._db() as conn:
            cursor = conn.execute(
                "INSERT INTO attachments "
                "(paper_id, filename, original_name, file_type, added_date) "
                "VALUES (?, ?, ?, ?, ?)",
                (paper_id, filename, original_name, file_type, added_date),
            )
            return int(cursor.lastrowid)

    def get_all_attachments(self) -> list[AttachmentRow]:
        with self._db() as conn:
            rows = conn.execute("SELECT * FROM attachments ORDER BY id").fetchall()
        return [_attachment(r) for r in rows]
