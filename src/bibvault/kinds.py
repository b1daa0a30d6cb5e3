"""Closed vocabularies for stored files: legacy tags, sources, roles, MIME types.

Every lookup here is over a finite set with an explicit default, so an
unexpected tag or extension degrades to a generic value instead of raising.
"""

from __future__ import annotations

from enum import Enum


class SourceType(Enum):
    """Where a file came from."""

    ARXIV = "arxiv"
    PUBLISHER = "publisher"
    ADS_SCAN = "ads_scan"
    MANUAL = "manual"


class SourceTag(Enum):
    """Suffix tag used by the legacy ``<bibcode>_<TAG>.<ext>`` file names."""

    EPRINT_PDF = "EPRINT_PDF"
    PUB_PDF = "PUB_PDF"
    ADS_PDF = "ADS_PDF"
    ATTACHED = "ATTACHED"

    @property
    def source_type(self) -> SourceType:
        return _TAG_SOURCES[self]


_TAG_SOURCES: dict[SourceTag, SourceType] = {
    SourceTag.EPRINT_PDF: SourceType.ARXIV,
    SourceTag.PUB_PDF: SourceType.PUBLISHER,
    SourceTag.ADS_PDF: SourceType.ADS_SCAN,
    SourceTag.ATTACHED: SourceType.MANUAL,
}


class FileRole(Enum):
    """What a stored file is for, relative to its paper."""

    PDF = "pdf"
    SUPPLEMENT = "supplement"
    DATA = "data"
    FIGURE = "figure"
    OTHER = "other"


class FileStatus(Enum):
    """Availability of a stored file (download states come from the host)."""

    PENDING = "pending"
    QUEUED = "queued"
    DOWNLOADING = "downloading"
    READY = "ready"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


# Best first. Used to pick the PDF a reader opens by default.
SOURCE_PRIORITY: tuple[SourceType, ...] = (
    SourceType.PUBLISHER,
    SourceType.ARXIV,
    SourceType.ADS_SCAN,
    SourceType.MANUAL,
)

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".json": "application/json",
    ".xml": "application/xml",
    ".html": "text/html",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".fits": "application/fits",
    ".hdf5": "application/x-hdf5",
    ".h5": "application/x-hdf5",
    ".tar": "application/x-tar",
    ".gz": "application/gzip",
    ".zip": "application/zip",
}

DATA_EXTENSIONS = frozenset({".csv", ".fits", ".json", ".xml"})


def normalize_extension(ext: str) -> str:
    """Lowercase an extension and make sure it starts with a dot ('' stays '')."""
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


def mime_type_for(ext: str) -> str:
    """MIME type for a file extension; unknown extensions are octet-stream."""
    return MIME_TYPES.get(normalize_extension(ext), DEFAULT_MIME_TYPE)


def attachment_role(ext: str, file_type: str | None = None) -> FileRole:
    """Role of a legacy attachment, judged by its extension.

    The legacy ``file_type`` column only ever distinguished PDFs, so it is
    consulted for that case alone.
    """
    ext = normalize_extension(ext)
    if ext == ".pdf" or (file_type or "").lower() == "pdf":
        return FileRole.SUPPLEMENT
    if ext in DATA_EXTENSIONS:
        return FileRole.DATA
    return FileRole.OTHER


def source_rank(source_type: str | None) -> int:
    """Position of a source in SOURCE_PRIORITY; unknown or missing sorts last."""
    for i, st in enumerate(SOURCE_PRIORITY):
        if st.value == source_type:
            return i
    return len(SOURCE_PRIORITY)
