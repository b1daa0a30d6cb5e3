"""Exception hierarchy for bibvault.

Every error message includes: what happened, why, and what to do next.
Hosts surface these strings to users verbatim, so they must stand alone.
"""


class BibvaultError(Exception):
    """Base class for all bibvault errors."""


class InvalidDigest(BibvaultError):
    """A value used as a blob address is not a SHA-256 hex digest."""

    def __init__(self, value: str):
        super().__init__(
            f"'{value}' is not a valid content digest. "
            f"Digests are 64 lowercase hex characters (SHA-256). "
            f"Compute one with checksum.sha256_file() instead of building it by hand."
        )
        self.value = value


class BlobConflict(BibvaultError):
    """A blob already stored under a digest does not match the incoming file."""

    def __init__(self, digest: str, existing_size: int, incoming_size: int):
        super().__init__(
            f"Blob {digest[:12]}… already exists with {existing_size} bytes but the "
            f"incoming file has {incoming_size} bytes. "
            f"The stored copy may be corrupt. The source file was kept; "
            f"run verify with rehash to check the store."
        )
        self.digest = digest
        self.existing_size = existing_size
        self.incoming_size = incoming_size


class AssociationConflict(BibvaultError):
    """Catalog already links a paper to this digest under a different stored name."""

    def __init__(self, paper_id: int, digest: str, recorded: str, computed: str):
        super().__init__(
            f"Paper {paper_id} already has a file for digest {digest[:12]}… recorded as "
            f"'{recorded}', but migration computed '{computed}'. "
            f"The existing row was left untouched. Inspect it with list_files and "
            f"remove the stale row if it is wrong."
        )
        self.paper_id = paper_id
        self.digest = digest
        self.recorded = recorded
        self.computed = computed


class LegacyScanError(BibvaultError):
    """The legacy papers/ directory could not be listed."""

    def __init__(self, path: str, detail: str):
        super().__init__(
            f"Could not read legacy directory '{path}': {detail}. "
            f"Check permissions on the library folder. "
            f"Migration will retry this directory on the next start."
        )
        self.path = path
        self.detail = detail


class PaperNotFound(BibvaultError):
    """Paper id not in the catalog."""

    def __init__(self, paper_id: int | str):
        super().__init__(
            f"No paper with id {paper_id!r} in the catalog. "
            f"Add the paper first, then attach files to it."
        )
        self.paper_id = paper_id


class FileNotInCatalog(BibvaultError):
    """File record id not in the catalog."""

    def __init__(self, file_id: int, paper_id: int | None = None):
        if paper_id is None:
            what = f"No file record with id {file_id} in the catalog."
        else:
            what = f"File {file_id} is not a PDF of paper {paper_id}."
        super().__init__(f"{what} Use list_files to see the files attached to a paper.")
        self.file_id = file_id
        self.paper_id = paper_id


class SourceFileMissing(BibvaultError):
    """The file a caller asked to store does not exist."""

    def __init__(self, path: str):
        super().__init__(
            f"Source file not found: '{path}'. "
            f"Check the path; nothing was added to the library."
        )
        self.path = path


class ConfigError(BibvaultError):
    """Library configuration is invalid."""

    def __init__(self, detail: str, hint: str = ""):
        msg = f"Configuration error: {detail}."
        if hint:
            msg += f" {hint}"
        super().__init__(msg)
        self.detail = detail
        self.hint = hint


class LibraryNotSet(ConfigError):
    """No library root configured for the server."""

    def __init__(self):
        super().__init__(
            "No library folder configured",
            hint="Set the BIBVAULT_LIBRARY environment variable to the library folder.",
        )
