"""Library configuration: loads and validates <library>/bibvault.yaml.

The file is optional; a library without one uses the defaults below.
create_default() writes a commented starter file.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from bibvault.checksum import CHUNK_SIZE, sha256_bytes
from bibvault.errors import ConfigError
from bibvault.filelock import DEFAULT_LOCK_TIMEOUT
from bibvault.paths import config_path


@dataclass
class LibraryConfig:
    """Parsed bibvault.yaml."""

    symlinks: bool = True
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    hash_chunk_size: int = CHUNK_SIZE
    sha256: str = ""  # checksum of the raw config file


_DEFAULT_CONFIG = """\
# bibvault library configuration
# All keys are optional. Delete a line to get the default back.

# Create human-readable aliases papers/<bibcode>/<source>.<ext> pointing
# into the content-addressed files/ tree. Aliases are disposable and can
# be rebuilt at any time with the relink tool.
symlinks: true

# Seconds to wait for another process holding the library lock
# (migration, cleanup, relink) before giving up.
lock_timeout: 30

# Read size in bytes used when hashing files.
hash_chunk_size: 65536
"""


def create_default(root: Path) -> Path:
    """Write a starter bibvault.yaml if it doesn't exist. Returns the path."""
    p = config_path(root)
    if not p.exists():
        root.mkdir(parents=True, exist_ok=True)
        p.write_text(_DEFAULT_CONFIG, encoding="utf-8")
    return p


def _positive(data: dict, key: str, kind: type, default: float | int) -> float | int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(
            f"'{key}' must be a number, got {type(value).__name__}",
            hint=f"Fix {key} in bibvault.yaml or delete the line to use the default.",
        )
    if value <= 0:
        raise ConfigError(f"'{key}' must be positive, got {value}")
    return kind(value)


def load_config(root: Path) -> LibraryConfig:
    """Load and validate bibvault.yaml. Returns defaults if the file is missing."""
    p = config_path(root)
    if not p.exists():
        return LibraryConfig()

    raw = p.read_text(encoding="utf-8")
    sha = sha256_bytes(raw.encode("utf-8"))

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {p}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {p}, got {type(data).__name__}")

    symlinks = data.get("symlinks", True)
    if not isinstance(symlinks, bool):
        raise ConfigError(
            f"'symlinks' must be true or false, got {symlinks!r}",
            hint="Use a bare YAML boolean: symlinks: false",
        )

    return LibraryConfig(
        symlinks=symlinks,
        lock_timeout=float(_positive(data, "lock_timeout", float, DEFAULT_LOCK_TIMEOUT)),
        hash_chunk_size=int(_positive(data, "hash_chunk_size", int, CHUNK_SIZE)),
        sha256=sha,
    )
