"""Shared test fixtures for bibvault."""

from pathlib import Path

import pytest

from bibvault.catalog import SqliteCatalog
from bibvault.paths import catalog_path, papers_dir


@pytest.fixture
def library(tmp_path: Path) -> Path:
    """Empty library folder with a legacy papers/ directory."""
    root = tmp_path / "library"
    papers_dir(root).mkdir(parents=True)
    return root


@pytest.fixture
def catalog(library: Path) -> SqliteCatalog:
    """Initialized catalog with two papers (ids 1 and 2)."""
    cat = SqliteCatalog(catalog_path(library))
    cat.init()
    cat.add_paper("2019ApJ...871..133S", "Stellar winds at high redshift")
    cat.add_paper("2021MNRAS.500.1234K", "A catalogue of nearby galaxies")
    return cat


@pytest.fixture
def write_legacy(library: Path):
    """Return a helper that drops a legacy file directly into papers/."""

    def _write(name: str, data: bytes) -> Path:
        p = papers_dir(library) / name
        p.write_bytes(data)
        return p

    return _write
