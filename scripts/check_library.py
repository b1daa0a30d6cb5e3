#!/usr/bin/env python3
"""Check a library folder for missing, corrupt or orphaned files.

Prints the integrity report and exits non-zero when problems are found.
Nothing is modified.

Usage:
    uv run python scripts/check_library.py LIBRARY [--rehash]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path


def main() -> None:
    parser = argparse.ArgumentParser(description="Check a bibvault library for consistency")
    parser.add_argument("library", type=Path, help="Path to the library folder")
    parser.add_argument(
        "--rehash",
        action="store_true",
        help="Re-digest every blob to detect silent corruption (slow)",
    )
    args = parser.parse_args()

    from bibvault.catalog import SqliteCatalog
    from bibvault.integrity import verify_library
    from bibvault.migrate import needs_migration
    from bibvault.paths import catalog_path

    db = catalog_path(args.library)
    if not db.exists():
        print(f"No {db.name} found in {args.library}", file=sys.stderr)
        sys.exit(1)

    catalog = SqliteCatalog(db)
    print(f"Library:        {args.library}")
    print(f"Schema version: {catalog.get_schema_version()}")
    if needs_migration(catalog):
        print("  ⚠ not migrated yet; start the server once to migrate")
    print()

    report = verify_library(catalog, args.library, rehash=args.rehash)
    print(f"Blobs:   {report.blobs}")
    print(f"Records: {report.records}")
    print()

    sections = [
        ("Missing blobs", report.missing_blobs),
        ("Corrupt blobs", report.corrupt_blobs),
        ("Orphaned blobs", report.orphan_blobs),
        ("Dangling aliases", report.dangling_links),
        ("Legacy files still in papers/", report.legacy_files),
    ]
    for title, items in sections:
        mark = "✓" if not items else "✗"
        print(f"{mark} {title}: {len(items)}")
        for item in items[:20]:
            print(f"    - {item}")
        if len(items) > 20:
            print(f"    … and {len(items) - 20} more")

    sys.exit(0 if report.ok else 2)


if __name__ == "__main__":
    main()
