"""Tests for bibvault.files: FileManager operations on a migrated library."""

from pathlib import Path

import pytest

from bibvault.catalog import NewFile
from bibvault.checksum import sha256_bytes
from bibvault.errors import (
    AssociationConflict,
    FileNotInCatalog,
    PaperNotFound,
    SourceFileMissing,
)
from bibvault.files import FileManager
from bibvault.kinds import FileRole, FileStatus
from bibvault.paths import files_dir, papers_dir


@pytest.fixture
def manager(library, catalog) -> FileManager:
    return FileManager(catalog, library)


def _incoming(tmp_path: Path, name: str, data: bytes) -> Path:
    src = tmp_path / "incoming" / name
    src.parent.mkdir(exist_ok=True)
    src.write_bytes(data)
    return src


class TestAddFile:
    def test_copies_and_records(self, manager, library, tmp_path):
        src = _incoming(tmp_path, "Table 2.CSV", b"ra,dec\n")
        digest = sha256_bytes(b"ra,dec\n")

        record = manager.add_file(1, src, role=FileRole.DATA, source_type="manual")

        assert src.exists()
        assert record.paper_id == 1
        assert record.stored_filename == f"{digest}.csv"
        assert record.original_name == "Table 2.CSV"
        assert record.mime_type == "text/csv"
        assert record.role == "data"
        assert record.byte_size == 7
        assert (files_dir(library) / digest[:2] / f"{digest}.csv").read_bytes() == b"ra,dec\n"

    def test_no_extension_gets_fallback(self, manager, tmp_path):
        record = manager.add_file(1, _incoming(tmp_path, "README", b"hi"))
        assert record.stored_filename.endswith(".bin")
        assert record.mime_type == "application/octet-stream"

    def test_same_content_twice_returns_existing(self, manager, tmp_path):
        first = manager.add_file(1, _incoming(tmp_path, "a.pdf", b"%PDF same"))
        second = manager.add_file(1, _incoming(tmp_path, "b.pdf", b"%PDF same"))
        assert second.id == first.id
        assert len(manager.files_for_paper(1)) == 1

    def test_alias_when_bibcode_given(self, manager, library, tmp_path):
        src = _incoming(tmp_path, "paper.pdf", b"%PDF publisher")
        manager.add_file(
            1,
            src,
            role=FileRole.PDF,
            source_type="publisher",
            bibcode="2019ApJ...871..133S",
        )
        alias = papers_dir(library) / "2019ApJ...871..133S" / "publisher.pdf"
        assert alias.is_symlink()
        assert alias.read_bytes() == b"%PDF publisher"

    def test_same_bytes_other_extension_reuse_blob(self, manager, library, tmp_path):
        first = manager.add_file(1, _incoming(tmp_path, "paper.pdf", b"%PDF shared"))
        second = manager.add_file(2, _incoming(tmp_path, "copy.dat", b"%PDF shared"))

        blobs = [p for p in files_dir(library).rglob("*") if p.is_file()]
        assert [p.name for p in blobs] == [first.stored_filename]
        assert second.stored_filename == first.stored_filename
        assert second.original_name == "copy.dat"
        assert second.mime_type == "application/octet-stream"

    def test_conflicting_row_copies_nothing(self, manager, library, catalog, tmp_path):
        digest = sha256_bytes(b"%PDF x")
        catalog.add_paper_file(
            1,
            NewFile(
                digest=digest,
                stored_filename=f"{digest}.bin",
                original_name="x.bin",
                mime_type="application/octet-stream",
                byte_size=6,
                role="other",
            ),
        )
        src = _incoming(tmp_path, "x.pdf", b"%PDF x")

        with pytest.raises(AssociationConflict):
            manager.add_file(1, src)

        assert src.exists()
        assert not any(p.is_file() for p in files_dir(library).rglob("*"))

    def test_missing_source(self, manager, tmp_path):
        with pytest.raises(SourceFileMissing, match="nothing was added"):
            manager.add_file(1, tmp_path / "nope.pdf")

    def test_unknown_paper(self, manager, tmp_path):
        with pytest.raises(PaperNotFound):
            manager.add_file(99, _incoming(tmp_path, "x.pdf", b"x"))


class TestRemoveFile:
    def test_deletes_unshared_blob(self, manager, library, tmp_path):
        record = manager.add_file(1, _incoming(tmp_path, "x.pdf", b"only mine"))
        blob = files_dir(library) / record.digest[:2] / record.stored_filename

        assert manager.remove_file(record.id)
        assert not blob.exists()
        assert manager.files_for_paper(1) == []

    def test_keeps_shared_blob(self, manager, library, tmp_path):
        a = manager.add_file(1, _incoming(tmp_path, "x.pdf", b"shared"))
        manager.add_file(2, _incoming(tmp_path, "y.pdf", b"shared"))
        blob = files_dir(library) / a.digest[:2] / a.stored_filename

        manager.remove_file(a.id)

        assert blob.exists()
        assert len(manager.files_for_paper(2)) == 1

    def test_unknown_id(self, manager):
        with pytest.raises(FileNotInCatalog):
            manager.remove_file(12345)

    def test_same_digest_under_other_name_is_not_shared(self, manager, library, catalog):
        digest = sha256_bytes(b"same bytes")
        shard = files_dir(library) / digest[:2]
        shard.mkdir(parents=True)
        ids = {}
        for paper_id, ext in ((1, ".pdf"), (2, ".csv")):
            (shard / f"{digest}{ext}").write_bytes(b"same bytes")
            ids[ext] = catalog.add_paper_file(
                paper_id,
                NewFile(
                    digest=digest,
                    stored_filename=f"{digest}{ext}",
                    original_name=f"x{ext}",
                    mime_type="application/octet-stream",
                    byte_size=10,
                    role="other",
                ),
            )

        manager.remove_file(ids[".csv"])

        assert not (shard / f"{digest}.csv").exists()
        assert (shard / f"{digest}.pdf").exists()


class TestPrimaryPdf:
    def _add(self, manager, tmp_path, source_type, data):
        return manager.add_file(
            1,
            _incoming(tmp_path, f"{source_type}.pdf", data),
            role=FileRole.PDF,
            source_type=source_type,
        )

    def test_publisher_wins(self, manager, tmp_path):
        self._add(manager, tmp_path, "manual", b"m")
        self._add(manager, tmp_path, "arxiv", b"a")
        pub = self._add(manager, tmp_path, "publisher", b"p")
        assert manager.primary_pdf(1).id == pub.id

    def test_arxiv_over_scan(self, manager, tmp_path):
        self._add(manager, tmp_path, "ads_scan", b"s")
        arxiv = self._add(manager, tmp_path, "arxiv", b"a")
        assert manager.primary_pdf(1).id == arxiv.id

    def test_chosen_pdf_beats_publisher(self, manager, tmp_path):
        pub = self._add(manager, tmp_path, "publisher", b"p")
        arxiv = self._add(manager, tmp_path, "arxiv", b"a")

        chosen = manager.set_primary_pdf(1, arxiv.id)

        assert chosen.is_primary == 1
        assert manager.primary_pdf(1).id == arxiv.id
        assert manager.repo.get_paper_file(pub.id).is_primary == 0

    def test_choosing_again_moves_the_flag(self, manager, tmp_path):
        pub = self._add(manager, tmp_path, "publisher", b"p")
        arxiv = self._add(manager, tmp_path, "arxiv", b"a")
        manager.set_primary_pdf(1, arxiv.id)
        manager.set_primary_pdf(1, pub.id)
        assert [f.id for f in manager.files_for_paper(1) if f.is_primary] == [pub.id]

    def test_set_primary_rejects_non_pdf(self, manager, tmp_path):
        data = manager.add_file(1, _incoming(tmp_path, "t.csv", b"1"), role=FileRole.DATA)
        with pytest.raises(FileNotInCatalog, match="not a PDF of paper 1"):
            manager.set_primary_pdf(1, data.id)

    def test_set_primary_rejects_other_papers_file(self, manager, tmp_path):
        other = manager.add_file(2, _incoming(tmp_path, "o.pdf", b"o"), role=FileRole.PDF)
        with pytest.raises(FileNotInCatalog):
            manager.set_primary_pdf(1, other.id)
        assert manager.repo.get_paper_file(other.id).is_primary == 0

    def test_no_pdfs(self, manager, tmp_path):
        manager.add_file(1, _incoming(tmp_path, "t.csv", b"1"), role=FileRole.DATA)
        assert manager.primary_pdf(1) is None


class TestStatusAndPath:
    def test_set_status_hides_path(self, manager, tmp_path):
        record = manager.add_file(1, _incoming(tmp_path, "x.pdf", b"x"))
        assert manager.file_path(record.id) is not None

        manager.set_status(record.id, FileStatus.ERROR, "download truncated")

        row = manager.repo.get_paper_file(record.id)
        assert row.status == "error"
        assert row.error_message == "download truncated"
        assert manager.file_path(record.id) is None

    def test_set_status_unknown(self, manager):
        with pytest.raises(FileNotInCatalog):
            manager.set_status(777, FileStatus.READY)

    def test_legacy_row_falls_back_to_papers(self, manager, library, catalog, write_legacy):
        write_legacy("old_download.pdf", b"legacy")
        file_id = catalog.add_paper_file(
            1,
            NewFile(
                digest=None,
                stored_filename="old_download.pdf",
                original_name="old_download.pdf",
                mime_type="application/pdf",
                byte_size=6,
                role="pdf",
            ),
        )
        assert manager.file_path(file_id) == papers_dir(library) / "old_download.pdf"


class TestCleanup:
    def test_removes_unreferenced(self, manager, library, tmp_path):
        kept = manager.add_file(1, _incoming(tmp_path, "k.pdf", b"keep"))
        stray_digest = sha256_bytes(b"stray")
        stray = files_dir(library) / stray_digest[:2] / f"{stray_digest}.pdf"
        stray.parent.mkdir(parents=True, exist_ok=True)
        stray.write_bytes(b"stray")

        result = manager.cleanup_orphaned_blobs(lock_timeout=1)

        assert result.removed == [stray.name]
        assert result.errors == []
        assert not stray.exists()
        assert (files_dir(library) / kept.digest[:2] / kept.stored_filename).exists()

    def test_same_digest_other_extension_is_orphan(self, manager, library, tmp_path):
        kept = manager.add_file(1, _incoming(tmp_path, "k.pdf", b"keep"))
        shard = files_dir(library) / kept.digest[:2]
        stray = shard / f"{kept.digest}.csv"
        stray.write_bytes(b"keep")

        result = manager.cleanup_orphaned_blobs(lock_timeout=1)

        assert result.removed == [stray.name]
        assert (shard / kept.stored_filename).exists()

    def test_nothing_to_do(self, manager):
        assert manager.cleanup_orphaned_blobs().removed == []
