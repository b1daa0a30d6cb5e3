"""Tests for bibvault.shard: digest → (prefix, filename)."""

import pytest

from bibvault.checksum import sha256_bytes
from bibvault.errors import InvalidDigest
from bibvault.shard import digest_from_filename, shard_path, shard_prefix

DIGEST = sha256_bytes(b"some paper")


class TestShardPath:
    def test_prefix_is_first_two_chars(self):
        prefix, _ = shard_path(DIGEST, ".pdf")
        assert prefix == DIGEST[:2]

    def test_filename_is_digest_plus_extension(self):
        _, filename = shard_path(DIGEST, ".pdf")
        assert filename == f"{DIGEST}.pdf"

    def test_extension_lowercased(self):
        assert shard_path(DIGEST, ".PDF") == shard_path(DIGEST, ".pdf")

    def test_no_extension(self):
        assert shard_path(DIGEST, "") == (DIGEST[:2], DIGEST)

    def test_deterministic(self):
        assert shard_path(DIGEST, ".csv") == shard_path(DIGEST, ".csv")

    @pytest.mark.parametrize(
        "bad", ["", "abc", DIGEST.upper(), DIGEST[:-1] + "z", "../" + DIGEST[3:]]
    )
    def test_invalid_digest(self, bad):
        with pytest.raises(InvalidDigest):
            shard_path(bad, ".pdf")

    def test_bounded_fanout(self):
        prefixes = {shard_prefix(sha256_bytes(str(i).encode())) for i in range(5000)}
        assert len(prefixes) <= 256
        assert all(len(p) == 2 for p in prefixes)


class TestDigestFromFilename:
    def test_roundtrip(self):
        _, name = shard_path(DIGEST, ".fits")
        assert digest_from_filename(name) == DIGEST

    def test_bare_digest(self):
        assert digest_from_filename(DIGEST) == DIGEST

    def test_not_a_blob(self):
        assert digest_from_filename("arxiv.pdf") is None

    def test_trailing_garbage(self):
        assert digest_from_filename(DIGEST + "x.pdf") is None
