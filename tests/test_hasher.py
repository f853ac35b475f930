"""Tests for chunked content hashing."""

import hashlib
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from photo_tidy.hasher import FileDigest, calculate_sha256, hash_file, hash_files
from photo_tidy.progress import CancellationToken


class TestHashFile:
    """Test single-file hashing."""

    def test_digests_match_hashlib_across_chunk_boundaries(self, tmp_path):
        content = b'0123456789' * 25
        file_path = tmp_path / 'photo.jpg'
        file_path.write_bytes(content)

        digest = hash_file(file_path, chunk_size=7)

        assert digest.content_hash == hashlib.sha256(content).hexdigest()
        assert digest.legacy_hash == hashlib.md5(content).hexdigest()
        assert digest.size == len(content)

    def test_legacy_hash_skipped_when_disabled(self, tmp_path):
        file_path = tmp_path / 'photo.jpg'
        file_path.write_bytes(b'abc')

        digest = hash_file(file_path, legacy=False)

        assert digest.legacy_hash is None
        assert calculate_sha256(file_path) == digest.content_hash

    def test_empty_file_hashes_to_empty_digest(self, tmp_path):
        file_path = tmp_path / 'empty.jpg'
        file_path.write_bytes(b'')

        assert hash_file(file_path).content_hash == hashlib.sha256(b'').hexdigest()

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            hash_file(tmp_path / 'missing.jpg')

    def test_short_read_raises_instead_of_partial_digest(self, tmp_path):
        """A file shorter than its reported size must not produce a digest."""
        file_path = tmp_path / 'truncated.jpg'
        file_path.write_bytes(b'only a few bytes')

        with patch('photo_tidy.hasher.os.fstat', return_value=MagicMock(st_size=10_000)):
            with pytest.raises(OSError, match='Short read'):
                hash_file(file_path)


class TestHashFiles:
    """Test parallel hashing of many files."""

    def test_every_file_yields_one_result(self, tmp_path):
        paths = []
        for i in range(6):
            file_path = tmp_path / f'{i}.jpg'
            file_path.write_bytes(f'content-{i}'.encode())
            paths.append(file_path)

        results = dict(hash_files(paths, chunk_size=4, max_workers=3))

        assert set(results) == set(paths)
        for file_path, digest in results.items():
            assert isinstance(digest, FileDigest)
            assert digest.content_hash == hashlib.sha256(file_path.read_bytes()).hexdigest()

    def test_failures_are_yielded_not_raised(self, tmp_path):
        good = tmp_path / 'good.jpg'
        good.write_bytes(b'good')
        missing = tmp_path / 'missing.jpg'

        results = dict(hash_files([good, missing], max_workers=2))

        assert isinstance(results[good], FileDigest)
        assert isinstance(results[missing], OSError)

    def test_cancelled_token_stops_submission(self, tmp_path):
        paths = [tmp_path / f'{i}.jpg' for i in range(3)]
        for file_path in paths:
            file_path.write_bytes(b'x')
        token = CancellationToken()
        token.cancel()

        assert list(hash_files(paths, cancel=token)) == []
