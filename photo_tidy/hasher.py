"""Chunked content hashing of media files."""

import hashlib
import os
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union
import logging

from .progress import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4 * 1024 * 1024


@dataclass(frozen=True)
class FileDigest:
    """Strong and legacy digests of one file."""
    content_hash: str
    legacy_hash: Optional[str]
    size: int


def hash_file(file_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE, legacy: bool = True) -> FileDigest:
    """
    Calculate the SHA256 content hash (and MD5 legacy hash) of a file.

    Both digests are fed from the same bounded chunks, so peak memory is one
    chunk regardless of file size.

    Args:
        file_path: Path to file
        chunk_size: Size of chunks to read at a time
        legacy: Whether to also compute the legacy MD5 hash

    Returns:
        FileDigest with hex digests and the number of bytes read

    Raises:
        OSError: If the file cannot be opened or fully read
    """
    content = hashlib.sha256()
    legacy_hasher = hashlib.md5() if legacy else None
    read_bytes = 0

    with open(file_path, 'rb') as f:
        expected = os.fstat(f.fileno()).st_size
        while chunk := f.read(chunk_size):
            content.update(chunk)
            if legacy_hasher is not None:
                legacy_hasher.update(chunk)
            read_bytes += len(chunk)

    if read_bytes < expected:
        raise OSError(f"Short read on {file_path}: got {read_bytes} of {expected} bytes")

    return FileDigest(
        content_hash=content.hexdigest(),
        legacy_hash=legacy_hasher.hexdigest() if legacy_hasher is not None else None,
        size=read_bytes,
    )


def calculate_sha256(file_path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """SHA256 of a file as a hex string. Raises OSError on read failure."""
    return hash_file(file_path, chunk_size, legacy=False).content_hash


HashOutcome = Tuple[Path, Union[FileDigest, OSError]]


def hash_files(
    paths: Iterable[Path],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    legacy: bool = True,
    max_workers: int = 4,
    cancel: Optional[CancellationToken] = None,
) -> Iterator[HashOutcome]:
    """
    Hash independent files on a bounded thread pool.

    At most ``max_workers`` files are in flight, so cancellation takes effect
    after the files already being read complete.

    Args:
        paths: Files to hash
        chunk_size: Read chunk size
        legacy: Whether to compute the legacy hash as well
        max_workers: Upper bound on concurrently hashed files
        cancel: Optional cancellation token checked before each submission

    Yields:
        (path, FileDigest) on success or (path, OSError) on failure, in
        completion order
    """
    pending_paths = iter(paths)
    workers = max(1, max_workers)

    with ThreadPoolExecutor(max_workers=workers) as executor:
        in_flight: Dict[Future, Path] = {}

        def _submit_next() -> bool:
            if cancel is not None and cancel.is_cancelled:
                return False
            path = next(pending_paths, None)
            if path is None:
                return False
            in_flight[executor.submit(hash_file, path, chunk_size, legacy)] = path
            return True

        for _ in range(workers):
            if not _submit_next():
                break

        while in_flight:
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                path = in_flight.pop(future)
                try:
                    outcome = future.result()
                except OSError as e:
                    logger.error(f"Failed to calculate hash for {path}: {e}")
                    outcome = e
                yield path, outcome
                _submit_next()
