"""Incremental media scanning into the persisted inventory."""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .config import TidyContext
from .duplicates import count_duplicate_files
from .hasher import FileDigest, hash_files
from .metadata import extract_capture_time
from .models import MediaRecord, ScanSummary
from .progress import (
    STAGE_DIFF,
    STAGE_HASH,
    STAGE_SCAN,
    CancellationToken,
    ProgressEmitter,
)
from .store import INVENTORY, Store
from .utils import find_media_files, format_bytes, to_posix_string

logger = logging.getLogger(__name__)

UPSERT_BATCH_SIZE = 200


class MediaScanner:
    """Walks the image root and keeps the inventory in step with it.

    Only files whose ``(size, mtime)`` fingerprint changed since the last scan
    are hashed again.
    """

    def __init__(self, context: TidyContext, store: Store, emitter: Optional[ProgressEmitter] = None):
        """
        Initialize scanner.

        Args:
            context: Resolved settings
            store: Persistence for the inventory
            emitter: Optional progress emitter
        """
        self.context = context
        self.store = store
        self.emitter = emitter or ProgressEmitter()
        self.image_root = Path(context.image_root).absolute()

    def scan(self, reindex: bool = False, cancel: Optional[CancellationToken] = None) -> ScanSummary:
        """
        Inventory every media file under the image root.

        Args:
            reindex: Clear the inventory first and rehash every file
            cancel: Optional cancellation token

        Returns:
            ScanSummary; ``cancelled`` is set when the token fired mid-run
        """
        cancel = cancel or CancellationToken()
        summary = ScanSummary()

        with self.store.exclusive(INVENTORY):
            if reindex:
                logger.info("Re-index requested, clearing inventory")
                self.store.clear_inventory()

            logger.info(f"Scanning {self.image_root}")
            files = self._enumerate(cancel)
            summary.total_files = len(files)
            if cancel.is_cancelled:
                summary.cancelled = True
                return summary

            inventory = self.store.inventory_by_path()
            to_hash = self._diff(files, inventory, summary, cancel)
            if cancel.is_cancelled:
                summary.cancelled = True
                return summary

            self._hash(to_hash, summary, cancel)
            if cancel.is_cancelled:
                summary.cancelled = True
                logger.warning(f"Scan cancelled after hashing {summary.hashed_files} files")
                return summary

            seen = {to_posix_string(path) for path in files}
            summary.removed_files = self._prune(inventory, seen)

        records = self.store.inventory_snapshot()
        summary.duplicate_files = count_duplicate_files(records)

        logger.info(
            f"Scan complete: {summary.total_files} files, {summary.hashed_files} hashed, "
            f"{summary.skipped_files} unchanged, {summary.failed_files} failed, "
            f"{summary.removed_files} removed, {summary.duplicate_files} duplicates"
        )
        return summary

    def _enumerate(self, cancel: CancellationToken) -> List[Path]:
        files: List[Path] = []
        for file_path in find_media_files(self.image_root, self.context.extensions):
            if cancel.is_cancelled:
                break
            files.append(file_path)
            if len(files) % 100 == 0:
                self.emitter.emit(STAGE_SCAN, len(files), 0, to_posix_string(file_path))

        self.emitter.emit(STAGE_SCAN, len(files), len(files))
        logger.info(f"Found {len(files)} media files")
        return files

    def _diff(
        self,
        files: List[Path],
        inventory: Dict[str, MediaRecord],
        summary: ScanSummary,
        cancel: CancellationToken,
    ) -> List[Tuple[Path, float]]:
        """Split enumerated files into unchanged ones and ones needing a hash."""
        to_hash: List[Tuple[Path, float]] = []
        total = len(files)

        for index, file_path in enumerate(files, 1):
            if cancel.is_cancelled:
                break

            key = to_posix_string(file_path)
            try:
                stat = file_path.stat()
            except OSError as e:
                self._record_failure(summary, file_path, e)
                continue

            existing = inventory.get(key)
            if existing is not None and self._is_current(existing, stat.st_size, stat.st_mtime):
                summary.skipped_files += 1
            else:
                to_hash.append((file_path, stat.st_mtime))

            self.emitter.emit(STAGE_DIFF, index, total, key)

        logger.info(f"{len(to_hash)} new or changed files to hash")
        return to_hash

    def _is_current(self, record: MediaRecord, size: int, mtime: float) -> bool:
        if not record.matches_fingerprint(size, mtime) or not record.content_hash:
            return False
        if self.context.legacy_hash and not record.legacy_hash:
            return False
        return True

    def _hash(self, to_hash: List[Tuple[Path, float]], summary: ScanSummary, cancel: CancellationToken) -> None:
        mtimes = {path: mtime for path, mtime in to_hash}
        total = len(to_hash)
        processed = 0
        hashed_bytes = 0
        batch: List[MediaRecord] = []

        results = hash_files(
            mtimes.keys(),
            chunk_size=self.context.chunk_size,
            legacy=self.context.legacy_hash,
            max_workers=self.context.parallel_jobs,
            cancel=cancel,
        )
        for file_path, outcome in results:
            processed += 1
            if isinstance(outcome, FileDigest):
                batch.append(self._build_record(file_path, mtimes[file_path], outcome))
                summary.hashed_files += 1
                hashed_bytes += outcome.size
            else:
                self._record_failure(summary, file_path, outcome)

            if len(batch) >= UPSERT_BATCH_SIZE:
                self.store.upsert_inventory(batch)
                batch = []
            self.emitter.emit(STAGE_HASH, processed, total, to_posix_string(file_path))

        if batch:
            self.store.upsert_inventory(batch)

        logger.info(f"Hashed {summary.hashed_files} files ({format_bytes(hashed_bytes)})")

    def _build_record(self, file_path: Path, mtime: float, digest: FileDigest) -> MediaRecord:
        capture = extract_capture_time(file_path, mtime)
        return MediaRecord(
            path=to_posix_string(file_path),
            size=digest.size,
            mtime=mtime,
            content_hash=digest.content_hash,
            legacy_hash=digest.legacy_hash,
            capture_timestamp=capture.timestamp,
            timestamp_source=capture.source.value,
            camera_make=capture.camera_make,
            camera_model=capture.camera_model,
            artist=capture.artist,
        )

    def _prune(self, inventory: Dict[str, MediaRecord], seen: Set[str]) -> int:
        """Drop inventory rows under the image root whose file is gone."""
        root_prefix = to_posix_string(self.image_root).rstrip('/') + '/'
        vanished = [
            path for path in inventory
            if path.startswith(root_prefix) and path not in seen and not Path(path).exists()
        ]
        if vanished:
            self.store.delete_inventory(vanished)
            logger.info(f"Removed {len(vanished)} vanished files from inventory")
        return len(vanished)

    @staticmethod
    def _record_failure(summary: ScanSummary, file_path: Path, error: OSError) -> None:
        message = f"Failed to process {file_path}: {error}"
        logger.error(message)
        summary.failed_files += 1
        summary.errors.append(message)
