"""Deterministic destination planning for the inventory."""

import hashlib
import logging
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional, Tuple

from .config import TidyContext
from .duplicates import duplicate_groups
from .errors import PathCollision
from .models import MediaRecord, PlanItem, PlanSummary
from .progress import STAGE_PLAN, CancellationToken, ProgressEmitter
from .store import INVENTORY, PLAN, Store
from .utils import date_bucket, format_bytes, now_iso, to_posix_string

logger = logging.getLogger(__name__)

HASH_SUFFIX_WIDTH = 8
DUPLICATE_BUCKET_WIDTH = 16


def reserve_name(used: Dict[str, str], stem: str, extension: str, key: str) -> str:
    """
    Reserve ``<stem>_<key prefix><extension>`` inside one bucket, case-insensitively.

    The prefix starts at ``HASH_SUFFIX_WIDTH`` characters and widens in steps
    of the same size while another file holds the name.

    Args:
        used: Lower-cased names already reserved in the bucket, mapped to the
            key holding them
        stem: Name part before the discriminator (the capture timestamp)
        extension: Original extension, including the dot
        key: Hex string identifying the file within the bucket

    Returns:
        The reserved name

    Raises:
        PathCollision: If even the full key does not give a free name
    """
    widths = sorted(set(range(HASH_SUFFIX_WIDTH, len(key), HASH_SUFFIX_WIDTH)) | {len(key)})
    for width in widths:
        candidate = f"{stem}_{key[:width]}{extension}"
        if candidate.lower() not in used:
            if width > HASH_SUFFIX_WIDTH:
                logger.debug(f"Prefix clash in bucket, using {candidate}")
            used[candidate.lower()] = key
            return candidate

    raise PathCollision(f"Cannot find a free name for {stem}{extension} ({key})")


def name_key(record: MediaRecord, is_duplicate: bool) -> str:
    """
    Stable discriminator of a file inside its bucket.

    Date buckets hold at most one file per content hash, so the hash is used.
    A duplicates bucket holds copies of a single hash, so the origin path is
    hashed instead.
    """
    if is_duplicate:
        return hashlib.sha256(record.path.encode('utf-8', 'surrogateescape')).hexdigest()
    return record.content_hash


class Planner:
    """Computes where every inventoried file should end up."""

    def __init__(self, context: TidyContext, store: Store, emitter: Optional[ProgressEmitter] = None):
        self.context = context
        self.store = store
        self.emitter = emitter or ProgressEmitter()
        self.output_root = Path(context.output_root).absolute()
        self.duplicates_dir = Path(context.duplicates_dir).absolute()

    def plan(self, cancel: Optional[CancellationToken] = None) -> PlanSummary:
        """
        Build a fresh plan from the inventory and persist it.

        Primary and unique files go to ``output_root/<YYYY-MM-DD>``; the other
        members of a duplicate group go to ``duplicates/<hash prefix>``. The
        previous plan is replaced in a single transaction.

        Args:
            cancel: Optional cancellation token

        Returns:
            The persisted PlanSummary

        Raises:
            Cancelled: If cancelled; the previous plan stays in place
            PathCollision: If a file cannot be given a unique name
        """
        cancel = cancel or CancellationToken()

        with self.store.exclusive(INVENTORY, PLAN):
            records = self.store.inventory_snapshot()
            total = len(records)
            logger.info(f"Planning destinations for {total} files")
            self.emitter.emit(STAGE_PLAN, 0, total)

            primaries = {group.hash: group.primary.path for group in duplicate_groups(records)}

            buckets: Dict[str, List[Tuple[MediaRecord, bool]]] = defaultdict(list)
            for index, record in enumerate(records, 1):
                cancel.raise_if_cancelled()
                primary = primaries.get(record.content_hash)
                is_duplicate = primary is not None and primary != record.path
                buckets[self._bucket_for(record, is_duplicate)].append((record, is_duplicate))
                self.emitter.emit(STAGE_PLAN, index, total, record.path)

            entries: List[PlanItem] = []
            for bucket in sorted(buckets):
                cancel.raise_if_cancelled()
                entries.extend(self._name_bucket(bucket, buckets[bucket]))
            entries.sort(key=lambda item: (item.new_path, item.new_file_name))

            duplicates = sum(1 for item in entries if item.is_duplicate)
            summary = PlanSummary(
                generated_at=now_iso(),
                total_entries=len(entries),
                duplicate_entries=duplicates,
                unique_entries=len(entries) - duplicates,
                destination_buckets=len(buckets),
                total_bytes=sum(item.file_size for item in entries),
                entries=entries,
            )

            cancel.raise_if_cancelled()
            summary = self.store.replace_plan(summary)

        logger.info(
            f"Plan generated: {summary.total_entries} entries, {summary.duplicate_entries} duplicates, "
            f"{summary.destination_buckets} buckets, {format_bytes(summary.total_bytes)}"
        )
        return summary

    def _bucket_for(self, record: MediaRecord, is_duplicate: bool) -> str:
        if is_duplicate:
            return to_posix_string(self.duplicates_dir / record.content_hash[:DUPLICATE_BUCKET_WIDTH])
        return to_posix_string(self.output_root / date_bucket(record.capture_timestamp))

    @staticmethod
    def _name_bucket(bucket: str, members: List[Tuple[MediaRecord, bool]]) -> List[PlanItem]:
        """Name the files of one bucket by capture time and a per-file key.

        Unless two keys share a prefix, a name depends only on the file
        itself, so adding files to a bucket leaves existing names alone.
        Clashing prefixes are widened in key order.
        """
        used: Dict[str, str] = {}
        items = []
        keyed = [(name_key(record, is_duplicate), record, is_duplicate) for record, is_duplicate in members]
        keyed.sort(key=lambda member: (member[1].capture_timestamp, member[0], member[1].path))

        for key, record, is_duplicate in keyed:
            extension = PurePosixPath(record.path).suffix
            name = reserve_name(used, record.capture_timestamp, extension, key)
            items.append(PlanItem(
                file_hash=record.content_hash,
                file_size=record.size,
                origin_file_name=record.name,
                origin_full_path=record.path,
                new_file_name=name,
                new_path=bucket,
                is_duplicate=is_duplicate,
            ))

        return items
