"""Content-addressed duplicate detection."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from .models import MediaRecord
from .utils import format_bytes

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Inventory records sharing one content hash."""
    hash: str
    files: List[MediaRecord]
    primary: Optional[MediaRecord] = None
    total_size: int = 0
    space_savings: int = 0

    def __post_init__(self):
        """Order members by path and derive the primary and size totals."""
        self.files = sorted(self.files, key=lambda record: record.path)
        if self.primary is None and self.files:
            # First seen wins: the lexicographically smallest path
            self.primary = self.files[0]
        self.total_size = sum(f.size for f in self.files)
        if self.primary:
            self.space_savings = self.total_size - self.primary.size

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(record.path for record in self.files)

    @property
    def redundant(self) -> List[MediaRecord]:
        """Members other than the primary."""
        return [record for record in self.files if record is not self.primary]


def _group_by_hash(records: Iterable[MediaRecord]) -> Dict[str, List[MediaRecord]]:
    hash_groups: Dict[str, List[MediaRecord]] = defaultdict(list)
    for record in records:
        if record.content_hash:  # Skip records without a valid hash
            hash_groups[record.content_hash].append(record)
    return hash_groups


def build_duplicate_index(records: Iterable[MediaRecord]) -> Dict[str, Tuple[str, ...]]:
    """
    Map each duplicated content hash to the sorted paths that share it.

    Only hashes held by more than one record appear in the result.

    Args:
        records: Inventory records

    Returns:
        Dictionary of content hash to sorted path tuple
    """
    return {
        content_hash: tuple(sorted(record.path for record in members))
        for content_hash, members in _group_by_hash(records).items()
        if len(members) > 1
    }


def duplicate_groups(records: Iterable[MediaRecord]) -> List[DuplicateGroup]:
    """
    Build duplicate groups, ordered by content hash.

    Args:
        records: Inventory records

    Returns:
        DuplicateGroup for every hash shared by more than one record
    """
    groups = [
        DuplicateGroup(hash=content_hash, files=members)
        for content_hash, members in sorted(_group_by_hash(records).items())
        if len(members) > 1
    ]

    if groups:
        savings = sum(group.space_savings for group in groups)
        logger.info(f"Found {len(groups)} duplicate groups, potential savings: {format_bytes(savings)}")

    return groups


def count_duplicate_files(records: Iterable[MediaRecord]) -> int:
    """Number of records that are a non-primary member of a duplicate group."""
    return sum(len(group.files) - 1 for group in duplicate_groups(records))
