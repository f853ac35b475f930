"""Data model shared by the scan, plan, execute and undo stages."""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


def to_camel_payload(obj) -> Dict[str, Any]:
    """Convert a dataclass into the camelCase mapping the UI layer consumes."""
    payload = {}
    for key, value in asdict(obj).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, list):
            value = [
                {_camel(k): v for k, v in item.items()} if isinstance(item, dict) else item
                for item in value
            ]
        payload[_camel(key)] = value
    return payload


class ExecutionMode(str, Enum):
    COPY = 'copy'
    MOVE = 'move'


class LogStage(str, Enum):
    INTENT = 'intent'
    COMMITTED = 'committed'
    FAILED = 'failed'
    ROLLED_BACK = 'rolled_back'


class TimestampSource(str, Enum):
    """Where a capture timestamp came from, most trusted first."""
    EXIF = 'exif'
    VIDEO = 'video'
    FILESYSTEM = 'filesystem'
    SYNTHETIC = 'synthetic'


UNDO_OPERATION = 'undo'


@dataclass
class MediaRecord:
    """One inventoried media file."""
    path: str
    size: int
    mtime: float
    content_hash: str
    legacy_hash: Optional[str]
    capture_timestamp: str
    timestamp_source: str = TimestampSource.FILESYSTEM.value
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    artist: Optional[str] = None

    @property
    def identity(self) -> Tuple[str, int]:
        return (self.content_hash, self.size)

    @property
    def name(self) -> str:
        return PurePosixPath(self.path).name

    def matches_fingerprint(self, size: int, mtime: float) -> bool:
        return self.size == size and self.mtime == mtime


@dataclass(frozen=True)
class PlanItem:
    """Planned destination for one inventoried file."""
    file_hash: str
    file_size: int
    origin_file_name: str
    origin_full_path: str
    new_file_name: str
    new_path: str
    is_duplicate: bool
    entry_id: Optional[int] = field(default=None, compare=False)

    @property
    def destination(self) -> str:
        return str(PurePosixPath(self.new_path) / self.new_file_name)


@dataclass
class PlanSummary:
    generated_at: str
    total_entries: int
    duplicate_entries: int
    unique_entries: int
    destination_buckets: int
    total_bytes: int
    entries: List[PlanItem] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return to_camel_payload(self)


@dataclass(frozen=True)
class OperationLogEntry:
    """One immutable event in the operation log."""
    plan_item_ref: int
    stage: LogStage
    operation: str
    original_path: str
    destination_path: str
    content_hash: str
    timestamp: str
    error: Optional[str] = None
    entry_id: Optional[int] = field(default=None, compare=False)


@dataclass
class ScanSummary:
    total_files: int = 0
    hashed_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    duplicate_files: int = 0
    removed_files: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return to_camel_payload(self)


@dataclass
class ExecutionSummary:
    mode: ExecutionMode
    dry_run: bool
    total_entries: int = 0
    processed_entries: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    duplicate_entries: int = 0
    cancelled: bool = False
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def counts(self) -> Tuple[int, int, int, int, int, int]:
        return (self.total_entries, self.processed_entries, self.succeeded,
                self.failed, self.skipped, self.duplicate_entries)

    def to_payload(self) -> Dict[str, Any]:
        return to_camel_payload(self)


@dataclass
class UndoSummary:
    processed_entries: int = 0
    restored: int = 0
    missing: int = 0
    failed: int = 0
    cancelled: bool = False
    errors: List[str] = field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return to_camel_payload(self)
