"""Utility functions for photo tidying."""

import os
import psutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, Tuple, Union
import logging

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M-%S'


def format_bytes(bytes_value: int) -> str:
    """
    Format bytes as human-readable string.

    Args:
        bytes_value: Size in bytes

    Returns:
        Formatted string like "1.2GB"
    """
    if bytes_value == 0:
        return "0B"

    units = ['B', 'KB', 'MB', 'GB', 'TB']
    unit_index = 0
    size = float(bytes_value)

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    return f"{size:.1f}{units[unit_index]}"


def get_available_space(path: Path) -> int:
    """
    Get available disk space for a path in bytes.

    Walks up to the closest existing parent, so the check works before the
    output tree has been created.

    Args:
        path: Path to check

    Returns:
        Available space in bytes, 0 if it cannot be determined
    """
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    try:
        return psutil.disk_usage(str(probe)).free
    except OSError as e:
        logger.error(f"Failed to get disk space for {path}: {e}")
        return 0


def disk_status(path: Path) -> Dict[str, Any]:
    """Report available and total bytes of the filesystem holding ``path``."""
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    usage = psutil.disk_usage(str(probe))
    return {
        'path': to_posix_string(path),
        'available_bytes': usage.free,
        'total_bytes': usage.total,
    }


def ensure_directory(path: Path) -> bool:
    """
    Ensure directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure

    Returns:
        True if directory exists or was created successfully
    """
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Failed to create directory {path}: {e}")
        return False


def normalize_extensions(extensions: Iterable[str]) -> Tuple[str, ...]:
    """Lower-case, strip leading dots, de-duplicate and sort extensions."""
    return tuple(sorted({ext.lower().lstrip('.') for ext in extensions if ext and ext.strip('.')}))


def is_media_file(file_path: Path, supported_extensions: Iterable[str]) -> bool:
    """
    Check if file is a supported media file.

    Args:
        file_path: Path to file
        supported_extensions: Supported extensions (without dots)

    Returns:
        True if file is supported media type
    """
    if not file_path.is_file():
        return False

    extension = file_path.suffix.lower().lstrip('.')
    return extension in {ext.lower().lstrip('.') for ext in supported_extensions}


def find_media_files(directory: Path, supported_extensions: Iterable[str]) -> Generator[Path, None, None]:
    """
    Recursively find all media files in a directory, in sorted order.

    Symlinked directories are not followed. Unreadable subdirectories are
    logged and skipped.

    Args:
        directory: Directory to search
        supported_extensions: Supported file extensions

    Yields:
        Path objects for media files found
    """
    if not directory.exists() or not directory.is_dir():
        logger.warning(f"Directory does not exist or is not a directory: {directory}")
        return

    extensions = set(normalize_extensions(supported_extensions))

    def _on_error(error: OSError):
        logger.warning(f"Cannot read directory {error.filename}: {error}")

    for dirpath, dirnames, filenames in os.walk(str(directory), onerror=_on_error):
        dirnames.sort()
        for filename in sorted(filenames):
            file_path = Path(dirpath) / filename
            if is_media_file(file_path, extensions):
                yield file_path


def to_posix_string(path: Union[str, Path]) -> str:
    """Render a path with forward slashes."""
    return str(path).replace('\\', '/')


def remove_empty_parents(directory: Path, stop: Path) -> int:
    """
    Remove ``directory`` and its ancestors while they are empty.

    Walks upward and stops at the first non-empty directory or at ``stop``,
    which is never removed. Directories outside ``stop`` are left alone.

    Args:
        directory: Deepest directory to consider
        stop: Root directory the walk must not leave

    Returns:
        Number of directories removed
    """
    removed_count = 0
    directory = Path(os.path.abspath(directory))
    stop = Path(os.path.abspath(stop))
    if stop not in directory.parents:
        return 0

    while directory != stop:
        try:
            directory.rmdir()
        except FileNotFoundError:
            pass
        except OSError as e:
            # Not empty, or not ours to remove
            logger.debug(f"Keeping directory {directory}: {e}")
            break
        else:
            logger.debug(f"Removed empty directory: {directory}")
            removed_count += 1
        directory = directory.parent

    return removed_count


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the ``YYYY-MM-DD_HH-MM-SS`` naming format."""
    return value.strftime(TIMESTAMP_FORMAT)


def timestamp_from_epoch(seconds: float) -> str:
    """Render an epoch timestamp as local wall-clock time in the naming format."""
    return format_timestamp(datetime.fromtimestamp(seconds))


def now_timestamp() -> str:
    """Get the current local time in the naming format."""
    return format_timestamp(datetime.now())


def date_bucket(timestamp: str) -> str:
    """Date part (``YYYY-MM-DD``) of a naming-format timestamp."""
    return timestamp.split('_', 1)[0]


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string, second precision."""
    return datetime.now(timezone.utc).isoformat(timespec='seconds')
