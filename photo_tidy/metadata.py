"""Capture timestamp extraction with a fallback chain."""

import json
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional
import logging

import exifread

from .models import TimestampSource
from .utils import format_timestamp, now_timestamp, timestamp_from_epoch

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = frozenset({
    'jpg', 'jpeg', 'tiff', 'tif', 'cr2', 'nef', 'arw', 'dng', 'raf', 'orf',
    'rw2', 'pef', 'srw', 'x3f', 'heic', 'heif', 'png',
})
VIDEO_EXTENSIONS = frozenset({'mp4', 'mov', 'avi', 'mkv', 'mts', '3gp', 'm4v'})

EXIF_DATE_TAGS = ('EXIF DateTimeOriginal', 'EXIF DateTimeDigitized', 'Image DateTime')
EXIF_DATE_FORMAT = '%Y:%m:%d %H:%M:%S'
FFPROBE_TIMEOUT = 10


@dataclass(frozen=True)
class CaptureTime:
    """Best-effort capture timestamp plus the camera details found with it."""
    timestamp: str
    source: TimestampSource
    camera_make: Optional[str] = None
    camera_model: Optional[str] = None
    artist: Optional[str] = None


def extract_capture_time(file_path: Path, mtime: Optional[float] = None) -> CaptureTime:
    """
    Work out when a photo or video was taken.

    Tries embedded metadata first (EXIF for images, container tags for
    videos), then the filesystem modification time, then the current time.
    Never raises.

    Every source is rendered as local wall-clock time of the machine running
    the scan. EXIF dates carry no zone and are used as written by the camera.
    Video ``creation_time`` (UTC) and epoch times are converted to the local
    zone, so files from one session land in the same date bucket whichever
    source dated them.

    Args:
        file_path: Path to media file
        mtime: Modification time already known to the caller, if any

    Returns:
        CaptureTime in the ``YYYY-MM-DD_HH-MM-SS`` format
    """
    ext = file_path.suffix.lower().lstrip('.')

    if ext in IMAGE_EXTENSIONS:
        tags = _read_exif_tags(file_path)
        taken = _exif_timestamp(tags)
        camera = _camera_details(tags)
        if taken:
            return CaptureTime(taken, TimestampSource.EXIF, **camera)
    else:
        camera = {}

    if ext in VIDEO_EXTENSIONS:
        taken = _extract_video_timestamp(file_path)
        if taken:
            return CaptureTime(taken, TimestampSource.VIDEO)

    if mtime is None:
        try:
            mtime = file_path.stat().st_mtime
        except OSError as e:
            logger.debug(f"Could not stat {file_path} for timestamp fallback: {e}")

    if mtime is not None:
        return CaptureTime(timestamp_from_epoch(mtime), TimestampSource.FILESYSTEM, **camera)

    return CaptureTime(now_timestamp(), TimestampSource.SYNTHETIC, **camera)


def _read_exif_tags(file_path: Path) -> Dict[str, object]:
    """Read EXIF tags using exifread; empty mapping if there are none."""
    try:
        with open(file_path, 'rb') as f:
            return exifread.process_file(f, stop_tag='DateTimeDigitized', details=False) or {}
    except Exception as e:
        # exifread raises a wide range of errors on malformed files
        logger.debug(f"Could not read EXIF from {file_path}: {e}")
        return {}


def _exif_timestamp(tags: Dict[str, object]) -> Optional[str]:
    for tag_name in EXIF_DATE_TAGS:
        tag = tags.get(tag_name)
        if not tag:
            continue
        # Format: "2020:07:28 11:49:03"
        date_str = str(tag).strip().strip('\x00')
        try:
            taken = datetime.strptime(date_str[:19], EXIF_DATE_FORMAT)
        except ValueError:
            continue
        if 1900 <= taken.year <= 2100:
            return format_timestamp(taken)
    return None


def _camera_details(tags: Dict[str, object]) -> Dict[str, Optional[str]]:
    def _text(name: str) -> Optional[str]:
        tag = tags.get(name)
        value = str(tag).strip().strip('\x00') if tag else ''
        return value or None

    return {
        'camera_make': _text('Image Make'),
        'camera_model': _text('Image Model'),
        'artist': _text('Image Artist'),
    }


def _extract_video_timestamp(file_path: Path) -> Optional[str]:
    """Extract creation time from a video container using ffprobe."""
    try:
        result = subprocess.run(
            ['ffprobe', '-v', 'quiet', '-print_format', 'json',
             '-show_entries', 'format_tags=creation_time', str(file_path)],
            capture_output=True, text=True, timeout=FFPROBE_TIMEOUT
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not run ffprobe on {file_path}: {e}")
        return None

    if result.returncode != 0:
        return None

    try:
        data = json.loads(result.stdout or '{}')
    except ValueError as e:
        logger.debug(f"Unparseable ffprobe output for {file_path}: {e}")
        return None

    creation_time = data.get('format', {}).get('tags', {}).get('creation_time', '')
    if not creation_time:
        return None

    # Format: "2020-07-28T11:49:03.000000Z"
    try:
        taken = datetime.fromisoformat(creation_time.replace('Z', '+00:00'))
    except ValueError:
        return None
    if taken.tzinfo is not None:
        taken = taken.astimezone().replace(tzinfo=None)
    if not 1900 <= taken.year <= 2100:
        return None
    return format_timestamp(taken)
