#!/usr/bin/env python3
"""Tests for photo tidy utilities using should/when pattern."""

import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

from photo_tidy.utils import (
    date_bucket,
    disk_status,
    ensure_directory,
    find_media_files,
    format_bytes,
    format_timestamp,
    get_available_space,
    is_media_file,
    normalize_extensions,
    remove_empty_parents,
    timestamp_from_epoch,
    to_posix_string,
)


def test_should_format_bytes_as_human_readable_when_size_provided():
    """Should format bytes as human-readable string when size is provided."""

    # When formatting different byte sizes
    test_cases = [
        (0, "0B"),
        (500, "500.0B"),
        (1024, "1.0KB"),
        (1024 * 1024, "1.0MB"),
        (1024 * 1024 * 1024, "1.0GB"),
        (1536, "1.5KB"),
        (2048 * 1024 * 1024, "2.0GB"),
    ]

    for byte_value, expected_format in test_cases:
        result = format_bytes(byte_value)
        assert result == expected_format, f"Expected {expected_format}, got {result} for {byte_value}"

    print("✅ Byte formatting works correctly for all test cases")


def test_should_detect_media_files_when_supported_extensions_provided():
    """Should detect media files when supported extensions are provided."""

    extensions = ['jpg', '.png', 'mp4', 'MOV']

    with tempfile.TemporaryDirectory() as temp_dir:
        temp_path = Path(temp_dir)

        media_files = [
            temp_path / "photo.jpg",
            temp_path / "image.PNG",  # Test case insensitivity
            temp_path / "video.mp4",
            temp_path / "movie.mov",
        ]
        non_media_files = [
            temp_path / "document.txt",
            temp_path / "archive.zip",
        ]
        for file_path in media_files + non_media_files:
            file_path.touch()

        for media_file in media_files:
            assert is_media_file(media_file, extensions), f"{media_file.name} should be detected as media"
        for non_media_file in non_media_files:
            assert not is_media_file(non_media_file, extensions), f"{non_media_file.name} should not be media"

        # Should not treat directories as media
        (temp_path / "folder.jpg").mkdir()
        assert not is_media_file(temp_path / "folder.jpg", extensions)


def test_should_find_media_files_in_sorted_order_when_tree_scanned(tmp_path):
    """Should find media files recursively in a stable order when a tree is scanned."""

    for relative in ["b/2.jpg", "a/1.JPG", "a/notes.txt", "c.png", "a/nested/3.mp4"]:
        file_path = tmp_path / relative
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(b"x")

    found = [p.relative_to(tmp_path).as_posix() for p in find_media_files(tmp_path, ['jpg', 'png', 'mp4'])]

    assert found == ["c.png", "a/1.JPG", "a/nested/3.mp4", "b/2.jpg"]


def test_should_find_nothing_when_directory_missing(tmp_path):
    """Should yield nothing when the directory does not exist."""
    assert list(find_media_files(tmp_path / "missing", ['jpg'])) == []


def test_should_ensure_directory_exists_when_path_provided(tmp_path):
    """Should ensure directory exists when path is provided."""

    new_dir = tmp_path / "new" / "nested" / "directory"
    assert not new_dir.exists()

    assert ensure_directory(new_dir) is True
    assert new_dir.is_dir()

    # When ensuring existing directory
    assert ensure_directory(new_dir) is True


def test_should_normalize_extensions_when_mixed_forms_provided():
    """Should lower-case, strip dots and de-duplicate extensions."""
    assert normalize_extensions(['.JPG', 'jpg', 'Png', '', '.']) == ('jpg', 'png')


def test_should_render_naming_timestamps_when_datetime_provided():
    """Should render timestamps in the file naming format."""

    taken = datetime(2020, 7, 28, 11, 49, 3)
    assert format_timestamp(taken) == "2020-07-28_11-49-03"

    # Epoch times render as local wall-clock time, like EXIF dates
    epoch = datetime(2021, 3, 4, 5, 6, 7).timestamp()
    assert timestamp_from_epoch(epoch) == "2021-03-04_05-06-07"

    late_evening = datetime(2021, 3, 4, 23, 30, 0).timestamp()
    assert date_bucket(timestamp_from_epoch(late_evening)) == "2021-03-04"
    assert date_bucket("2021-03-04_05-06-07") == "2021-03-04"


def test_should_use_forward_slashes_when_rendering_paths():
    """Should render paths with forward slashes."""
    assert to_posix_string("C:\\photos\\a.jpg") == "C:/photos/a.jpg"


def test_should_remove_empty_parents_up_to_stop_when_walking_up(tmp_path):
    """Should remove emptied directories upward, keeping the stop and non-empty ones."""

    (tmp_path / "duplicates" / "abc").mkdir(parents=True)
    (tmp_path / "duplicates" / "def").mkdir()
    (tmp_path / "duplicates" / "def" / "keep.jpg").write_bytes(b"x")
    (tmp_path / "2021-03-04").mkdir()
    (tmp_path / "my_albums" / "empty_for_later").mkdir(parents=True)

    assert remove_empty_parents(tmp_path / "duplicates" / "abc", tmp_path) == 1
    assert remove_empty_parents(tmp_path / "2021-03-04", tmp_path) == 1

    assert tmp_path.is_dir()
    assert not (tmp_path / "duplicates" / "abc").exists()
    assert (tmp_path / "duplicates" / "def" / "keep.jpg").exists()
    assert (tmp_path / "my_albums" / "empty_for_later").is_dir()


def test_should_leave_directories_outside_stop_when_walking_up(tmp_path):
    """Should not touch a directory that is not below the stop directory."""

    (tmp_path / "outside").mkdir()

    assert remove_empty_parents(tmp_path / "outside", tmp_path / "output") == 0
    assert (tmp_path / "outside").is_dir()


def test_should_report_disk_space_when_path_does_not_exist_yet(tmp_path):
    """Should measure the closest existing parent for paths not created yet."""

    status = disk_status(tmp_path / "not" / "created")

    assert status['available_bytes'] > 0
    assert status['total_bytes'] >= status['available_bytes']
    assert get_available_space(tmp_path / "not" / "created") > 0


def test_should_return_zero_space_when_disk_usage_fails(tmp_path):
    """Should return zero available space when psutil cannot read usage."""
    with patch('photo_tidy.utils.psutil.disk_usage', side_effect=OSError("boom")):
        assert get_available_space(tmp_path) == 0
