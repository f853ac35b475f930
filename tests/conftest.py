"""Shared fixtures for photo tidy tests."""

import os
from datetime import datetime
from pathlib import Path

import pytest
import yaml

from photo_tidy.config import Config, TidyContext
from photo_tidy.models import MediaRecord
from photo_tidy.store import Store
from photo_tidy.workflow import PhotoTidy

# 2021-03-04 05:06:07 local time
BASE_MTIME = datetime(2021, 3, 4, 5, 6, 7).timestamp()
BASE_TIMESTAMP = '2021-03-04_05-06-07'


@pytest.fixture
def tmp_library(tmp_path):
    """Create the directory layout of a library: images, output and data."""
    for d in ['images', 'output', 'data']:
        (tmp_path / d).mkdir(parents=True, exist_ok=True)
    return tmp_path


@pytest.fixture
def tidy_context(tmp_library):
    """A TidyContext pointing at the temporary library."""
    output_root = tmp_library / 'output'
    return TidyContext(
        database_path=tmp_library / 'data' / 'phototidy.sqlite3',
        image_root=tmp_library / 'images',
        output_root=output_root,
        duplicates_dir=output_root / 'duplicates',
        duplicates_folder_name='duplicates',
        extensions=('jpeg', 'jpg', 'mov', 'mp4', 'png'),
        data_dir=tmp_library / 'data',
        parallel_jobs=2,
        chunk_size=64,
        legacy_hash=True,
        verify_hash=True,
    )


@pytest.fixture
def store(tidy_context):
    """An initialized store for the temporary library."""
    db = Store(tidy_context.database_path)
    yield db
    db.close()


@pytest.fixture
def tidy(tidy_context, store):
    """The pipeline wired to the temporary library and store."""
    return PhotoTidy(tidy_context, store=store)


@pytest.fixture
def create_media(tidy_context):
    """Factory fixture: create a media file under the image root."""

    def _create(relative_path, content=b'test-content', mtime=BASE_MTIME):
        full_path = Path(tidy_context.image_root) / relative_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(content)
        if mtime is not None:
            os.utime(full_path, (mtime, mtime))
        return full_path

    return _create


@pytest.fixture
def make_record():
    """Factory fixture: build a MediaRecord without touching disk."""

    def _make(path, content_hash='a' * 64, size=100, capture_timestamp=BASE_TIMESTAMP, **kwargs):
        return MediaRecord(
            path=path,
            size=size,
            mtime=kwargs.pop('mtime', BASE_MTIME),
            content_hash=content_hash,
            legacy_hash=kwargs.pop('legacy_hash', 'b' * 32),
            capture_timestamp=capture_timestamp,
            **kwargs,
        )

    return _make


@pytest.fixture
def config_data(tmp_library):
    """Configuration mapping for the temporary library."""
    return {
        'photo_tidy': {
            'paths': {
                'home': str(tmp_library),
                'data_dir': str(tmp_library / 'data'),
                'database': 'phototidy.sqlite3',
                'image_root': 'images',
                'output_root': 'output',
                'duplicates_folder': 'duplicates',
            },
            'extensions': {
                'photos': ['jpg', 'jpeg', 'png'],
                'videos': ['mp4', 'mov'],
            },
            'process': {
                'parallel_jobs': 2,
                'chunk_size_mb': 1,
                'legacy_hash': True,
                'verify_hash': True,
                'dry_run': True,
            },
            'safety': {
                'min_free_space_gb': 0,
            },
        },
        'logging': {
            'components': {
                'photo_tidy': 'DEBUG',
            },
        },
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    """Write the configuration mapping to a YAML file and return its path."""
    config_path = tmp_path / 'config.yml'
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f)
    return config_path


@pytest.fixture
def sample_config(config_file, monkeypatch):
    """A Config loaded from the temporary config file."""
    monkeypatch.delenv('PHOTOTIDY_HOME', raising=False)
    monkeypatch.delenv('PHOTOTIDY_DATA_DIR', raising=False)
    return Config(str(config_file))
