"""Configuration management for photo tidying."""

import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Any, Optional, Tuple
import logging

from .utils import normalize_extensions

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

DEFAULT_PHOTO_EXTENSIONS = ['jpg', 'jpeg', 'png', 'heic', 'heif', 'gif', 'tif', 'tiff',
                            'cr2', 'nef', 'arw', 'dng']
DEFAULT_VIDEO_EXTENSIONS = ['mp4', 'mov', 'avi', 'mkv', 'mts', '3gp']


@dataclass(frozen=True)
class TidyContext:
    """Resolved, immutable settings handed to every pipeline component."""
    database_path: Path
    image_root: Path
    output_root: Path
    duplicates_dir: Path
    duplicates_folder_name: str
    extensions: Tuple[str, ...]
    schema_version: int = SCHEMA_VERSION
    data_dir: Optional[Path] = None
    parallel_jobs: int = 4
    chunk_size: int = 4 * 1024 * 1024
    legacy_hash: bool = True
    verify_hash: bool = True

    @property
    def log_dir(self) -> Path:
        return (self.data_dir or self.database_path.parent) / "logs"


class Config:
    """Manages configuration for photo tidying from YAML files."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses PHOTOTIDY_CONFIG or
                searches the standard locations.
        """
        self.config_path = config_path or os.environ.get('PHOTOTIDY_CONFIG') or self._find_config_file()
        self.config: Dict[str, Any] = {}
        self._load_config()

    def _find_config_file(self) -> str:
        """Find configuration file in standard locations."""
        # Look for config files in order of preference
        possible_paths = [
            Path.cwd() / "config.local.yml",
            Path.cwd() / "config.yml",
            Path(__file__).parent / "../config.local.yml",
            Path(__file__).parent / "../config.yml",
        ]

        for config_file in possible_paths:
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return str(config_file.resolve())

        raise FileNotFoundError("No configuration file found. Expected config.yml or config.local.yml")

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.config_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config from {self.config_path}: {e}")
            raise

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key_path: Dot-separated path like 'photo_tidy.process.parallel_jobs'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def get_home_dir(self) -> Path:
        """Home directory that relative library paths hang off."""
        home = os.environ.get('PHOTOTIDY_HOME') or self.get('photo_tidy.paths.home')
        return Path(home).expanduser() if home else Path.home()

    def get_data_dir(self) -> Path:
        """Directory holding the database and logs."""
        data_dir = os.environ.get('PHOTOTIDY_DATA_DIR') or self.get('photo_tidy.paths.data_dir')
        if data_dir:
            return Path(data_dir).expanduser()
        return self.get_home_dir() / ".local" / "share" / "photoTidy"

    def get_database_path(self) -> Path:
        return self._resolve(self.get('photo_tidy.paths.database', 'phototidy.sqlite3'), self.get_data_dir())

    def get_image_root(self) -> Path:
        return self._resolve(self.get('photo_tidy.paths.image_root', 'images'), self.get_home_dir())

    def get_output_root(self) -> Path:
        return self._resolve(self.get('photo_tidy.paths.output_root', 'output'), self.get_home_dir())

    def get_duplicates_folder_name(self) -> str:
        return self.get('photo_tidy.paths.duplicates_folder', 'duplicates')

    def get_duplicates_dir(self) -> Path:
        return self.get_output_root() / self.get_duplicates_folder_name()

    def get_supported_extensions(self) -> Dict[str, List[str]]:
        """Get supported file extensions for photos and videos."""
        extensions = self.get('photo_tidy.extensions', {}) or {}
        return {
            'photos': extensions.get('photos', DEFAULT_PHOTO_EXTENSIONS),
            'videos': extensions.get('videos', DEFAULT_VIDEO_EXTENSIONS),
        }

    def get_all_extensions(self) -> Tuple[str, ...]:
        """All recognized extensions as a sorted, de-duplicated tuple."""
        extensions = self.get_supported_extensions()
        return normalize_extensions(extensions['photos'] + extensions['videos'])

    def get_parallel_jobs(self) -> int:
        """Get number of parallel jobs to run."""
        return self.get('photo_tidy.process.parallel_jobs', 4)

    def get_chunk_size(self) -> int:
        """Hash read chunk size in bytes."""
        return int(self.get('photo_tidy.process.chunk_size_mb', 4) * 1024 * 1024)

    def use_legacy_hash(self) -> bool:
        return self.get('photo_tidy.process.legacy_hash', True)

    def should_verify_hash(self) -> bool:
        return self.get('photo_tidy.process.verify_hash', True)

    def is_dry_run(self) -> bool:
        """Check if execution defaults to a dry run."""
        return self.get('photo_tidy.process.dry_run', True)

    def get_min_free_space_gb(self) -> int:
        """Get minimum free space requirement in GB."""
        return self.get('photo_tidy.safety.min_free_space_gb', 1)

    def get_log_level(self) -> str:
        """Get logging level."""
        return self.get('logging.components.photo_tidy', 'INFO')

    def validate_config(self) -> List[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of validation error messages
        """
        errors = []

        image_root = self.get_image_root()
        if not image_root.exists():
            errors.append(f"Image root does not exist: {image_root}")
        elif not image_root.is_dir():
            errors.append(f"Image root is not a directory: {image_root}")

        output_root = self.get_output_root()
        if output_root == image_root:
            errors.append("Output root must differ from the image root")

        duplicates_name = self.get_duplicates_folder_name()
        if not duplicates_name or '/' in duplicates_name or '\\' in duplicates_name:
            errors.append(f"Invalid duplicates folder name: {duplicates_name!r}")

        if not self.get_all_extensions():
            errors.append("No supported file extensions configured")

        parallel_jobs = self.get_parallel_jobs()
        if not isinstance(parallel_jobs, int) or parallel_jobs < 1 or parallel_jobs > 32:
            errors.append(f"Invalid parallel_jobs value: {parallel_jobs} (must be 1-32)")

        chunk_size_mb = self.get('photo_tidy.process.chunk_size_mb', 4)
        if not isinstance(chunk_size_mb, (int, float)) or chunk_size_mb <= 0 or chunk_size_mb > 64:
            errors.append(f"Invalid chunk_size_mb value: {chunk_size_mb} (must be >0 and <=64)")

        return errors

    def context(self) -> TidyContext:
        """Resolve this configuration into an immutable TidyContext."""
        return TidyContext(
            database_path=self.get_database_path(),
            image_root=self.get_image_root(),
            output_root=self.get_output_root(),
            duplicates_dir=self.get_duplicates_dir(),
            duplicates_folder_name=self.get_duplicates_folder_name(),
            extensions=self.get_all_extensions(),
            schema_version=SCHEMA_VERSION,
            data_dir=self.get_data_dir(),
            parallel_jobs=self.get_parallel_jobs(),
            chunk_size=self.get_chunk_size(),
            legacy_hash=self.use_legacy_hash(),
            verify_hash=self.should_verify_hash(),
        )

    @staticmethod
    def _resolve(value: str, base: Path) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else base / path

    def __str__(self) -> str:
        """String representation of configuration."""
        return f"Config(path={self.config_path}, image_root={self.get_image_root()})"
