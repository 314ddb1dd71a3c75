"""
Settings management for bkup.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from bkup.core.folder.ignore import DEFAULT_IGNORE_FILE_NAME


DEFAULT_ACCURACY_MS = 2000  # FAT filesystems store times with 2s resolution
DEFAULT_MAX_WORKERS = 8
LOG_LEVEL_ENV = 'BKUP_LOG'


@dataclass
class SyncSettings:
    """Inputs of one update run."""
    source_root: Path
    destination_root: Path
    ignore_enabled: bool = False
    ignore_file_name: str = DEFAULT_IGNORE_FILE_NAME
    accuracy_tolerance: timedelta = field(default_factory=timedelta)
    max_workers: int = DEFAULT_MAX_WORKERS
    preview_only: bool = False

    def __post_init__(self):
        self.source_root = Path(self.source_root)
        self.destination_root = Path(self.destination_root)

    def validate(self) -> None:
        """
        Check configuration-level errors before anything is walked.

        Raises:
            FileNotFoundError: source root does not exist
            NotADirectoryError: source root, or an existing destination root,
                is not a directory
            ValueError: destination inside the source, or an invalid
                tolerance, worker count or ignore file name
        """
        if not self.source_root.exists():
            logging.error(f"SyncSettings - Source path not found: {self.source_root}")
            raise FileNotFoundError(f"Source path not found: {self.source_root}")
        if not self.source_root.is_dir():
            logging.error(f"SyncSettings - Source path is not a directory: {self.source_root}")
            raise NotADirectoryError(f"Source path is not a directory: {self.source_root}")
        if self.destination_root.exists() and not self.destination_root.is_dir():
            logging.error(f"SyncSettings - Destination path is not a directory: {self.destination_root}")
            raise NotADirectoryError(f"Destination path is not a directory: {self.destination_root}")
        if self.destination_root.resolve().is_relative_to(self.source_root.resolve()):
            logging.error(f"SyncSettings - Destination {self.destination_root} is inside the source")
            raise ValueError(f"Destination must not be inside the source: {self.destination_root}")
        if self.accuracy_tolerance < timedelta(0):
            raise ValueError(f"Accuracy must not be negative: {self.accuracy_tolerance}")
        if self.max_workers < 1:
            raise ValueError(f"Worker count must be at least 1: {self.max_workers}")
        if not self.ignore_file_name or '/' in self.ignore_file_name or os.sep in self.ignore_file_name:
            raise ValueError(f"Invalid ignore file name: {self.ignore_file_name!r}")


@dataclass
class ApplicationSettings:
    """Defaults stored in the settings file."""
    ignore_enabled: bool = False
    ignore_file_name: str = DEFAULT_IGNORE_FILE_NAME
    accuracy_ms: int = DEFAULT_ACCURACY_MS
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = "INFO"

    @property
    def accuracy_tolerance(self) -> timedelta:
        return timedelta(milliseconds=self.accuracy_ms)


class SettingsManager:
    """Manager for loading/saving application settings."""

    def __init__(self, settings_path: Optional[Path] = None):
        self.settings_path = settings_path or self._get_default_path()
        self._settings: Optional[ApplicationSettings] = None

    @staticmethod
    def _get_default_path() -> Path:
        """Get the default settings file path."""
        if os.name == 'nt':
            # Windows
            app_data = os.environ.get('APPDATA', os.path.expanduser('~'))
            return Path(app_data) / 'bkup' / 'settings.json'
        else:
            # Linux/Mac
            config_home = os.environ.get('XDG_CONFIG_HOME',
                                         os.path.expanduser('~/.config'))
            return Path(config_home) / 'bkup' / 'settings.json'

    @property
    def settings(self) -> ApplicationSettings:
        """Get current settings, loading from disk if needed."""
        if self._settings is None:
            self._settings = self.load()
        return self._settings

    def load(self) -> ApplicationSettings:
        """Load settings from disk, falling back to defaults."""
        if not self.settings_path.exists():
            return ApplicationSettings()

        try:
            with open(self.settings_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logging.warning(f"SettingsManager - Could not load {self.settings_path}: {e}")
            return ApplicationSettings()

        if not isinstance(data, dict):
            logging.warning(f"SettingsManager - Ignoring malformed settings file {self.settings_path}")
            return ApplicationSettings()

        return self._from_dict(data)

    def save(self, settings: Optional[ApplicationSettings] = None) -> bool:
        """Save settings to disk."""
        settings = settings or self._settings
        if settings is None:
            return False

        try:
            self.settings_path.parent.mkdir(parents=True, exist_ok=True)

            with open(self.settings_path, 'w', encoding='utf-8') as f:
                json.dump(asdict(settings), f, indent=2)

            self._settings = settings
            return True

        except OSError as e:
            logging.warning(f"SettingsManager - Could not save {self.settings_path}: {e}")
            return False

    def _from_dict(self, data: dict[str, Any]) -> ApplicationSettings:
        """Convert dictionary back to settings, keeping defaults for bad values."""
        defaults = ApplicationSettings()

        def get(key: str, expected: type) -> Any:
            value = data.get(key, getattr(defaults, key))
            if not isinstance(value, expected) or (expected is int and isinstance(value, bool)):
                logging.warning(f"SettingsManager - Invalid value for {key!r}: {value!r}")
                return getattr(defaults, key)
            return value

        return ApplicationSettings(
            ignore_enabled=get('ignore_enabled', bool),
            ignore_file_name=get('ignore_file_name', str),
            accuracy_ms=get('accuracy_ms', int),
            max_workers=get('max_workers', int),
            log_level=get('log_level', str),
        )
