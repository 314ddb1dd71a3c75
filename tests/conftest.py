"""Shared fixtures for bkup tests."""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from bkup.core.models import Entry, EntryKind, Tree
from main import LogFormatter


BASE_TIME = 1_600_000_000


def set_mtime(path: Path, seconds: int) -> None:
    """Set access and modification time of a path to whole seconds."""
    os.utime(path, ns=(seconds * 1_000_000_000, seconds * 1_000_000_000))


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the user's settings file, .env and log level out of every test."""
    config_home = tmp_path / "config-home"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("APPDATA", str(config_home))
    # setenv first so a value loaded from .env is removed afterwards
    monkeypatch.setenv("BKUP_LOG", "INFO")
    monkeypatch.delenv("BKUP_LOG")
    monkeypatch.chdir(tmp_path)

    root_logger = logging.getLogger()
    level = root_logger.level
    yield
    for handler in list(root_logger.handlers):
        if isinstance(handler.formatter, LogFormatter):
            root_logger.removeHandler(handler)
            handler.close()
    root_logger.setLevel(level)


@pytest.fixture
def source_dir(tmp_path):
    """Empty source directory."""
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def dest_dir(tmp_path):
    """Empty destination directory."""
    path = tmp_path / "dest"
    path.mkdir()
    return path


@pytest.fixture
def write_file():
    """Create a file (and its parents) under a root with an optional mtime."""
    def _write(root: Path, relative: str, content: str = "", mtime: int | None = None) -> Path:
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mtime is not None:
            set_mtime(path, mtime)
        return path
    return _write


def at(seconds: int) -> datetime:
    """UTC datetime for a number of seconds after the epoch."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def file_entry(path: str, seconds: int = 0, size: int = 0) -> Entry:
    return Entry(tuple(path.split("/")), EntryKind.FILE, at(seconds), size)


def dir_entry(path: str, seconds: int = 0) -> Entry:
    return Entry(tuple(path.split("/")), EntryKind.DIRECTORY, at(seconds))


def make_tree(*entries: Entry, root: str = "/tree") -> Tree:
    """Build an in-memory Tree from entries."""
    return Tree(Path(root), {entry.relative_path: entry for entry in entries})
