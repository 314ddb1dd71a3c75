"""
Core data models for the backup synchronization engine.

This module defines all data structures shared by the engine:
- Tree entry models (what a directory walk discovers)
- Sync action models (what the planner decides)
- Error models (path-scoped problems collected along the way)
- Report models (what the executor did)

All models are:
- Filesystem-agnostic once built (no open handles)
- Immutable where practical
- Type-hinted for IDE support
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from pathlib import Path
from typing import Iterator, Mapping, Optional


RelativePath = tuple[str, ...]


def format_relative_path(relative_path: RelativePath) -> str:
    """Render a relative path tuple with forward slashes."""
    return '/'.join(relative_path)


# =============================================================================
# Enumerations
# =============================================================================

class EntryKind(Enum):
    """Type of filesystem entry kept in a tree."""
    FILE = auto()
    DIRECTORY = auto()


class ActionType(Enum):
    """Operation planned for the destination."""
    CREATE_DIRECTORY = auto()
    COPY_FILE = auto()


class CopyReason(Enum):
    """Why a file is copied."""
    MISSING = auto()  # Not present in destination
    NEWER = auto()    # Source is newer beyond the tolerance


class ErrorKind(Enum):
    """Kind of path-scoped error."""
    PATH_UNREADABLE = auto()          # Directory listing or file read failed
    PATH_UNWRITABLE = auto()          # Destination creation or write failed
    IGNORE_FILE_PARSE_ERROR = auto()  # Malformed ignore pattern, line skipped
    METADATA_UNAVAILABLE = auto()     # Cannot stat, entry left out
    TYPE_MISMATCH = auto()            # File on one side, directory on the other

    @property
    def is_warning(self) -> bool:
        return self in (ErrorKind.IGNORE_FILE_PARSE_ERROR, ErrorKind.METADATA_UNAVAILABLE)


# =============================================================================
# Tree Models
# =============================================================================

@dataclass(frozen=True)
class Entry:
    """One filesystem object discovered during a walk."""
    relative_path: RelativePath
    kind: EntryKind
    modified_at: datetime
    size: int = 0

    @property
    def name(self) -> str:
        return self.relative_path[-1]

    @property
    def is_file(self) -> bool:
        return self.kind == EntryKind.FILE

    @property
    def is_directory(self) -> bool:
        return self.kind == EntryKind.DIRECTORY

    @property
    def path_str(self) -> str:
        return format_relative_path(self.relative_path)


class Tree(Mapping[RelativePath, Entry]):
    """
    The entries produced by one walk of one root, keyed by relative path.

    Keys are kept in tuple order, so every directory sorts before
    everything it contains. A Tree is never modified after construction.
    """

    def __init__(self, root: Path, entries: Optional[Mapping[RelativePath, Entry]] = None):
        self.root = root
        self._entries: dict[RelativePath, Entry] = dict(sorted((entries or {}).items()))

    def __getitem__(self, key: RelativePath) -> Entry:
        return self._entries[key]

    def __iter__(self) -> Iterator[RelativePath]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"Tree(root={str(self.root)!r}, entries={len(self._entries)})"

    @property
    def file_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_file)

    @property
    def directory_count(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.is_directory)

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self._entries.values())

    def iter_files(self) -> Iterator[Entry]:
        """Iterate over file entries in key order."""
        for entry in self._entries.values():
            if entry.is_file:
                yield entry

    def iter_directories(self) -> Iterator[Entry]:
        """Iterate over directory entries in key order."""
        for entry in self._entries.values():
            if entry.is_directory:
                yield entry


# =============================================================================
# Error Models
# =============================================================================

@dataclass(frozen=True)
class PathError:
    """A problem scoped to one path; never aborts the run on its own."""
    path: str
    kind: ErrorKind
    message: str

    @property
    def is_warning(self) -> bool:
        return self.kind.is_warning

    def __str__(self) -> str:
        return f"{self.kind.name}: {self.path} - {self.message}"


@dataclass
class WalkResult:
    """Result of walking one root."""
    tree: Tree
    errors: list[PathError] = field(default_factory=list)
    cancelled: bool = False
    scan_time: float = 0.0

    @property
    def failures(self) -> list[PathError]:
        return [error for error in self.errors if not error.is_warning]

    @property
    def warnings(self) -> list[PathError]:
        return [error for error in self.errors if error.is_warning]


# =============================================================================
# Sync Models
# =============================================================================

@dataclass(frozen=True)
class SyncAction:
    """A planned operation on the destination."""
    action_type: ActionType
    relative_path: RelativePath
    reason: Optional[CopyReason] = None
    size: int = 0

    @classmethod
    def create_directory(cls, relative_path: RelativePath) -> 'SyncAction':
        return cls(ActionType.CREATE_DIRECTORY, relative_path)

    @classmethod
    def copy_file(cls, relative_path: RelativePath, reason: CopyReason, size: int = 0) -> 'SyncAction':
        return cls(ActionType.COPY_FILE, relative_path, reason, size)

    @property
    def is_copy(self) -> bool:
        return self.action_type == ActionType.COPY_FILE

    @property
    def path_str(self) -> str:
        return format_relative_path(self.relative_path)

    def __str__(self) -> str:
        if self.is_copy:
            return f"copy {self.path_str} ({self.reason.name.lower()})"
        return f"mkdir {self.path_str}"


@dataclass
class SyncProgress:
    """Progress information for the execution phase."""
    current_item: str
    items_completed: int
    total_items: int
    bytes_copied: int
    total_bytes: int
    current_action: str = ""

    @property
    def percent_items(self) -> float:
        if self.total_items == 0:
            return 0.0
        return (self.items_completed / self.total_items) * 100

    @property
    def percent_bytes(self) -> float:
        if self.total_bytes == 0:
            return 0.0
        return (self.bytes_copied / self.total_bytes) * 100


@dataclass
class ExecutionReport:
    """Result of applying a list of sync actions."""
    directories_created: int = 0
    files_copied: int = 0
    bytes_copied: int = 0
    items_skipped: int = 0
    failures: list[PathError] = field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def items_failed(self) -> int:
        return len(self.failures)

    @property
    def success(self) -> bool:
        return not self.failures and not self.cancelled


@dataclass
class UpdateResult:
    """Everything one update run produced, from both walks to execution."""
    source_walk: WalkResult
    destination_walk: WalkResult
    actions: list[SyncAction]
    report: ExecutionReport
    conflicts: list[PathError] = field(default_factory=list)

    @property
    def errors(self) -> list[PathError]:
        return (
            self.source_walk.errors
            + self.destination_walk.errors
            + self.conflicts
            + self.report.failures
        )

    @property
    def failures(self) -> list[PathError]:
        return [error for error in self.errors if not error.is_warning]

    @property
    def warnings(self) -> list[PathError]:
        return [error for error in self.errors if error.is_warning]

    @property
    def success(self) -> bool:
        return not self.failures and not self.report.cancelled

    @property
    def nothing_to_sync(self) -> bool:
        return not self.actions and self.success
