"""
Concurrent directory scanner.

Builds a Tree of a root directory with:
- One unit of work per subdirectory, run on a thread pool
- Cascading ignore files
- Symlink and special-file skipping
- Error resilience (path-scoped errors, best-effort results)
- Cancellation
"""

from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from bkup.core.folder.ignore import (
    DEFAULT_IGNORE_FILE_NAME,
    IgnoreMatcher,
    IgnoreRuleSet,
)
from bkup.core.models import (
    Entry,
    EntryKind,
    ErrorKind,
    PathError,
    RelativePath,
    Tree,
    WalkResult,
    format_relative_path,
)


@dataclass
class ScanOptions:
    """Options for directory scanning."""
    ignore_enabled: bool = False
    ignore_file_name: str = DEFAULT_IGNORE_FILE_NAME
    max_workers: int = 8


@dataclass
class ScanProgress:
    """Progress information for scanning."""
    current_path: str
    files_found: int
    directories_found: int
    errors: int
    pending_directories: int


@dataclass
class _DirectoryVisit:
    """What one directory unit found. Owned by the unit until returned."""
    relative_path: RelativePath = ()
    entries: list[Entry] = field(default_factory=list)
    errors: list[PathError] = field(default_factory=list)
    subdirectories: list[tuple[Path, RelativePath, IgnoreMatcher]] = field(default_factory=list)


def _display_path(relative_path: RelativePath) -> str:
    return format_relative_path(relative_path) or '.'


class FolderScanner:
    """
    Walks a directory tree into a Tree.

    Each directory is visited by its own unit of work. A unit lists its
    directory and returns the entries it found together with the
    subdirectories still to visit; the walk dispatches those and joins every
    unit before assembling the Tree in key order. Units never share mutable
    state, so no locking is needed.

    A parent unit does not wait for its children: with a bounded pool,
    parents blocking on children can occupy every worker and deadlock.
    The walk itself plays the joining role, and the resulting Tree is the
    one a parent-joins-children recursion would build.

    A scanner that was cancelled stays cancelled; use a new scanner for a
    new walk.
    """

    def __init__(self, options: Optional[ScanOptions] = None):
        self.options = options or ScanOptions()
        self._cancel_event = threading.Event()

    def walk(
        self,
        root_path: Path | str,
        progress_callback: Optional[Callable[[ScanProgress], None]] = None
    ) -> WalkResult:
        """
        Walk a directory tree.

        Args:
            root_path: Root directory to walk
            progress_callback: Called after each directory is visited

        Returns:
            WalkResult with the (possibly partial) Tree and path-scoped errors

        Raises:
            FileNotFoundError: if the root does not exist
            NotADirectoryError: if the root is not a directory
        """
        start_time = time.time()

        root_path = Path(root_path).resolve()

        if not root_path.exists():
            logging.error(f"FolderScanner - Root path not found: {root_path}")
            raise FileNotFoundError(f"Directory not found: {root_path}")

        if not root_path.is_dir():
            logging.error(f"FolderScanner - Root path is not a directory: {root_path}")
            raise NotADirectoryError(f"Not a directory: {root_path}")

        logging.info(f"FolderScanner - Exploring directory {root_path}")

        entries: dict[RelativePath, Entry] = {}
        errors: list[PathError] = []
        files_found = 0
        directories_found = 0
        cancelled = False

        with ThreadPoolExecutor(
            max_workers=max(1, self.options.max_workers),
            thread_name_prefix='bkup-walk'
        ) as executor:
            pending: set[Future] = {
                executor.submit(self._visit_directory, root_path, (), IgnoreMatcher())
            }

            while pending:
                done, pending = wait(pending, return_when=FIRST_COMPLETED)

                for future in done:
                    visit = future.result()

                    for entry in visit.entries:
                        entries[entry.relative_path] = entry
                        if entry.is_file:
                            files_found += 1
                        else:
                            directories_found += 1
                    errors.extend(visit.errors)

                    if self._cancel_event.is_set():
                        if visit.subdirectories:
                            cancelled = True
                        continue

                    for directory, relative_path, matcher in visit.subdirectories:
                        pending.add(executor.submit(
                            self._visit_directory, directory, relative_path, matcher
                        ))

                    if progress_callback:
                        progress_callback(ScanProgress(
                            current_path=_display_path(visit.relative_path),
                            files_found=files_found,
                            directories_found=directories_found,
                            errors=len(errors),
                            pending_directories=len(pending),
                        ))

        if cancelled:
            logging.info(f"FolderScanner - Walk of {root_path} cancelled, returning partial tree")

        errors.sort(key=lambda error: error.path)
        tree = Tree(root_path, entries)
        logging.debug(
            f"FolderScanner - {root_path}: {tree.file_count} files, "
            f"{tree.directory_count} directories, {len(errors)} errors"
        )

        return WalkResult(
            tree=tree,
            errors=errors,
            cancelled=cancelled,
            scan_time=time.time() - start_time,
        )

    def cancel(self) -> None:
        """
        Cancel an ongoing or upcoming walk.

        Directories not yet dispatched are skipped; units already running
        finish and their results are kept. A walk started after cancel only
        visits the root.
        """
        self._cancel_event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _visit_directory(
        self,
        directory: Path,
        relative_path: RelativePath,
        matcher: IgnoreMatcher
    ) -> _DirectoryVisit:
        """List one directory and record its surviving children."""
        visit = _DirectoryVisit(relative_path=relative_path)

        if self.options.ignore_enabled:
            rule_set, parse_warnings = IgnoreRuleSet.load(
                directory, relative_path, self.options.ignore_file_name
            )
            visit.errors.extend(parse_warnings)
            matcher = matcher.extend(rule_set)

        try:
            with os.scandir(directory) as it:
                children = sorted(it, key=lambda child: child.name)
        except OSError as e:
            logging.warning(f"FolderScanner - Cannot read directory {directory}: {e}")
            visit.errors.append(PathError(
                path=_display_path(relative_path),
                kind=ErrorKind.PATH_UNREADABLE,
                message=e.strerror or str(e),
            ))
            return visit

        for child in children:
            child_path = relative_path + (child.name,)

            try:
                if child.is_symlink():
                    logging.debug(f"FolderScanner - Skipping symlink {child.path}")
                    continue
                is_dir = child.is_dir(follow_symlinks=False)
                is_file = not is_dir and child.is_file(follow_symlinks=False)
            except OSError as e:
                visit.errors.append(self._metadata_error(child_path, e))
                continue

            if not is_dir and not is_file:
                logging.debug(f"FolderScanner - Skipping special file {child.path}")
                continue

            if matcher.is_excluded(child_path, is_dir):
                logging.info(f"FolderScanner - Ignoring {child.path}")
                continue

            try:
                stat_result = child.stat(follow_symlinks=False)
                modified_at = datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc)
            except (OSError, ValueError, OverflowError) as e:
                visit.errors.append(self._metadata_error(child_path, e))
                continue

            if is_dir:
                logging.debug(f"FolderScanner - New sub-directory: {child.path}")
                visit.entries.append(Entry(child_path, EntryKind.DIRECTORY, modified_at))
                visit.subdirectories.append((Path(child.path), child_path, matcher))
            else:
                logging.debug(f"FolderScanner - New file: {child.path}")
                visit.entries.append(
                    Entry(child_path, EntryKind.FILE, modified_at, stat_result.st_size)
                )

        return visit

    @staticmethod
    def _metadata_error(relative_path: RelativePath, error: Exception) -> PathError:
        path = _display_path(relative_path)
        logging.warning(f"FolderScanner - Metadata unavailable for {path}: {error}")
        return PathError(
            path=path,
            kind=ErrorKind.METADATA_UNAVAILABLE,
            message=str(error),
        )
