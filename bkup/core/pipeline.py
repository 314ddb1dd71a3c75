"""
Update pipeline: walk both roots, plan, execute.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from bkup.core.folder.comparer import DiffPlanner
from bkup.core.folder.scanner import FolderScanner, ScanOptions
from bkup.core.folder.sync import SyncExecutor, SyncOptions
from bkup.core.models import (
    ErrorKind,
    ExecutionReport,
    PathError,
    SyncProgress,
    Tree,
    UpdateResult,
    WalkResult,
)
from bkup.services.settings import SyncSettings


class BackupUpdater:
    """
    Brings a destination directory up to date with a source directory.

    The two walks run concurrently and both complete before anything is
    written, so planning never races with execution.
    """

    def __init__(self, settings: SyncSettings):
        self.settings = settings
        scan_options = ScanOptions(
            ignore_enabled=settings.ignore_enabled,
            ignore_file_name=settings.ignore_file_name,
            max_workers=settings.max_workers,
        )
        self._source_scanner = FolderScanner(scan_options)
        self._destination_scanner = FolderScanner(scan_options)
        self._planner = DiffPlanner()
        self._executor: Optional[SyncExecutor] = None
        self._cancelled = False

    def run(
        self,
        progress_callback: Optional[Callable[[SyncProgress], None]] = None
    ) -> UpdateResult:
        """
        Run the full update.

        A cancel requested at any point, including before ``run`` is called,
        is honoured: an updater that was cancelled stays cancelled.

        Raises:
            FileNotFoundError, NotADirectoryError, ValueError: configuration
                errors, raised before any walk begins
        """
        self.settings.validate()

        source_root = self.settings.source_root.resolve()
        destination_root = self.settings.destination_root.resolve()

        self._executor = SyncExecutor(
            source_root,
            destination_root,
            SyncOptions(preview_only=self.settings.preview_only),
        )
        if self._cancelled:
            self._executor.cancel()

        source_walk, destination_walk = self._walk_roots(source_root, destination_root)

        conflicts = self._planner.find_conflicts(source_walk.tree, destination_walk.tree)
        actions = self._planner.plan(
            source_walk.tree,
            destination_walk.tree,
            self.settings.accuracy_tolerance,
        )
        logging.debug(f"BackupUpdater - Difference: {[str(action) for action in actions]}")

        if self._cancelled or source_walk.cancelled or destination_walk.cancelled:
            logging.info("BackupUpdater - Cancelled before execution, destination untouched")
            report = ExecutionReport(items_skipped=len(actions), cancelled=True)
            return UpdateResult(source_walk, destination_walk, actions, report, conflicts)

        if actions and not self.settings.preview_only and not destination_root.exists():
            try:
                logging.info(f"BackupUpdater - Creating destination {destination_root}")
                destination_root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logging.error(f"BackupUpdater - Cannot create destination {destination_root}: {e}")
                report = ExecutionReport(
                    items_skipped=len(actions),
                    failures=[PathError(
                        path=str(destination_root),
                        kind=ErrorKind.PATH_UNWRITABLE,
                        message=e.strerror or str(e),
                    )],
                )
                return UpdateResult(source_walk, destination_walk, actions, report, conflicts)

        report = self._executor.execute(actions, progress_callback)

        return UpdateResult(source_walk, destination_walk, actions, report, conflicts)

    def cancel(self) -> None:
        """Cancel the walks and stop execution before the next action."""
        self._cancelled = True
        self._source_scanner.cancel()
        self._destination_scanner.cancel()
        if self._executor:
            self._executor.cancel()

    def _walk_roots(
        self,
        source_root: Path,
        destination_root: Path
    ) -> tuple[WalkResult, WalkResult]:
        """Walk source and destination concurrently."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix='bkup-root') as executor:
            source_future = executor.submit(self._source_scanner.walk, source_root)

            if destination_root.is_dir():
                destination_future = executor.submit(
                    self._destination_scanner.walk, destination_root
                )
                destination_walk = destination_future.result()
            else:
                logging.info(f"BackupUpdater - Destination {destination_root} does not exist yet")
                destination_walk = WalkResult(tree=Tree(destination_root))

            source_walk = source_future.result()

        return source_walk, destination_walk


def run_update(
    settings: SyncSettings,
    progress_callback: Optional[Callable[[SyncProgress], None]] = None
) -> UpdateResult:
    """Run one update with the given settings. See ``BackupUpdater.run``."""
    return BackupUpdater(settings).run(progress_callback)
