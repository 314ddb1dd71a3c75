"""
Sync action executor.

Applies a planned list of SyncActions to the destination with:
- Idempotent directory creation
- Chunked file copies through a temporary file, carrying over timestamps
  and permissions
- Per-action error isolation
- Preview (dry run) mode
- Progress reporting and cancellation
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from bkup.core.models import (
    ActionType,
    ErrorKind,
    ExecutionReport,
    PathError,
    SyncAction,
    SyncProgress,
)


TEMP_SUFFIX = '.bkup-tmp'


class _SourceReadError(OSError):
    """Wraps a failure on the source side of a copy."""


@dataclass
class SyncOptions:
    """Options for executing a sync plan."""
    preview_only: bool = False     # Don't actually make changes
    buffer_size: int = 65536
    preserve_timestamps: bool = True
    preserve_permissions: bool = True


class SyncExecutor:
    """
    Applies sync actions from a source root onto a destination root.

    Actions are processed in the given order; one failing action never
    prevents the following ones from running.
    """

    def __init__(
        self,
        source_root: Path | str,
        destination_root: Path | str,
        options: Optional[SyncOptions] = None
    ):
        self.source_root = Path(source_root)
        self.destination_root = Path(destination_root)
        self.options = options or SyncOptions()
        self._cancelled = False

    def execute(
        self,
        actions: list[SyncAction],
        progress_callback: Optional[Callable[[SyncProgress], None]] = None
    ) -> ExecutionReport:
        """
        Execute a list of sync actions.

        Args:
            actions: Actions in planner order
            progress_callback: Called before each action

        Returns:
            ExecutionReport with counts and path-scoped failures
        """
        start_time = time.time()

        report = ExecutionReport()
        total_items = len(actions)
        total_bytes = sum(action.size for action in actions if action.is_copy)

        logging.info(f"SyncExecutor - Updating destination {self.destination_root}")

        for i, action in enumerate(actions):
            if self._cancelled:
                report.cancelled = True
                report.items_skipped += total_items - i
                logging.info(f"SyncExecutor - Cancelled, {total_items - i} actions not run")
                break

            if progress_callback:
                progress_callback(SyncProgress(
                    current_item=action.path_str,
                    items_completed=i,
                    total_items=total_items,
                    bytes_copied=report.bytes_copied,
                    total_bytes=total_bytes,
                    current_action=action.action_type.name,
                ))

            if self.options.preview_only:
                logging.info(f"SyncExecutor - Would {action}")
                report.items_skipped += 1
                continue

            try:
                if action.action_type == ActionType.CREATE_DIRECTORY:
                    self._create_directory(action)
                    report.directories_created += 1

                elif action.action_type == ActionType.COPY_FILE:
                    report.bytes_copied += self._copy_file(action)
                    report.files_copied += 1

            except _SourceReadError as e:
                report.failures.append(self._failure(action, ErrorKind.PATH_UNREADABLE, e))
            except OSError as e:
                report.failures.append(self._failure(action, ErrorKind.PATH_UNWRITABLE, e))

        report.duration = time.time() - start_time
        logging.info(
            f"SyncExecutor - Update completed: {report.directories_created} directories created, "
            f"{report.files_copied} files copied, {report.items_failed} failed"
        )
        return report

    def cancel(self) -> None:
        """
        Stop before the next action. A copy in progress is completed.

        A cancel requested before ``execute`` starts skips every action.
        """
        self._cancelled = True

    def _create_directory(self, action: SyncAction) -> None:
        dest = self.destination_root.joinpath(*action.relative_path)
        logging.info(f"SyncExecutor - Creating directory {dest}")
        dest.mkdir(parents=True, exist_ok=True)

    def _copy_file(self, action: SyncAction) -> int:
        """
        Copy one file from source to destination.

        The data goes to a temporary file beside the destination, which
        replaces the destination only once the copy and its metadata are
        complete. A failed copy leaves the destination as it was.

        Returns bytes copied.
        """
        source = self.source_root.joinpath(*action.relative_path)
        dest = self.destination_root.joinpath(*action.relative_path)
        logging.info(f"SyncExecutor - Copying file {source} to {dest} ({action.reason.name.lower()})")

        try:
            src = open(source, 'rb')
        except OSError as e:
            raise _SourceReadError(e.errno, e.strerror, e.filename) from e

        bytes_copied = 0

        with src:
            fd, temp_name = tempfile.mkstemp(
                prefix=f'.{dest.name}.', suffix=TEMP_SUFFIX, dir=dest.parent
            )
            temp_path = Path(temp_name)
            try:
                with os.fdopen(fd, 'wb') as dst:
                    source_stat = os.fstat(src.fileno())
                    while True:
                        try:
                            chunk = src.read(self.options.buffer_size)
                        except OSError as e:
                            raise _SourceReadError(e.errno, e.strerror, e.filename) from e
                        if not chunk:
                            break
                        dst.write(chunk)
                        bytes_copied += len(chunk)

                # Preserve metadata
                if self.options.preserve_permissions:
                    shutil.copymode(source, temp_path)
                elif dest.exists():
                    shutil.copymode(dest, temp_path)

                if self.options.preserve_timestamps:
                    os.utime(temp_path, ns=(source_stat.st_atime_ns, source_stat.st_mtime_ns))

                os.replace(temp_path, dest)
            except Exception:
                logging.debug(f"SyncExecutor - Removing partial copy {temp_path}")
                temp_path.unlink(missing_ok=True)
                raise

        return bytes_copied

    @staticmethod
    def _failure(action: SyncAction, kind: ErrorKind, error: OSError) -> PathError:
        logging.warning(f"SyncExecutor - Failed to {action}: {error}")
        return PathError(
            path=action.path_str,
            kind=kind,
            message=error.strerror or str(error),
        )


def execute(
    actions: list[SyncAction],
    source_root: Path | str,
    destination_root: Path | str,
    options: Optional[SyncOptions] = None
) -> ExecutionReport:
    """Apply actions with a default executor. See ``SyncExecutor.execute``."""
    return SyncExecutor(source_root, destination_root, options).execute(actions)

