"""
Tree comparison and sync planning.

Compares a source Tree with a destination Tree and decides, per source path:
- Directories missing from destination (create)
- Files missing from destination (copy)
- Files newer in source beyond the accuracy tolerance (copy)

Destination-only paths are never touched: synchronization is one-way and
never deletes.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from bkup.core.models import (
    CopyReason,
    Entry,
    ErrorKind,
    PathError,
    RelativePath,
    SyncAction,
    Tree,
)


ZERO_TOLERANCE = timedelta(0)


def is_newer(source: datetime, destination: datetime, tolerance: timedelta = ZERO_TOLERANCE) -> bool:
    """
    Check whether ``source`` is newer than ``destination`` beyond ``tolerance``.

    Timestamps closer than the tolerance (in either direction) are considered
    equal, which absorbs filesystems that truncate modification times.
    """
    return source - destination > tolerance


def _is_within(relative_path: RelativePath, blocked: set[RelativePath]) -> bool:
    return any(relative_path[:depth] in blocked for depth in range(1, len(relative_path)))


class DiffPlanner:
    """
    Plans the actions that bring a destination up to date with a source.

    Planning is a pure function of its inputs: the same two Trees and
    tolerance always give the same action list, in source key order, so a
    directory is always created before anything copied into it.
    """

    def plan(
        self,
        source: Tree,
        destination: Tree,
        tolerance: timedelta = ZERO_TOLERANCE
    ) -> list[SyncAction]:
        """
        Compare two Trees.

        Args:
            source: Tree of the source root
            destination: Tree of the destination root
            tolerance: Accuracy tolerance for modification times

        Returns:
            Ordered list of SyncActions

        Raises:
            ValueError: if the tolerance is negative
        """
        if tolerance < ZERO_TOLERANCE:
            raise ValueError(f"Accuracy tolerance must not be negative: {tolerance}")

        logging.info("DiffPlanner - Computing difference")

        actions: list[SyncAction] = []
        blocked: set[RelativePath] = set()

        for relative_path, entry in source.items():
            if blocked and _is_within(relative_path, blocked):
                continue

            other = destination.get(relative_path)
            action = self._plan_entry(entry, other, tolerance)

            if other is not None and other.kind != entry.kind:
                if entry.is_directory:
                    blocked.add(relative_path)
                continue

            if action is not None:
                logging.debug(f"DiffPlanner - {action}")
                actions.append(action)

        logging.debug(f"DiffPlanner - Planned {len(actions)} actions")
        return actions

    def find_conflicts(self, source: Tree, destination: Tree) -> list[PathError]:
        """
        Find paths that are a file on one side and a directory on the other.

        Nothing is planned for these paths (nor beneath a conflicting source
        directory); they are reported as failures instead.
        """
        conflicts: list[PathError] = []
        blocked: set[RelativePath] = set()

        for relative_path, entry in source.items():
            if blocked and _is_within(relative_path, blocked):
                continue

            other = destination.get(relative_path)
            if other is None or other.kind == entry.kind:
                continue

            if entry.is_directory:
                blocked.add(relative_path)
            logging.warning(
                f"DiffPlanner - Cannot sync {entry.path_str}: "
                f"{entry.kind.name.lower()} in source, {other.kind.name.lower()} in destination"
            )
            conflicts.append(PathError(
                path=entry.path_str,
                kind=ErrorKind.TYPE_MISMATCH,
                message=(
                    f"Source is a {entry.kind.name.lower()}, "
                    f"destination is a {other.kind.name.lower()}"
                ),
            ))

        return conflicts

    @staticmethod
    def _plan_entry(
        entry: Entry,
        other: Entry | None,
        tolerance: timedelta
    ) -> SyncAction | None:
        """Decide the action for one source entry."""
        if other is None:
            if entry.is_directory:
                return SyncAction.create_directory(entry.relative_path)
            return SyncAction.copy_file(entry.relative_path, CopyReason.MISSING, entry.size)

        if entry.is_file and other.is_file:
            if is_newer(entry.modified_at, other.modified_at, tolerance):
                return SyncAction.copy_file(entry.relative_path, CopyReason.NEWER, entry.size)

        return None


def plan(
    source: Tree,
    destination: Tree,
    tolerance: timedelta = ZERO_TOLERANCE
) -> list[SyncAction]:
    """Plan the sync actions for two Trees. See ``DiffPlanner.plan``."""
    return DiffPlanner().plan(source, destination, tolerance)
