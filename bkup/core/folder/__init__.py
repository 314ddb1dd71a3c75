"""
Folder synchronization module.

Provides functionality for:
- Concurrent recursive directory scanning
- Cascading gitignore-style ignore files
- One-way sync planning with timestamp tolerance
- Sync execution with per-action error isolation
"""

from bkup.core.folder.ignore import (
    DEFAULT_IGNORE_FILE_NAME,
    IgnoreMatcher,
    IgnorePatternError,
    IgnoreRule,
    IgnoreRuleSet,
)
from bkup.core.folder.scanner import (
    FolderScanner,
    ScanOptions,
    ScanProgress,
)
from bkup.core.folder.comparer import (
    DiffPlanner,
    is_newer,
    plan,
)
from bkup.core.folder.sync import (
    SyncExecutor,
    SyncOptions,
    execute,
)

__all__ = [
    # Ignore
    'DEFAULT_IGNORE_FILE_NAME',
    'IgnoreMatcher',
    'IgnorePatternError',
    'IgnoreRule',
    'IgnoreRuleSet',
    # Scanner
    'FolderScanner',
    'ScanOptions',
    'ScanProgress',
    # Comparer
    'DiffPlanner',
    'is_newer',
    'plan',
    # Sync
    'SyncExecutor',
    'SyncOptions',
    'execute',
]
