"""
Main entry point for bkup.

This module handles:
- Command line argument parsing
- Logging configuration (.env aware)
- Settings file defaults
- Running the update and rendering its report
- Exit status
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, List, TextIO

from dotenv import find_dotenv, load_dotenv

from bkup.core.models import PathError, UpdateResult
from bkup.core.pipeline import BackupUpdater
from bkup.services.settings import (
    LOG_LEVEL_ENV,
    SettingsManager,
    SyncSettings,
)


# =============================================================================
# Constants
# =============================================================================

APP_NAME = "bkup"
APP_VERSION = "0.3.0"

UPDATE_CMD = "update"

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class CommandLineArgs:
    """Parsed command line arguments."""
    command: Optional[str] = None
    source: Optional[str] = None
    dest: Optional[str] = None
    ignore: Optional[bool] = None
    ignore_file: Optional[str] = None
    accuracy_ms: Optional[int] = None
    workers: Optional[int] = None
    dry_run: bool = False
    config_file: Optional[str] = None
    log_level: Optional[str] = None
    log_file: Optional[str] = None


# =============================================================================
# Logging Setup
# =============================================================================

class LogFormatter(logging.Formatter):
    """Custom log formatter with colors for console."""

    COLORS = {
        logging.INFO: '\033[32m',      # Green
        logging.WARNING: '\033[33m',   # Yellow
        logging.ERROR: '\033[31m',     # Red
        logging.CRITICAL: '\033[35m',  # Magenta
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelno, '')
            return f"{color}{formatted}{self.RESET}"

        return formatted


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure application logging.

    Args:
        level: Log level string
        log_file: Optional file path for logging

    Returns:
        Root logger instance
    """
    # Get numeric level
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers
    root_logger.handlers.clear()

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(LogFormatter(use_colors=True))
    root_logger.addHandler(console_handler)

    # File handler
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(
            log_file,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(LogFormatter(use_colors=False))
        root_logger.addHandler(file_handler)

    return root_logger


# =============================================================================
# Command Line Parsing
# =============================================================================

def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}")
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value!r}")
    return number


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def parse_arguments(args: Optional[List[str]] = None) -> CommandLineArgs:
    """
    Parse command line arguments.

    Args:
        args: Arguments to parse (defaults to sys.argv)

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="One-way backup of a directory tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s update --source ~/docs --dest /mnt/backup/docs
  %(prog)s update --source src --dest dst --ignore --accuracy 0
  %(prog)s update --source src --dest dst --dry-run
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'{APP_NAME} {APP_VERSION}'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    update = subparsers.add_parser(
        UPDATE_CMD,
        help='Copy new and newer files from source to destination'
    )
    update.add_argument(
        '-s', '--source',
        required=True,
        help='Source directory'
    )
    update.add_argument(
        '-d', '--dest',
        required=True,
        help='Destination directory'
    )

    # Ignore files
    update.add_argument(
        '-i', '--ignore',
        action='store_true',
        default=None,
        help='Honour ignore files found in both trees'
    )
    update.add_argument(
        '--ignore-file',
        metavar='NAME',
        help='Ignore file name (default: .bkignore)'
    )

    # Comparison and performance
    update.add_argument(
        '-a', '--accuracy',
        type=_non_negative_int,
        metavar='MS',
        help='Modification time accuracy in milliseconds (default: 2000)'
    )
    update.add_argument(
        '-w', '--workers',
        type=_positive_int,
        metavar='N',
        help='Directory scanning threads per tree (default: 8)'
    )
    update.add_argument(
        '-n', '--dry-run',
        action='store_true',
        help='Show what would be done without writing anything'
    )

    # Configuration
    update.add_argument(
        '-c', '--config',
        help='Settings file path'
    )

    # Logging
    update.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help=f'Log level (default: ${LOG_LEVEL_ENV} or INFO)'
    )
    update.add_argument(
        '--log-file',
        help='Also write the log to this file'
    )

    parsed = parser.parse_args(args)

    return CommandLineArgs(
        command=parsed.command,
        source=parsed.source,
        dest=parsed.dest,
        ignore=parsed.ignore,
        ignore_file=parsed.ignore_file,
        accuracy_ms=parsed.accuracy,
        workers=parsed.workers,
        dry_run=parsed.dry_run,
        config_file=parsed.config,
        log_level=parsed.log_level,
        log_file=parsed.log_file,
    )


def build_settings(args: CommandLineArgs, manager: SettingsManager) -> SyncSettings:
    """Merge command line arguments over the settings file defaults."""
    defaults = manager.settings

    accuracy_ms = args.accuracy_ms if args.accuracy_ms is not None else defaults.accuracy_ms

    return SyncSettings(
        source_root=Path(args.source).expanduser(),
        destination_root=Path(args.dest).expanduser(),
        ignore_enabled=args.ignore if args.ignore is not None else defaults.ignore_enabled,
        ignore_file_name=args.ignore_file or defaults.ignore_file_name,
        accuracy_tolerance=timedelta(milliseconds=accuracy_ms),
        max_workers=args.workers or defaults.max_workers,
        preview_only=args.dry_run,
    )


# =============================================================================
# Report Rendering
# =============================================================================

def _render_errors(title: str, errors: list[PathError], out: TextIO) -> None:
    if not errors:
        return
    print(f"{title} ({len(errors)}):", file=out)
    for error in errors:
        print(f"  {error}", file=out)


def render_result(result: UpdateResult, dry_run: bool = False, out: Optional[TextIO] = None) -> None:
    """Print a human readable summary of an update."""
    out = out or sys.stdout
    report = result.report

    if dry_run:
        print(f"Dry run: {len(result.actions)} actions planned", file=out)
        for action in result.actions:
            print(f"  {action}", file=out)
    elif result.nothing_to_sync:
        print("Nothing to sync: destination is up to date", file=out)
    else:
        print(
            f"{report.directories_created} directories created, "
            f"{report.files_copied} files copied ({report.bytes_copied} bytes), "
            f"{len(result.failures)} failures",
            file=out,
        )

    if report.cancelled:
        print("Update cancelled before completion", file=out)

    _render_errors("Warnings", result.warnings, out)
    _render_errors("Failures", result.failures, out)


# =============================================================================
# Signal Handling
# =============================================================================

def _handled_signals() -> list[int]:
    if sys.platform == 'win32':
        return [signal.SIGINT]
    return [signal.SIGINT, signal.SIGTERM]


def setup_signal_handlers(updater: BackupUpdater) -> dict:
    """
    Cancel the update on SIGINT/SIGTERM instead of dying mid-copy.

    Returns:
        The previous handlers, for restore_signal_handlers
    """
    def _signal_handler(signum, frame) -> None:
        logging.info(f"Received signal {signum}, cancelling update...")
        updater.cancel()

    return {signum: signal.signal(signum, _signal_handler) for signum in _handled_signals()}


def restore_signal_handlers(previous: dict) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


# =============================================================================
# Main Function
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Application main entry point.

    Returns:
        Exit code (0 for success, 1 when any path failed, 2 on
        configuration errors)
    """
    args = parse_arguments(argv)

    # Variables already set in the environment win over .env
    load_dotenv(find_dotenv(usecwd=True))

    manager = SettingsManager(Path(args.config_file) if args.config_file else None)

    level = args.log_level or os.environ.get(LOG_LEVEL_ENV) or manager.settings.log_level
    logger = setup_logging(level, Path(args.log_file) if args.log_file else None)
    logger.info(f"Starting {APP_NAME} v{APP_VERSION}")

    try:
        settings = build_settings(args, manager)
        updater = BackupUpdater(settings)
        previous_handlers = setup_signal_handlers(updater)
        try:
            result = updater.run()
        finally:
            restore_signal_handlers(previous_handlers)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot run update: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    render_result(result, dry_run=settings.preview_only)

    if not result.success:
        logger.info(f"{APP_NAME} exiting with failures")
        return EXIT_FAILURES

    return EXIT_OK


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == '__main__':
    sys.exit(main())
