"""Tests for the command line entry point."""

import json
import logging
import os
from datetime import timedelta

import pytest

import main
from bkup.core.folder import scanner as scanner_module
from bkup.services.settings import SettingsManager

from conftest import BASE_TIME


def run(*argv):
    return main.main(["update", *argv])


class TestParseArguments:
    """Tests for parse_arguments."""

    def test_update_arguments(self):
        """All update flags are parsed."""
        args = main.parse_arguments([
            "update", "-s", "src", "-d", "dst", "--ignore",
            "--accuracy", "0", "--workers", "3", "--dry-run",
        ])

        assert args.command == "update"
        assert args.source == "src"
        assert args.dest == "dst"
        assert args.ignore is True
        assert args.accuracy_ms == 0
        assert args.workers == 3
        assert args.dry_run

    def test_unset_flags_are_none(self):
        """Flags left out do not override settings file values."""
        args = main.parse_arguments(["update", "--source", "s", "--dest", "d"])

        assert args.ignore is None
        assert args.accuracy_ms is None
        assert args.workers is None

    def test_source_is_required(self):
        """update without --source is a usage error."""
        with pytest.raises(SystemExit) as exc_info:
            main.parse_arguments(["update", "--dest", "d"])
        assert exc_info.value.code == 2

    def test_negative_accuracy_rejected(self):
        """A negative accuracy is a usage error."""
        with pytest.raises(SystemExit):
            main.parse_arguments(["update", "-s", "s", "-d", "d", "-a", "-5"])


class TestBuildSettings:
    """Tests for merging the settings file with the command line."""

    def test_settings_file_supplies_defaults(self, tmp_path):
        """Values not given on the command line come from the settings file."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"ignore_enabled": True, "accuracy_ms": 500}))
        args = main.parse_arguments(["update", "-s", "s", "-d", "d"])

        settings = main.build_settings(args, SettingsManager(path))

        assert settings.ignore_enabled is True
        assert settings.accuracy_tolerance == timedelta(milliseconds=500)

    def test_command_line_wins(self, tmp_path):
        """Command line values override the settings file."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"accuracy_ms": 500, "max_workers": 2}))
        args = main.parse_arguments(["update", "-s", "s", "-d", "d", "-a", "0", "-w", "5"])

        settings = main.build_settings(args, SettingsManager(path))

        assert settings.accuracy_tolerance == timedelta(0)
        assert settings.max_workers == 5

    def test_default_accuracy_is_two_seconds(self, tmp_path):
        """Without any configuration the accuracy is 2000ms."""
        args = main.parse_arguments(["update", "-s", "s", "-d", "d"])

        settings = main.build_settings(args, SettingsManager(tmp_path / "none.json"))

        assert settings.accuracy_tolerance == timedelta(seconds=2)


class TestMain:
    """Tests for main exit codes and output."""

    def test_successful_update(self, source_dir, dest_dir, write_file, capsys):
        """A clean update exits 0 and prints a summary."""
        write_file(source_dir, "docs/readme.txt", "hello", mtime=BASE_TIME)

        code = run("-s", str(source_dir), "-d", str(dest_dir), "--log-level", "ERROR")

        assert code == main.EXIT_OK
        assert (dest_dir / "docs" / "readme.txt").exists()
        out = capsys.readouterr().out
        assert "1 directories created, 1 files copied (5 bytes), 0 failures" in out

    def test_nothing_to_sync(self, source_dir, dest_dir, capsys):
        """An up-to-date destination says so."""
        code = run("-s", str(source_dir), "-d", str(dest_dir), "--log-level", "ERROR")

        assert code == main.EXIT_OK
        assert "Nothing to sync" in capsys.readouterr().out

    def test_dry_run_lists_actions(self, source_dir, dest_dir, write_file, capsys):
        """A dry run prints the planned actions and writes nothing."""
        write_file(source_dir, "a.txt", "a")

        code = run("-s", str(source_dir), "-d", str(dest_dir), "-n", "--log-level", "ERROR")

        assert code == main.EXIT_OK
        out = capsys.readouterr().out
        assert "Dry run: 1 actions planned" in out
        assert "copy a.txt (missing)" in out
        assert not (dest_dir / "a.txt").exists()

    def test_missing_source_exits_2(self, tmp_path, dest_dir, capsys):
        """A configuration error exits 2 with a message on stderr."""
        code = run("-s", str(tmp_path / "nope"), "-d", str(dest_dir), "--log-level", "CRITICAL")

        assert code == main.EXIT_CONFIG_ERROR
        assert "error:" in capsys.readouterr().err

    def test_failures_exit_1(self, source_dir, dest_dir, write_file, monkeypatch, capsys):
        """Path failures exit 1 and are listed."""
        write_file(source_dir, "locked/secret.txt", "s")
        real_scandir = os.scandir

        def fake_scandir(path):
            if os.path.basename(str(path)) == "locked":
                raise PermissionError(13, "Permission denied", str(path))
            return real_scandir(path)

        monkeypatch.setattr(scanner_module.os, "scandir", fake_scandir)

        code = run("-s", str(source_dir), "-d", str(dest_dir), "--log-level", "CRITICAL")

        assert code == main.EXIT_FAILURES
        out = capsys.readouterr().out
        assert "Failures (1):" in out
        assert "PATH_UNREADABLE: locked" in out

    def test_log_file(self, source_dir, dest_dir, tmp_path):
        """--log-file also writes the log to a file."""
        log_file = tmp_path / "logs" / "bkup.log"

        run("-s", str(source_dir), "-d", str(dest_dir), "--log-level", "INFO",
            "--log-file", str(log_file))

        assert "Starting bkup" in log_file.read_text(encoding="utf-8")

    def test_log_level_from_environment(self, source_dir, dest_dir, monkeypatch):
        """BKUP_LOG sets the log level when --log-level is absent."""
        monkeypatch.setenv("BKUP_LOG", "WARNING")

        run("-s", str(source_dir), "-d", str(dest_dir))

        assert logging.getLogger().level == logging.WARNING

    def test_log_level_from_dotenv(self, source_dir, dest_dir, tmp_path):
        """A .env file in the working directory supplies BKUP_LOG."""
        (tmp_path / ".env").write_text("BKUP_LOG=WARNING\n", encoding="utf-8")

        run("-s", str(source_dir), "-d", str(dest_dir))

        assert logging.getLogger().level == logging.WARNING

    def test_environment_wins_over_dotenv(self, source_dir, dest_dir, tmp_path, monkeypatch):
        """A variable already set is not replaced by .env."""
        (tmp_path / ".env").write_text("BKUP_LOG=WARNING\n", encoding="utf-8")
        monkeypatch.setenv("BKUP_LOG", "ERROR")

        run("-s", str(source_dir), "-d", str(dest_dir))

        assert logging.getLogger().level == logging.ERROR

    def test_destination_inside_source_exits_2(self, source_dir, write_file, capsys):
        """Backing up a tree into itself is a configuration error."""
        write_file(source_dir, "a.txt", "a")

        code = run("-s", str(source_dir), "-d", str(source_dir / "backup"),
                   "--log-level", "CRITICAL")

        assert code == main.EXIT_CONFIG_ERROR
        assert "inside the source" in capsys.readouterr().err
        assert not (source_dir / "backup").exists()
