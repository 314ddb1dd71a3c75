"""Tests for settings loading and validation."""

import json
import os
from datetime import timedelta
from pathlib import Path

import pytest

from bkup.services.settings import (
    DEFAULT_ACCURACY_MS,
    ApplicationSettings,
    SettingsManager,
    SyncSettings,
)


class TestSettingsManager:
    """Tests for the settings file."""

    def test_missing_file_gives_defaults(self, tmp_path):
        """No settings file means default settings."""
        manager = SettingsManager(tmp_path / "settings.json")

        assert manager.settings == ApplicationSettings()
        assert manager.settings.accuracy_tolerance == timedelta(milliseconds=DEFAULT_ACCURACY_MS)

    def test_corrupt_file_gives_defaults(self, tmp_path):
        """Invalid JSON falls back to defaults."""
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")

        assert SettingsManager(path).load() == ApplicationSettings()

    def test_non_object_file_gives_defaults(self, tmp_path):
        """A JSON list is not a settings object."""
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]", encoding="utf-8")

        assert SettingsManager(path).load() == ApplicationSettings()

    def test_values_are_read(self, tmp_path):
        """Stored values override the defaults."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "ignore_enabled": True,
            "accuracy_ms": 0,
            "log_level": "DEBUG",
        }), encoding="utf-8")

        settings = SettingsManager(path).load()

        assert settings.ignore_enabled is True
        assert settings.accuracy_ms == 0
        assert settings.log_level == "DEBUG"
        assert settings.max_workers == ApplicationSettings().max_workers

    def test_wrongly_typed_values_keep_defaults(self, tmp_path):
        """Values of the wrong type are replaced by defaults."""
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({
            "ignore_enabled": "yes",
            "accuracy_ms": True,
            "max_workers": "many",
        }), encoding="utf-8")

        assert SettingsManager(path).load() == ApplicationSettings()

    def test_save_then_load(self, tmp_path):
        """Saved settings are read back by a new manager."""
        path = tmp_path / "nested" / "settings.json"
        saved = ApplicationSettings(ignore_enabled=True, ignore_file_name=".nobackup", max_workers=2)

        assert SettingsManager(path).save(saved)
        assert SettingsManager(path).load() == saved

    def test_save_without_settings(self, tmp_path):
        """Nothing to save returns False."""
        assert not SettingsManager(tmp_path / "settings.json").save()

    @pytest.mark.skipif(os.name == "nt", reason="XDG paths are POSIX only")
    def test_default_path_uses_xdg_config_home(self, tmp_path, monkeypatch):
        """The settings file lives under $XDG_CONFIG_HOME/bkup."""
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert SettingsManager().settings_path == tmp_path / "bkup" / "settings.json"


class TestSyncSettingsValidate:
    """Tests for SyncSettings.validate."""

    def test_valid(self, source_dir, dest_dir):
        """Existing directories validate."""
        SyncSettings(source_dir, dest_dir).validate()

    def test_roots_become_paths(self, source_dir, dest_dir):
        """String roots are converted to paths."""
        settings = SyncSettings(str(source_dir), str(dest_dir))

        assert isinstance(settings.source_root, Path)
        assert isinstance(settings.destination_root, Path)

    def test_missing_destination_is_valid(self, source_dir, tmp_path):
        """A destination that does not exist yet is fine."""
        SyncSettings(source_dir, tmp_path / "later").validate()

    def test_missing_source(self, tmp_path, dest_dir):
        """A missing source is rejected."""
        with pytest.raises(FileNotFoundError):
            SyncSettings(tmp_path / "nope", dest_dir).validate()

    def test_source_is_file(self, tmp_path, dest_dir):
        """A source that is a file is rejected."""
        source = tmp_path / "file.txt"
        source.write_text("x")

        with pytest.raises(NotADirectoryError):
            SyncSettings(source, dest_dir).validate()

    def test_destination_inside_source(self, source_dir):
        """A destination below the source would be copied into itself."""
        with pytest.raises(ValueError):
            SyncSettings(source_dir, source_dir / "backup").validate()

    def test_destination_equal_to_source(self, source_dir):
        """The same directory cannot be both roots."""
        with pytest.raises(ValueError):
            SyncSettings(source_dir, source_dir / ".").validate()

    def test_source_inside_destination_is_valid(self, tmp_path):
        """Backing up a subdirectory into its parent is allowed."""
        source = tmp_path / "outer" / "inner"
        source.mkdir(parents=True)
        SyncSettings(source, tmp_path / "outer").validate()

    def test_zero_workers(self, source_dir, dest_dir):
        """At least one worker is required."""
        with pytest.raises(ValueError):
            SyncSettings(source_dir, dest_dir, max_workers=0).validate()

    @pytest.mark.parametrize("name", ["", "sub/.bkignore"])
    def test_bad_ignore_file_name(self, source_dir, dest_dir, name):
        """The ignore file name must be a plain file name."""
        with pytest.raises(ValueError):
            SyncSettings(source_dir, dest_dir, ignore_file_name=name).validate()
