"""Tests for configuration loading, migration and persistence."""

import json
import os
import sys

import pytest

from app_config import AppConfig, ConfigManager, NOTICE_FILE_NAME


class TestAppConfig:
    """Tests for the AppConfig dataclass."""

    def test_defaults(self):
        """Test the default schedule: 40 backups per day at 20 ticks per second."""
        config = AppConfig()
        assert config.auto_backup_enabled is True
        assert config.auto_backup_times == 40
        assert config.ticks_per_second == 20
        assert config.backup_command == ""
        assert len(config.install_id) == 36

    def test_invalid_values_replaced(self):
        """Test that invalid values fall back to safe defaults."""
        config = AppConfig(auto_backup_times=-3, ticks_per_second=0, trigger_wait_ms=-1,
                           backup_timeout_sec=0, cli_countdown_interval_sec=0)
        assert config.auto_backup_times == 0
        assert config.ticks_per_second == 20
        assert config.trigger_wait_ms == 250
        assert config.backup_timeout_sec == 3600.0
        assert config.cli_countdown_interval_sec == 15

    def test_numeric_enabled_flag_coerced(self):
        """Test that a 0/1 enabled flag becomes a bool."""
        assert AppConfig(auto_backup_enabled=0).auto_backup_enabled is False
        assert AppConfig(auto_backup_enabled=1).auto_backup_enabled is True


class TestConfigManager:
    """Tests for ConfigManager file handling."""

    @pytest.fixture
    def manager(self, tmp_path):
        return ConfigManager(base_dir=tmp_path)

    def test_paths_under_base_dir(self, manager, tmp_path):
        """Test that every path lives under the chosen base directory."""
        assert manager.config_path == tmp_path / "config.json"
        assert manager.log_dir == tmp_path / "logs"
        assert manager.state_path == tmp_path / ".temp" / "schedulesystem.yml"
        assert manager.history_path == tmp_path / ".temp" / "schedule-history.json"
        assert manager.portable_mode is False

    def test_missing_config_gives_defaults(self, manager):
        """Test that a first run uses defaults without writing anything."""
        config = manager.load_config()
        assert config.auto_backup_times == 40
        assert not manager.config_path.exists()

    def test_save_and_reload(self, manager):
        """Test that saved schedule settings are read back."""
        config = manager.load_config()
        config.auto_backup_times = 6
        config.auto_backup_enabled = False

        assert manager.save_config(config) is True
        reloaded = manager.load_config()

        assert reloaded.auto_backup_times == 6
        assert reloaded.auto_backup_enabled is False
        assert reloaded.install_id == config.install_id
        assert not manager.config_path.with_suffix(".tmp").exists()

    def test_migrates_version_one_keys(self, manager):
        """Test migration of the original autoBackupTimes / autoBackupEnabled keys."""
        manager.config_path.write_text(json.dumps({"version": 1, "autoBackupTimes": 4, "autoBackupEnabled": 0}))
        config = manager.load_config()

        assert config.version == 2
        assert config.auto_backup_times == 4
        assert config.auto_backup_enabled is False

    def test_unknown_keys_ignored(self, manager):
        """Test that keys from other versions do not break loading."""
        manager.config_path.write_text(json.dumps({"version": 2, "auto_backup_times": 12, "theme": "dark"}))
        assert manager.load_config().auto_backup_times == 12

    def test_corrupted_config_backed_up(self, manager, tmp_path):
        """Test that a corrupted file is preserved and defaults are used."""
        manager.config_path.write_text("{broken json")
        config = manager.load_config()

        assert config.auto_backup_times == 40
        backups = list(tmp_path.glob("config.*.backup"))
        assert len(backups) == 1
        assert backups[0].read_text() == "{broken json"

    def test_load_if_changed(self, manager):
        """Test change detection for edits made by another process."""
        config = manager.load_config()
        manager.save_config(config)
        assert manager.load_if_changed() is None

        stat = manager.config_path.stat()
        data = json.loads(manager.config_path.read_text())
        data["auto_backup_times"] = 2
        manager.config_path.write_text(json.dumps(data))
        os.utime(manager.config_path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

        changed = manager.load_if_changed()
        assert changed is not None
        assert changed.auto_backup_times == 2
        assert manager.load_if_changed() is None

    def test_ensure_data_dirs_writes_notice(self, manager):
        """Test that the state folder and its do-not-delete notice are created."""
        assert manager.ensure_data_dirs() is True
        assert manager.state_dir.is_dir()
        assert manager.log_dir.is_dir()
        assert (manager.state_dir / NOTICE_FILE_NAME).read_text(encoding="utf-8").startswith("WARNING")

    @pytest.mark.skipif(sys.platform.startswith("win"), reason="XDG layout only")
    def test_standard_location_uses_xdg_data_home(self, tmp_path, monkeypatch):
        """Test the per-user data directory outside Windows."""
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path))
        manager = ConfigManager(portable_mode=False)
        assert manager.config_path == tmp_path / "BackupTicker" / "config.json"
