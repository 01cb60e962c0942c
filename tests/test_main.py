"""Tests for the command line entry point."""

import json

import pytest

import main


@pytest.fixture
def run_admin(tmp_path, capsys, restore_root_logging):
    """Run an admin command against a throwaway data directory and return its output."""

    def _run(*argv):
        args = main.parse_arguments(["--data-dir", str(tmp_path), *argv])
        try:
            code = main.handle_admin_command(args)
        finally:
            if main.scheduler:
                main.scheduler.shutdown()
        return code, capsys.readouterr().out

    return _run


class TestParseArguments:
    """Tests for argument parsing."""

    def test_defaults_to_run(self):
        args = main.parse_arguments([])
        assert args.command == "run"
        assert args.backup_command is None
        assert args.status_window is False

    def test_run_with_command(self):
        args = main.parse_arguments(["run", "--command", "tar czf world.tgz world", "--status-window"])
        assert args.backup_command == "tar czf world.tgz world"
        assert args.status_window is True

    def test_admin_commands(self):
        assert main.parse_arguments(["set-times", "4"]).times == 4
        args = main.parse_arguments(["debug", "1", "2", "3"])
        assert (args.hours, args.minutes, args.seconds) == (1, 2, 3)
        assert main.parse_arguments(["reset"]).command == "reset"

    def test_non_numeric_times_rejected(self):
        with pytest.raises(SystemExit):
            main.parse_arguments(["set-times", "four"])


class TestAdminCommands:
    """Tests for status / set-times / debug / reset."""

    def test_set_times_persists_schedule(self, run_admin, tmp_path):
        code, out = run_admin("set-times", "4")

        assert code == 0
        assert "Automatic backups set to 4 per day" in out
        assert "Next backup: 06h 00min 00sec" in out
        config = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
        assert config["auto_backup_times"] == 4
        assert "secondsRemaining: 21600" in (tmp_path / ".temp" / "schedulesystem.yml").read_text(encoding="utf-8")

    def test_status_reads_persisted_countdown(self, run_admin):
        run_admin("set-times", "4")
        code, out = run_admin("status")

        assert code == 0
        assert "Mode: interval" in out
        assert "Next backup: 06h 00min 00sec" in out
        assert "Last backup:" in out

    def test_debug_countdown(self, run_admin):
        code, out = run_admin("debug", "0", "0", "30")

        assert code == 0
        assert "Debug timer started" in out
        assert "Mode: debug" in out
        assert "Next backup: 00h 00min 30sec" in out

    def test_set_times_zero_disables(self, run_admin):
        code, out = run_admin("set-times", "0")

        assert code == 0
        assert "Automatic backups disabled" in out
        assert "Mode: disabled" in out

    def test_reset_removes_state(self, run_admin, tmp_path):
        run_admin("debug", "0", "1", "0")
        code, out = run_admin("reset")

        assert code == 0
        assert "Backup schedule reset" in out
        assert "Mode: interval" in out
        assert "Backups today: 0" in out
        assert not (tmp_path / ".temp" / "schedulesystem.yml").exists()

    def test_config_info(self, tmp_path, capsys):
        args = main.parse_arguments(["--data-dir", str(tmp_path), "--config-info"])
        assert main.handle_config_info(args) is True
        out = capsys.readouterr().out
        assert f"State file: {tmp_path / '.temp' / 'schedulesystem.yml'}" in out
        assert "Backups per day: 40" in out
