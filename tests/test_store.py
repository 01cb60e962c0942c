"""Tests for scheduler state and history persistence."""

import json
from datetime import datetime, date

import pytest

from app_store import (
    FileStateStore,
    HistoryStore,
    InMemoryStateStore,
    format_state,
    parse_local_datetime,
    parse_state,
)
from app_types import SchedulerState, StoreStatus, DEFAULT_INTERVAL_SEC, UNSET_SECONDS


class TestRecordFormat:
    """Tests for the key: value record."""

    def test_format_writes_one_pair_per_line(self):
        """Test the on-disk layout of a populated state."""
        state = SchedulerState(
            last_backup_time=datetime(2026, 10, 19, 8, 30, 0),
            debug_mode_active=True,
            debug_seconds_remaining=42,
            interval_seconds=21600.0,
            seconds_remaining=-1,
            tick_counter=13,
        )
        assert format_state(state).splitlines() == [
            "lastBackupTime: 2026-10-19T08:30:00",
            "isDebugTimerActive: true",
            "debugSeconds: 42",
            "lastIntervalSeconds: 21600.0",
            "secondsRemaining: -1",
            "debugTimerFired: false",
        ]

    def test_tick_counter_not_persisted(self):
        """Test that the runtime tick counter never reaches the record."""
        text = format_state(SchedulerState(tick_counter=19))
        state, _ = parse_state(text)
        assert state.tick_counter == 0

    def test_empty_last_backup_time_is_none(self):
        """Test that an empty timestamp means never backed up."""
        state, malformed = parse_state("lastBackupTime: \nsecondsRemaining: 12\n")
        assert state.last_backup_time is None
        assert state.seconds_remaining == 12
        assert malformed == []

    def test_missing_keys_use_defaults(self):
        """Test that absent keys fall back to defaults, not to the base state."""
        base = SchedulerState(seconds_remaining=99, debug_seconds_remaining=7)
        state, _ = parse_state("isDebugTimerActive: true\n", base)
        assert state.debug_mode_active is True
        assert state.seconds_remaining == UNSET_SECONDS
        assert state.debug_seconds_remaining == 0
        assert state.interval_seconds == DEFAULT_INTERVAL_SEC

    def test_malformed_numbers_keep_previous_values(self):
        """Test that a bad numeric field keeps the caller's previous value."""
        base = SchedulerState(seconds_remaining=99, debug_seconds_remaining=7, interval_seconds=600.0)
        text = "debugSeconds: seven\nlastIntervalSeconds: ???\nsecondsRemaining: 1e3\n"
        state, malformed = parse_state(text, base)

        assert state.debug_seconds_remaining == 7
        assert state.interval_seconds == 600.0
        assert state.seconds_remaining == 99
        assert sorted(malformed) == ["debugSeconds", "lastIntervalSeconds", "secondsRemaining"]

    def test_malformed_timestamp_keeps_previous_value(self):
        """Test that an unparseable timestamp does not fail the whole record."""
        previous = datetime(2026, 1, 1, 12, 0)
        state, malformed = parse_state("lastBackupTime: yesterday\ndebugSeconds: 5\n",
                                       SchedulerState(last_backup_time=previous))
        assert state.last_backup_time == previous
        assert state.debug_seconds_remaining == 5
        assert malformed == ["lastBackupTime"]

    def test_unknown_keys_and_junk_lines_ignored(self):
        """Test that unrelated lines are skipped."""
        state, malformed = parse_state("# comment\nfoo: bar\nsecondsRemaining: 8\nnot a pair\n")
        assert state.seconds_remaining == 8
        assert malformed == []

    def test_negative_values_clamped(self):
        """Test that counters never load below their floor."""
        state, _ = parse_state("debugSeconds: -4\nsecondsRemaining: -20\n")
        assert state.debug_seconds_remaining == 0
        assert state.seconds_remaining == UNSET_SECONDS

    def test_nanosecond_timestamps(self):
        """Test timestamps written with nine fractional digits."""
        parsed = parse_local_datetime("2026-10-19T08:30:00.123456789")
        assert parsed == datetime(2026, 10, 19, 8, 30, 0, 123456)


class TestFileStateStore:
    """Tests for the on-disk state record."""

    def test_missing_record(self, tmp_path):
        """Test that a missing file loads as defaults with MISSING status."""
        result = FileStateStore(tmp_path / "schedulesystem.yml").load()
        assert result.status is StoreStatus.MISSING
        assert result.state == SchedulerState()

    def test_save_then_load(self, tmp_path):
        """Test that a saved record is read back."""
        store = FileStateStore(tmp_path / ".temp" / "schedulesystem.yml")
        state = SchedulerState(last_backup_time=datetime(2026, 10, 19, 9, 0, 0, 500),
                               seconds_remaining=1234, interval_seconds=2160.0)

        assert store.save(state).ok
        result = store.load()

        assert result.ok
        assert result.state == state
        assert not list(store.path.parent.glob("*.tmp"))

    def test_reads_record_written_by_older_version(self, tmp_path):
        """Test a record without the debugTimerFired key."""
        path = tmp_path / "schedulesystem.yml"
        path.write_text(
            "lastBackupTime: 2026-10-18T23:59:59.987654321\n"
            "isDebugTimerActive: false\n"
            "debugSeconds: 0\n"
            "lastIntervalSeconds: 2160.0\n"
            "secondsRemaining: 1500\n",
            encoding="utf-8",
        )
        result = FileStateStore(path).load()
        assert result.ok
        assert result.state.seconds_remaining == 1500
        assert result.state.debug_fired is False
        assert result.state.last_backup_time == datetime(2026, 10, 18, 23, 59, 59, 987654)

    def test_unreadable_record_reports_error(self, tmp_path):
        """Test that a record that cannot be read is reported, not raised."""
        path = tmp_path / "schedulesystem.yml"
        path.mkdir()
        result = FileStateStore(path).load()
        assert result.status is StoreStatus.ERROR
        assert result.error
        assert result.state == SchedulerState()

    def test_save_failure_reported(self, tmp_path):
        """Test that an unwritable location produces an error result."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        result = FileStateStore(blocker / "schedulesystem.yml").save(SchedulerState())
        assert result.status is StoreStatus.ERROR
        assert result.error

    def test_delete_is_idempotent(self, tmp_path):
        """Test deleting present and absent records."""
        store = FileStateStore(tmp_path / "schedulesystem.yml")
        store.save(SchedulerState())
        assert store.delete().ok
        assert store.delete().ok
        assert not store.path.exists()


class TestInMemoryStateStore:
    """Tests for the in-memory store used by tests and embedders."""

    def test_load_returns_copy(self):
        """Test that mutating a loaded state does not change the store."""
        store = InMemoryStateStore(SchedulerState(seconds_remaining=5))
        loaded = store.load().state
        loaded.seconds_remaining = 1
        assert store.state.seconds_remaining == 5

    def test_simulated_failures(self):
        """Test the failure switches."""
        store = InMemoryStateStore()
        store.fail_saves = True
        assert store.save(SchedulerState()).status is StoreStatus.ERROR
        assert store.state is None

        store.fail_loads = True
        assert store.load().status is StoreStatus.ERROR


class TestHistoryStore:
    """Tests for today's firing history file."""

    def test_save_and_load(self, tmp_path):
        """Test the JSON history record."""
        store = HistoryStore(tmp_path / "schedule-history.json")
        firings = [datetime(2026, 10, 19, 1, 0), datetime(2026, 10, 19, 7, 0)]

        assert store.save(date(2026, 10, 19), firings).ok
        assert store.load() == (date(2026, 10, 19), firings)
        assert json.loads(store.path.read_text(encoding="utf-8"))["day"] == "2026-10-19"

    @pytest.mark.parametrize("content", ["{not json", '{"firings": []}', '["a list"]'])
    def test_corrupt_history_is_empty(self, tmp_path, content):
        """Test that unreadable history is treated as no history."""
        path = tmp_path / "schedule-history.json"
        path.write_text(content, encoding="utf-8")
        assert HistoryStore(path).load() == (None, [])

    def test_missing_history(self, tmp_path):
        """Test that absent history is empty."""
        assert HistoryStore(tmp_path / "none.json").load() == (None, [])
