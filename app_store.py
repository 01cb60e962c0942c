# app_store.py
# Version: 1.0.3
# Persistence for the scheduler: flat "key: value" state record and today's firing history.
# Every operation reports a StoreResult/LoadResult instead of raising, so a failed write can
# never take down the host's tick loop.

import json
import os
import re
import threading
from dataclasses import replace
from datetime import datetime, date
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import logging

from app_config import fsync_directory
from app_types import SchedulerState, StoreResult, LoadResult, StoreStatus, UNSET_SECONDS
from app_utils import safe_makedirs

logger = logging.getLogger(__name__)

# Record keys, in write order
KEY_LAST_BACKUP = "lastBackupTime"
KEY_DEBUG_ACTIVE = "isDebugTimerActive"
KEY_DEBUG_SECONDS = "debugSeconds"
KEY_INTERVAL = "lastIntervalSeconds"
KEY_REMAINING = "secondsRemaining"
KEY_DEBUG_FIRED = "debugTimerFired"

# Records written by older versions may carry up to 9 fractional digits; datetime takes 6
_FRACTION_RE = re.compile(r"(\.\d{6})\d+")

def parse_local_datetime(text: str) -> datetime:
    """Parse an ISO-8601 local date-time, tolerating nanosecond precision."""
    return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", text.strip()))

def format_state(state: SchedulerState) -> str:
    """Serialize state as one 'key: value' pair per line. tick_counter is not written."""
    last = state.last_backup_time.isoformat() if state.last_backup_time else ""
    lines = [
        f"{KEY_LAST_BACKUP}: {last}",
        f"{KEY_DEBUG_ACTIVE}: {'true' if state.debug_mode_active else 'false'}",
        f"{KEY_DEBUG_SECONDS}: {int(state.debug_seconds_remaining)}",
        f"{KEY_INTERVAL}: {float(state.interval_seconds)!r}",
        f"{KEY_REMAINING}: {int(state.seconds_remaining)}",
        f"{KEY_DEBUG_FIRED}: {'true' if state.debug_fired else 'false'}",
    ]
    return "\n".join(lines) + "\n"

def parse_state(text: str, base: Optional[SchedulerState] = None) -> Tuple[SchedulerState, List[str]]:
    """Parse a state record.

    Missing keys take the defaults. A malformed value keeps the field from ``base``
    (or the default when no base is given). Unknown keys are ignored.
    Returns the state and the list of keys whose values were malformed.
    """
    base = base or SchedulerState()
    state = SchedulerState()
    malformed: List[str] = []

    def _field(key: str, raw: str, convert: Callable, base_value):
        try:
            return convert(raw)
        except (ValueError, TypeError, OverflowError):
            malformed.append(key)
            return base_value

    for line in text.splitlines():
        key, sep, raw = line.partition(":")
        if not sep:
            continue
        key = key.strip()
        raw = raw.strip()

        if key == KEY_LAST_BACKUP:
            state.last_backup_time = _field(key, raw, lambda v: parse_local_datetime(v) if v else None,
                                            base.last_backup_time)
        elif key == KEY_DEBUG_ACTIVE:
            state.debug_mode_active = raw == "true"
        elif key == KEY_DEBUG_SECONDS:
            state.debug_seconds_remaining = max(0, _field(key, raw, int, base.debug_seconds_remaining))
        elif key == KEY_INTERVAL:
            value = _field(key, raw, float, base.interval_seconds)
            state.interval_seconds = value if value > 0 else base.interval_seconds
        elif key == KEY_REMAINING:
            # Anything below the sentinel means "not seeded"
            state.seconds_remaining = max(UNSET_SECONDS, _field(key, raw, int, base.seconds_remaining))
        elif key == KEY_DEBUG_FIRED:
            state.debug_fired = raw == "true"

    return state, malformed

def atomic_write_text(path: Path, text: str):
    """Write text via same-directory temp file, fsync and atomic replace. Raises OSError."""
    temp_path = path.with_suffix(path.suffix + '.tmp')
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            f.write(text)
            f.flush()
            try:
                os.fsync(f.fileno())
            except OSError as e:
                logger.debug(f"File fsync failed for {temp_path}: {e}")
        temp_path.replace(path)
    except OSError:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise
    fsync_directory(path.parent)

class StateStore:
    """Contract for scheduler state persistence. Implementations never raise."""

    def load(self, base: Optional[SchedulerState] = None) -> LoadResult:
        raise NotImplementedError

    def save(self, state: SchedulerState) -> StoreResult:
        raise NotImplementedError

    def delete(self) -> StoreResult:
        raise NotImplementedError

class FileStateStore(StateStore):
    """State record on disk (schedulesystem.yml)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self, base: Optional[SchedulerState] = None) -> LoadResult:
        if not self.path.exists():
            return LoadResult(StoreStatus.MISSING, SchedulerState())
        try:
            with self._lock:
                text = self.path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            return LoadResult(StoreStatus.ERROR, SchedulerState(), error=str(e))

        state, malformed = parse_state(text, base)
        if malformed:
            logger.warning(f"Ignored malformed values in {self.path}: {', '.join(malformed)}")
        return LoadResult(StoreStatus.OK, state, malformed_keys=malformed)

    def save(self, state: SchedulerState) -> StoreResult:
        try:
            with self._lock:
                safe_makedirs(self.path.parent)
                atomic_write_text(self.path, format_state(state))
            return StoreResult(StoreStatus.OK, str(self.path))
        except OSError as e:
            return StoreResult(StoreStatus.ERROR, str(self.path), error=str(e))

    def delete(self) -> StoreResult:
        try:
            with self._lock:
                self.path.unlink(missing_ok=True)
            return StoreResult(StoreStatus.OK, str(self.path))
        except OSError as e:
            return StoreResult(StoreStatus.ERROR, str(self.path), error=str(e))

class InMemoryStateStore(StateStore):
    """Process-local store for tests and embedding. Can be told to fail."""

    def __init__(self, state: Optional[SchedulerState] = None):
        self._state = replace(state) if state is not None else None
        self.fail_loads = False
        self.fail_saves = False
        self.save_count = 0

    @property
    def state(self) -> Optional[SchedulerState]:
        return replace(self._state) if self._state is not None else None

    def load(self, base: Optional[SchedulerState] = None) -> LoadResult:
        if self.fail_loads:
            return LoadResult(StoreStatus.ERROR, SchedulerState(), error="simulated load failure")
        if self._state is None:
            return LoadResult(StoreStatus.MISSING, SchedulerState())
        return LoadResult(StoreStatus.OK, replace(self._state, tick_counter=0))

    def save(self, state: SchedulerState) -> StoreResult:
        if self.fail_saves:
            return StoreResult(StoreStatus.ERROR, error="simulated save failure")
        self._state = replace(state, tick_counter=0)
        self.save_count += 1
        return StoreResult(StoreStatus.OK)

    def delete(self) -> StoreResult:
        self._state = None
        return StoreResult(StoreStatus.OK)

class HistoryStore:
    """Today's firing history as JSON: {"day": "YYYY-MM-DD", "firings": [iso, ...]}."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Tuple[Optional[date], List[datetime]]:
        """Return (day, firings). Unreadable or missing history is (None, [])."""
        if not self.path.exists():
            return None, []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            day = date.fromisoformat(data["day"])
            firings = [parse_local_datetime(v) for v in data.get("firings", [])]
            return day, firings
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Could not read firing history {self.path}: {e}")
            return None, []

    def save(self, day: date, firings: List[datetime]) -> StoreResult:
        data = {"day": day.isoformat(), "firings": [t.isoformat() for t in firings]}
        try:
            safe_makedirs(self.path.parent)
            atomic_write_text(self.path, json.dumps(data, indent=2))
            return StoreResult(StoreStatus.OK, str(self.path))
        except OSError as e:
            return StoreResult(StoreStatus.ERROR, str(self.path), error=str(e))

    def delete(self) -> StoreResult:
        try:
            self.path.unlink(missing_ok=True)
            return StoreResult(StoreStatus.OK, str(self.path))
        except OSError as e:
            return StoreResult(StoreStatus.ERROR, str(self.path), error=str(e))
