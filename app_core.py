# app_core.py
# Version: 2.1.0
# Core scheduling engine for Backup Ticker. Scheduler is the single source of truth for the backup
# countdown: derives seconds from host ticks, survives restarts through the state store, arbitrates
# interval vs. debug mode, and never blocks or crashes the host's tick loop.

import time
import threading
from dataclasses import replace
from datetime import datetime, date
from typing import List, Optional, Union
import logging

from app_config import AppConfig, ConfigManager
from app_types import (SchedulerState, SchedulerMode, StatusSnapshot, StoreResult, TriggerOutcome,
                       UNSET_SECONDS)
from app_store import StateStore, HistoryStore
from app_trigger import ActionTrigger, TriggerRunner
from app_utils import interval_seconds_for, format_countdown, DEBUG_FINISHED_MESSAGE

logger = logging.getLogger(__name__)

# Falling further behind than this (suspend, debugger) resyncs instead of replaying ticks
MAX_TICK_LAG_SEC = 1.0
CONFIG_CHECK_INTERVAL_SEC = 1.0

class Clock:
    """Clock abstraction for testing and consistent timing."""

    def monotonic(self) -> float:
        """Get monotonic time in seconds."""
        return time.monotonic()

    def wall(self) -> float:
        """Get wall clock time in seconds since epoch."""
        return time.time()

    def now(self) -> datetime:
        """Get local date-time, as stored in the state record."""
        return datetime.now()

class FakeClock:
    """Fake clock for testing."""

    def __init__(self, start_time: float = 1_700_000_000.0):
        self._time = start_time

    def monotonic(self) -> float:
        return self._time

    def wall(self) -> float:
        return self._time

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._time)

    def advance(self, delta: float):
        """Advance fake time."""
        self._time += delta

class FiringHistory:
    """Successful firings for the current local day. Empties itself when the day changes."""

    def __init__(self, clock, store: Optional[HistoryStore] = None):
        self.clock = clock
        self.store = store
        self._day: Optional[date] = None
        self._firings: List[datetime] = []
        self.reload()

    def reload(self):
        """Replace the in-memory list with the stored one (empty without a store). Never writes."""
        day, firings = self.store.load() if self.store is not None else (None, [])
        if day == self.clock.now().date():
            self._day = day
            self._firings = firings
        else:
            self._day = None
            self._firings = []

    def _roll(self, today: date):
        if self._day != today:
            if self._firings:
                logger.debug(f"Firing history rolled over from {self._day} to {today}")
            self._day = today
            self._firings = []

    def record(self, when: datetime) -> Optional[StoreResult]:
        self._roll(when.date())
        self._firings.append(when)
        if self.store is None:
            return None
        return self.store.save(self._day, self._firings)

    def today(self) -> List[datetime]:
        self._roll(self.clock.now().date())
        return list(self._firings)

    def clear(self, delete: bool = False) -> Optional[StoreResult]:
        self._firings = []
        self._day = self.clock.now().date()
        if self.store is None:
            return None
        if delete:
            return self.store.delete()
        return self.store.save(self._day, self._firings)

class Scheduler:
    """Tick-driven backup scheduler. Owns all countdown state and its persistence.

    The host calls on_tick() once per tick. Every ticks_per_second ticks the active
    countdown moves by one second; when it reaches zero the action trigger runs.
    Administrative operations may be called from other threads; a single lock
    serializes them against ticks.
    """

    def __init__(self, config: AppConfig, store: StateStore,
                 trigger: Union[ActionTrigger, TriggerRunner],
                 clock: Optional[Clock] = None,
                 history_store: Optional[HistoryStore] = None,
                 config_manager: Optional[ConfigManager] = None,
                 logging_manager=None,
                 ticks_per_second: Optional[int] = None):
        self.config = config
        self.store = store
        self.clock = clock or Clock()
        self.config_manager = config_manager
        self.logging_manager = logging_manager
        self.runner = trigger if isinstance(trigger, TriggerRunner) else TriggerRunner(trigger, threaded=False)
        self.ticks_per_second = ticks_per_second or config.ticks_per_second
        self._lock = threading.RLock()

        self._state = SchedulerState()
        self.history = FiringHistory(self.clock, history_store)

        self._record_seen = False  # State record existed at some point in this process
        self._unsaved = False  # Last save failed; memory is newer than the record
        self._last_synced: Optional[SchedulerState] = None  # Record as last written or read here
        self._consecutive_failures = 0
        self._failing_store_ops = set()

        self._reload_state()
        logger.info(f"Scheduler initialized: mode={self.mode.value}, times_per_day={config.auto_backup_times}, "
                    f"ticks_per_second={self.ticks_per_second}, seconds_remaining={self._state.seconds_remaining}")

    # --- state access -------------------------------------------------

    @property
    def state(self) -> SchedulerState:
        """Copy of the current in-memory state."""
        with self._lock:
            return replace(self._state)

    @property
    def mode(self) -> SchedulerMode:
        if self._state.debug_mode_active:
            return SchedulerMode.DEBUG
        if not self.config.auto_backup_enabled:
            return SchedulerMode.DISABLED
        return SchedulerMode.INTERVAL

    def is_debug_timer_active(self) -> bool:
        with self._lock:
            return self._state.debug_mode_active

    def todays_firings(self) -> List[datetime]:
        with self._lock:
            return self.history.today()

    def update_config(self, config: AppConfig):
        """Swap in a configuration reloaded from disk."""
        with self._lock:
            if config.ticks_per_second != self.config.ticks_per_second:
                logger.info(f"Tick rate changed {self.config.ticks_per_second} -> {config.ticks_per_second}")
                self.ticks_per_second = config.ticks_per_second
            self.config = config

    # --- tick path ----------------------------------------------------

    def on_tick(self) -> bool:
        """Advance the schedule by one host tick. Returns True if a backup fired on this tick."""
        with self._lock:
            self._reload_state()
            state = self._state
            state.interval_seconds = interval_seconds_for(self.config.auto_backup_times)

            if state.debug_mode_active:
                return self._tick_debug()

            if not self.config.auto_backup_enabled:
                return False

            # Only seeded on the very first observation after install or reset
            if state.seconds_remaining < 0:
                state.seconds_remaining = int(state.interval_seconds)
                logger.info(f"Backup countdown seeded with {state.seconds_remaining}s")
                self._persist("seed")

            if not self._advance_second():
                return False

            if state.seconds_remaining > 0:
                state.seconds_remaining -= 1
                self._persist("countdown")
            if state.seconds_remaining == 0:
                return self._fire(SchedulerMode.INTERVAL)
            return False

    def _tick_debug(self) -> bool:
        state = self._state
        # A fired debug timer stays finished until the mode is switched
        if state.debug_fired:
            return False
        if not self._advance_second():
            return False

        if state.debug_seconds_remaining > 0:
            state.debug_seconds_remaining -= 1
            self._persist("countdown")
        if state.debug_seconds_remaining <= 0:
            return self._fire(SchedulerMode.DEBUG)
        return False

    def _advance_second(self) -> bool:
        """Count one tick; True when a full second has elapsed."""
        self._state.tick_counter += 1
        if self._state.tick_counter < self.ticks_per_second:
            return False
        self._state.tick_counter = 0
        return True

    def _fire(self, mode: SchedulerMode) -> bool:
        outcome = self.runner.run()
        state = self._state

        if outcome is TriggerOutcome.IN_FLIGHT:
            logger.debug("Scheduled backup still running, countdown held at zero")
            return False

        if outcome is TriggerOutcome.FAILED:
            self._consecutive_failures += 1
            if self._consecutive_failures == 1:
                logger.warning(f"Scheduled backup failed ({mode.value}), retrying every second")
            else:
                logger.debug(f"Scheduled backup failed again ({self._consecutive_failures} in a row)")
            if self.logging_manager:
                self.logging_manager.log_backup_failed(mode.value, self._consecutive_failures,
                                                       self.clock.monotonic())
            return False

        now = self.clock.now()
        state.last_backup_time = now
        if mode is SchedulerMode.DEBUG:
            state.debug_seconds_remaining = 0
            state.debug_fired = True
            next_countdown = 0
        else:
            state.seconds_remaining = int(state.interval_seconds)
            next_countdown = state.seconds_remaining
        state.tick_counter = 0
        self._persist("fire")
        self._report_store_result("history", self.history.record(now))

        if self._consecutive_failures:
            logger.info(f"Scheduled backup succeeded after {self._consecutive_failures} failed attempts")
        self._consecutive_failures = 0

        logger.info(f"Scheduled backup completed ({mode.value}); next in "
                    f"{format_countdown(next_countdown) if mode is SchedulerMode.INTERVAL else 'n/a (debug timer finished)'}")
        if self.logging_manager:
            self.logging_manager.log_backup_fired(mode.value, now, next_countdown, self.clock.monotonic())
        return True

    # --- administrative operations -------------------------------------

    def set_interval_mode(self, times_per_day: int):
        """Fire times_per_day backups evenly over the day; < 1 disables the schedule."""
        with self._lock:
            old_mode = self.mode
            self.runner.discard_pending()

            if times_per_day < 1:
                self.config.auto_backup_times = 0
                self.config.auto_backup_enabled = False
                self._save_config()
                self._reset_locked()
                logger.info("Automatic backups disabled")
                self._log_mode_change(old_mode, {"times_per_day": 0})
                return

            self.config.auto_backup_times = times_per_day
            self.config.auto_backup_enabled = True
            self._save_config()

            self._report_store_result("history", self.history.clear())
            state = self._state
            state.interval_seconds = interval_seconds_for(times_per_day)
            state.last_backup_time = self.clock.now()
            state.debug_mode_active = False
            state.debug_seconds_remaining = 0
            state.debug_fired = False
            state.seconds_remaining = int(state.interval_seconds)
            state.tick_counter = 0
            self._consecutive_failures = 0
            self._persist("set_interval_mode")

            logger.info(f"Automatic backups set to {times_per_day} per day "
                        f"(every {format_countdown(state.seconds_remaining)})")
            self._log_mode_change(old_mode, {"times_per_day": times_per_day,
                                             "interval_seconds": state.interval_seconds})

    def set_debug_countdown(self, hours: int, minutes: int, seconds: int):
        """Run a one-shot countdown that overrides interval mode until the mode is switched."""
        total = max(0, hours * 3600 + minutes * 60 + seconds)
        with self._lock:
            old_mode = self.mode
            self.runner.discard_pending()

            state = self._state
            state.debug_mode_active = True
            state.debug_seconds_remaining = total
            state.debug_fired = False
            state.last_backup_time = self.clock.now()
            state.seconds_remaining = UNSET_SECONDS
            state.tick_counter = 0
            self._consecutive_failures = 0
            self._persist("set_debug_countdown")
            self._report_store_result("history", self.history.clear())

            logger.info(f"Debug backup timer set to {format_countdown(total)}")
            self._log_mode_change(old_mode, {"debug_seconds": total})

    def reset(self):
        """Forget all schedule progress and delete the persisted records."""
        with self._lock:
            old_mode = self.mode
            self.runner.discard_pending()
            self._reset_locked()
            logger.info("Backup schedule reset")
            if self.logging_manager:
                self.logging_manager.event_logger.log_scheduler_event(
                    "schedule_reset", {"old_mode": old_mode.value}, self.clock.monotonic())

    def _reset_locked(self):
        self._report_store_result("history", self.history.clear(delete=True))
        deleted = self.store.delete()
        self._report_store_result("delete", deleted)
        self._state = SchedulerState()
        self._record_seen = False
        # A record that could not be deleted must not be re-adopted on the next tick
        self._unsaved = not deleted.ok
        if deleted.ok:
            self._last_synced = None
        self._consecutive_failures = 0

    # --- status -------------------------------------------------------

    def status_string(self) -> str:
        """Countdown to the next backup as 'HHh MMmin SSsec'. Never fires or persists."""
        with self._lock:
            self._reload_state(retry_save=False)
            state = self._state
            if state.debug_mode_active:
                if state.debug_seconds_remaining <= 0:
                    return DEBUG_FINISHED_MESSAGE
                return format_countdown(state.debug_seconds_remaining)
            return format_countdown(self._countdown_seconds())

    def _countdown_seconds(self) -> int:
        state = self._state
        if state.debug_mode_active:
            return state.debug_seconds_remaining
        if state.seconds_remaining >= 0:
            return state.seconds_remaining
        # Not seeded yet: show what the next tick would seed
        return int(interval_seconds_for(self.config.auto_backup_times))

    def get_status_snapshot(self) -> StatusSnapshot:
        """Immutable view for status surfaces."""
        with self._lock:
            text = self.status_string()
            state = self._state
            return StatusSnapshot(
                generated_at=self.clock.monotonic(),
                mode=self.mode,
                seconds_remaining=self._countdown_seconds(),
                status_text=text,
                last_backup_time=state.last_backup_time,
                todays_firings=len(self.history.today()),
                ticks_per_second=self.ticks_per_second,
                debug_fired=state.debug_fired,
            )

    # --- persistence helpers -------------------------------------------

    def _reload_state(self, retry_save: bool = True):
        """Adopt the persisted record if readable; keep in-memory progress otherwise."""
        result = self.store.load(base=self._state)
        external = result.ok and self._changed_externally(result.state)

        # After a failed save the record is older than memory, unless another process wrote it since
        if self._unsaved and not external:
            if retry_save:
                self._persist("retry")
            return

        if result.ok:
            if self._unsaved:
                logger.info("Schedule state changed by another process while saves were failing, adopting it")
                self._unsaved = False
            tick_counter = self._state.tick_counter
            self._state = result.state
            self._state.tick_counter = tick_counter
            self._record_seen = True
            self._mark_synced()
            if external:
                self.history.reload()
            self._report_store_result("load", None)
            return

        if result.error:
            self._report_store_result("load", StoreResult(result.status, error=result.error))
            return

        # Record vanished after we had one: another process reset the schedule
        if self._record_seen:
            logger.info("Schedule state record was removed externally, starting over")
            self._state = SchedulerState()
            self.history.reload()
            self._record_seen = False
            self._last_synced = None

    def _changed_externally(self, stored: SchedulerState) -> bool:
        """True if the record differs from what this process last wrote or read, or nothing was synced yet."""
        if self._last_synced is None:
            return True
        return replace(stored, tick_counter=0) != self._last_synced

    def _mark_synced(self):
        self._last_synced = replace(self._state, tick_counter=0)

    def _persist(self, reason: str):
        result = self.store.save(self._state)
        self._unsaved = not result.ok
        if result.ok:
            self._record_seen = True
            self._mark_synced()
        self._report_store_result("save", result, reason)

    def _report_store_result(self, operation: str, result: Optional[StoreResult], reason: str = ""):
        """Log store failures once per failure streak; never raise."""
        if result is None or result.ok:
            if operation in self._failing_store_ops:
                self._failing_store_ops.discard(operation)
                logger.info(f"Schedule store {operation} recovered")
            return

        if operation not in self._failing_store_ops:
            self._failing_store_ops.add(operation)
            suffix = f" ({reason})" if reason else ""
            logger.warning(f"Schedule store {operation} failed{suffix}: {result.error}")
            if self.logging_manager:
                self.logging_manager.log_store_error(operation, result.path, result.error,
                                                     self.clock.monotonic())

    def _save_config(self):
        if self.config_manager and not self.config_manager.save_config(self.config):
            logger.warning("Could not persist backup schedule settings")
        if self.logging_manager:
            self.logging_manager.log_config_change("auto_backup", {
                "auto_backup_times": self.config.auto_backup_times,
                "auto_backup_enabled": self.config.auto_backup_enabled,
            }, self.clock.monotonic())

    def _log_mode_change(self, old_mode: SchedulerMode, details: dict):
        if self.logging_manager:
            self.logging_manager.log_mode_change(old_mode.value, self.mode.value, details,
                                                 self.clock.monotonic())

    def shutdown(self):
        self.runner.shutdown()

class CoreEngine:
    """Standalone host: delivers ticks to the scheduler from a background thread."""

    def __init__(self, config: AppConfig, scheduler: Scheduler, config_manager: Optional[ConfigManager] = None,
                 logging_manager=None, clock: Optional[Clock] = None):
        self.config = config
        self.scheduler = scheduler
        self.config_manager = config_manager
        self.logging_manager = logging_manager
        self.clock = clock or Clock()

        self.tick_thread: Optional[threading.Thread] = None
        self.stop_event = threading.Event()

        self._last_countdown_log = 0.0
        self._last_config_check = 0.0
        self._cli_countdown_interval = self.config.cli_countdown_interval_sec
        self.ticks_delivered = 0

        logger.info(f"CoreEngine initialized: ticks_per_second={scheduler.ticks_per_second}, "
                    f"countdown log every {self._cli_countdown_interval}s")

    def start(self):
        """Start delivering ticks."""
        if self.tick_thread and self.tick_thread.is_alive():
            logger.warning("Tick loop already running")
            return

        self.stop_event.clear()
        self.tick_thread = threading.Thread(target=self._tick_loop, name="backup-ticks", daemon=True)
        self.tick_thread.start()
        logger.info("Core engine started")

    def stop(self, timeout_ms: int = 500):
        """Stop delivering ticks."""
        if not self.tick_thread or not self.tick_thread.is_alive():
            return

        self.stop_event.set()
        self.tick_thread.join(timeout=timeout_ms / 1000.0)

        if self.tick_thread.is_alive():
            logger.warning("Tick thread did not stop within timeout")
        else:
            logger.info("Core engine stopped")

    def is_running(self) -> bool:
        return bool(self.tick_thread and self.tick_thread.is_alive())

    def _tick_loop(self):
        """Main tick loop running in background thread."""
        logger.info("Tick loop started")
        next_tick = self.clock.monotonic()

        while not self.stop_event.is_set():
            try:
                self.scheduler.on_tick()
                self.ticks_delivered += 1

                current_time = self.clock.monotonic()
                if (current_time - self._last_config_check) >= CONFIG_CHECK_INTERVAL_SEC:
                    self._refresh_config()
                    self._last_config_check = current_time

                if (current_time - self._last_countdown_log) >= self._cli_countdown_interval:
                    logger.info(f"Next backup in: {self.scheduler.status_string()}")
                    self._last_countdown_log = current_time

            except Exception as e:
                logger.error(f"Error in tick loop: {e}")

            # Fixed-rate pacing against the monotonic clock so slow ticks are made up
            next_tick += 1.0 / self.scheduler.ticks_per_second
            delay = next_tick - self.clock.monotonic()
            if delay < -MAX_TICK_LAG_SEC:
                logger.warning(f"Tick loop fell {-delay:.1f}s behind, resyncing")
                next_tick = self.clock.monotonic()
                delay = 0.0
            self.stop_event.wait(max(delay, 0.0))

        logger.info("Tick loop ended")

    def _refresh_config(self):
        """Pick up schedule settings changed by another process."""
        if not self.config_manager:
            return
        new_config = self.config_manager.load_if_changed()
        if new_config is None:
            return
        self.config = new_config
        self.scheduler.update_config(new_config)
        self._cli_countdown_interval = new_config.cli_countdown_interval_sec
        if self.logging_manager:
            self.logging_manager.log_config_change("reload", {
                "auto_backup_times": new_config.auto_backup_times,
                "auto_backup_enabled": new_config.auto_backup_enabled,
            }, self.clock.monotonic())
