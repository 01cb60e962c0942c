# app_logging.py
# Version: 1.1.0
# Logging system for Backup Ticker with human-readable log rotation, NDJSON event stream
# for scheduler telemetry (firings, failures, mode changes, store errors), and a debug log.

import json
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import threading

logger = logging.getLogger(__name__)


class SizeRotatingFileHandler(logging.handlers.RotatingFileHandler):
    """Custom rotating file handler that uses numbered rotation: Log_current1.txt to Log_current5.txt."""

    def doRollover(self):
        """Perform rollover with numbered file naming scheme."""
        if self.stream:
            self.stream.close()
            self.stream = None

        base, ext = os.path.splitext(self.baseFilename)   # ".../Log_current1", ".txt"

        # e.g. base == ".../Log_current1" -> root == ".../Log_current"
        if base.endswith("1"):
            root = base[:-1]
        else:
            root = base.rstrip("0123456789")

        max_keep = self.backupCount if self.backupCount > 0 else 5

        last = f"{root}{max_keep}{ext}"
        if os.path.exists(last):
            os.remove(last)

        # Shift N-1 -> N (descending)
        for i in range(max_keep - 1, 0, -1):
            src = f"{root}{i}{ext}"
            dst = f"{root}{i + 1}{ext}"
            if os.path.exists(src):
                if os.path.exists(dst):
                    os.remove(dst)
                os.rename(src, dst)

        # After shifting, reopen Log_current1.txt fresh
        self.mode = "w"
        self.stream = self._open()

class EventLogger:
    """Handles structured event logging with NDJSON output."""

    def __init__(self, log_dir: Path, config):
        self.log_dir = log_dir
        self.config = config
        self.ndjson_enabled = config.log_ndjson

        self.ndjson_file: Optional[Path] = None
        self.ndjson_lock = threading.Lock()

        if self.ndjson_enabled:
            self.ndjson_file = self.log_dir / "events.ndjson"

    def log_backup_fired(self, mode: str, fired_at: datetime, next_countdown_sec: int, current_time: float):
        """Log a successful scheduled backup."""
        self.log_scheduler_event("backup_fired", {
            "mode": mode,
            "fired_at": fired_at.isoformat(),
            "next_countdown_sec": next_countdown_sec,
        }, current_time)

    def log_backup_failed(self, mode: str, consecutive_failures: int, current_time: float):
        """Log a failed scheduled backup (retried on the next second)."""
        self.log_scheduler_event("backup_failed", {
            "mode": mode,
            "consecutive_failures": consecutive_failures,
        }, current_time)

    def log_mode_change(self, old_mode: str, new_mode: str, details: Dict[str, Any], current_time: float):
        """Log a switch between interval, debug and disabled scheduling."""
        self.log_scheduler_event("mode_change", {
            "old_mode": old_mode,
            "new_mode": new_mode,
            **details
        }, current_time)

    def log_store_error(self, operation: str, path: Optional[str], error: Optional[str], current_time: float):
        """Log a persistence failure. These are recovered locally and never raised."""
        self.log_scheduler_event("store_error", {
            "operation": operation,
            "path": path,
            "error": error,
        }, current_time)

    def log_scheduler_event(self, event_type: str, details: Dict[str, Any], current_time: float):
        """Log a scheduler event."""
        if not self.ndjson_enabled:
            return

        wall_time = datetime.now(timezone.utc)

        event = {
            "timestamp": wall_time.isoformat(),
            "monotonic_time": current_time,
            "event_type": "scheduler",
            "scheduler_event": event_type,
            **details
        }

        self._write_ndjson_event(event)

    def log_config_change(self, change_type: str, details: Dict[str, Any], current_time: float):
        """Log a configuration change event."""
        if not self.ndjson_enabled:
            return

        wall_time = datetime.now(timezone.utc)

        event = {
            "timestamp": wall_time.isoformat(),
            "monotonic_time": current_time,
            "event_type": "config_change",
            "change_type": change_type,
            **details
        }

        self._write_ndjson_event(event)

    def _write_ndjson_event(self, event: Dict[str, Any]):
        """Write an event to the NDJSON file."""
        if not self.ndjson_file:
            return

        try:
            with self.ndjson_lock:
                with open(self.ndjson_file, 'a', encoding='utf-8') as f:
                    f.write(json.dumps(event, ensure_ascii=False, default=str) + '\n')
        except Exception as e:
            logger.error(f"Failed to write NDJSON event: {e}")

class HumanLogger:
    """Handles human-readable log rotation and formatting."""

    def __init__(self, log_dir: Path, config, console: bool = True):
        self.log_dir = log_dir
        self.config = config
        self.max_size_kb = config.log_max_kb
        self.history_count = config.log_history_count
        self.console = console

        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Current/active file is ALWAYS "1"
        self.current_log = self.log_dir / "Log_current1.txt"
        self.log_lock = threading.Lock()

        self._setup_logging()

    def _setup_logging(self):
        """Set up the logging system."""
        self.formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = SizeRotatingFileHandler(
            self.current_log,
            maxBytes=self.max_size_kb * 1024,
            backupCount=self.history_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(self.formatter)
        file_handler.setLevel(logging.INFO)

        root_logger = logging.getLogger()
        root_logger.setLevel(logging.INFO)

        # Clear existing handlers to prevent duplication
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        root_logger.addHandler(file_handler)

        if self.console:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(self.formatter)
            console_handler.setLevel(logging.INFO)
            root_logger.addHandler(console_handler)

    def log_system_event(self, event_type: str, message: str, details: Dict[str, Any] = None):
        """Log a system event to the human-readable log."""
        try:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

            if details:
                details_str = " ".join(f"{k}={v}" for k, v in details.items())
                log_line = f"{timestamp} SYSTEM {event_type} {message} {details_str}"
            else:
                log_line = f"{timestamp} SYSTEM {event_type} {message}"

            with self.log_lock:
                with open(self.current_log, 'a', encoding='utf-8') as f:
                    f.write(log_line + '\n')

        except Exception as e:
            logger.error(f"Failed to write system event log: {e}")


class LoggingManager:
    """Manages both human and NDJSON logging."""

    def __init__(self, log_dir: Path, config, console: bool = True, debug: bool = False):
        self.log_dir = log_dir
        self.config = config

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.human_logger = HumanLogger(log_dir, config, console=console)
        self.event_logger = EventLogger(log_dir, config)

        self.human_logger.log_system_event("STARTUP", "Backup Ticker started")

        self._init_debug_logger(debug)

    def _init_debug_logger(self, enabled: bool):
        """Initialize debug logger for development and troubleshooting."""
        debug_log_path = self.log_dir / "debug.log"

        self.debug_logger = logging.getLogger('debug')
        self.debug_logger.setLevel(logging.DEBUG if enabled else logging.INFO)

        for handler in list(self.debug_logger.handlers):
            self.debug_logger.removeHandler(handler)
            handler.close()

        debug_handler = logging.FileHandler(debug_log_path, encoding='utf-8')
        debug_handler.setLevel(logging.DEBUG)

        debug_formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        debug_handler.setFormatter(debug_formatter)

        self.debug_logger.addHandler(debug_handler)
        self.debug_logger.propagate = False  # Don't propagate to root logger

        self.debug_logger.info("Debug logging initialized")

    def log_debug(self, message: str):
        """Log debug message for development."""
        self.debug_logger.debug(message)

    def log_system_event(self, event_type: str, message: str, details: Dict[str, Any] = None):
        """Log a system event."""
        self.human_logger.log_system_event(event_type, message, details)

    def log_backup_fired(self, mode: str, fired_at: datetime, next_countdown_sec: int, current_time: float):
        self.human_logger.log_system_event("BACKUP", f"Scheduled backup completed ({mode})",
                                           {"next_in_sec": next_countdown_sec})
        self.event_logger.log_backup_fired(mode, fired_at, next_countdown_sec, current_time)

    def log_backup_failed(self, mode: str, consecutive_failures: int, current_time: float):
        self.log_debug(f"Scheduled backup failed ({mode}), consecutive failures: {consecutive_failures}")
        self.event_logger.log_backup_failed(mode, consecutive_failures, current_time)

    def log_mode_change(self, old_mode: str, new_mode: str, details: Dict[str, Any], current_time: float):
        self.human_logger.log_system_event("MODE", f"Schedule mode {old_mode} -> {new_mode}", details)
        self.event_logger.log_mode_change(old_mode, new_mode, details, current_time)

    def log_store_error(self, operation: str, path: Optional[str], error: Optional[str], current_time: float):
        self.event_logger.log_store_error(operation, path, error, current_time)

    def log_config_change(self, change_type: str, details: Dict[str, Any], current_time: float):
        """Log a configuration change."""
        self.event_logger.log_config_change(change_type, details, current_time)

    def shutdown(self):
        """Shutdown logging system."""
        self.human_logger.log_system_event("SHUTDOWN", "Backup Ticker shutting down")
        logging.shutdown()
