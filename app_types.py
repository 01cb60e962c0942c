# app_types.py
# Version: 1.1.0
# Shared type definitions for Backup Ticker to avoid circular imports, including the persisted
# scheduler state, store result taxonomy and immutable status snapshots.

from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

SECONDS_PER_DAY = 86400
DEFAULT_INTERVAL_SEC = 36.0 * 60  # 40 backups per day
UNSET_SECONDS = -1  # seconds_remaining sentinel: seed from interval on next tick
DEFAULT_TICKS_PER_SECOND = 20

class SchedulerMode(Enum):
    INTERVAL = "interval"
    DEBUG = "debug"
    DISABLED = "disabled"

class StoreStatus(Enum):
    OK = "OK"
    MISSING = "MISSING"
    ERROR = "ERROR"

@dataclass
class SchedulerState:
    """Persisted scheduler state. tick_counter is runtime-only and never written."""
    last_backup_time: Optional[datetime] = None
    debug_mode_active: bool = False
    debug_seconds_remaining: int = 0
    interval_seconds: float = DEFAULT_INTERVAL_SEC
    seconds_remaining: int = UNSET_SECONDS
    debug_fired: bool = False
    tick_counter: int = 0

@dataclass
class StoreResult:
    """Outcome of a store write/delete. Never raised, only reported."""
    status: StoreStatus
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is StoreStatus.OK

@dataclass
class LoadResult:
    """Outcome of a store read. state is always usable (defaults on MISSING/ERROR)."""
    status: StoreStatus
    state: SchedulerState
    error: Optional[str] = None
    malformed_keys: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status is StoreStatus.OK

@dataclass(frozen=True)
class StatusSnapshot:
    """Immutable snapshot of scheduler state for status surfaces."""
    generated_at: float  # monotonic time
    mode: SchedulerMode
    seconds_remaining: int  # countdown shown for the governing mode
    status_text: str
    last_backup_time: Optional[datetime]
    todays_firings: int
    ticks_per_second: int
    debug_fired: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "mode": self.mode.value,
            "seconds_remaining": self.seconds_remaining,
            "status_text": self.status_text,
            "last_backup_time": self.last_backup_time.isoformat() if self.last_backup_time else None,
            "todays_firings": self.todays_firings,
            "ticks_per_second": self.ticks_per_second,
            "debug_fired": self.debug_fired,
        }

class TriggerOutcome(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    IN_FLIGHT = "IN_FLIGHT"  # Backup still running on the worker; countdown must not move
