# app_trigger.py
# Version: 1.0.2
# Action triggers for Backup Ticker: the "create a backup now" operation behind the scheduler,
# plus a bounded runner so a slow or hung backup can never freeze the host's tick loop.

import os
import shlex
import subprocess
import threading
import time
from concurrent.futures import ThreadPoolExecutor, Future, TimeoutError as FutureTimeout, CancelledError
from pathlib import Path
from typing import Callable, Optional, Union, List
import logging

from app_types import TriggerOutcome

logger = logging.getLogger(__name__)

class ActionTrigger:
    """Performs one backup. run() returns True on success; raising counts as failure."""

    name = "action"

    def run(self) -> bool:
        raise NotImplementedError

class CallableTrigger(ActionTrigger):
    """Wraps a Python callable. A False return or an exception is a failure."""

    def __init__(self, fn: Callable[[], Optional[bool]], name: str = "callable"):
        self.fn = fn
        self.name = name

    def run(self) -> bool:
        result = self.fn()
        # None means the callable finished without reporting; treat as success
        return result is None or bool(result)

class CommandTrigger(ActionTrigger):
    """Runs an external backup command. Exit status 0 is success."""

    name = "command"

    def __init__(self, command: Union[str, List[str]], timeout_sec: float = 3600.0,
                 cwd: Optional[Path] = None):
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.timeout_sec = timeout_sec
        self.cwd = str(cwd) if cwd else None
        if not self.command:
            raise ValueError("backup command is empty")

    def run(self) -> bool:
        started = time.monotonic()
        try:
            result = subprocess.run(
                self.command,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout_sec,
                shell=False,
                env=os.environ.copy(),
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Backup command timed out after {self.timeout_sec}s: {' '.join(self.command)}")
            return False
        except (FileNotFoundError, PermissionError) as e:
            logger.error(f"Backup command could not be started: {e}")
            return False

        duration = time.monotonic() - started
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            logger.error(f"Backup command failed (exit code {result.returncode}, {duration:.1f}s): {stderr[-500:]}")
            return False

        logger.info(f"Backup command completed in {duration:.1f}s")
        return True

def invoke_trigger(trigger: ActionTrigger) -> bool:
    """Run a trigger, converting any exception into a failure."""
    try:
        return bool(trigger.run())
    except Exception as e:
        logger.error(f"Backup trigger '{trigger.name}' raised: {e}")
        return False

class TriggerRunner:
    """Invokes a trigger without letting it block the caller for more than wait_ms.

    With threaded=True the trigger runs on a single worker thread. If it has not
    finished within wait_ms the call returns IN_FLIGHT and the job keeps running;
    the next call collects its result instead of starting a second backup.
    With threaded=False the trigger runs inline (used by tests and simple hosts).
    """

    def __init__(self, trigger: ActionTrigger, wait_ms: int = 250, threaded: bool = True):
        self.trigger = trigger
        self.wait_ms = wait_ms
        self._executor: Optional[ThreadPoolExecutor] = None
        if threaded:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="backup-trigger")
        self._in_flight: Optional[Future] = None
        self._discard_in_flight = False
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        with self._lock:
            return self._in_flight is not None and not self._in_flight.done()

    def run(self) -> TriggerOutcome:
        if self._executor is None:
            return TriggerOutcome.SUCCESS if invoke_trigger(self.trigger) else TriggerOutcome.FAILED

        with self._lock:
            if self._in_flight is not None:
                if not self._in_flight.done():
                    return TriggerOutcome.IN_FLIGHT
                future, self._in_flight = self._in_flight, None
                discard, self._discard_in_flight = self._discard_in_flight, False
                if not discard:
                    logger.info("Collected result of backup that outlived its tick")
                    return self._outcome(future)
                logger.info("Dropped result of backup started before the schedule changed")

            future = self._executor.submit(invoke_trigger, self.trigger)
            try:
                ok = future.result(timeout=self.wait_ms / 1000.0)
            except FutureTimeout:
                self._in_flight = future
                logger.info(f"Backup still running after {self.wait_ms}ms, continuing tick loop")
                return TriggerOutcome.IN_FLIGHT
            return TriggerOutcome.SUCCESS if ok else TriggerOutcome.FAILED

    def discard_pending(self):
        """Ignore the result of a backup still running (schedule was changed or reset)."""
        with self._lock:
            if self._in_flight is not None:
                self._discard_in_flight = True

    def _outcome(self, future: Future) -> TriggerOutcome:
        try:
            return TriggerOutcome.SUCCESS if future.result() else TriggerOutcome.FAILED
        except CancelledError:
            return TriggerOutcome.FAILED

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=False)
