# app_gui_status_thread.py
# Version: 1.1.0
# Status update thread for the Backup Ticker status window

import logging

from PySide6.QtCore import QThread, Signal

from app_core import Scheduler

logger = logging.getLogger(__name__)

class StatusUpdateThread(QThread):
    """Thread for polling the scheduler status for the GUI."""

    status_updated = Signal(dict)

    def __init__(self, scheduler: Scheduler, config=None):
        super().__init__()
        self.scheduler = scheduler
        self.config = config
        self.running = True
        # Use configurable interval, fallback to default if config not available
        self.update_interval = config.gui_update_interval_ms if config else 500

    def poll_once(self) -> dict:
        """Read one snapshot and emit it."""
        status = self.scheduler.get_status_snapshot().to_dict()
        self.status_updated.emit(status)
        return status

    def run(self):
        while self.running:
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"StatusUpdateThread: failed to read scheduler status: {e}")
            self.msleep(self.update_interval)

    def stop(self):
        """Stop the status update thread."""
        self.running = False
        self.wait()
