# app_gui.py
# Version: 2.1.0
# Status window for Backup Ticker: live countdown, last backup, today's firings, and the
# schedule administration actions (backups per day, debug timer, reset).

from PySide6.QtWidgets import (QMainWindow, QMessageBox, QInputDialog, QWidget, QVBoxLayout,
                               QFormLayout, QLabel)
from PySide6.QtGui import QAction, QFont, QKeySequence
import logging

from app_gui_status_thread import StatusUpdateThread
from app_config import ConfigManager
from app_core import CoreEngine, Scheduler
from app_logging import LoggingManager

logger = logging.getLogger(__name__)

MODE_LABELS = {
    "interval": "Every {interval} ({times} per day)",
    "debug": "Debug timer",
    "disabled": "Disabled",
}


class StatusWindow(QMainWindow):
    """Main application window for Backup Ticker."""

    def __init__(self, scheduler: Scheduler, core_engine: CoreEngine = None,
                 config_manager: ConfigManager = None, logging_manager: LoggingManager = None):
        super().__init__()

        self.scheduler = scheduler
        self.core_engine = core_engine
        self.config_manager = config_manager
        self.logging_manager = logging_manager

        self.setup_menu_bar()
        self.setup_central_widget()
        self.setup_status_bar()

        self.status_thread = StatusUpdateThread(self.scheduler, self.scheduler.config)
        self.status_thread.status_updated.connect(self.update_status)
        self.status_thread.start()

        self.setWindowTitle("Backup Ticker")
        self.setMinimumSize(420, 200)

    def setup_menu_bar(self):
        """Set up the menu bar."""
        menubar = self.menuBar()

        schedule_menu = menubar.addMenu("&Schedule")

        self.times_action = QAction("&Backups per Day...", self)
        self.times_action.triggered.connect(self.set_backups_per_day)
        schedule_menu.addAction(self.times_action)

        self.debug_action = QAction("&Debug Timer...", self)
        self.debug_action.triggered.connect(self.set_debug_timer)
        schedule_menu.addAction(self.debug_action)

        schedule_menu.addSeparator()

        self.reset_action = QAction("&Reset Schedule", self)
        self.reset_action.triggered.connect(self.reset_schedule)
        schedule_menu.addAction(self.reset_action)

        schedule_menu.addSeparator()

        self.quit_action = QAction("E&xit", self)
        self.quit_action.setShortcut(QKeySequence.Quit)
        self.quit_action.triggered.connect(self.close)
        schedule_menu.addAction(self.quit_action)

    def setup_central_widget(self):
        """Set up the countdown display."""
        central_widget = QWidget()
        layout = QVBoxLayout(central_widget)

        self.countdown_label = QLabel("—")
        font = QFont()
        font.setPointSize(20)
        font.setBold(True)
        self.countdown_label.setFont(font)
        layout.addWidget(self.countdown_label)

        form = QFormLayout()
        self.mode_label = QLabel("—")
        self.last_backup_label = QLabel("Never")
        self.today_label = QLabel("0")
        form.addRow("Mode:", self.mode_label)
        form.addRow("Last backup:", self.last_backup_label)
        form.addRow("Backups today:", self.today_label)
        layout.addLayout(form)

        self.setCentralWidget(central_widget)

    def setup_status_bar(self):
        """Set up the status bar."""
        self.status_bar = self.statusBar()
        self.status_bar.showMessage("Ready", 2000)

    def update_status(self, status: dict):
        """Update the GUI with new status information."""
        self.countdown_label.setText(status.get("status_text", "—"))

        mode = status.get("mode", "")
        config = self.scheduler.config
        self.mode_label.setText(MODE_LABELS.get(mode, mode).format(
            interval=f"{int(86400 / max(config.auto_backup_times, 1)) // 60} min",
            times=config.auto_backup_times))

        last_backup = status.get("last_backup_time")
        self.last_backup_label.setText(last_backup.replace("T", " ")[:19] if last_backup else "Never")
        self.today_label.setText(str(status.get("todays_firings", 0)))

    def set_backups_per_day(self):
        current = self.scheduler.config.auto_backup_times
        times, ok = QInputDialog.getInt(self, "Backups per Day",
                                        "Backups per day (0 disables automatic backups):",
                                        current, 0, 1440)
        if not ok:
            return
        self.scheduler.set_interval_mode(times)
        self.status_bar.showMessage("Automatic backups disabled" if times < 1
                                    else f"Automatic backups set to {times} per day", 3000)

    def set_debug_timer(self):
        text, ok = QInputDialog.getText(self, "Debug Timer", "Countdown (HH:MM:SS):", text="00:00:30")
        if not ok:
            return
        try:
            hours, minutes, seconds = (int(part) for part in text.strip().split(":"))
        except ValueError:
            QMessageBox.warning(self, "Debug Timer", f"Invalid countdown '{text}', expected HH:MM:SS")
            return
        self.scheduler.set_debug_countdown(hours, minutes, seconds)
        self.status_bar.showMessage("Debug timer started", 3000)

    def reset_schedule(self):
        reply = QMessageBox.question(self, "Reset Schedule",
                                     "Reset the backup timer and forget today's backup history?",
                                     QMessageBox.Yes | QMessageBox.No, QMessageBox.No)
        if reply != QMessageBox.Yes:
            return
        self.scheduler.reset()
        self.status_bar.showMessage("Schedule reset", 3000)

    def closeEvent(self, event):
        """Handle window close event."""
        self.cleanup()
        event.accept()

    def cleanup(self):
        """Clean up resources before closing."""
        if self.status_thread:
            self.status_thread.stop()
