"""Tests for the status polling thread used by the status window."""

import pytest

QtCore = pytest.importorskip("PySide6.QtCore")

from app_gui_status_thread import StatusUpdateThread  # noqa: E402


@pytest.fixture(scope="module")
def qt_app():
    return QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])


def test_poll_once_emits_snapshot(qt_app, scheduler, config):
    scheduler.set_debug_countdown(0, 0, 30)
    thread = StatusUpdateThread(scheduler, config)
    received = []
    thread.status_updated.connect(received.append)

    status = thread.poll_once()

    assert received == [status]
    assert status["mode"] == "debug"
    assert status["status_text"] == "00h 00min 30sec"
    assert status["seconds_remaining"] == 30
    assert status["debug_fired"] is False


def test_update_interval_from_config(qt_app, scheduler, config):
    config.gui_update_interval_ms = 250
    assert StatusUpdateThread(scheduler, config).update_interval == 250
    assert StatusUpdateThread(scheduler).update_interval == 500
