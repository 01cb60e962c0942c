"""Tests for shared helpers."""

import pytest

from app_utils import format_countdown, interval_seconds_for, sha256_head


@pytest.mark.parametrize("seconds, expected", [
    (0, "00h 00min 00sec"),
    (59, "00h 00min 59sec"),
    (2160, "00h 36min 00sec"),
    (3723, "01h 02min 03sec"),
    (86400, "24h 00min 00sec"),
    (-5, "00h 00min 00sec"),
])
def test_format_countdown(seconds, expected):
    assert format_countdown(seconds) == expected


def test_interval_seconds_for():
    """Test the times-per-day to interval conversion and its clamp."""
    assert interval_seconds_for(4) == 21600
    assert interval_seconds_for(40) == 2160
    assert interval_seconds_for(7) == pytest.approx(12342.857, rel=1e-6)
    assert interval_seconds_for(0) == 86400
    assert interval_seconds_for(-2) == 86400


def test_sha256_head(tmp_path):
    path = tmp_path / "file.txt"
    path.write_bytes(b"abc")
    assert sha256_head(path, 8) == "ba7816bf"
    assert sha256_head(tmp_path / "missing") == "unknown"
