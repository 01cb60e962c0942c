# app_utils.py
# Version: 0.2.0
# Shared utility functions for Backup Ticker: hashing, directory creation, countdown formatting
# and interval arithmetic.

import hashlib
from pathlib import Path
import logging

from app_types import SECONDS_PER_DAY

logger = logging.getLogger(__name__)

DEBUG_FINISHED_MESSAGE = "Debug timer finished! Backup will be executed automatically."

def sha256_head(path: Path, n: int = 16) -> str:
    """Get first n characters of SHA256 hash of file at path."""
    try:
        sha256_hash = hashlib.sha256()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(4096), b""):
                sha256_hash.update(chunk)
        return sha256_hash.hexdigest()[:n]
    except Exception as e:
        logger.warning(f"Could not compute SHA256 for {path}: {e}")
        return "unknown"

def safe_makedirs(path: Path) -> bool:
    """Safely create directories, handling permissions and existing dirs."""
    try:
        path.mkdir(parents=True, exist_ok=True)
        return True
    except Exception as e:
        logger.warning(f"Could not create directory {path}: {e}")
        return False

def interval_seconds_for(times_per_day: int) -> float:
    """Spacing between firings for a times-per-day setting, clamped to at least one per day."""
    return SECONDS_PER_DAY / max(int(times_per_day), 1)

def format_countdown(seconds: int) -> str:
    """Format a countdown as 'HHh MMmin SSsec'.

    Hours are not wrapped at 24, so a one-per-day interval reads '24h 00min 00sec'.
    Negative input is shown as zero.
    """
    seconds = max(int(seconds), 0)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}h {minutes:02d}min {secs:02d}sec"
