# app_config.py
# Version: 1.2.0
# Pure persistence layer for Backup Ticker configuration with crash-safe saves, explicit mode resolution,
# per-user data directory fallback, no side effects in getters, and read-only path properties.

import json
import os
import sys
import uuid
import shutil
import time
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, fields
import logging

from app_types import DEFAULT_TICKS_PER_SECOND
from app_utils import sha256_head, safe_makedirs

logger = logging.getLogger(__name__)

CONFIG_VERSION = 2
APP_DIR_NAME = "BackupTicker"
STATE_DIR_NAME = ".temp"
STATE_FILE_NAME = "schedulesystem.yml"
HISTORY_FILE_NAME = "schedule-history.json"
NOTICE_FILE_NAME = "donotdeletethisfolder.txt"

NOTICE_TEXT = """WARNING: Do NOT delete this folder!
--------------------------------------------------
This folder is used by Backup Ticker to store the automatic backup timer state.
If you delete this folder the timer restarts from a full interval and today's
backup history is lost.
--------------------------------------------------
"""

@dataclass
class AppConfig:
    """Main application configuration."""
    version: int = CONFIG_VERSION
    install_id: str = ""  # Generated UUID v4 on first run
    portable: bool = False
    auto_backup_enabled: bool = True
    auto_backup_times: int = 40  # Backups per day; 40 -> every 36 minutes
    ticks_per_second: int = DEFAULT_TICKS_PER_SECOND
    backup_command: str = ""  # Command run by the action trigger, e.g. "rsync -a world/ backups/"
    backup_timeout_sec: float = 3600.0  # Kill the backup command after this long
    trigger_wait_ms: int = 250  # Longest a tick waits on a running backup before moving on
    cli_countdown_interval_sec: int = 15  # CLI countdown logging interval in seconds
    gui_update_interval_ms: int = 500  # Status window refresh interval
    log_max_kb: int = 150
    log_history_count: int = 5
    log_ndjson: bool = True

    def __post_init__(self):
        if self.auto_backup_times < 0:
            logger.warning(f"Invalid auto_backup_times: {self.auto_backup_times}, using 0")
            self.auto_backup_times = 0
        if self.ticks_per_second <= 0:
            logger.warning(f"Invalid ticks_per_second: {self.ticks_per_second}, using {DEFAULT_TICKS_PER_SECOND}")
            self.ticks_per_second = DEFAULT_TICKS_PER_SECOND
        if self.trigger_wait_ms < 0:
            logger.warning(f"Invalid trigger_wait_ms: {self.trigger_wait_ms}, using 250ms")
            self.trigger_wait_ms = 250
        if self.backup_timeout_sec <= 0:
            logger.warning(f"Invalid backup_timeout_sec: {self.backup_timeout_sec}, using 3600s")
            self.backup_timeout_sec = 3600.0
        if self.cli_countdown_interval_sec <= 0:
            logger.warning(f"Invalid cli_countdown_interval_sec: {self.cli_countdown_interval_sec}, using 15s")
            self.cli_countdown_interval_sec = 15
        if self.gui_update_interval_ms <= 0:
            logger.warning(f"Invalid gui_update_interval_ms: {self.gui_update_interval_ms}, using 500ms")
            self.gui_update_interval_ms = 500

        # Older files stored the enabled flag as 0/1
        self.auto_backup_enabled = bool(self.auto_backup_enabled)

        if not self.install_id:
            self.install_id = str(uuid.uuid4())

class ConfigManager:
    """Manages configuration loading, saving, and migration."""

    # Class-level flag to track if dual-file warning has been shown
    _dual_file_warning_shown = False

    def __init__(self, portable_mode: Optional[bool] = None, base_dir: Optional[Path] = None):
        # An explicit base directory wins over both portable and standard locations
        self._base_dir = Path(base_dir) if base_dir is not None else None

        if self._base_dir is not None:
            portable_mode = False
        elif portable_mode is None:
            portable_mode = self._resolve_portable_mode()

        # Coerce to bool to avoid None values in config.portable
        self.portable_mode = bool(portable_mode)

        self._data_dir = self._get_data_dir()
        self._config_path = self._data_dir / "config.json"
        self._log_dir = self._data_dir / "logs"
        self._state_dir = self._data_dir / STATE_DIR_NAME

        self._loaded_mtime_ns: Optional[int] = None

    def _resolve_portable_mode(self) -> bool:
        """Resolve portable mode by probing both locations when not explicitly specified."""
        portable_path = Path(__file__).parent / "config.json"
        standard_path = self._user_data_root() / APP_DIR_NAME / "config.json"

        if standard_path.exists():
            logger.debug("Standard config exists - using standard mode")
            return False
        elif portable_path.exists():
            # Only portable exists - check if it explicitly wants portable mode
            try:
                with open(portable_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if data.get('portable', False):
                    logger.debug("Only portable config exists and specifies portable=True")
                    return True
                logger.debug("Only portable config exists but doesn't specify portable=True - using standard mode")
                return False
            except (json.JSONDecodeError, OSError):
                logger.debug("Portable config exists but is invalid - using standard mode")
                return False
        else:
            logger.debug("No config files exist - defaulting to standard mode")
            return False

    @property
    def config_path(self) -> Path:
        """Read-only access to config path."""
        return self._config_path

    @property
    def config_dir(self) -> Path:
        """Read-only access to config directory."""
        return self._data_dir

    @property
    def log_dir(self) -> Path:
        """Read-only access to log directory."""
        return self._log_dir

    @property
    def state_dir(self) -> Path:
        """Directory holding the scheduler state and history records."""
        return self._state_dir

    @property
    def state_path(self) -> Path:
        return self._state_dir / STATE_FILE_NAME

    @property
    def history_path(self) -> Path:
        return self._state_dir / HISTORY_FILE_NAME

    def _user_data_root(self) -> Path:
        """Per-user data root: APPDATA on Windows, XDG_DATA_HOME or ~/.local/share elsewhere."""
        if sys.platform.startswith("win"):
            appdata = os.environ.get("APPDATA")
            if appdata:
                return Path(appdata)
            userprofile = os.environ.get("USERPROFILE")
            if userprofile:
                return Path(userprofile) / "AppData" / "Roaming"
            return Path.home() / "AppData" / "Roaming"

        xdg = os.environ.get("XDG_DATA_HOME")
        if xdg:
            return Path(xdg)
        return Path.home() / ".local" / "share"

    def _get_data_dir(self) -> Path:
        if self._base_dir is not None:
            return self._base_dir
        if self.portable_mode:
            return Path(__file__).parent
        return self._user_data_root() / APP_DIR_NAME

    def ensure_data_dirs(self) -> bool:
        """Create the data, log and state directories plus the do-not-delete notice."""
        ok = all(safe_makedirs(p) for p in (self._data_dir, self._log_dir, self._state_dir))
        notice = self._state_dir / NOTICE_FILE_NAME
        if ok and not notice.exists():
            try:
                notice.write_text(NOTICE_TEXT, encoding='utf-8')
            except OSError as e:
                logger.warning(f"Could not create {NOTICE_FILE_NAME} in {self._state_dir}: {e}")
        return ok

    def load_config(self) -> AppConfig:
        """Load configuration with migration from older versions."""
        if not self.config_path.exists():
            logger.info("No existing config found, creating default config")
            config = self._create_default_config()
            self._loaded_mtime_ns = None
            return config

        try:
            self._loaded_mtime_ns = self._current_mtime_ns()
            with open(self.config_path, 'r', encoding='utf-8') as f:
                data = json.load(f)

            if not isinstance(data, dict):
                raise ValueError("config root is not an object")

            version = data.get('version', 1)
            logger.info(f"Loading config version {version}")

            if version < CONFIG_VERSION:
                data = self._migrate_config(data, version)

            config = self._dict_to_config(data)

            # Log boot banner with sha256 head
            self._log_boot_banner(config)
            self._check_dual_file_guard()

            return config

        except (json.JSONDecodeError, KeyError, ValueError, TypeError, OSError) as e:
            logger.error(f"Failed to load config: {e}")
            logger.info("Creating backup and default config")
            self._backup_corrupted_config()
            return self._create_default_config()

    def load_if_changed(self) -> Optional[AppConfig]:
        """Reload the config if the file changed since the last load/save, else None."""
        mtime = self._current_mtime_ns()
        if mtime is None or mtime == self._loaded_mtime_ns:
            return None
        logger.info(f"Config file changed on disk, reloading {self.config_path}")
        return self.load_config()

    def _current_mtime_ns(self) -> Optional[int]:
        try:
            return self.config_path.stat().st_mtime_ns
        except OSError:
            return None

    def _log_boot_banner(self, config: AppConfig):
        """Log boot banner with config path and sha256 head."""
        sha256_head_str = sha256_head(self.config_path, 16)
        logger.info(f"Using config at {self.config_path} (portable={config.portable}, sha256:{sha256_head_str})")

    def _check_dual_file_guard(self):
        """Check for and warn about dual config files (shown only once per session)."""
        if ConfigManager._dual_file_warning_shown or self._base_dir is not None:
            return

        try:
            portable_config = Path(__file__).parent / "config.json"
            standard_config = self._user_data_root() / APP_DIR_NAME / "config.json"

            if portable_config.exists() and standard_config.exists():
                ConfigManager._dual_file_warning_shown = True
                if self.portable_mode:
                    logger.warning(f"Both portable config ({portable_config}) and user config ({standard_config}) exist. Using portable config, ignoring user config.")
                else:
                    logger.warning(f"Both user config ({standard_config}) and portable config ({portable_config}) exist. Using user config, ignoring portable config.")
        except Exception as e:
            logger.warning(f"Could not check for dual config files: {e}")

    def _migrate_config(self, data: Dict[str, Any], from_version: int) -> Dict[str, Any]:
        """Migrate configuration from older versions."""
        logger.info(f"Migrating config from v{from_version} to current version")

        data['version'] = CONFIG_VERSION

        if 'portable' not in data:
            data['portable'] = self.portable_mode

        # V1 stored the schedule as autoBackupTimes / autoBackupEnabled (0/1)
        if 'auto_backup_times' not in data:
            data['auto_backup_times'] = data.pop('autoBackupTimes', 40)
        if 'auto_backup_enabled' not in data:
            data['auto_backup_enabled'] = bool(data.pop('autoBackupEnabled', 1))

        if 'ticks_per_second' not in data:
            data['ticks_per_second'] = DEFAULT_TICKS_PER_SECOND

        if 'trigger_wait_ms' not in data:
            data['trigger_wait_ms'] = 250

        logger.info("Config migration completed")
        return data

    def _create_default_config(self) -> AppConfig:
        """Create a default configuration."""
        config = AppConfig()
        # portable mode is already resolved in __init__ - don't override
        config.portable = self.portable_mode
        return config

    def _dict_to_config(self, data: Dict[str, Any]) -> AppConfig:
        """Convert dictionary to AppConfig object, dropping keys this version does not know."""
        known = {f.name for f in fields(AppConfig)}
        unknown = sorted(k for k in data if k not in known)
        if unknown:
            logger.debug(f"Ignoring unknown config keys: {unknown}")
        return AppConfig(**{k: v for k, v in data.items() if k in known})

    def _backup_corrupted_config(self):
        """Backup corrupted config file with timestamp."""
        if self.config_path.exists():
            # Create timestamped backup: config.YYYY-MM-DDTHH-MM-SS.backup
            timestamp = time.strftime("%Y-%m-%dT%H-%M-%S")
            backup_path = self.config_path.with_suffix(f'.{timestamp}.backup')
            try:
                shutil.copy2(self.config_path, backup_path)
                logger.info(f"Backed up corrupted config to {backup_path}")
            except Exception as e:
                logger.error(f"Failed to backup corrupted config: {e}")

    def save_config(self, config: AppConfig) -> bool:
        """Save configuration with crash-safe atomic write and directory fsync."""
        try:
            data = asdict(config)
            safe_makedirs(self.config_dir)

            # Write to same-directory temp file first
            temp_path = self.config_path.with_suffix('.tmp')
            try:
                with open(temp_path, 'w', encoding='utf-8') as f:
                    json.dump(data, f, indent=2, ensure_ascii=False)
                    f.flush()
                    try:
                        os.fsync(f.fileno())
                    except OSError as e:
                        logger.warning(f"File fsync failed: {e} (continuing with atomic replace)")

                temp_path.replace(self.config_path)
                fsync_directory(self.config_dir)

                self._loaded_mtime_ns = self._current_mtime_ns()
                logger.info(f"Config saved to {self.config_path}")
                return True

            except Exception:
                try:
                    temp_path.unlink(missing_ok=True)
                except OSError:
                    pass
                raise

        except Exception as e:
            logger.error(f"Failed to save config: {e}")
            return False

    def get_log_dir(self) -> Path:
        """Get the log directory, creating it if needed."""
        self._log_dir.mkdir(parents=True, exist_ok=True)
        return self._log_dir

def fsync_directory(directory: Path):
    """fsync a directory so a rename inside it is durable. No-op where unsupported."""
    # O_DIRECTORY is not available on Windows; NTFS replace is durable enough there
    try:
        if hasattr(os, 'O_DIRECTORY'):
            dir_fd = os.open(str(directory), os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        else:
            logger.debug("Skipping directory fsync (O_DIRECTORY not available)")
    except (OSError, AttributeError) as e:
        logger.debug(f"Directory fsync failed: {e} (continuing with file fsync only)")
