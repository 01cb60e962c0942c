# main.py
# Version: 1.1.0
# Main entry point for Backup Ticker with command-line argument parsing, schedule administration
# commands, and application lifecycle management for the standalone tick host.

import sys
import signal
import argparse
import threading
from pathlib import Path
from typing import Optional
import logging
import traceback

from app_config import ConfigManager, AppConfig
from app_core import CoreEngine, Scheduler
from app_logging import LoggingManager
from app_store import FileStateStore, HistoryStore
from app_trigger import ActionTrigger, CallableTrigger, CommandTrigger, TriggerRunner

__version__ = "1.1.0"

logger = logging.getLogger(__name__)

# Global application state
config_manager: Optional[ConfigManager] = None
core_engine: Optional[CoreEngine] = None
scheduler: Optional[Scheduler] = None
logging_manager: Optional[LoggingManager] = None
_shutdown_in_progress = False
_stop_event = threading.Event()

def setup_logging():
    """Set up basic logging before config is loaded."""
    # Only set level, don't configure handlers - LoggingManager will handle that
    logging.getLogger().setLevel(logging.INFO)

def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="backup-ticker",
        description="Backup Ticker - tick-driven automatic backup timer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  backup-ticker run --command "tar czf backups/world.tgz world"
  backup-ticker set-times 4          # Four backups per day
  backup-ticker debug 0 5 0          # One backup in five minutes
  backup-ticker status
  backup-ticker reset
        """
    )

    parser.add_argument('--portable', action='store_true',
                        help='Run in portable mode (config, state and logs next to the program)')
    parser.add_argument('--data-dir', type=Path, default=None,
                        help='Use this directory for config, state and logs')
    parser.add_argument('--config-info', action='store_true',
                        help='Print configuration information and exit')
    parser.add_argument('--debug', action='store_true',
                        help='Enable debug logging and console output for admin commands')
    parser.add_argument('--version', action='version', version=f'Backup Ticker {__version__}')

    subparsers = parser.add_subparsers(dest='command')

    run_parser = subparsers.add_parser('run', help='Deliver ticks and run backups on schedule (default)')
    run_parser.add_argument('--command', dest='backup_command', default=None,
                            help='Backup command to run (overrides backup_command in config)')
    run_parser.add_argument('--status-window', action='store_true',
                            help='Show the status window (requires PySide6)')

    subparsers.add_parser('status', help='Print the countdown to the next backup')

    times_parser = subparsers.add_parser('set-times', help='Set backups per day (0 disables)')
    times_parser.add_argument('times', type=int)

    debug_parser = subparsers.add_parser('debug', help='Start a one-shot debug countdown')
    debug_parser.add_argument('hours', type=int)
    debug_parser.add_argument('minutes', type=int)
    debug_parser.add_argument('seconds', type=int)

    subparsers.add_parser('reset', help='Reset the backup timer and history')

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = 'run'
        args.backup_command = None
        args.status_window = False
    return args

def _unconfigured_backup() -> bool:
    logger.error("No backup command configured; set backup_command in config.json or pass --command")
    return False

def build_trigger(config: AppConfig, manager: ConfigManager) -> ActionTrigger:
    """Action trigger from configuration."""
    if config.backup_command:
        return CommandTrigger(config.backup_command, timeout_sec=config.backup_timeout_sec,
                              cwd=manager.config_dir)
    return CallableTrigger(_unconfigured_backup, name="unconfigured")

def build_scheduler(config: AppConfig, manager: ConfigManager, log_manager: Optional[LoggingManager] = None,
                    threaded: bool = True) -> Scheduler:
    """Wire the scheduler to its file-backed stores and trigger."""
    runner = TriggerRunner(build_trigger(config, manager), wait_ms=config.trigger_wait_ms, threaded=threaded)
    return Scheduler(
        config,
        FileStateStore(manager.state_path),
        runner,
        history_store=HistoryStore(manager.history_path),
        config_manager=manager,
        logging_manager=log_manager,
    )

def _make_config_manager(args) -> ConfigManager:
    if args.data_dir is not None:
        return ConfigManager(base_dir=args.data_dir)
    # Auto-detect portable mode unless explicitly specified
    return ConfigManager(portable_mode=True if args.portable else None)

def initialize_application(args, console: bool = True) -> Optional[AppConfig]:
    """Initialize the application components."""
    global config_manager, scheduler, logging_manager

    try:
        config_manager = _make_config_manager(args)
        config_manager.ensure_data_dirs()
        config = config_manager.load_config()

        if getattr(args, 'backup_command', None):
            config.backup_command = args.backup_command

        logging_manager = LoggingManager(config_manager.get_log_dir(), config, console=console, debug=args.debug)

        scheduler = build_scheduler(config, config_manager, logging_manager,
                                    threaded=args.command == 'run')

        logging_manager.log_system_event("INIT", "Application initialized successfully")
        return config

    except Exception as e:
        logger.error(f"Failed to initialize application: {e}")
        return None

def handle_config_info(args) -> bool:
    """Handle the --config-info command."""
    try:
        manager = _make_config_manager(args)
        config = manager.load_config()

        print("Backup Ticker Configuration Information")
        print("=" * 50)
        print(f"Config path: {manager.config_path}")
        print(f"Config directory: {manager.config_dir}")
        print(f"Log directory: {manager.log_dir}")
        print(f"State file: {manager.state_path}")
        print(f"History file: {manager.history_path}")
        print(f"Portable mode: {config.portable}")
        print(f"Install ID: {config.install_id}")
        print(f"Version: {config.version}")
        print(f"Automatic backups enabled: {config.auto_backup_enabled}")
        print(f"Backups per day: {config.auto_backup_times}")
        print(f"Ticks per second: {config.ticks_per_second}")
        print(f"Backup command: {config.backup_command or '(not set)'}")
        print(f"Backup timeout (sec): {config.backup_timeout_sec}")
        print(f"Trigger wait (ms): {config.trigger_wait_ms}")
        print(f"CLI countdown interval (sec): {config.cli_countdown_interval_sec}")
        print(f"Log max size (KB): {config.log_max_kb}")
        print(f"Log history count: {config.log_history_count}")
        return True

    except Exception as e:
        print(f"Error getting config info: {e}")
        return False

def handle_admin_command(args) -> int:
    """status / set-times / debug / reset against the persisted schedule."""
    if initialize_application(args, console=args.debug) is None:
        print("Failed to initialize; see log for details")
        return 1

    if args.command == 'set-times':
        scheduler.set_interval_mode(args.times)
        if args.times < 1:
            print("Automatic backups disabled")
        else:
            print(f"Automatic backups set to {args.times} per day")
    elif args.command == 'debug':
        scheduler.set_debug_countdown(args.hours, args.minutes, args.seconds)
        print("Debug timer started")
    elif args.command == 'reset':
        scheduler.reset()
        print("Backup schedule reset")

    snapshot = scheduler.get_status_snapshot()
    print(f"Mode: {snapshot.mode.value}")
    print(f"Next backup: {snapshot.status_text}")
    if snapshot.last_backup_time:
        print(f"Last backup: {snapshot.last_backup_time.isoformat(sep=' ', timespec='seconds')}")
    print(f"Backups today: {snapshot.todays_firings}")
    return 0

def _request_stop(signum, frame):
    logger.info(f"Received signal {signum}, stopping")
    _stop_event.set()

def run_application(args) -> int:
    """Start the tick host, optionally with the status window."""
    global core_engine

    config = initialize_application(args)
    if config is None:
        logger.error("Failed to initialize application")
        return 1

    if not config.backup_command:
        logger.warning("No backup command configured; scheduled backups will fail until one is set")

    core_engine = CoreEngine(config, scheduler, config_manager, logging_manager)
    core_engine.start()

    if args.status_window:
        logger.info("Starting status window...")
        try:
            from PySide6.QtWidgets import QApplication
            from app_gui import StatusWindow
        except ImportError:
            logger.exception("Failed to import PySide6 (Qt not installed?)")
            print("ERROR: Failed to import PySide6. Try: pip install PySide6")
            return 1

        app = QApplication(sys.argv)
        app.setApplicationName("Backup Ticker")
        app.setApplicationVersion(__version__)
        app.setStyle('Fusion')

        window = StatusWindow(scheduler, core_engine, config_manager, logging_manager)
        window.show()
        return app.exec()

    signal.signal(signal.SIGTERM, _request_stop)
    print(f"Backup Ticker running; next backup in {scheduler.status_string()}. Press Ctrl+C to stop.")
    try:
        while not _stop_event.wait(0.5):
            if not core_engine.is_running():
                logger.error("Tick loop stopped unexpectedly")
                return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, stopping")
    return 0

def shutdown_application():
    """Shutdown the application gracefully."""
    global _shutdown_in_progress

    if _shutdown_in_progress:
        return
    _shutdown_in_progress = True

    try:
        if core_engine:
            if logging_manager:
                logging_manager.log_system_event("SHUTDOWN", "Shutting down core engine")
            core_engine.stop(timeout_ms=2000)

        if scheduler:
            scheduler.shutdown()

        if logging_manager:
            logging_manager.shutdown()
        else:
            logging.info("Application shutdown complete")

    except Exception as e:
        logging.error(f"Error during shutdown: {e}")

def main(argv=None):
    """Main application entry point."""
    setup_logging()

    try:
        args = parse_arguments(argv)

        if args.config_info:
            success = handle_config_info(args)
            sys.exit(0 if success else 1)

        if args.command == 'run':
            sys.exit(run_application(args))
        sys.exit(handle_admin_command(args))

    except Exception as e:
        if logging_manager:
            logging_manager.log_system_event("ERROR", f"Unexpected error in main: {e}")
        logger.exception("Unexpected error in main")
        print("\nFull traceback:\n" + traceback.format_exc())
        sys.exit(1)

    finally:
        shutdown_application()

if __name__ == "__main__":
    main()
