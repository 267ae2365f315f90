import logging
import os
import signal
import sys
import threading
from typing import Any, Dict, Optional

from .config import Config
from .db import dispose_db, init_db
from .task_manager import TaskManager


class ReminderApp:
    """Headless application: config, logging, database, task manager, engine and optional API."""

    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        # Initialize database (before the engine so tables exist)
        init_db(self.config.data)

        self.task_manager = TaskManager()

        from prayer_reminder.reminders.engine import ReminderEngine
        self.engine = ReminderEngine.from_config(self.config.data, task_manager=self.task_manager)

        self._stop_event = threading.Event()
        self.api_thread = None

    def _setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        log_config = self.config.get_section("logging")
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = log_config.get("file")
        if log_file:
            log_file = os.path.expanduser(log_file)
            try:
                os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
                file_handler = logging.FileHandler(log_file)
                file_handler.setFormatter(formatter)
                root_logger.addHandler(file_handler)
            except OSError as e:
                print(f"Cannot open log file {log_file}: {e}", file=sys.stderr)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Prayer reminder service starting...")

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Apply location and logging level changes from a reloaded config file"""
        self.logger.info("Handling config change")
        try:
            level = (new_config.get("logging") or {}).get("level")
            if level:
                logging.getLogger().setLevel(getattr(logging, str(level).upper(), logging.INFO))

            location = new_config.get("location") or {}
            if "lat" in location and "lon" in location:
                self.engine.set_coordinates(location["lat"], location["lon"])
        except Exception as e:
            self.logger.error(f"Error applying config change: {e}")

    def run(self) -> None:
        """Start the engine (and API if enabled) and block until stopped."""
        from prayer_reminder.api import run_api_server

        self.engine.start()
        self.api_thread = run_api_server(self)

        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGTERM, lambda signum, frame: self._stop_event.set())

        try:
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.logger.info("Interrupted")
        finally:
            self.stop()

    def request_stop(self) -> None:
        self._stop_event.set()

    def stop(self) -> None:
        """Stop the engine and release resources"""
        self.engine.stop()
        self.task_manager.stop()
        self.config.cleanup()
        dispose_db()
        logging.info("Prayer reminder service stopped")
