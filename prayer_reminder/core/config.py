import yaml
from pathlib import Path
import os
from typing import Any, Dict, Optional, List, Callable, Tuple
import copy
import logging
import time
import re
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileModifiedEvent, FileMovedEvent, FileCreatedEvent

DEFAULT_CONFIG: Dict[str, Any] = {
    "location": {
        "lat": 9.4118,
        "lon": 42.0346,
        "city": "Haramaya",
    },
    "schedule": {
        "backend": "aladhan",
        "base_url": "https://api.aladhan.com/v1",
        "calculation_method": 2,
        "school": 0,
        "timeout": 10,
        "retry_seconds": 900,
        "store_schedules": True,
        "keep_days": 7,
        "fallback": {
            "Fajr": "05:30",
            "Dhuhr": "12:15",
            "Asr": "15:30",
            "Maghrib": "18:00",
            "Isha": "19:30",
        },
    },
    "reminders": {
        "tick_seconds": 60,
        "settings_key": "prayer_reminder_settings",
        "exact_alert_requires_event_enabled": False,
    },
    "notifications": {
        "backend": "desktop",
        "app_name": "Prayer Reminders",
        "auto_dismiss_seconds": 10,
        "sound_file": None,
    },
    "database": {
        "path": "~/.prayer_reminder/reminders.db",
    },
    "api": {
        "enabled": False,
        "host": "127.0.0.1",
        "port": 8765,
    },
    "logging": {
        "level": "INFO",
        "file": "~/.prayer_reminder/reminders.log",
    },
}

# ${VAR}, ${VAR:-default} or a whole-value $VAR
ENV_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}')
BARE_ENV_PATTERN = re.compile(r'^\$([A-Za-z_][A-Za-z0-9_]*)$')

ConfigChange = Tuple[str, str, Any, Any]


def config_diff(old: Dict[str, Any], new: Dict[str, Any], prefix: str = "") -> List[ConfigChange]:
    """List (kind, dotted.path, old, new) for every leaf that differs. kind is added/removed/changed."""
    changes: List[ConfigChange] = []
    for key in sorted(set(old) | set(new), key=str):
        path = f"{prefix}.{key}" if prefix else str(key)
        if key not in new:
            changes.append(("removed", path, old[key], None))
        elif key not in old:
            changes.append(("added", path, None, new[key]))
        elif isinstance(old[key], dict) and isinstance(new[key], dict):
            changes.extend(config_diff(old[key], new[key], path))
        elif old[key] != new[key]:
            changes.append(("changed", path, old[key], new[key]))
    return changes


class ConfigChangeHandler(FileSystemEventHandler):
    """Reloads the config when its file is written, created or renamed into place."""

    def __init__(self, config):
        self.config = config
        self.last_modified = 0
        self.cooldown = 1.0  # seconds

    def on_modified(self, event):
        if isinstance(event, FileModifiedEvent):
            self._maybe_reload(event.src_path)

    def on_created(self, event):
        if isinstance(event, FileCreatedEvent):
            self._maybe_reload(event.src_path)

    def on_moved(self, event):
        # Editors that save atomically write a temp file and rename it over the config
        if isinstance(event, FileMovedEvent):
            self._maybe_reload(event.dest_path)

    def _maybe_reload(self, path: str) -> None:
        if Path(path).resolve() != self.config.config_file:
            return

        current_time = time.time()
        if current_time - self.last_modified < self.cooldown:
            return

        try:
            self.last_modified = current_time
            self.config.reload()
        except Exception as e:
            logging.error(f"Error handling config change: {e}")


class Config:
    """
    YAML process configuration. Missing keys are filled from DEFAULT_CONFIG,
    ${VAR} references are resolved from the environment (and a .env file),
    and the file is watched so edits apply without a restart.
    """

    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        logging.debug("Initializing Config class")

        self.change_callbacks: List[Callable[[Dict[str, Any]], None]] = []
        self._loading = False  # prevents recursive reloading
        self.observer = None

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path.cwd()
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config file: {self.config_file}")

        self._load_env_file()
        self._ensure_config_exists()
        self._load_config()

        if watch:
            self._start_watching()

    def _start_watching(self) -> None:
        self.observer = Observer()
        self.observer.schedule(ConfigChangeHandler(self), str(self.config_dir), recursive=False)
        self.observer.start()
        logging.info(f"Path monitored for reloading: {self.config_dir}")

    def register_change_callback(self, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register a callback to be called with the new data when config changes"""
        self.change_callbacks.append(callback)

    def reload(self) -> List[ConfigChange]:
        """Re-read the file; notify listeners only if something changed. Returns the changes."""
        if self._loading:
            return []

        self._loading = True
        try:
            logging.info("Config file change detected - reloading configuration")

            # Wait briefly for file to be fully written
            time.sleep(0.1)

            old_config = copy.deepcopy(self.data) if hasattr(self, 'data') else {}
            self._load_config()

            changes = config_diff(old_config, self.data)
            if not changes:
                logging.info("Config reloaded, no changes")
                return []

            for kind, path, old, new in changes:
                if kind == "changed":
                    logging.info(f"Config changed: {path}: {old} -> {new}")
                elif kind == "added":
                    logging.info(f"Config added: {path}: {new}")
                else:
                    logging.info(f"Config removed: {path}: {old}")

            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    logging.error(f"Error in config change callback: {e}")
            return changes

        except Exception as e:
            logging.exception(f"Error reloading config: {e}")
            return []
        finally:
            self._loading = False

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()
            self.observer = None

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))

    def _load_env_file(self) -> None:
        """Load KEY=VALUE lines from the first .env found; existing variables win"""
        for env_file in (self.config_dir / ".env", Path.cwd() / ".env"):
            if env_file.exists():
                break
        else:
            logging.debug("No .env file found, skipping environment variable loading")
            return

        logging.info(f"Loading environment variables from: {env_file}")
        try:
            for line in env_file.read_text().splitlines():
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                if line.startswith('export '):
                    line = line[len('export '):]

                match = re.match(r'^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$', line)
                if not match:
                    logging.debug(f"Skipping malformed .env line: {line}")
                    continue
                key, value = match.groups()
                value = value.strip('"').strip("'")
                if key not in os.environ:
                    os.environ[key] = value
                    logging.debug(f"Loaded env var: {key}")
        except OSError as e:
            logging.warning(f"Error loading .env file: {e}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively resolve environment references in string values; unknown names are left as written"""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        if not isinstance(data, str):
            return data

        bare = BARE_ENV_PATTERN.match(data)
        if bare:
            return os.environ.get(bare.group(1), data)

        def replace(match):
            name, default = match.group(1), match.group(2)
            if name in os.environ:
                return os.environ[name]
            return default if default is not None else match.group(0)

        return ENV_PATTERN.sub(replace, data)

    def _merge_defaults(self, defaults: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        """Fill sections and keys missing from the file with defaults."""
        merged = copy.deepcopy(defaults)
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._merge_defaults(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _load_config(self) -> None:
        """Load configuration from file; keep the previous data (or defaults) if it is unreadable"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f)

            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a dictionary")

            data = self._merge_defaults(DEFAULT_CONFIG, self._substitute_env_vars(new_data))
            for section, key in (("logging", "file"), ("database", "path")):
                value = data.get(section, {}).get(key)
                if isinstance(value, str):
                    data[section][key] = os.path.expanduser(value)

            self.data = data
            logging.debug(f"Loaded config data: {self.data}")

        except (OSError, yaml.YAMLError, ValueError) as e:
            logging.error(f"Error loading config: {e}")
            if hasattr(self, 'data'):
                logging.info("Keeping previous configuration")
            else:
                logging.info("Using default configuration")
                self.data = copy.deepcopy(DEFAULT_CONFIG)

    def get_section(self, name: str) -> Dict[str, Any]:
        """Get one top-level section, empty dict if missing"""
        section = self.data.get(name)
        return section if isinstance(section, dict) else {}
