import os

import pytest
import yaml
from watchdog.events import FileModifiedEvent, FileMovedEvent

from prayer_reminder.core.config import DEFAULT_CONFIG, Config, ConfigChangeHandler, config_diff


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_config(path, data):
    path.write_text(yaml.safe_dump(data))


def test_creates_default_config_file(config_dir):
    config = Config(str(config_dir / "config.yaml"), watch=False)

    assert (config_dir / "config.yaml").exists()
    assert config.get_section("location") == DEFAULT_CONFIG["location"]
    assert config.get_section("reminders")["tick_seconds"] == 60


def test_missing_keys_are_filled_from_defaults(config_dir):
    write_config(config_dir / "config.yaml", {"location": {"lat": 21.4, "lon": 39.8}, "api": {"enabled": True}})
    config = Config(str(config_dir / "config.yaml"), watch=False)

    assert config.get_section("location")["lat"] == 21.4
    assert config.get_section("location")["city"] == "Haramaya"
    assert config.get_section("api") == {"enabled": True, "host": "127.0.0.1", "port": 8765}
    assert config.get_section("schedule")["fallback"]["Isha"] == "19:30"


def test_environment_variables_are_substituted(config_dir, monkeypatch):
    monkeypatch.setenv("PRAYER_API_HOST", "0.0.0.0")
    write_config(config_dir / "config.yaml", {"api": {"host": "${PRAYER_API_HOST}", "port": "$PRAYER_UNSET_PORT"}})

    config = Config(str(config_dir / "config.yaml"), watch=False)

    assert config.get_section("api")["host"] == "0.0.0.0"
    assert config.get_section("api")["port"] == "$PRAYER_UNSET_PORT"


def test_env_file_is_loaded(config_dir, monkeypatch):
    # register the variable with monkeypatch so it is removed afterwards
    monkeypatch.setenv("PRAYER_DB_PATH", "placeholder")
    monkeypatch.delenv("PRAYER_DB_PATH")
    (config_dir / ".env").write_text("# local overrides\nPRAYER_DB_PATH='/tmp/prayers.db'\n")
    write_config(config_dir / "config.yaml", {"database": {"path": "${PRAYER_DB_PATH}"}})

    config = Config(str(config_dir / "config.yaml"), watch=False)

    assert os.environ["PRAYER_DB_PATH"] == "/tmp/prayers.db"
    assert config.get_section("database")["path"] == "/tmp/prayers.db"


def test_home_directory_is_expanded(config_dir):
    config = Config(str(config_dir / "config.yaml"), watch=False)
    assert not config.get_section("logging")["file"].startswith("~")
    assert not config.get_section("database")["path"].startswith("~")


def test_invalid_file_uses_defaults(config_dir):
    (config_dir / "config.yaml").write_text("- just\n- a list\n")
    config = Config(str(config_dir / "config.yaml"), watch=False)
    assert config.get_section("location")["city"] == "Haramaya"


def test_reload_notifies_callbacks(config_dir):
    path = config_dir / "config.yaml"
    config = Config(str(path), watch=False)
    seen = []
    config.register_change_callback(seen.append)

    write_config(path, {"location": {"lat": 21.4225, "lon": 39.8262, "city": "Makkah"}})
    config.reload()

    assert seen[0]["location"]["city"] == "Makkah"
    assert config.get_section("location")["city"] == "Makkah"


def test_reload_keeps_previous_config_on_error(config_dir):
    path = config_dir / "config.yaml"
    write_config(path, {"location": {"lat": 21.4225, "lon": 39.8262, "city": "Makkah"}})
    config = Config(str(path), watch=False)

    path.write_text("location: [unclosed\n")
    config.reload()

    assert config.get_section("location")["city"] == "Makkah"


def test_failing_callback_does_not_stop_others(config_dir):
    path = config_dir / "config.yaml"
    config = Config(str(path), watch=False)
    seen = []

    def broken(data):
        raise RuntimeError("bad listener")

    config.register_change_callback(broken)
    config.register_change_callback(seen.append)
    write_config(path, {"logging": {"level": "DEBUG"}})
    config.reload()

    assert len(seen) == 1


def test_get_section_for_unknown_name(config_dir):
    config = Config(str(config_dir / "config.yaml"), watch=False)
    assert config.get_section("weather") == {}


def test_reload_without_changes_notifies_nobody(config_dir):
    config = Config(str(config_dir / "config.yaml"), watch=False)
    seen = []
    config.register_change_callback(seen.append)

    assert config.reload() == []
    assert seen == []


def test_embedded_and_default_references(config_dir, monkeypatch):
    monkeypatch.setenv("PRAYER_HOME", "/srv/prayer")
    monkeypatch.delenv("PRAYER_MISSING", raising=False)
    write_config(config_dir / "config.yaml", {
        "database": {"path": "${PRAYER_HOME}/reminders.db"},
        "notifications": {"app_name": "${PRAYER_MISSING:-Salah}", "sound_file": "${PRAYER_MISSING}/adhan.mp3"},
    })

    config = Config(str(config_dir / "config.yaml"), watch=False)

    assert config.get_section("database")["path"] == "/srv/prayer/reminders.db"
    assert config.get_section("notifications")["app_name"] == "Salah"
    assert config.get_section("notifications")["sound_file"] == "${PRAYER_MISSING}/adhan.mp3"


def test_config_diff():
    old = {"location": {"lat": 1.0, "lon": 2.0}, "api": {"enabled": False}}
    new = {"location": {"lat": 1.5, "lon": 2.0, "city": "Harar"}, "logging": {"level": "DEBUG"}}

    assert config_diff(old, new) == [
        ("removed", "api", {"enabled": False}, None),
        ("added", "location.city", None, "Harar"),
        ("changed", "location.lat", 1.0, 1.5),
        ("added", "logging", None, {"level": "DEBUG"}),
    ]


def test_watcher_reloads_on_atomic_save(config_dir):
    path = config_dir / "config.yaml"
    config = Config(str(path), watch=False)
    handler = ConfigChangeHandler(config)

    write_config(path, {"location": {"lat": 21.4225, "lon": 39.8262, "city": "Makkah"}})
    handler.on_moved(FileMovedEvent(str(config_dir / ".config.yaml.swp"), str(path)))
    assert config.get_section("location")["city"] == "Makkah"

    # other files in the directory and rapid repeats are ignored
    write_config(path, {"location": {"city": "Harar"}})
    handler.on_modified(FileModifiedEvent(str(path)))
    handler.on_modified(FileModifiedEvent(str(config_dir / "notes.txt")))
    assert config.get_section("location")["city"] == "Makkah"
