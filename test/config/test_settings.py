import json
import logging
import os

import pytest

from server_scheduler.config.const import env_name
from server_scheduler.config.settings import (
    CONFIG_SCHEMA_VERSION,
    Settings,
    deep_merge,
)
from server_scheduler.error import ConfigurationError


@pytest.fixture
def settings(isolated_settings):
    return Settings()


def test_deep_merge():
    destination = {"a": 1, "b": {"c": 2, "d": 3}}
    source = {"b": {"c": 4}, "e": 5}

    assert deep_merge(source, destination) == {"a": 1, "b": {"c": 4, "d": 3}, "e": 5}


def test_data_dir_from_environment(settings, isolated_settings):
    assert env_name == "SERVER_SCHEDULER"
    assert settings.app_data_dir == os.path.abspath(str(isolated_settings))
    assert settings.config_dir == os.path.join(settings.app_data_dir, ".config")


def test_data_dir_falls_back_to_appdirs(monkeypatch, tmp_path):
    monkeypatch.delenv("SERVER_SCHEDULER_DATA_DIR")
    fallback = tmp_path / "appdirs"
    monkeypatch.setattr(
        "server_scheduler.config.settings.user_data_dir",
        lambda *args, **kwargs: str(fallback),
    )

    assert Settings().app_data_dir == str(fallback)


def test_defaults_written_on_first_load(settings):
    assert os.path.exists(settings.config_path)
    with open(settings.config_path) as f:
        saved = json.load(f)

    assert saved["config_version"] == CONFIG_SCHEMA_VERSION
    assert settings.get("multiplexer.type") == "screen"
    assert settings.get("multiplexer.path") is None
    assert settings.get("retention.logs") == 3
    assert settings.get("logging.file_level") == logging.INFO
    assert settings.get("scheduler.kill_timeout_sec") == 5
    assert settings.get("db.url").startswith("sqlite:///")
    assert os.path.isdir(settings.resolve_path(settings.get("paths.logs")))


def test_user_values_override_defaults(isolated_settings):
    config_dir = isolated_settings / ".config"
    config_dir.mkdir()
    (config_dir / "server_scheduler.json").write_text(
        json.dumps({"multiplexer": {"type": "tmux"}, "paths": {"logs": "my-logs"}})
    )

    settings = Settings()

    assert settings.get("multiplexer.type") == "tmux"
    assert settings.get("multiplexer.path") is None
    assert settings.resolve_path(settings.get("paths.logs")) == os.path.join(
        settings.app_data_dir, "my-logs"
    )


def test_corrupt_config_falls_back_to_defaults(isolated_settings):
    config_dir = isolated_settings / ".config"
    config_dir.mkdir()
    (config_dir / "server_scheduler.json").write_text("{not json")

    assert Settings().get("multiplexer.type") == "screen"


def test_get_missing_key_returns_default(settings):
    assert settings.get("no.such.key") is None
    assert settings.get("no.such.key", "fallback") == "fallback"


def test_settings_are_read_only(settings):
    assert not hasattr(settings, "set")


def test_resolve_path_keeps_absolute_paths(settings, tmp_path):
    assert settings.resolve_path(str(tmp_path)) == str(tmp_path)
    assert settings.resolve_path(None) is None


def test_unwritable_data_dir_raises(monkeypatch, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    monkeypatch.setenv("SERVER_SCHEDULER_DATA_DIR", str(blocker / "data"))

    with pytest.raises(ConfigurationError):
        Settings()
