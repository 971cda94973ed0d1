import logging
import os
import sys

import pytest
import structlog
import yaml

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from config import YamlConfig
from logging_config import configure_logging
from settings_schema import SettingsSchema, load_settings, validate_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("GYM_PLANNER_DB", "LOG_LEVEL", "APP_ENV"):
        monkeypatch.delenv(name, raising=False)


def test_yaml_roundtrip(tmp_path):
    cfg = YamlConfig(str(tmp_path / "settings.yaml"))
    assert not cfg.exists()
    assert cfg.load() == {}
    cfg.save({"db_path": "gym.db", "calendar_range_days": 14})
    assert cfg.exists()
    assert cfg.load() == {"calendar_range_days": 14, "db_path": "gym.db"}


def test_yaml_must_be_mapping(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        YamlConfig(str(path)).load()


def test_defaults_without_file(tmp_path):
    settings = load_settings(str(tmp_path / "missing.yaml"))
    assert settings == SettingsSchema()
    assert settings.db_path == "workout.db"
    assert settings.default_icon_code_point == 0xE28D
    assert settings.calendar_range_days == 42


def test_environment_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({"db_path": "file.db", "log_level": "WARNING"}))
    monkeypatch.setenv("GYM_PLANNER_DB", "env.db")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    settings = load_settings(str(path))
    assert settings.db_path == "env.db"
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize(
    "data",
    [
        {"log_level": "LOUD"},
        {"calendar_range_days": 0},
        {"calendar_range_days": 400},
        {"default_icon_code_point": -1},
    ],
)
def test_invalid_settings_rejected(data):
    with pytest.raises(ValueError):
        validate_settings(data)


def test_configure_logging_renderers():
    try:
        configure_logging("debug", "production")
        assert logging.getLogger().level == logging.DEBUG
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

        configure_logging("WARNING", "local")
        assert logging.getLogger().level == logging.WARNING
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)
    finally:
        structlog.reset_defaults()


def test_service_and_env_are_attached():
    from logging_config import SERVICE_NAME, _add_service_and_env

    processor = _add_service_and_env(SERVICE_NAME, "test")
    event = processor(None, "info", {"event": "ping"})
    assert event == {"event": "ping", "service": "gym-planner", "env": "test"}
