"""
Tests for `config/__init__.py`.

Environment overrides are resolved at import time, so the override tests reload the
module with a patched environment and restore it afterwards.
"""

import copy
import importlib

import pytest

import config
from config import CONFIG, get_config_value, validate_runtime_settings


@pytest.fixture
def reload_config(monkeypatch):
    def _reload(**env):
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        return importlib.reload(config)

    yield _reload
    monkeypatch.undo()
    importlib.reload(config)


def test_get_config_value_prefers_environment(monkeypatch):
    monkeypatch.setenv("THREAD_MAX_AGE_HOURS", "12")
    assert get_config_value(["threads", "max_age_hours"], "THREAD_MAX_AGE_HOURS", 24.0) == 12.0
    monkeypatch.delenv("THREAD_MAX_AGE_HOURS")
    assert get_config_value(["threads", "max_age_hours"], "THREAD_MAX_AGE_HOURS", 24.0) == CONFIG["threads"]["max_age_hours"]
    assert get_config_value(["threads", "missing"], None, "fallback") == "fallback"


def test_runtime_settings_accept_shipped_config():
    validate_runtime_settings(copy.deepcopy(CONFIG))


@pytest.mark.parametrize("section,key,value", [
    ("threads", "match_threshold", 1.5),
    ("threads", "match_threshold", -0.1),
    ("threads", "match_threshold", "high"),
    ("threads", "max_age_hours", 0),
    ("threads", "sweep_interval_minutes", "hourly"),
    ("dispatcher", "responder_timeout_seconds", -1.0),
])
def test_runtime_settings_reject_bad_values(section, key, value):
    settings = copy.deepcopy(CONFIG)
    settings[section][key] = value
    with pytest.raises(ValueError):
        validate_runtime_settings(settings)


def test_environment_threshold_override_is_validated(reload_config):
    with pytest.raises(ValueError, match="match_threshold"):
        reload_config(THREAD_MATCH_THRESHOLD="1.5")


def test_environment_threshold_override_is_applied(reload_config):
    module = reload_config(THREAD_MATCH_THRESHOLD="0.45")
    assert module.CONFIG["threads"]["match_threshold"] == 0.45
