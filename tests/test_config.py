from __future__ import annotations

import json
import subprocess

from at_a_glance import config
from at_a_glance.config import (
    DEFAULT_CONFIG,
    DEFAULT_CONFIG_PATH,
    Settings,
    deep_merge,
    get_api_key,
    load_config,
    resolve_config_path,
)
from at_a_glance.pipeline.orchestrator import build_tiers


def test_missing_file_means_defaults(tmp_path):
    data = load_config(tmp_path / "absent.json")
    assert data == DEFAULT_CONFIG
    assert data is not DEFAULT_CONFIG


def test_partial_file_merges_over_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"advisory": {"max_daily_requests": 10}, "claude_api_key": "k"}))
    data = load_config(path)
    assert data["advisory"]["max_daily_requests"] == 10
    assert data["advisory"]["provider"] == "claude"
    assert data["claude_api_key"] == "k"


def test_broken_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    assert load_config(path) == DEFAULT_CONFIG
    assert "Ignoring unreadable config" in caplog.text


def test_non_object_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[1, 2, 3]")
    assert load_config(path) == DEFAULT_CONFIG


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1, "c": [1]}, "d": 1}
    merged = deep_merge(base, {"a": {"b": 2}, "e": 3})
    assert merged == {"a": {"b": 2, "c": [1]}, "d": 1, "e": 3}
    assert base["a"]["b"] == 1


def test_settings_sections_and_unknown_keys():
    settings = Settings.from_dict({
        "calendar": {"tier_order": ["file"], "no_such_option": True},
        "arbiter": {"max_length": 32},
    })
    assert settings.calendar.tier_order == ["file"]
    assert settings.arbiter.max_length == 32
    assert settings.arbiter.battery_threshold == 20
    assert settings.advisory.cache_ttl_minutes == {"insight": 60, "prioritization": 5}


def test_resolve_config_path_priority(monkeypatch, tmp_path):
    monkeypatch.delenv(config.CONFIG_ENV_VAR, raising=False)
    assert resolve_config_path() == DEFAULT_CONFIG_PATH

    monkeypatch.setenv(config.CONFIG_ENV_VAR, str(tmp_path / "env.json"))
    assert resolve_config_path() == tmp_path / "env.json"
    assert resolve_config_path(str(tmp_path / "cli.json")) == tmp_path / "cli.json"


def test_api_key_lookup_order(monkeypatch):
    monkeypatch.setattr(config, "_secret_tool_lookup", lambda service: f"keyring-{service}")
    monkeypatch.delenv("OPENWEATHER_API_KEY", raising=False)

    assert get_api_key("openweather", {}) == "keyring-openweather"
    assert get_api_key("openweather", {"openweather_api_key": "from-file"}) == "from-file"

    monkeypatch.setenv("OPENWEATHER_API_KEY", "from-env")
    assert get_api_key("openweather", {"openweather_api_key": "from-file"}) == "from-env"


def test_settings_api_key_uses_raw_config(monkeypatch):
    monkeypatch.setattr(config, "_secret_tool_lookup", lambda service: None)
    monkeypatch.delenv("TODOIST_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    settings = Settings.from_dict({"todoist_api_key": "abc"})
    assert settings.api_key("todoist") == "abc"
    assert settings.api_key("gemini") is None


def test_secret_tool_missing_binary(monkeypatch):
    def missing(*args, **kwargs):
        raise FileNotFoundError("secret-tool")

    monkeypatch.setattr(subprocess, "run", missing)
    assert config._secret_tool_lookup("claude") is None


def test_secret_tool_hit(monkeypatch):
    def found(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="sk-123\n", stderr="")

    monkeypatch.setattr(subprocess, "run", found)
    assert config._secret_tool_lookup("claude") == "sk-123"


def test_non_object_section_falls_back_to_section_defaults(tmp_path, caplog):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"calendar": "x", "arbiter": {"max_length": 30}}))
    settings = Settings.load(path)
    assert settings.calendar.tier_order == ["broker", "store", "file"]
    assert settings.calendar.ics_paths == DEFAULT_CONFIG["calendar"]["ics_paths"]
    assert settings.arbiter.max_length == 30
    assert "not an object" in caplog.text


def test_null_values_use_defaults():
    settings = Settings.from_dict({
        "calendar": {"tier_confidence": None, "max_events": None, "exclude_patterns": None},
        "advisory": {"model": None},
    })
    assert settings.calendar.tier_confidence == {"broker": 0.9, "store": 0.8, "file": 0.6}
    assert settings.calendar.max_events == 12
    assert settings.calendar.exclude_patterns is None
    assert settings.advisory.model is None


def test_null_tier_confidence_still_builds_tiers():
    settings = Settings.from_dict({"calendar": {"tier_confidence": None, "tier_order": ["store", "file"]}})
    assert [t.confidence for t in build_tiers(settings)] == [0.8, 0.6]
