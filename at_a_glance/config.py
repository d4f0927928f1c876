"""Configuration loading and API key lookup.

Settings live in ``~/.config/at-a-glance/config.json``. Any key left out of the
file falls back to the defaults below, and a missing or broken file simply
means "all defaults".
"""

from __future__ import annotations

import copy
import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "at-a-glance"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.json"
CONFIG_ENV_VAR = "AT_A_GLANCE_CONFIG"

# service name -> (environment variable, config file key)
API_KEY_SOURCES = {
    "claude": ("ANTHROPIC_API_KEY", "claude_api_key"),
    "gemini": ("GEMINI_API_KEY", "gemini_api_key"),
    "openweather": ("OPENWEATHER_API_KEY", "openweather_api_key"),
    "todoist": ("TODOIST_API_KEY", "todoist_api_key"),
}

DEFAULT_CONFIG: Dict[str, Any] = {
    "calendar": {
        "tier_order": ["broker", "store", "file"],
        "merge_all_tiers": False,
        "broker_timeout_seconds": 5.0,
        "store_paths": ["~/.cache/evolution/calendar/*/cache.db"],
        "store_query": "SELECT ECacheOBJ FROM ECacheObjects",
        "ics_paths": ["~/.local/share/evolution/calendar/system/calendar.ics"],
        "horizon_days": 7,
        "max_events": 12,
        "cache_minutes": 5,
        "exclude_patterns": None,
        "category_keywords": None,
        "tier_confidence": {"broker": 0.9, "store": 0.8, "file": 0.6},
    },
    "advisory": {
        "enabled": True,
        "provider": "claude",
        "model": None,
        "max_daily_requests": 24,
        "low_remaining_threshold": 2,
        "cache_ttl_minutes": {"insight": 60, "prioritization": 5},
        "usage_path": str(DEFAULT_CONFIG_DIR / "claude-usage.json"),
        "timeout_seconds": 20.0,
    },
    "arbiter": {
        "battery_threshold": 20,
        "imminent_minutes": 15,
        "upcoming_hours": 4,
        "max_length": 40,
    },
    "pipeline": {
        "interval_seconds": 60,
        "top_events": 3,
    },
    "meeting": {
        "cache_minutes": 15,
        "lookahead_hours": 4,
    },
    "weather": {
        "location_override": None,
        "default_location": "Detroit,MI,US",
        "units": "imperial",
        "timeout_seconds": 10.0,
    },
    "tasks": {
        "api_url": "https://api.todoist.com/rest/v2/tasks",
        "limit": 5,
        "timeout_seconds": 10.0,
    },
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def resolve_config_path(cli_arg: Optional[str] = None) -> Path:
    """Resolve the config file from CLI arg, env var, or default.

    Priority:
    1. --config CLI argument
    2. AT_A_GLANCE_CONFIG environment variable
    3. ~/.config/at-a-glance/config.json
    """
    if cli_arg:
        return Path(cli_arg).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load the raw config dict, merged over the defaults."""
    path = path or resolve_config_path()
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Ignoring unreadable config %s: %s", path, exc)
            data = {}
        if isinstance(data, dict):
            return deep_merge(DEFAULT_CONFIG, data)
        logger.warning("Config %s is not a JSON object, using defaults", path)
    return copy.deepcopy(DEFAULT_CONFIG)


def _secret_tool_lookup(service: str) -> Optional[str]:
    try:
        result = subprocess.run(
            ["secret-tool", "lookup", "service", service],
            capture_output=True, text=True, timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip()
    return None


def get_api_key(service: str, raw_config: Optional[Dict[str, Any]] = None) -> Optional[str]:
    """Look up an API key: environment, then config file, then the GNOME keyring."""
    env_var, config_key = API_KEY_SOURCES[service]
    key = os.environ.get(env_var)
    if key:
        return key
    if raw_config and raw_config.get(config_key):
        return str(raw_config[config_key])
    return _secret_tool_lookup(service)


@dataclass
class CalendarSettings:
    tier_order: List[str] = field(default_factory=lambda: ["broker", "store", "file"])
    merge_all_tiers: bool = False
    broker_timeout_seconds: float = 5.0
    store_paths: List[str] = field(default_factory=list)
    store_query: str = "SELECT ECacheOBJ FROM ECacheObjects"
    ics_paths: List[str] = field(default_factory=list)
    horizon_days: int = 7
    max_events: int = 12
    cache_minutes: float = 5
    exclude_patterns: Optional[List[str]] = None
    category_keywords: Optional[Dict[str, List[str]]] = None
    tier_confidence: Dict[str, float] = field(default_factory=dict)


@dataclass
class AdvisorySettings:
    enabled: bool = True
    provider: str = "claude"
    model: Optional[str] = None
    max_daily_requests: int = 24
    low_remaining_threshold: int = 2
    cache_ttl_minutes: Dict[str, float] = field(default_factory=dict)
    usage_path: str = ""
    timeout_seconds: float = 20.0


@dataclass
class ArbiterSettings:
    battery_threshold: int = 20
    imminent_minutes: int = 15
    upcoming_hours: int = 4
    max_length: int = 40


@dataclass
class PipelineSettings:
    interval_seconds: float = 60
    top_events: int = 3


@dataclass
class MeetingSettings:
    cache_minutes: float = 15
    lookahead_hours: int = 4


@dataclass
class WeatherSettings:
    location_override: Optional[str] = None
    default_location: str = "Detroit,MI,US"
    units: str = "imperial"
    timeout_seconds: float = 10.0


@dataclass
class TaskSettings:
    api_url: str = "https://api.todoist.com/rest/v2/tasks"
    limit: int = 5
    timeout_seconds: float = 10.0


def _section(cls, data: Any, defaults: Dict[str, Any]):
    if not isinstance(data, dict):
        logger.warning("Config section for %s is not an object, using defaults", cls.__name__)
        data = defaults
    fields = cls.__dataclass_fields__
    unknown = set(data) - set(fields)
    if unknown:
        logger.debug("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    values = {}
    for key, value in data.items():
        if key not in fields:
            continue
        # null only stands for "unset" where the field itself defaults to a value
        if value is None and fields[key].default is not None:
            logger.warning("Config %s.%s is null, using default", cls.__name__, key)
            value = defaults.get(key)
            if value is None:
                continue
        values[key] = copy.deepcopy(value)
    return cls(**values)


@dataclass
class Settings:
    """Typed view over the merged config dict, one dataclass per section."""

    calendar: CalendarSettings
    advisory: AdvisorySettings
    arbiter: ArbiterSettings
    pipeline: PipelineSettings
    meeting: MeetingSettings
    weather: WeatherSettings
    tasks: TaskSettings
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Settings":
        merged = deep_merge(DEFAULT_CONFIG, raw)
        return cls(
            calendar=_section(CalendarSettings, merged["calendar"], DEFAULT_CONFIG["calendar"]),
            advisory=_section(AdvisorySettings, merged["advisory"], DEFAULT_CONFIG["advisory"]),
            arbiter=_section(ArbiterSettings, merged["arbiter"], DEFAULT_CONFIG["arbiter"]),
            pipeline=_section(PipelineSettings, merged["pipeline"], DEFAULT_CONFIG["pipeline"]),
            meeting=_section(MeetingSettings, merged["meeting"], DEFAULT_CONFIG["meeting"]),
            weather=_section(WeatherSettings, merged["weather"], DEFAULT_CONFIG["weather"]),
            tasks=_section(TaskSettings, merged["tasks"], DEFAULT_CONFIG["tasks"]),
            raw=merged,
        )

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Settings":
        return cls.from_dict(load_config(path))

    def api_key(self, service: str) -> Optional[str]:
        return get_api_key(service, self.raw)
