"""
Configuration loader for FlowBot.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DispatchConfig:
    concurrency: int = 1                # >1 dispatches messages in parallel tasks


@dataclass
class TransportConfig:
    connect_attempts: int = 3           # attempts on transient connect failures
    backoff_multiplier: float = 1.0     # seconds, exponential between attempts
    backoff_max: float = 10.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"             # "console" | "json"


@dataclass
class Settings:
    app_name: str = "FlowBot"
    token: str = ""
    offline: bool = False               # read commands from stdin, reply on stdout
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _unresolved_to_empty(value: Any) -> str:
    """A `${VAR}` left in place means VAR is unset."""
    if not value:
        return ""
    value = str(value)
    return "" if re.fullmatch(r'\$\{\w+\}', value) else value


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "FLOWBOT_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.token = _unresolved_to_empty(raw.get("token", settings.token))
        settings.offline = _as_bool(raw.get("offline", settings.offline))

        if "dispatch" in raw:
            d = raw["dispatch"] or {}
            settings.dispatch = DispatchConfig(
                concurrency=int(d.get("concurrency", 1)),
            )

        if "transport" in raw:
            t = raw["transport"] or {}
            settings.transport = TransportConfig(
                connect_attempts=int(t.get("connect_attempts", 3)),
                backoff_multiplier=float(t.get("backoff_multiplier", 1.0)),
                backoff_max=float(t.get("backoff_max", 10.0)),
            )

        if "logging" in raw:
            lg = raw["logging"] or {}
            settings.logging = LoggingConfig(
                level=lg.get("level", "INFO"),
                format=lg.get("format", "console"),
            )

        settings.extra = raw.get("extra", {}) or {}

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings():
    global _settings
    _settings = None
