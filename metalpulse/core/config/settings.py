"""Configuration management for metalpulse services."""

from __future__ import annotations

import os
import tomllib
from datetime import date
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from metalpulse.core.exceptions import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".metalpulse" / "config.toml"


class _Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")


class CalendarSettings(_Settings):
    """Trading hours for one market; overrides the built-in calendar of the same name."""

    market: str
    timezone: str = "Asia/Kolkata"
    weekdays: list[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    start_hour: int = Field(9, ge=0, le=23)
    start_minute: int = Field(0, ge=0, le=59)
    end_hour: int = Field(23, ge=0, le=23)
    end_minute: int = Field(30, ge=0, le=59)
    holidays: list[date] = Field(default_factory=list)
    aliases: list[str] = Field(default_factory=list)


class FeedSettings(_Settings):
    """One upstream endpoint polled by the scheduler."""

    name: str
    url: str
    family: str
    source: str = "scheduled-poll"
    market: str = "mcx"
    stream: bool = False
    replace_daily: bool = False
    # Keep only these contract or company names; empty keeps all.
    targets: list[str] = Field(default_factory=list)
    # Store a running total of upstream changes; defaults to on for company-update feeds.
    accumulate: bool | None = None


class SchedulerSettings(_Settings):
    in_session_interval: float = Field(60.0, gt=0)
    out_of_session_interval: float = Field(300.0, gt=0)
    fetch_timeout: float = Field(10.0, gt=0)
    alert_after_failures: int = Field(5, ge=1)
    # Market whose session decides the polling cadence.
    cadence_market: str = "mcx"


class DedupSettings(_Settings):
    lookback_seconds: float = Field(300.0, gt=0)
    places: int = Field(2, ge=0)


class StoreSettings(_Settings):
    database: str = str(Path.home() / ".metalpulse" / "metalpulse.duckdb")
    pool_size: int = Field(5, ge=1)
    acquire_timeout: float = Field(5.0, gt=0)
    statement_timeout: float = Field(10.0, gt=0)


class WebSettings(_Settings):
    host: str = "127.0.0.1"
    port: int = 8000
    run_scheduler: bool = True


class LoggingSettings(_Settings):
    level: str = "INFO"
    file: str | None = None


class MetalPulseConfig(_Settings):
    """Top level configuration document."""

    calendars: list[CalendarSettings] = Field(default_factory=list)
    feeds: list[FeedSettings] = Field(default_factory=list)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    web: WebSettings = Field(default_factory=WebSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> MetalPulseConfig:
        """Build a configuration from a plain mapping, raising :class:`ConfigError` on invalid input."""

        try:
            return cls.model_validate(config_dict)
        except ValidationError as exc:
            raise ConfigError("invalid configuration", {"errors": exc.errors(include_url=False)}) from exc

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ConfigManager:
    """Loads the TOML configuration file and applies environment overrides."""

    def __init__(self, config_path: Path | None = None, *, use_env: bool = True):
        """Initialise the manager.

        Args:
            config_path: TOML file to read; defaults to ``~/.metalpulse/config.toml``.
            use_env: Whether ``METALPULSE_*`` variables override file values.
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.use_env = use_env
        self.config = self._load_config()

    def _load_config(self) -> MetalPulseConfig:
        config_dict: dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, "rb") as f:
                    config_dict = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as exc:
                raise ConfigError(
                    f"failed to read config from {self.config_path}",
                    {"path": str(self.config_path), "reason": str(exc)},
                ) from exc

        if self.use_env:
            _deep_update(config_dict, load_config_from_env())
        return MetalPulseConfig.from_dict(config_dict)

    def get_config(self) -> MetalPulseConfig:
        return self.config

    def update_config(self, **updates: Any) -> None:
        """Apply nested updates and re-validate."""
        config_dict = self.config.to_dict()
        _deep_update(config_dict, updates)
        self.config = MetalPulseConfig.from_dict(config_dict)


def _deep_update(d: dict[str, Any], u: dict[str, Any]) -> dict[str, Any]:
    for k, v in u.items():
        if isinstance(v, dict):
            d[k] = _deep_update(d.get(k, {}), v)
        else:
            d[k] = v
    return d


def get_default_config() -> MetalPulseConfig:
    return MetalPulseConfig()


# (section, key, env var, converter)
_ENV_OVERRIDES: tuple[tuple[str, str, str, Any], ...] = (
    ("scheduler", "in_session_interval", "METALPULSE_SCHEDULER_IN_SESSION_INTERVAL", float),
    ("scheduler", "out_of_session_interval", "METALPULSE_SCHEDULER_OUT_OF_SESSION_INTERVAL", float),
    ("scheduler", "fetch_timeout", "METALPULSE_SCHEDULER_FETCH_TIMEOUT", float),
    ("scheduler", "alert_after_failures", "METALPULSE_SCHEDULER_ALERT_AFTER_FAILURES", int),
    ("dedup", "lookback_seconds", "METALPULSE_DEDUP_LOOKBACK_SECONDS", float),
    ("store", "database", "METALPULSE_STORE_DATABASE", str),
    ("store", "pool_size", "METALPULSE_STORE_POOL_SIZE", int),
    ("store", "acquire_timeout", "METALPULSE_STORE_ACQUIRE_TIMEOUT", float),
    ("store", "statement_timeout", "METALPULSE_STORE_STATEMENT_TIMEOUT", float),
    ("web", "host", "METALPULSE_WEB_HOST", str),
    ("web", "port", "METALPULSE_WEB_PORT", int),
    ("web", "run_scheduler", "METALPULSE_WEB_RUN_SCHEDULER", lambda value: value.lower() == "true"),
    ("logging", "level", "METALPULSE_LOGGING_LEVEL", str),
    ("logging", "file", "METALPULSE_LOGGING_FILE", str),
)


def load_config_from_env() -> dict[str, Any]:
    """Collect ``METALPULSE_*`` overrides into a nested mapping."""
    config: dict[str, Any] = {}
    for section, key, env_name, convert in _ENV_OVERRIDES:
        raw = os.getenv(env_name)
        if raw is None:
            continue
        try:
            value = convert(raw)
        except ValueError as exc:
            raise ConfigError(f"invalid value for {env_name}", {"value": raw}) from exc
        config.setdefault(section, {})[key] = value
    return config


__all__ = [
    "CalendarSettings",
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "DedupSettings",
    "FeedSettings",
    "LoggingSettings",
    "MetalPulseConfig",
    "SchedulerSettings",
    "StoreSettings",
    "WebSettings",
    "get_default_config",
    "load_config_from_env",
]
