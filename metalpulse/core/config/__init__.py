"""Configuration management."""

from metalpulse.core.config.settings import (
    DEFAULT_CONFIG_PATH,
    CalendarSettings,
    ConfigManager,
    DedupSettings,
    FeedSettings,
    LoggingSettings,
    MetalPulseConfig,
    SchedulerSettings,
    StoreSettings,
    WebSettings,
    get_default_config,
    load_config_from_env,
)

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
