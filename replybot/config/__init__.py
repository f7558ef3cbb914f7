"""Configuration module for replybot."""

from replybot.config.loader import get_config_path, load_config, save_config
from replybot.config.schema import (
    AnalyticsConfig,
    BotSettings,
    BroadcastConfig,
    Config,
    ConnectionConfig,
    LLMSettings,
    StorageConfig,
    WorkingHoursConfig,
)

__all__ = [
    "get_config_path",
    "load_config",
    "save_config",
    "AnalyticsConfig",
    "BotSettings",
    "BroadcastConfig",
    "Config",
    "ConnectionConfig",
    "LLMSettings",
    "StorageConfig",
    "WorkingHoursConfig",
]
