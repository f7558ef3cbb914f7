"""Configuration file loading and saving."""

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from replybot.config.schema import Config

DEFAULT_CONFIG_PATH = Path("~/.replybot/config.json")


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: Path | None = None) -> Config:
    """
    Load configuration from a JSON file.

    Values from the file are passed to Config; environment variables
    (REPLYBOT_*) fill in anything the file leaves unset. A missing or
    malformed file yields the defaults.

    Args:
        path: Config file path, defaults to ~/.replybot/config.json.

    Returns:
        Loaded configuration.
    """
    path = path or get_config_path()

    if not path.exists():
        return Config()

    try:
        with open(path) as f:
            data = json.load(f)
        return Config(**data)
    except (json.JSONDecodeError, OSError, ValidationError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        logger.warning("Using default configuration")
        return Config()


def save_config(config: Config, path: Path | None = None) -> Path:
    """
    Save configuration to a JSON file.

    Args:
        config: Configuration to save.
        path: Target path, defaults to ~/.replybot/config.json.

    Returns:
        The path written.
    """
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(config.model_dump(), f, indent=2)

    return path
