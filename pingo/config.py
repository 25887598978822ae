"""Configuration loading for pingo.

Values come from defaults, then an optional TOML file, then command-line
overrides. Default locations follow the XDG base directory layout under
the user's home directory.
"""

import logging
import os
import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pingo.errors import ConfigError

logger = logging.getLogger(__name__)


def default_data_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".local", "share", "pingo")


def default_config_path() -> str:
    return os.path.join(os.path.expanduser("~"), ".config", "pingo", "config.toml")


def default_db_path() -> str:
    return os.path.join(default_data_dir(), "ping_stats.db")


class Config(BaseModel):
    """Runtime configuration."""

    model_config = ConfigDict(extra="ignore")

    port: str = "7777"
    target: str = "8.8.8.8"
    ping_count: int = Field(default=5, gt=0)
    retention_days: int = Field(default=15, gt=0)
    db_path: str = Field(default_factory=default_db_path)


def load_config(config_path: str) -> Config:
    """Load configuration from a TOML file, falling back to defaults.

    A missing file is not an error. Keys absent from the file keep their
    default values.

    Raises:
        ConfigError: the file cannot be read or parsed, or holds invalid values
    """
    if not os.path.exists(config_path):
        logger.info("Config file not found at %s, using defaults", config_path)
        return Config()

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"failed to parse config file: {e}") from e

    # TOML allows port = 7777 as well as port = "7777"
    if isinstance(data.get("port"), int):
        data["port"] = str(data["port"])

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {config_path}: {e}") from e

    logger.info("Loaded config from %s", config_path)
    return config


def apply_overrides(config: Config, **overrides) -> Config:
    """Return a copy of config with command-line values applied.

    Empty strings, None and non-positive numbers mean "not given".
    """
    updates = {}
    for key, value in overrides.items():
        if value is None or value == "":
            continue
        if isinstance(value, int) and value <= 0:
            continue
        updates[key] = value

    if not updates:
        return config
    return config.model_copy(update=updates)
