"""Tool configuration.

Settings come from an optional YAML file with a top-level ``config:`` key
(``${VAR}`` placeholders are substituted from the environment), then
``RELFORGE_<FIELD>`` environment variables override individual fields.
"""

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from relforge.utils.env import substitute_env_vars

CONFIG_PATH = Path("relforge.yaml")
CONFIG_ENV_VAR = "RELFORGE_CONFIG"
ENV_PREFIX = "RELFORGE_"


class Settings(BaseModel):
    """Runtime settings for the release manager and CLI."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    state_backend: Literal["file", "memory", "redis"] = "file"
    state_dir: Path = Path("~/.relforge/state")
    redis_url: str = "redis://localhost:6379/0"
    namespace: str = "default"
    apply_timeout: float = Field(default=120.0, gt=0)
    log_level: str = "WARNING"


def _config_file(file_path: Path | None) -> Path | None:
    if file_path is not None:
        return file_path
    if env_path := os.getenv(CONFIG_ENV_VAR):
        return Path(env_path)
    return CONFIG_PATH if CONFIG_PATH.exists() else None


def _env_overrides() -> dict[str, Any]:
    overrides = {}
    for field_name in Settings.model_fields:
        env_name = f"{ENV_PREFIX}{field_name.upper()}"
        if env_name in os.environ:
            overrides[field_name] = os.environ[env_name]
    return overrides


def load_settings(file_path: Path | None = None) -> Settings:
    """
    Load settings from a config file and the environment.

    Args:
        file_path: Explicit config file; defaults to $RELFORGE_CONFIG or
                   ./relforge.yaml when present

    Returns:
        Validated Settings

    Raises:
        ValueError: If the file is unreadable, malformed, or fails validation
        FileNotFoundError: If an explicitly requested file doesn't exist
    """
    values: dict[str, Any] = {}

    path = _config_file(file_path)
    if path is not None:
        logger.debug(f"Loading configuration from {path}")
        with open(path) as f:
            content = substitute_env_vars(f.read())
        try:
            loaded = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing YAML: {e}") from e
        if not isinstance(loaded, dict) or "config" not in loaded:
            raise ValueError("Invalid YAML structure: missing 'config' key")
        values.update(loaded["config"] or {})

    overrides = _env_overrides()
    if overrides:
        logger.debug(f"Applying environment overrides: {sorted(overrides)}")
    values.update(overrides)

    try:
        return Settings.model_validate(values)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e
