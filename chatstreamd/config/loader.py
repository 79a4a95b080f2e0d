"""Configuration loader for chatstreamd daemon.

Handles loading configuration from files, environment variables, and defaults.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from chatstream_library.storage.paths import get_config_dir

from .models import Config
from .models import Secrets

logger = logging.getLogger(__name__)

ENV_PREFIX = "CHATSTREAMD"


def get_config_path() -> Path:
    """Get the default configuration file path.

    Returns:
        Path to configuration file (may not exist yet)
    """
    return get_config_dir() / "daemon.yaml"


def get_secrets_path() -> Path:
    return get_config_dir() / "secrets.yaml"


def load_config(config_path: Path | None = None) -> Config:
    """Load daemon configuration.

    Loads configuration with the following precedence (highest to lowest):
    1. Environment variables (CHATSTREAMD_SECTION_KEY)
    2. Configuration file (if exists)
    3. Default values

    Args:
        config_path: Optional path to configuration file. If None, uses default location.

    Returns:
        Loaded configuration
    """
    if config_path is None:
        config_path = get_config_path()

    if config_path.exists():
        logger.info(f"Loading configuration from {config_path}")
        try:
            config = Config.load_from_file(config_path)
        except ValueError as e:
            logger.error(f"Failed to load config from {config_path}: {e}")
            logger.info("Using default configuration")
            config = Config.get_default()
    else:
        logger.info(f"No configuration file found at {config_path}, using defaults")
        config = Config.get_default()

    return _apply_env_overrides(config)


def load_secrets(secrets_path: Path | None = None) -> Secrets:
    """Load API keys from secrets.yaml (empty when absent)."""
    return Secrets.load_from_file(secrets_path or get_secrets_path())


def _parse_env_value(raw: str, current: Any) -> Any:
    if isinstance(current, bool):
        return raw.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, list):
        # Comma-separated list
        return [item.strip() for item in raw.split(",") if item.strip()]
    if current is None and raw.lower() == "none":
        return None
    return raw


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to configuration.

    Environment variables follow the pattern: CHATSTREAMD_SECTION_KEY
    Examples:
        CHATSTREAMD_DAEMON_PORT=9000
        CHATSTREAMD_LLM_MODEL=gpt-4o
        CHATSTREAMD_DAEMON_CORS_ORIGINS=http://a:5173,http://b:5173

    Args:
        config: Configuration to override

    Returns:
        Configuration with environment overrides applied
    """
    config_dict = config.model_dump()

    for section_name in Config.model_fields:
        section: BaseModel = getattr(config, section_name)
        overrides = {}
        for key in type(section).model_fields:
            env_var = f"{ENV_PREFIX}_{section_name.upper()}_{key.upper()}"
            if env_var in os.environ:
                overrides[key] = _parse_env_value(os.environ[env_var], getattr(section, key))
                logger.info(f"Environment override: {section_name}.{key} = {overrides[key]}")
        if overrides:
            config_dict[section_name].update(overrides)

    return Config.model_validate(config_dict)


def save_example_config(path: Path | None = None) -> Path:
    """Save an example configuration file with all defaults documented.

    Args:
        path: Optional path to save to. If None, uses default location with .example suffix.

    Returns:
        Path where example config was saved
    """
    if path is None:
        path = get_config_path().with_suffix(".example.yaml")

    Config.get_default().save_to_file(path)

    content = path.read_text()
    header = """# chatstreamd Daemon Configuration
#
# Copy this to daemon.yaml and customize as needed.
#
# Configuration precedence (highest to lowest):
# 1. Environment variables (CHATSTREAMD_SECTION_KEY)
# 2. This configuration file
# 3. Built-in defaults
#
# API keys belong in secrets.yaml:
#   api_keys:
#     openai: "sk-..."

"""
    path.write_text(header + content)

    logger.info(f"Saved example configuration to {path}")
    return path
