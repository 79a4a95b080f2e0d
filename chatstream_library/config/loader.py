"""Configuration loading for chatstream clients.

This module handles loading client settings from a YAML file and
environment variables.

Contract:
- Inputs: Config file paths, environment variables
- Outputs: ClientSettings objects
- Side Effects: None
"""

import logging
import os
from pathlib import Path

import yaml

from ..storage.paths import get_config_dir
from .settings import ClientSettings

logger = logging.getLogger(__name__)


def get_client_config_path() -> Path:
    """Get path to the client config file.

    Returns:
        Path to client.yaml in config directory
    """
    return get_config_dir() / "client.yaml"


def load_settings(config_path: Path | None = None) -> ClientSettings:
    """Load client settings from YAML and environment.

    Environment variables take precedence over YAML settings.
    Variables should be prefixed with CHATSTREAM_ (e.g., CHATSTREAM_SERVER_URL).

    Args:
        config_path: Optional config file path (default: client.yaml in config dir)

    Returns:
        Validated client settings
    """
    if config_path is None:
        config_path = get_client_config_path()

    yaml_settings = {}
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_settings = yaml.safe_load(f) or {}
            logger.debug(f"Loaded client config from {config_path}")
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to load client config from {config_path}: {e}")

    # Only pass YAML values that don't have corresponding env vars
    filtered_yaml = {}
    for key, value in yaml_settings.items():
        env_key = f"CHATSTREAM_{key.upper()}"
        if env_key not in os.environ:
            filtered_yaml[key] = value

    settings = ClientSettings(**filtered_yaml)
    logger.debug(f"Client configuration loaded: server_url={settings.server_url}")
    return settings
