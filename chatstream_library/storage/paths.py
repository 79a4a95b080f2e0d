"""Path resolution for chatstreamd storage locations.

This module provides path resolution based on CHATSTREAMD_HOME environment variable,
following XDG-like directory structure within that root.

Contract:
- Inputs: Environment variables (CHATSTREAMD_HOME and per-directory overrides)
- Outputs: Resolved Path objects
- Side Effects: Creates directories if they don't exist
"""

import os
from pathlib import Path


def get_home_dir() -> Path:
    """Get CHATSTREAMD_HOME from environment.

    Returns:
        Path to root directory (default: .chatstreamd)
    """
    root = os.environ.get("CHATSTREAMD_HOME", ".chatstreamd")
    return Path(root).resolve()


def _resolve_dir(default: Path, env_var: str) -> Path:
    directory = default
    env_override: str | None = os.environ.get(env_var)
    if env_override is not None:
        directory = Path(env_override).resolve()

    directory.mkdir(parents=True, exist_ok=True)
    return directory


def get_config_dir() -> Path:
    """Get configuration directory.

    Returns:
        Path to config directory ($CHATSTREAMD_HOME/config)

    Environment Variables:
        CHATSTREAMD_CONFIG_DIR: Override config directory location
    """
    return _resolve_dir(get_home_dir() / "config", "CHATSTREAMD_CONFIG_DIR")


def get_state_dir() -> Path:
    """Get state directory holding conversation data.

    Returns:
        Path to state directory ($CHATSTREAMD_HOME/state)

    Environment Variables:
        CHATSTREAMD_STATE_DIR: Override state directory location
    """
    return _resolve_dir(get_home_dir() / "state", "CHATSTREAMD_STATE_DIR")


def get_log_dir() -> Path:
    """Get log directory.

    Returns:
        Path to log directory ($CHATSTREAMD_HOME/logs/chatstreamd)

    Environment Variables:
        CHATSTREAMD_LOG_DIR: Override log directory location

    Example:
        >>> log_dir = get_log_dir()
        >>> assert log_dir.name == "chatstreamd" or "CHATSTREAMD_LOG_DIR" in os.environ
    """
    return _resolve_dir(get_home_dir() / "logs" / "chatstreamd", "CHATSTREAMD_LOG_DIR")
