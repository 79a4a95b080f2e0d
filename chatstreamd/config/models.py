"""Configuration models for chatstreamd daemon.

These models define the structure of the daemon's configuration file:
the HTTP server, the LLM provider, and event streaming behavior.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel
from pydantic import Field


class DaemonConfig(BaseModel):
    """Configuration for daemon runtime behavior."""

    host: str = Field(
        default="127.0.0.1",
        description="Host to bind to (use '0.0.0.0' for LAN access)",
    )
    port: int = Field(
        default=8430,
        ge=1024,
        le=65535,
        description="Port to listen on",
    )
    workers: int = Field(
        default=1,
        ge=1,
        le=1,
        description="Number of uvicorn workers (conversation streams live in process memory)",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    cors_origins: list[str] = Field(
        default=[
            "http://localhost:5173",  # Vite dev server
            "http://localhost:5174",  # Alternative port
        ],
        description="CORS allowed origins",
    )


class LLMConfig(BaseModel):
    """Configuration for the LLM provider and turn execution."""

    provider: str = Field(default="openai", description="Provider implementation")
    model: str = Field(default="gpt-4o-mini", description="Model identifier")
    base_url: str | None = Field(default=None, description="Override API base URL (OpenAI-compatible servers)")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0, description="Sampling temperature")
    max_tool_rounds: int = Field(default=8, ge=1, le=50, description="Tool-call rounds per turn")
    max_context_tokens: int = Field(default=128000, ge=1, description="Context window reported to clients")
    system_prompt: str = Field(
        default="You are a helpful data assistant. Use the available tools when they help answer the question.",
        description="System prompt prepended to every request",
    )


class StreamingConfig(BaseModel):
    """Configuration for event streaming."""

    keepalive_seconds: float = Field(default=30.0, gt=0, description="Interval between SSE keepalives")
    title_max_length: int = Field(default=60, ge=10, description="Maximum generated title length")


class Secrets(BaseModel):
    """Secrets configuration stored separately from main config.

    Stored in $CHATSTREAMD_HOME/config/secrets.yaml (gitignored).
    """

    api_keys: dict[str, str] = Field(
        default_factory=dict,
        description="API keys by provider name (e.g., 'openai': 'sk-...')",
    )

    @classmethod
    def load_from_file(cls, path: Path) -> Secrets:
        """Load secrets from YAML file.

        Args:
            path: Path to secrets file

        Returns:
            Loaded secrets (empty if file doesn't exist)
        """
        if not path.exists():
            return cls()

        try:
            with path.open() as f:
                data = yaml.safe_load(f)
            return cls.model_validate(data or {})
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in secrets file: {e}") from e


class Config(BaseModel):
    """Complete daemon configuration."""

    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)

    @classmethod
    def load_from_file(cls, path: Path) -> Config:
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with path.open() as f:
                data = yaml.safe_load(f)
            return cls.model_validate(data or {})
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}") from e

    def save_to_file(self, path: Path) -> None:
        """Save configuration to YAML file.

        Args:
            path: Path to save configuration file

        Raises:
            OSError: If file cannot be written
        """
        path.parent.mkdir(parents=True, exist_ok=True)

        with path.open("w") as f:
            yaml.safe_dump(
                self.model_dump(mode="json"),
                f,
                default_flow_style=False,
                sort_keys=False,
            )

    @classmethod
    def get_default(cls) -> Config:
        """Get default configuration with all defaults."""
        return cls()
