"""Settings models for chatstream clients.

This module defines the configuration of the client side of the protocol:
where the daemon lives, how to reconnect, and the submission timing guards.

Contract:
- Inputs: Environment variables, YAML files
- Outputs: Validated settings objects
- Side Effects: None (read-only)
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings import SettingsConfigDict


class ClientSettings(BaseSettings):
    """Configuration for chatstream clients.

    Attributes:
        server_url: Base URL of the chatstreamd daemon
        reconnect_attempts: Stream reconnects before giving up (0 disables)
        reconnect_delay_seconds: Delay between reconnect attempts
        request_timeout_seconds: Timeout for command requests
        submit_debounce_seconds: Minimum spacing between two submissions
        abort_grace_seconds: Wait after an implicit abort before resubmitting
        strict_reconciliation: Raise on unresolvable text divergence instead of logging
        log_level: Logging level for CLI clients

    Example:
        >>> settings = ClientSettings()
        >>> assert settings.submit_debounce_seconds == 0.1
    """

    model_config = SettingsConfigDict(
        env_prefix="CHATSTREAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    server_url: str = "http://127.0.0.1:8430"
    reconnect_attempts: int = 5
    reconnect_delay_seconds: float = 1.0
    request_timeout_seconds: float = 30.0
    submit_debounce_seconds: float = 0.1
    abort_grace_seconds: float = 0.15
    strict_reconciliation: bool = False
    log_level: str = "warning"

    @field_validator("server_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended directly."""
        return v.rstrip("/")
