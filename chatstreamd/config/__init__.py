"""Daemon configuration."""

from .loader import load_config
from .loader import load_secrets
from .models import Config
from .models import DaemonConfig
from .models import LLMConfig
from .models import Secrets
from .models import StreamingConfig

__all__ = [
    "Config",
    "DaemonConfig",
    "LLMConfig",
    "Secrets",
    "StreamingConfig",
    "load_config",
    "load_secrets",
]
