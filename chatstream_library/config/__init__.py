"""Client configuration."""

from .loader import load_settings
from .settings import ClientSettings

__all__ = ["ClientSettings", "load_settings"]
