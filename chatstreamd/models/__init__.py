"""API models for chatstreamd daemon.

This module defines request and response models for the REST API.
"""

from .requests import ControlRequest
from .requests import SendMessageRequest
from .responses import ControlResponse
from .responses import HistoryResponse
from .responses import SendMessageResponse

__all__ = [
    "ControlRequest",
    "SendMessageRequest",
    "ControlResponse",
    "HistoryResponse",
    "SendMessageResponse",
]
