"""API routers for chatstreamd daemon.

This module contains FastAPI routers for all API endpoints.
"""

from .conversations import router as conversations_router
from .stream import router as stream_router

__all__ = [
    "conversations_router",
    "stream_router",
]
