"""Main FastAPI application for chatstreamd daemon.

This module creates and configures the FastAPI application that serves
conversation turns over HTTP with SSE streaming.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatstream_library.storage import get_state_dir

from .config.loader import load_config
from .routers import conversations_router
from .routers import stream_router
from .services.conversation_stream import get_stream_registry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

config = load_config()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info(f"Starting chatstreamd daemon on {config.daemon.host}:{config.daemon.port}")
    logger.info(f"State dir: {get_state_dir()}")
    logger.info(f"LLM: {config.llm.provider}/{config.llm.model}")

    yield

    # Shutdown
    logger.info("Shutting down chatstreamd daemon")
    await get_stream_registry().cleanup_all()


# Create FastAPI application
app = FastAPI(
    title="chatstreamd",
    description="Conversation daemon streaming LLM turns over SSE",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.daemon.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(conversations_router)
app.include_router(stream_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint.

    Returns:
        Welcome message with API information
    """
    return {
        "name": "chatstreamd",
        "version": "0.1.0",
        "description": "Conversation daemon with SSE streaming",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }
