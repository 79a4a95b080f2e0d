"""Entry point for running chatstreamd daemon.

This module provides the CLI entry point for starting the daemon.
"""

import logging
import sys

import uvicorn

from .config.loader import load_config

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the chatstreamd daemon.

    Loads configuration and starts the uvicorn server.
    """
    try:
        config = load_config()

        log_level = config.daemon.log_level.lower()

        uvicorn.run(
            "chatstreamd.main:app",
            host=config.daemon.host,
            port=config.daemon.port,
            log_level=log_level,
            workers=config.daemon.workers,
        )

    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Failed to start daemon: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
