#!/usr/bin/env python3
"""
Lending Core Entry Point

Starts the FastAPI server with host, port and logging taken from the
LENDING_* settings.
"""

import sys

from lending_core.api import run_server
from lending_core.config import get_config
from lending_core.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(f"Starting Lending Core API on {config.api_host}:{config.api_port}")
    logger.info(f"Storage: {config.database_url}")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Shutting down Lending Core API")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
