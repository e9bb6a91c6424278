#!/usr/bin/env python3
"""
Loanbook Entry Point

Starts the FastAPI server with the loan back office.
"""

import sys

import uvicorn

from loanbook.api import create_app
from loanbook.config import get_config
from loanbook.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info(
        "Starting Loanbook API on %s:%s", config.api_host, config.api_port,
        extra={"action": "server.start",
               "extra": {"storage_backend": config.storage_backend,
                         "database_path": config.database_path}}
    )

    try:
        uvicorn.run(create_app(), host=config.api_host, port=config.api_port, log_level="info")
    except KeyboardInterrupt:
        logger.info("Shutting down Loanbook API")
    except Exception:
        logger.exception("Error starting server")
        sys.exit(1)
