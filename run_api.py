#!/usr/bin/env python3
"""
Script to run the Book Catalog API server.
"""

import uvicorn

from api.config import config
from utilities.logger import get_logger, setup_logging


def main():
    """Run the API server."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        debug=config.is_development(),
    )
    logger = get_logger(__name__)
    logger.info(
        "Starting Book Catalog API server",
        host=config.host,
        port=config.port,
        node_env=config.node_env,
        database=config.mongodb_database,
    )

    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.is_development(),
        log_level=config.log_level.lower(),
        access_log=False
    )


if __name__ == "__main__":
    main()
