"""Logging configuration for pingo.

The monitor loop, the store and the HTTP server all log through the root
logger. uvicorn is started with log_config=None, so its loggers propagate
here instead of installing handlers of their own.
"""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# One line per HTTP request; the chart page polls every 5 seconds
ACCESS_LOGGER = "uvicorn.access"


def configure_logging() -> None:
    """Configure process-wide logging.

    Respects PINGO_LOG_LEVEL environment variable (default: INFO). Request
    logs from uvicorn are only shown at DEBUG; server startup and errors
    follow the configured level.

    Examples:
        # Debug level, including one line per API request
        $ PINGO_LOG_LEVEL=DEBUG pingo

        # Only failed rounds and storage errors
        $ PINGO_LOG_LEVEL=WARNING pingo
    """
    level_name = os.environ.get("PINGO_LOG_LEVEL", "INFO").upper()
    log_level = logging.getLevelName(level_name)
    if not isinstance(log_level, int):
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
        force=True,
    )

    for name in ("uvicorn", "uvicorn.error", ACCESS_LOGGER):
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    access_level = logging.DEBUG if log_level <= logging.DEBUG else logging.WARNING
    logging.getLogger(ACCESS_LOGGER).setLevel(access_level)

    logger = logging.getLogger(__name__)
    logger.info("Logging configured: level=%s", logging.getLevelName(log_level))
