import logging
import sys
from typing import Optional

from .config import get_settings

LOGGER_NAME = "thread_analyzer_mcp"


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Send package logs to stderr, stdout is reserved for the MCP transport."""
    app_logger = logging.getLogger(LOGGER_NAME)
    app_logger.setLevel(level or get_settings().log_level)
    app_logger.propagate = False

    if app_logger.hasHandlers():
        app_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    app_logger.addHandler(handler)
    return app_logger
