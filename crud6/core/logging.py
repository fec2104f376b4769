"""
Logging setup.

Usage:
    from crud6.core.logging import setup_logging
    setup_logging(debug=settings.DEBUG_MODE)
"""
import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = [
    "aiosqlite",
    "sqlalchemy.engine",
    "httpx",
    "httpcore",
    "uvicorn.access",
]


def setup_logging(
    debug: bool = False,
    level: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure root logging once for the process.

    Args:
        debug: force DEBUG level
        level: level name used when not in debug mode (defaults to INFO)
        log_format: custom format string
    """
    if debug:
        resolved = logging.DEBUG
    else:
        resolved = logging.getLevelName((level or "INFO").upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO

    logging.basicConfig(
        level=resolved,
        format=log_format or DEFAULT_FORMAT,
        datefmt=DEFAULT_DATE_FORMAT,
        stream=sys.stdout,
        force=True,
    )

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
