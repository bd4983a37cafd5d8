# calendar_engine/utils/my_logging.py
"""Logging configuration"""
import logging
import sys

from calendar_engine.config.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that log every request/statement; raw token responses can show up at DEBUG
QUIET_LOGGERS = ("sqlalchemy", "httpx", "httpcore", "msal", "urllib3", "uvicorn.access")


def setup_logging(verbose: bool = True) -> None:
    """Stdout logging for the engine.

    The calendar_engine loggers always follow LOG_LEVEL; third-party loggers
    are raised to ERROR unless running verbose.
    """
    settings = get_settings()
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level if verbose else logging.WARNING)
    logging.getLogger("calendar_engine").setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if verbose else logging.ERROR)
