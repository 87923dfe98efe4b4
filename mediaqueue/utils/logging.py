"""Logging setup for applications embedding the queue."""
from typing import Optional
import logging
import os

from rich.logging import RichHandler


def configure_logging(debug: bool = False, silent: bool = False, log_level: Optional[str] = None) -> str:
    """
    Configure root logging with a rich handler.

    Silent disables logging entirely. Otherwise the level comes from debug,
    then log_level, then the LOG_LEVEL environment variable, then INFO.
    Returns a string describing the effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    if silent:
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        env_level = os.getenv("LOG_LEVEL")
        level = getattr(logging, (env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return logging.getLevelName(level)
