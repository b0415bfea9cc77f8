"""
Logging setup shared by all signage client modules.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "src"

_root_configured = False


def _level_value(level_name: str) -> int:
    return getattr(logging, level_name.upper(), logging.INFO)


def _configure_root() -> None:
    """Attach a single stdout handler to the package root logger, once."""
    global _root_configured

    if _root_configured:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    root.setLevel(_level_value(os.environ.get("SIGNAGE_LOG_LEVEL", "INFO")))

    # Socket.IO and urllib3 are chatty at DEBUG
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    _root_configured = True


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a module logger.

    The package level starts at SIGNAGE_LOG_LEVEL (INFO when unset) and is
    only changed afterwards by an explicit ``level`` or set_level().

    Args:
        name: Logger name, normally the module ``__name__``
        level: Level name (e.g. 'DEBUG') to apply to the package root

    Returns:
        Configured logger
    """
    _configure_root()
    if level:
        set_level(level)
    return logging.getLogger(name)


def set_level(level: str) -> None:
    """Change the level of every module logger at runtime."""
    _configure_root()
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(_level_value(level))
