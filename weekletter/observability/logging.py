from __future__ import annotations

import logging
import os
import threading
from typing import Final

LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

# Pinned to WARNING regardless of WEEKLETTER_LOG_LEVEL
QUIET_LOGGERS: Final[tuple[str, ...]] = ("urllib3", "google.auth", "httpx")

_configured = False
_configure_lock = threading.Lock()


def _level_from_env() -> int:
    name = os.getenv("WEEKLETTER_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _install_root_handler(level: int) -> None:
    global _configured
    with _configure_lock:
        if _configured:
            return
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        _configured = True


def get_logger(name: str) -> logging.Logger:
    """Module logger at WEEKLETTER_LOG_LEVEL. The first call sets up stderr output."""
    level = _level_from_env()
    _install_root_handler(level)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
