# app/utils/logger.py
"""
Centralised logging configuration for the entire application.
Logs to console and, unless LOG_DIR is empty, to a rotating file (checkin.log).
The same setup serves the API process and the device-side synchronizer.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from app.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_DIR = settings.LOG_DIR

_configured = False


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)

    console = logging.StreamHandler()
    console.setLevel(LOG_LEVEL)
    console.setFormatter(fmt)
    root.addHandler(console)

    if LOG_DIR:
        # Keeps last 10 × 5MB log files
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=os.path.join(LOG_DIR, "checkin.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=10,
            encoding="utf-8",
        )
        file_handler.setLevel(LOG_LEVEL)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root.level))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Call this at the top of every module."""
    _configure_root_logger()
    return logging.getLogger(name)
