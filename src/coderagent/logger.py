"""Package-wide logging setup.

In native host mode stdout/stderr carry the messaging protocol, so log
records go to a rotating file in the temp directory instead.
"""
from __future__ import annotations

import logging
import logging.handlers
import os
import tempfile
from pathlib import Path

LOG_FORMAT = "[%(levelname)s] %(asctime)s -- %(name)s: %(message)s"
LOG_FILE = Path(tempfile.gettempdir()) / "coderagent.log"

logger = logging.getLogger("coderagent")


def _handler(native_host_mode: bool) -> logging.Handler:
    if native_host_mode:
        return logging.handlers.RotatingFileHandler(
            LOG_FILE,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
    return logging.StreamHandler()


def setup_logging(level: str = "INFO", *, native_host_mode: bool | None = None) -> logging.Logger:
    if native_host_mode is None:
        native_host_mode = os.environ.get("NATIVE_HOST_MODE") == "true"
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    handler = _handler(native_host_mode)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
