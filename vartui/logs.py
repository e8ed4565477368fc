"""File logging for all front-ends; stdout is reserved for the TUI and the protocol."""
from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import config_dir

LOGGER_NAME = "vartui"


def default_log_path() -> str:
    return os.environ.get("VARTUI_LOG") or str(config_dir() / "vartui.log")


def setup_logging(log_level: str = "ERROR", log_path: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    # Always reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    path = log_path or default_log_path()
    d = os.path.dirname(path)
    if d:
        os.makedirs(d, exist_ok=True)
    fh = RotatingFileHandler(path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.ERROR
    fh.setLevel(lvl)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return logger
