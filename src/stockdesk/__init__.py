"""stockdesk: inventory, sales and delivery management for small shops.

Importing the package configures the shared ``stockdesk`` logger used by every
module (``from . import log``). Records go to a rotating file under ``.logs``
and to stderr. ``STOCKDESK_LOG_DIR`` moves the log directory and
``STOCKDESK_LOG_LEVEL`` (``DEBUG``, ``INFO``, ``WARNING`` ...) sets the
threshold of both handlers.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


__version__ = "0.1.0"

PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = Path(os.environ.get("STOCKDESK_LOG_DIR", PROJECT_ROOT / ".logs"))
LOG_FILE = LOG_DIR / "stockdesk.log"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


def _log_level() -> int:
    name = os.environ.get("STOCKDESK_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _configure_logging() -> logging.Logger:
    """Attach the file and console handlers once per process."""

    logger = logging.getLogger(__name__)
    if logger.handlers:
        return logger

    level = _log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=5, encoding="utf-8")
    except OSError as exc:
        # still log to the console when the directory is read-only
        print(f"Warning: stockdesk cannot write its log file '{LOG_FILE}': {exc}", file=sys.stderr)
    else:
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)
    return logger


log = _configure_logging()
log.debug("stockdesk %s logging to '%s'", __version__, LOG_FILE)

__all__ = ["log", "__version__"]
