"""Logging setup shared by the CLI, the scheduler and the transforms.

Every logger lives under the ``sitebuild`` namespace so a single file handler
attached by `configure_logging` sees task, watch and server messages alike.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path


ROOT_LOGGER = "sitebuild"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"

_configured = False


def _ensure_base_logger() -> None:
    global _configured
    if _configured:
        return
    level = os.getenv("SITEBUILD_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)
    _configured = True


def configure_logging(log_file: Path | None = None, verbose: bool = False) -> None:
    """Attach the optional rotating file sink to the package root logger."""
    _ensure_base_logger()
    root = logging.getLogger(ROOT_LOGGER)
    if verbose:
        root.setLevel(logging.DEBUG)
    if log_file is None:
        return
    target = str(Path(log_file).absolute())
    # Do not duplicate handlers if already set for this file
    for h in root.handlers:
        if isinstance(h, RotatingFileHandler) and h.baseFilename == target:
            return
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(target, maxBytes=1_000_000, backupCount=3)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    _ensure_base_logger()
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)
