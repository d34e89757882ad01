# ════════════════════════════════════════════════════════════════════════════════
# Learner Module - Run Log
# ════════════════════════════════════════════════════════════════════════════════
# Handlers of the package logger: the per-run experiment.log file and an
# optional console stream.
# ════════════════════════════════════════════════════════════════════════════════

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "trainloop"

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_file_handler: Optional[logging.FileHandler] = None


def update_log_file(path: Union[str, Path], level: Union[int, str] = logging.INFO) -> Path:
    """
    Direct the package logger to a run log file.

    The file is opened in append mode. A previous run log handler is
    removed, so only the latest run directory receives records.
    """
    global _file_handler

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if _file_handler is not None:
        package_logger.removeHandler(_file_handler)
        _file_handler.close()

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    package_logger.addHandler(handler)

    if package_logger.level == logging.NOTSET or package_logger.level > handler.level:
        package_logger.setLevel(handler.level)

    _file_handler = handler
    package_logger.info(f"Run log: {path}")
    return path


def install_console_handler(level: Union[int, str] = logging.INFO) -> logging.Handler:
    """Attach a stdout handler to the package logger if none is attached."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers:
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            return handler

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATE_FORMAT))
    package_logger.addHandler(handler)
    return handler


__all__ = [
    "PACKAGE_LOGGER",
    "update_log_file",
    "install_console_handler",
]
