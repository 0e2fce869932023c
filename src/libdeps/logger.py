"""Functions for logging."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

NOISY_LOGGERS = ("urllib3", "graphviz")


def setup_logger(level: str, log_file: Path | None = None) -> None:
    """Configure the root logger so that every module logs to stderr (or to `log_file`).

    Third-party loggers in `NOISY_LOGGERS` never log below WARNING.
    """
    level_value = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    handler: logging.Handler = logging.StreamHandler() if log_file is None else logging.FileHandler(log_file)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level_value, logging.WARNING))
