"""
Logging setup for the command line entry points.

Stdout carries protocol frames in ``serve`` mode, so console output always
goes to stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime


def setup_logger(log_dir: str, level: str = "INFO") -> logging.Logger:
    """Attach a timestamped file handler and a stderr handler to the package logger."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"workbench_{timestamp}.log")

    logger = logging.getLogger("agent_workbench")
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # File handler gets everything, console only the configured level
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(getattr(logging, level.upper(), logging.INFO))
    sh.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(sh)
    logger.propagate = False

    return logger
