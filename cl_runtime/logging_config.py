"""Logging configuration for cl_runtime."""

from __future__ import annotations

import logging
import os

_ROOT = "cl_runtime"


def setup_logging(level: int | None = None, log_file: str | None = None) -> None:
    """Install console (and optionally file) handlers on the package logger."""
    if level is None:
        if os.getenv("VERBOSE") == "1":
            level = logging.DEBUG
        elif os.getenv("QUIET") == "1":
            level = logging.WARNING
        else:
            level = logging.INFO

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Always log debug to file
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logger = logging.getLogger(_ROOT)
    logger.setLevel(logging.DEBUG)  # Let handlers control the level

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)

    logger.propagate = False
    logger.debug("Logging configured - console: %s", logging.getLevelName(level))


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the cl_runtime namespace."""
    if not name.startswith(_ROOT):
        name = f"{_ROOT}.{name}"
    return logging.getLogger(name)
