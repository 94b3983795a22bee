"""
Logging for the diagram engine.

All modules log under the ``diagram_engine`` root logger. Per-chunk repair
results go to DEBUG, skipped frames and storage failures to WARNING.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

_root_logger = logging.getLogger("diagram_engine")

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# httpx/httpcore log every request line at INFO/DEBUG, which drowns the
# per-fragment output during a stream.
HTTP_LOGGERS = ("httpx", "httpcore")


def verbosity_level(verbosity: int) -> int:
    """Map a ``-v`` count to a log level (0 warning, 1 info, 2+ debug)."""
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def setup_logging(
    level: str | int = "WARNING",
    stream: TextIO | None = None,
    file: str | None = None,
    show_http: bool = False,
) -> None:
    """
    Configure the package logger.

    Args:
        level: Level name or int
        stream: Output stream (defaults to stderr)
        file: Optional log file, e.g. to keep a record of rate-limit violations
        show_http: Let httpx request logging through at the same level

    Example:
        from diagram_engine.logging import setup_logging

        # Watch every repair pass while a diagram streams in
        setup_logging("DEBUG")
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.WARNING)

    _root_logger.setLevel(level)
    _root_logger.handlers.clear()
    formatter = logging.Formatter(DEFAULT_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stderr)]
    if file:
        handlers.append(logging.FileHandler(file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        _root_logger.addHandler(handler)

    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(level if show_http else max(level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Child logger for a submodule, e.g. ``get_logger("adapters.openai")``."""
    if name.startswith("diagram_engine."):
        return logging.getLogger(name)
    return logging.getLogger(f"diagram_engine.{name}")
