"""Logging setup shared by all tools."""

import logging
from typing import Optional

from rich.logging import RichHandler

ROOT_LOGGER = "tools"


def setup_logger(name: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """
    Configure logging with a rich console handler.

    The handler is attached to the project root logger so every
    ``get_logger(__name__)`` logger below ``tools`` inherits it.

    Args:
        name: Logger name to return (defaults to the project root logger)
        level: Log level name (DEBUG, INFO, WARNING, ...)

    Returns:
        Configured logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper())

    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        root.addHandler(handler)

    return logging.getLogger(name or ROOT_LOGGER)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger."""
    return logging.getLogger(name)
