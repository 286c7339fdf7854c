"""Logging utilities for the text tool bridge."""

import logging
import sys

_LOGGER_NAME = "text_tool_bridge"


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance for the bridge.

    Args:
        name: Optional sub-logger name. If None, returns the root bridge logger.

    Returns:
        The requested logger.
    """
    if name:
        return logging.getLogger(f"{_LOGGER_NAME}.{name}")
    return logging.getLogger(_LOGGER_NAME)


def setup_logging(
    level: int = logging.INFO, format_str: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
) -> None:
    """Attach a stdout handler to the bridge's root logger.

    Meant for applications and example scripts.

    Args:
        level: Logging level.
        format_str: Log format string.
    """
    logger = logging.getLogger(_LOGGER_NAME)

    # Calling twice must not duplicate output
    if logger.handlers and not all(isinstance(h, logging.NullHandler) for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(format_str))
    logger.addHandler(handler)
    logger.setLevel(level)


# Set default NullHandler to avoid "No handler found" warnings
logging.getLogger(_LOGGER_NAME).addHandler(logging.NullHandler())
