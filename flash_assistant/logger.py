"""Logging configuration for flash-assistant."""

import logging
import sys
from typing import Optional

# Try to use systemd journal if available
try:
    from systemd import journal
    USE_JOURNAL = True
except ImportError:
    USE_JOURNAL = False
    journal = None


# Global debug flag
_debug_mode = False

# Level for non-debug runs; the CLI lowers noise to warnings
_default_level = logging.INFO


def set_debug_mode(enabled: bool) -> None:
    """
    Enable or disable debug mode globally.

    Args:
        enabled: Whether to enable debug mode.
    """
    global _debug_mode
    _debug_mode = enabled
    # Update all existing loggers
    for logger_name in list(logging.Logger.manager.loggerDict):
        logger = logging.getLogger(logger_name)
        if logger.handlers:
            logger.setLevel(logging.DEBUG if enabled else _default_level)


def set_default_level(level: int) -> None:
    """
    Set the level used by loggers while debug mode is off.

    Args:
        level: A ``logging`` level constant.
    """
    global _default_level
    _default_level = level
    if not _debug_mode:
        for logger_name in list(logging.Logger.manager.loggerDict):
            logger = logging.getLogger(logger_name)
            if logger.handlers:
                logger.setLevel(level)


def is_debug_mode() -> bool:
    """
    Check if debug mode is enabled.

    Returns:
        True if debug mode is enabled, False otherwise.
    """
    return _debug_mode


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Get a logger instance for flash-assistant.

    Args:
        name: Logger name. If None, uses 'flash-assistant'.

    Returns:
        Configured logger instance.
    """
    logger_name = name or "flash-assistant"
    logger = logging.getLogger(logger_name)

    # Only configure if not already configured
    if not logger.handlers:
        logger.setLevel(logging.DEBUG if _debug_mode else _default_level)

        if USE_JOURNAL:
            handler = journal.JournalHandler()
            handler.setFormatter(
                logging.Formatter("%(name)s: %(levelname)s: %(message)s")
            )
        else:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
                )
            )

        logger.addHandler(handler)

    return logger
