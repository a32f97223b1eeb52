"""Clipboard support for flash-assistant."""

import pyperclip

from flash_assistant.logger import get_logger


def copy_to_clipboard(text: str) -> bool:
    """
    Copy text to the system clipboard.

    Args:
        text: Text to copy.

    Returns:
        True if copied, False when no clipboard mechanism is available.
    """
    logger = get_logger(__name__)
    try:
        pyperclip.copy(text)
        return True
    except pyperclip.PyperclipException as e:
        logger.debug(f"Clipboard unavailable: {e}")
        return False
