"""Input sanitization and validation for flash-assistant."""

import os
import re

from flash_assistant.logger import get_logger


class InputSanitizer:
    """Sanitizes user input, model replies and values bound for the shell."""

    # Maximum input length (characters)
    MAX_INPUT_LENGTH = 10000
    MAX_COMMAND_LENGTH = 2000

    # Control characters that should be removed
    CONTROL_CHARS = re.compile(r'[\x00-\x1f\x7f-\x9f]')

    # Control characters except newline, tab and carriage return
    CONTROL_CHARS_KEEP_LINES = re.compile(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f-\x9f]')

    def __init__(self):
        """Initialize input sanitizer."""
        self.logger = get_logger(f"{__name__}.InputSanitizer")

    def sanitize_query(self, query: str) -> str:
        """
        Sanitize a user message before it is sent to a model.

        Args:
            query: Raw user input.

        Returns:
            Sanitized query string.

        Raises:
            ValueError: If input is invalid or too long.
        """
        if not isinstance(query, str):
            raise ValueError("Query must be a string")

        if len(query) > self.MAX_INPUT_LENGTH:
            self.logger.warning(f"Query too long: {len(query)} characters")
            raise ValueError(f"Query too long (max {self.MAX_INPUT_LENGTH} characters)")

        query = self.CONTROL_CHARS_KEEP_LINES.sub('', query).strip()

        if not query:
            raise ValueError("Query cannot be empty")

        return query

    def sanitize_command(self, command: str) -> str:
        """
        Sanitize a command string before execution.

        Args:
            command: Raw command string.

        Returns:
            Sanitized command string.

        Raises:
            ValueError: If command is invalid or too long.
        """
        if not isinstance(command, str):
            raise ValueError("Command must be a string")

        if len(command) > self.MAX_COMMAND_LENGTH:
            self.logger.warning(f"Command too long: {len(command)} characters")
            raise ValueError(f"Command too long (max {self.MAX_COMMAND_LENGTH} characters)")

        command = command.strip()

        if not command:
            raise ValueError("Command cannot be empty")

        # Keep \n and \t, remove others
        command = re.sub(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f-\x9f]', '', command)

        return command.strip()

    def sanitize_config_value(self, value: str, value_type: str = "string") -> str:
        """
        Sanitize configuration value.

        Args:
            value: Raw configuration value.
            value_type: Type of value ('string', 'url', 'number', 'bool').

        Returns:
            Sanitized value.

        Raises:
            ValueError: If value is invalid.
        """
        if not isinstance(value, str):
            raise ValueError("Config value must be a string")

        value = value.strip()

        if value_type == "url":
            if not re.match(r'^https?://', value, re.IGNORECASE):
                raise ValueError("URL must start with http:// or https://")
            value = self.CONTROL_CHARS.sub('', value)
        elif value_type == "number":
            try:
                float(value)
            except ValueError:
                raise ValueError(f"Invalid number: {value}")
        elif value_type == "bool":
            if value.lower() not in ("1", "0", "true", "false", "yes", "no", "on", "off"):
                raise ValueError(f"Invalid boolean: {value}")
            value = value.lower()
        else:
            value = self.CONTROL_CHARS.sub('', value)

        return value

    def sanitize_ai_response(self, response: str) -> str:
        """
        Sanitize AI response before parsing.

        Args:
            response: Raw AI response text.

        Returns:
            Sanitized response.
        """
        if not isinstance(response, str):
            return ""

        response = self.CONTROL_CHARS_KEEP_LINES.sub('', response)
        # Normalize Windows line endings so marker parsing sees plain lines
        response = response.replace('\r\n', '\n')

        if len(response) > self.MAX_INPUT_LENGTH * 2:  # Allow longer for AI responses
            self.logger.warning(f"AI response truncated: {len(response)} characters")
            response = response[:self.MAX_INPUT_LENGTH * 2]

        return response

    def is_safe_filename(self, filename: str) -> bool:
        """
        Check that a filename names a plain file in the current directory.

        Args:
            filename: Name requested by the model.

        Returns:
            True if the name has no separators, parent references or
            absolute form.
        """
        if not isinstance(filename, str) or not filename:
            return False
        if '/' in filename or '\\' in filename:
            return False
        if '..' in filename:
            return False
        if os.path.isabs(filename):
            return False
        if self.CONTROL_CHARS.search(filename):
            return False
        return os.path.normpath(filename) == filename
