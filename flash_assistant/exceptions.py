"""Custom exceptions for flash-assistant."""


class FlashError(Exception):
    """Base exception for flash-assistant errors."""

    pass


class ConfigurationError(FlashError):
    """Raised when there's a configuration error."""

    pass


class ProviderConnectionError(FlashError):
    """Raised when unable to reach a model provider."""

    pass


class ProviderAPIError(FlashError):
    """Raised when a model provider returns an error or an unreadable reply."""

    pass


class SubMindError(FlashError):
    """Raised when a sub-mind registration is invalid or duplicated."""

    pass
