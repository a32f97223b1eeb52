"""Configuration management for flash-assistant."""

import copy
import os
from pathlib import Path
from typing import Dict, Any, Optional

from dotenv import load_dotenv

from flash_assistant.exceptions import ConfigurationError
from flash_assistant.logger import get_logger
from flash_assistant.sanitizer import InputSanitizer

try:
    import tomllib  # Python 3.11+
except ImportError:
    try:
        import tomli as tomllib
    except ImportError:
        raise ConfigurationError(
            "tomli is required for Python < 3.11. Install it with: pip install tomli"
        )


PROVIDERS = ("google", "local")

DETECTOR_MODES = ("tiered", "inference", "patterns")

DEFAULT_CONFIG = {
    "flash": {
        "default_provider": "google",
        "google_model": "gemini-2.5-flash",
        "local_model": "gemma3n:e4b",
        "temperature": 0.7,
        "copy_interactive_commands": True,
        "confirm_destructive_commands": True,
        "max_iterations": 5,
    },
    "google": {
        "endpoint": "https://generativelanguage.googleapis.com/v1beta",
        "timeout": 60,
    },
    "local": {
        "endpoint": "http://localhost:11434",
        "timeout": 120,
    },
    "detector": {
        "mode": "tiered",
        "analysis_model": "gemini-2.0-flash",
        "initial_silence": 4.0,
        "minimum_silence": 3.0,
        "recheck_delay": 5.0,
        "max_requests": 20,
        "window_seconds": 60.0,
        "interrupt_grace": 10.0,
    },
}

CONFIG_DIRS = [
    Path("/etc/xdg/flash-assistant"),
    Path.home() / ".config" / "flash-assistant",
]

CONFIG_FILENAME = "config.toml"

ENV_FILENAME = ".env"

# Environment variable -> (section, key, value type)
ENV_MAPPINGS = {
    "FLASH_PROVIDER": ("flash", "default_provider", "string"),
    "FLASH_MODEL": ("flash", "model_override", "string"),
    "FLASH_TEMPERATURE": ("flash", "temperature", "number"),
    "FLASH_CONFIRM_DESTRUCTIVE": ("flash", "confirm_destructive_commands", "bool"),
    "OLLAMA_ENDPOINT": ("local", "endpoint", "url"),
}

_POSITIVE_DETECTOR_KEYS = (
    "initial_silence",
    "minimum_silence",
    "recheck_delay",
    "max_requests",
    "window_seconds",
    "interrupt_grace",
)


def load_env_files(start_dir: Optional[Path] = None) -> None:
    """
    Load ``.env`` files without overriding variables already set.

    The working directory file wins over the per-user one because it is
    loaded first.

    Args:
        start_dir: Directory searched before the user config directory.
    """
    logger = get_logger(__name__)
    candidates = [
        (start_dir or Path.cwd()) / ENV_FILENAME,
        Path.home() / ".config" / "flash-assistant" / ENV_FILENAME,
    ]
    for env_file in candidates:
        try:
            if env_file.is_file():
                load_dotenv(env_file, override=False)
                logger.debug(f"Loaded environment from {env_file}")
        except PermissionError:
            logger.debug(f"Permission denied accessing {env_file}")


class Config:
    """Configuration manager for flash-assistant."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize configuration.

        Args:
            config_path: Optional path to config file. If not provided,
                        searches standard locations.

        Raises:
            ConfigurationError: If configuration file is invalid or missing.
        """
        self._config: Dict[str, Any] = {}
        self._config_path: Optional[Path] = None
        self.logger = get_logger(f"{__name__}.Config")
        self.sanitizer = InputSanitizer()

        if config_path:
            self._config_path = Path(config_path)
            if not self._config_path.exists():
                raise ConfigurationError(f"Config file not found: {config_path}")
            self._load_config(self._config_path)
        else:
            self._load_from_standard_locations()

        self._apply_environment_overrides()
        self._validate_config()

    def _load_from_standard_locations(self) -> None:
        """Load configuration from standard locations."""
        for config_dir in CONFIG_DIRS:
            config_file = config_dir / CONFIG_FILENAME
            try:
                if config_file.exists():
                    self._config_path = config_file
                    self._load_config(config_file)
                    self.logger.info(f"Loaded config from {config_file}")
                    return
            except PermissionError:
                self.logger.debug(f"Permission denied accessing {config_file}")
                continue

        self._config = copy.deepcopy(DEFAULT_CONFIG)
        self.logger.info("Using default configuration")

    def _load_config(self, config_path: Path) -> None:
        """
        Load configuration from a TOML file.

        Args:
            config_path: Path to the configuration file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed.
        """
        try:
            with open(config_path, "rb") as f:
                self._config = tomllib.load(f)
            self.logger.debug(f"Successfully loaded config from {config_path}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {config_path}")
        except PermissionError as e:
            raise ConfigurationError(f"Permission denied reading config: {config_path}") from e
        except Exception as e:
            raise ConfigurationError(f"Failed to load config from {config_path}: {e}") from e

    def _apply_environment_overrides(self) -> None:
        """Apply environment variable overrides."""
        for env_var, (section, key, value_type) in ENV_MAPPINGS.items():
            value = os.environ.get(env_var)
            if value is None:
                continue
            try:
                sanitized = self.sanitizer.sanitize_config_value(value, value_type)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value in {env_var}: {value}") from e

            if value_type == "number":
                converted: Any = float(sanitized)
            elif value_type == "bool":
                converted = sanitized in ("1", "true", "yes", "on")
            else:
                converted = sanitized

            self._config.setdefault(section, {})[key] = converted
            self.logger.debug(f"Overrode {section}.{key} from {env_var}")

    def _validate_config(self) -> None:
        """Fill in defaults and validate configuration values."""
        for section, defaults in DEFAULT_CONFIG.items():
            values = self._config.setdefault(section, {})
            if not isinstance(values, dict):
                raise ConfigurationError(f"Config section [{section}] must be a table")
            for key, default in defaults.items():
                values.setdefault(key, default)

        flash = self._config["flash"]

        temp = flash["temperature"]
        if isinstance(temp, bool) or not isinstance(temp, (int, float)) or not (0.0 <= temp <= 2.0):
            raise ConfigurationError(
                f"Temperature must be between 0.0 and 2.0, got: {temp}"
            )

        if flash["default_provider"] not in PROVIDERS:
            raise ConfigurationError(
                f"Provider must be one of {', '.join(PROVIDERS)}, got: {flash['default_provider']}"
            )

        for key in ("google_model", "local_model"):
            if not isinstance(flash[key], str) or not flash[key]:
                raise ConfigurationError(f"{key} must be a non-empty string")

        max_iterations = flash["max_iterations"]
        if isinstance(max_iterations, bool) or not isinstance(max_iterations, int) or max_iterations < 1:
            raise ConfigurationError(
                f"max_iterations must be a positive integer, got: {max_iterations}"
            )

        for section in ("google", "local"):
            if not isinstance(self._config[section]["endpoint"], str):
                raise ConfigurationError(f"{section} endpoint must be a string")

        detector = self._config["detector"]
        if detector["mode"] not in DETECTOR_MODES:
            raise ConfigurationError(
                f"Detector mode must be one of {', '.join(DETECTOR_MODES)}, got: {detector['mode']}"
            )
        for key in _POSITIVE_DETECTOR_KEYS:
            value = detector[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(
                    f"detector.{key} must be a positive number, got: {value}"
                )

    @property
    def default_provider(self) -> str:
        """Get the provider used when none is requested."""
        return self._config["flash"]["default_provider"]

    @property
    def google_model(self) -> str:
        """Get the Gemini model name."""
        return self._config["flash"]["google_model"]

    @property
    def local_model(self) -> str:
        """Get the Ollama model name."""
        return self._config["flash"]["local_model"]

    @property
    def model_override(self) -> Optional[str]:
        """Get the model forced through ``FLASH_MODEL``, if any."""
        return self._config["flash"].get("model_override")

    @property
    def temperature(self) -> float:
        """Get the sampling temperature."""
        return float(self._config["flash"]["temperature"])

    @property
    def copy_interactive_commands(self) -> bool:
        """Whether commands that blocked on input are copied to the clipboard."""
        return bool(self._config["flash"]["copy_interactive_commands"])

    @property
    def confirm_destructive_commands(self) -> bool:
        """Whether destructive commands need explicit confirmation."""
        return bool(self._config["flash"]["confirm_destructive_commands"])

    @property
    def max_iterations(self) -> int:
        """Get the command loop iteration cap."""
        return int(self._config["flash"]["max_iterations"])

    @property
    def google_endpoint(self) -> str:
        """Get the Gemini REST base URL."""
        return self._config["google"]["endpoint"]

    @property
    def google_timeout(self) -> float:
        return float(self._config["google"]["timeout"])

    @property
    def google_api_key(self) -> Optional[str]:
        """Get the Gemini API key from the environment."""
        return os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")

    @property
    def local_endpoint(self) -> str:
        """Get the Ollama base URL."""
        return self._config["local"]["endpoint"]

    @property
    def local_timeout(self) -> float:
        return float(self._config["local"]["timeout"])

    @property
    def detector(self) -> Dict[str, Any]:
        """Get the stuck-prompt detector section."""
        return dict(self._config["detector"])

    @property
    def config_path(self) -> Optional[Path]:
        """Get path to loaded config file."""
        return self._config_path

    def resolve_provider(self, use_local: bool = False) -> str:
        """
        Resolve the provider for this run.

        Args:
            use_local: Force the local provider.

        Returns:
            "local" or "google".
        """
        if use_local:
            return "local"
        return self.default_provider

    def resolve_model(self, provider: str, override: Optional[str] = None) -> str:
        """
        Resolve the model name for a provider.

        Args:
            provider: "google" or "local".
            override: Model given on the command line.

        Returns:
            Model name.
        """
        if override:
            return override
        if self.model_override:
            return self.model_override
        return self.local_model if provider == "local" else self.google_model

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """Get a configuration value."""
        return self._config.get(section, {}).get(key, default)

    def set(self, section: str, key: str, value: Any) -> None:
        """Set a configuration value for this run only."""
        self._config.setdefault(section, {})[key] = value


def get_config(config_path: Optional[Path] = None) -> Config:
    """
    Get configuration instance.

    Args:
        config_path: Optional path to config file.

    Returns:
        Config instance.
    """
    return Config(config_path)
