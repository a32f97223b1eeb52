"""Shared fixtures for flash-assistant tests."""

from pathlib import Path

import pytest

from flash_assistant.config import Config

ENV_VARS = (
    "FLASH_PROVIDER",
    "FLASH_MODEL",
    "FLASH_TEMPERATURE",
    "FLASH_CONFIRM_DESTRUCTIVE",
    "OLLAMA_ENDPOINT",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep the developer's own settings out of the tests."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text('[flash]\ndefault_provider = "google"\n')
    return path


@pytest.fixture
def config(config_file) -> Config:
    return Config(config_path=config_file)
