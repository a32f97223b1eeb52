"""Health checks and first-run setup for flash-assistant."""

import shutil
from pathlib import Path
from typing import Optional

import click

from flash_assistant.client import ModelGateway
from flash_assistant.config import CONFIG_DIRS, CONFIG_FILENAME, Config
from flash_assistant.logger import get_logger

DEFAULT_CONFIG_TOML = """# flash-assistant configuration

[flash]
# "google" (Gemini API) or "local" (Ollama)
default_provider = "google"
google_model = "gemini-2.5-flash"
local_model = "gemma3n:e4b"
temperature = 0.7
# Copy commands that stopped to wait for input, so you can run them yourself
copy_interactive_commands = true
confirm_destructive_commands = true
max_iterations = 5

[google]
endpoint = "https://generativelanguage.googleapis.com/v1beta"
timeout = 60

[local]
endpoint = "http://localhost:11434"
timeout = 120

[detector]
# "tiered", "inference" or "patterns"
mode = "tiered"
analysis_model = "gemini-2.0-flash"
initial_silence = 4.0
minimum_silence = 3.0
recheck_delay = 5.0
max_requests = 20
window_seconds = 60.0
interrupt_grace = 10.0
"""


def _check(ok: bool, message: str, hint: Optional[str] = None) -> bool:
    if ok:
        click.echo(click.style(f"  ✓ {message}", fg="green"))
    else:
        click.echo(click.style(f"  ✗ {message}", fg="red"))
        if hint:
            click.echo(f"     {hint}")
    return ok


def run_doctor(config: Config, gateway: ModelGateway) -> bool:
    """
    Check that the providers flash depends on are usable.

    Args:
        config: Loaded configuration.
        gateway: Gateway whose clients are probed.

    Returns:
        True if every check passed.
    """
    logger = get_logger(__name__)
    click.echo(click.style("Flash Doctor - System Health Check", fg="cyan", bold=True))
    click.echo()

    results = []

    click.echo(click.style("Cloud provider (Google Gemini)", fg="cyan"))
    results.append(_check(
        bool(config.google_api_key),
        f"API key configured (model: {config.google_model})"
        if config.google_api_key else "No API key found",
        "Set GEMINI_API_KEY in your environment or a .env file",
    ))
    click.echo()

    click.echo(click.style("Local provider (Ollama)", fg="cyan"))
    installed = shutil.which("ollama") is not None
    results.append(_check(installed, "Ollama is installed" if installed else "Ollama is not installed",
                          "Install from: https://ollama.com/download"))
    running = gateway.local.test_connection()
    results.append(_check(
        running,
        f"Ollama is reachable at {config.local_endpoint}" if running
        else f"Ollama is not reachable at {config.local_endpoint}",
        "Start it with: ollama serve",
    ))
    if running:
        models = gateway.local.list_models()
        logger.debug(f"Ollama models: {models}")
        wanted = config.local_model
        pulled = any(name == wanted or name.startswith(f"{wanted}:") for name in models)
        results.append(_check(pulled, f"Model {wanted} is available" if pulled else f"Model {wanted} not found",
                              f"Run: ollama pull {wanted}"))
    click.echo()

    click.echo(click.style("Configuration", fg="cyan"))
    if config.config_path:
        _check(True, f"Loaded from {config.config_path}")
    else:
        click.echo("  - Using built-in defaults (run: flash --init)")
    click.echo(f"  Default provider: {config.default_provider}")
    click.echo(f"  Detector mode: {config.detector['mode']}")
    click.echo()

    passed = sum(results)
    healthy = passed == len(results)
    summary = f"{passed}/{len(results)} checks passed"
    click.echo(click.style(summary, fg="green" if healthy else "yellow", bold=True))
    return healthy


def run_init(config_dir: Optional[Path] = None) -> Path:
    """
    Write a default config file if none exists.

    Args:
        config_dir: Target directory; the per-user config directory by default.

    Returns:
        Path of the config file, existing or newly written.
    """
    logger = get_logger(__name__)
    config_dir = Path(config_dir) if config_dir else CONFIG_DIRS[-1]
    config_file = config_dir / CONFIG_FILENAME

    if config_file.exists():
        click.echo(click.style(f"Config already exists at {config_file}, leaving it unchanged", fg="yellow"))
        return config_file

    config_dir.mkdir(parents=True, exist_ok=True)
    config_file.write_text(DEFAULT_CONFIG_TOML, encoding="utf-8")
    logger.info(f"Wrote default config to {config_file}")
    click.echo(click.style(f"✓ Created {config_file}", fg="green"))
    click.echo("Set GEMINI_API_KEY for the Google provider, or run 'ollama serve' for local mode.")
    return config_file
