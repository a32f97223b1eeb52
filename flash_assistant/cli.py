"""CLI interface for flash-assistant."""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

# Try to import readline for history support
try:
    import readline
    READLINE_AVAILABLE = True
except ImportError:
    # readline not available (e.g., on Windows without pyreadline)
    READLINE_AVAILABLE = False
    readline = None

from flash_assistant import __version__
from flash_assistant.agents import SubMindRegistry, build_default_registry
from flash_assistant.agents.orchestrator import AssistantResult, Orchestrator, build_orchestrator
from flash_assistant.client import ModelGateway
from flash_assistant.config import ConfigurationError, get_config, load_env_files
from flash_assistant.doctor import run_doctor, run_init
from flash_assistant.exceptions import FlashError
from flash_assistant.logger import get_logger, set_debug_mode, set_default_level
from flash_assistant.prompt_builder import PromptBuilder
from flash_assistant.sanitizer import InputSanitizer

HISTORY_FILE = Path.home() / ".config" / "flash-assistant" / "history"


def print_error(message: str) -> None:
    """Print error message to stderr."""
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)


def print_info(message: str) -> None:
    """Print info message."""
    click.echo(click.style(message, fg="blue"))


def print_result(result: AssistantResult) -> None:
    """Print the answer for a turn, or its error."""
    if result.success:
        if result.response:
            click.echo(result.response)
    else:
        print_error(result.error or "Request failed")


def show_agents(registry: SubMindRegistry) -> None:
    """List registered sub-minds."""
    click.echo(click.style("Available sub-minds", fg="cyan", bold=True))
    for sub_mind in registry.all():
        click.echo()
        click.echo(f"{click.style(sub_mind.name, fg='green', bold=True)} ({sub_mind.id})")
        click.echo(f"  {sub_mind.description}")
        if sub_mind.examples:
            click.echo(click.style("  Examples:", fg="yellow"))
            for example in sub_mind.examples:
                click.echo(f"    - {example}")


def _setup_history() -> None:
    if not READLINE_AVAILABLE:
        return
    logger = get_logger(__name__)
    try:
        HISTORY_FILE.parent.mkdir(parents=True, exist_ok=True)
        if HISTORY_FILE.exists():
            readline.read_history_file(str(HISTORY_FILE))
        readline.set_history_length(1000)
    except OSError as e:
        logger.debug(f"Failed to set up readline history: {e}")


def _save_history() -> None:
    if not READLINE_AVAILABLE:
        return
    try:
        readline.write_history_file(str(HISTORY_FILE))
    except OSError as e:
        get_logger(__name__).debug(f"Failed to save readline history: {e}")


def interactive_mode(orchestrator: Orchestrator) -> None:
    """Run the read-eval-print loop until exit, quit or EOF."""
    click.echo('Welcome to Flash interactive mode. Type "help" or "exit".')
    _setup_history()
    sanitizer = InputSanitizer()

    while True:
        try:
            line = input("flash> ").strip()
        except KeyboardInterrupt:
            click.echo("\nGoodbye!")
            break
        except EOFError:
            click.echo("\nGoodbye!")
            break

        if not line:
            continue
        if line.lower() in ("exit", "quit"):
            click.echo("Goodbye!")
            break
        if line.lower() == "help":
            click.echo("Ask anything, or describe a command to run. Commands: help, exit, quit")
            continue

        try:
            query = sanitizer.sanitize_query(line)
        except ValueError as e:
            print_error(f"Invalid input: {e}")
            continue

        try:
            print_result(orchestrator.handle(query))
        except KeyboardInterrupt:
            click.echo(click.style("\nInterrupted", fg="yellow"))
        except FlashError as e:
            print_error(str(e))

    _save_history()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("message", nargs=-1)
@click.option("--interactive", "-i", is_flag=True, help="Start interactive mode")
@click.option("--local", "-l", is_flag=True, help="Use the local provider (Ollama)")
@click.option("--model", "-m", help="Override model name (provider-specific)")
@click.option("--system-prompt", is_flag=True, help="Print the hidden system prompt and exit")
@click.option("--init", "init_config", is_flag=True, help="Write a default config file and exit")
@click.option("--doctor", is_flag=True, help="Check provider setup and exit")
@click.option("--agents", is_flag=True, help="List available sub-minds and exit")
@click.option("--yes", "-y", is_flag=True, help="Run destructive commands without confirmation (use with caution)")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option("--debug", "-d", is_flag=True, help="Enable debug logging")
@click.version_option(version=__version__)
def main(
    message: Tuple[str, ...],
    interactive: bool,
    local: bool,
    model: Optional[str],
    system_prompt: bool,
    init_config: bool,
    doctor: bool,
    agents: bool,
    yes: bool,
    config: Optional[Path],
    debug: bool,
) -> None:
    """
    Flash - a terminal assistant that can run commands for you.

    Ask a question directly, pipe it on stdin, or use interactive mode.
    """
    set_default_level(logging.WARNING)
    if debug:
        set_debug_mode(True)
    logger = get_logger(__name__)

    load_env_files()

    if init_config:
        run_init()
        return

    try:
        cfg = get_config(config_path=config)
    except ConfigurationError as e:
        print_error(str(e))
        sys.exit(1)

    provider = cfg.resolve_provider(use_local=local)
    model_name = cfg.resolve_model(provider, model)
    logger.debug(f"Provider: {provider}, model: {model_name}")

    if agents:
        show_agents(build_default_registry())
        return

    if system_prompt:
        click.echo(PromptBuilder(provider, model_name).build_system_prompt())
        return

    if doctor:
        healthy = run_doctor(cfg, ModelGateway(cfg))
        sys.exit(0 if healthy else 1)

    try:
        orchestrator = build_orchestrator(cfg, provider, model_name, skip_confirmation=yes)

        if interactive:
            interactive_mode(orchestrator)
            return

        text = " ".join(message).strip()
        if not text and not sys.stdin.isatty():
            text = sys.stdin.read().strip()
        if not text:
            click.echo(click.get_current_context().get_help())
            return

        try:
            query = InputSanitizer().sanitize_query(text)
        except ValueError as e:
            print_error(f"Invalid input: {e}")
            sys.exit(1)

        result = orchestrator.handle(query)
        print_result(result)
        if not result.success:
            sys.exit(1)

    except KeyboardInterrupt:
        click.echo(click.style("\nInterrupted", fg="yellow"), err=True)
        sys.exit(130)
    except FlashError as e:
        print_error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.debug("Unexpected error", exc_info=True)
        print_error(f"Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
