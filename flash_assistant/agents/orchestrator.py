"""Main agent routing and the sub-mind execution loops."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import click

from flash_assistant.agents.registry import SubMindDescriptor, SubMindRegistry
from flash_assistant.agents.subminds import build_default_registry
from flash_assistant.analysis import QuickAnalyzer
from flash_assistant.client import GenerationResult, ModelGateway
from flash_assistant.clipboard import copy_to_clipboard
from flash_assistant.config import Config
from flash_assistant.detector import StuckPromptDetector
from flash_assistant.executor import CommandRunner, CommandSpec, ExecutionOutcome, RunnerSettings
from flash_assistant.file_tools import FileToolResult, FileTools
from flash_assistant.logger import get_logger
from flash_assistant.prompt_builder import PromptBuilder
from flash_assistant.protocol import (
    extract_clarification_question,
    has_command_execution,
    has_sub_mind_execution,
    has_tool_calls,
    needs_clarification,
    parse_command_execution,
    parse_sub_mind_execution,
    parse_tool_calls,
    remove_command_blocks,
    remove_sub_mind_commands,
    remove_tool_calls,
)
from flash_assistant.rate_limiter import RateLimiter
from flash_assistant.sanitizer import InputSanitizer

MAX_ITERATIONS_MESSAGE = (
    "I completed the maximum number of iterations for this task. "
    "The commands have been executed as shown above."
)
EMPTY_RESPONSE_MESSAGE = "The model returned an empty response"
INCOMPLETE_COMMAND_MESSAGE = "The model returned an incomplete command block (missing COMMAND or END_EXECUTE)"

# Command output kept in the follow-up prompt
OUTPUT_CONTEXT_CHARS = 4000

RULE = "━" * 38


@dataclass
class AssistantResult:
    """Outcome of one user turn."""

    success: bool
    response: str = ""
    error: Optional[str] = None
    sub_mind_name: Optional[str] = None
    iterations: int = 0
    actions: List[Dict[str, Any]] = field(default_factory=list)


def _ask_user() -> str:
    try:
        return click.prompt(
            click.style(">", fg="cyan"), default="", show_default=False, prompt_suffix=" "
        )
    except click.exceptions.Abort:
        return ""


def _outcome_label(outcome: ExecutionOutcome) -> str:
    if outcome.succeeded:
        return "Success"
    if outcome.interactive_block:
        return "Interrupted (waiting for interactive input)"
    if outcome.cancelled:
        return "Cancelled by user"
    return "Failed"


class Orchestrator:
    """Routes a request through the main agent and its sub-minds."""

    def __init__(
        self,
        config: Config,
        gateway: ModelGateway,
        registry: SubMindRegistry,
        runner: CommandRunner,
        provider: str,
        model: str,
        prompt_builder: Optional[PromptBuilder] = None,
        file_tools: Optional[FileTools] = None,
        skip_confirmation: bool = False,
        ask: Optional[Callable[[], str]] = None,
        copy: Callable[[str], bool] = copy_to_clipboard,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Loaded configuration.
            gateway: Model gateway used for every generation.
            registry: Sub-minds available for delegation.
            runner: Runs commands emitted by the cli sub-mind.
            provider: Provider for this run.
            model: Model for this run.
            prompt_builder: Builds the hidden system prompt.
            file_tools: Executes READ_FILE and WRITE_FILE calls.
            skip_confirmation: Run destructive commands without asking.
            ask: Reads a clarification answer from the user.
            copy: Copies a blocked command to the clipboard.
        """
        self.config = config
        self.gateway = gateway
        self.registry = registry
        self.runner = runner
        self.provider = provider
        self.model = model
        self.prompt_builder = prompt_builder or PromptBuilder(provider, model)
        self.file_tools = file_tools or FileTools()
        self.skip_confirmation = skip_confirmation
        self.ask = ask or _ask_user
        self.copy = copy
        self.sanitizer = InputSanitizer()
        self.logger = get_logger(f"{__name__}.Orchestrator")

    def _generate(self, prompt: str) -> GenerationResult:
        result = self.gateway.generate(prompt, self.provider, self.model, self.config.temperature)
        if result.ok:
            result.text = self.sanitizer.sanitize_ai_response(result.text or "")
        return result

    def handle(self, message: str) -> AssistantResult:
        """
        Answer one user message.

        Args:
            message: Sanitized user message.

        Returns:
            AssistantResult for the turn.
        """
        prompt = f"{self.prompt_builder.build_main_agent_prompt(self.registry)}\n\nUser: {message}"
        self.logger.debug(f"Main agent prompt is {len(prompt)} characters")

        result = self._generate(prompt)
        if not result.ok:
            return AssistantResult(success=False, error=result.error)
        response = result.text

        if needs_clarification(response):
            clarified, _ = self._clarify(prompt, response)
            if clarified is None:
                return AssistantResult(success=False, error="No clarification provided")
            if not clarified.ok:
                return AssistantResult(success=False, error=clarified.error)
            response = clarified.text

        if has_sub_mind_execution(response):
            delegation = parse_sub_mind_execution(response)
            if delegation is not None:
                return self.run_sub_mind(delegation.sub_mind_id, delegation.request)

        actions: List[Dict[str, Any]] = []
        if has_tool_calls(response):
            response, actions = self._apply_file_tools(prompt, response)

        return AssistantResult(
            success=True,
            response=remove_sub_mind_commands(response),
            iterations=1,
            actions=actions,
        )

    def run_sub_mind(self, sub_mind_id: str, request: str) -> AssistantResult:
        """
        Run a request through a registered sub-mind.

        Args:
            sub_mind_id: Registry id, e.g. "cli".
            request: Request text passed on by the main agent.

        Returns:
            AssistantResult; unknown ids fail without generating.
        """
        sub_mind = self.registry.get(sub_mind_id)
        if sub_mind is None:
            self.logger.warning(f"Main agent delegated to unknown sub-mind '{sub_mind_id}'")
            return AssistantResult(success=False, error=f"Sub-mind '{sub_mind_id}' not found")

        click.echo("\n" + click.style(RULE, fg="cyan"))
        click.echo(click.style("🧠 Main Agent:", fg="bright_cyan") + " Analyzing request...")
        click.echo(click.style(f"🎯 Delegating to: {sub_mind.name}", fg="bright_green"))
        click.echo(click.style(RULE, fg="cyan") + "\n")
        self.logger.info(f"Delegating to sub-mind {sub_mind.id}")

        if sub_mind.id == "cli":
            return self._run_cli(sub_mind, request)
        if sub_mind.id == "io":
            return self._run_io(sub_mind, request)
        return self._run_single(sub_mind, request)

    def _run_single(self, sub_mind: SubMindDescriptor, request: str) -> AssistantResult:
        result = self._generate(f"{sub_mind.system_prompt}\n\nUser Request: {request}")
        if not result.ok:
            click.echo(click.style(f"❌ {sub_mind.name} encountered an error", fg="red"))
            return AssistantResult(success=False, error=result.error, sub_mind_name=sub_mind.name)
        click.echo(click.style(f"✅ {sub_mind.name} completed successfully!\n", fg="green"))
        return AssistantResult(
            success=True, response=result.text.strip(), sub_mind_name=sub_mind.name, iterations=1
        )

    def _cli_prompt(
        self,
        sub_mind: SubMindDescriptor,
        request: str,
        actions: List[Dict[str, Any]],
        last: Optional[ExecutionOutcome],
    ) -> str:
        parts = [sub_mind.system_prompt, "", f"User Request: {request}", ""]
        if actions:
            parts.append("Previous Actions and Results:")
            parts.append("=" * 32)
            for action in actions:
                parts.append(f"Action {action['iteration']}: {action['action']}")
                parts.append(f"Command: {action['command']}")
                parts.append(f"Result: {action['result']}")
                if action.get("output"):
                    parts.append(f"Output:\n{action['output']}")
                parts.append("---")
            parts.append("")

        if last is not None:
            if last.succeeded:
                parts.append("The last command succeeded.")
            elif last.interactive_block:
                parts.append(
                    "The last command was interrupted because it stopped to wait for interactive "
                    "input, which cannot be provided here. Do not run it again as is. Use "
                    "non-interactive flags, or tell the user to run it themselves."
                )
            elif last.cancelled:
                parts.append("The user declined to run the last command. Do not run it again.")
            else:
                parts.append("The last command failed.")
                parts.append(f"Error: {last.error}")
            parts.extend([
                "",
                "Based on this result, what would you like to do next?",
                "You can:",
                "1. Run another command to continue the task",
                "2. Provide a final response if the task is complete",
                "3. Ask for clarification if needed",
            ])
        return "\n".join(parts)

    def _record(self, iteration: int, spec: CommandSpec, outcome: ExecutionOutcome) -> Dict[str, Any]:
        output = outcome.stdout or outcome.stderr or outcome.error or ""
        return {
            "iteration": iteration,
            "action": "Execute command",
            "command": spec.command,
            "result": _outcome_label(outcome),
            "state": outcome.state.value,
            "output": output[-OUTPUT_CONTEXT_CHARS:],
        }

    def _hand_off(self, spec: CommandSpec) -> None:
        """Give a command that blocked on input back to the user."""
        if self.config.copy_interactive_commands and self.copy(spec.command):
            click.echo(click.style(
                "📋 Command copied to clipboard. Paste it into your terminal to answer its prompts.",
                fg="cyan",
            ))
        else:
            click.echo(click.style(f"Run it yourself: {spec.command}", fg="cyan"))

    def _run_cli(self, sub_mind: SubMindDescriptor, request: str) -> AssistantResult:
        actions: List[Dict[str, Any]] = []
        last: Optional[ExecutionOutcome] = None
        max_iterations = self.config.max_iterations
        iteration = 0

        while iteration < max_iterations:
            iteration += 1
            prompt = self._cli_prompt(sub_mind, request, actions, last)
            self.logger.debug(f"CLI sub-mind iteration {iteration}/{max_iterations}")

            result = self._generate(prompt)
            if not result.ok:
                click.echo(click.style(f"❌ {sub_mind.name} encountered an error", fg="red"))
                return AssistantResult(
                    success=False, error=result.error, sub_mind_name=sub_mind.name,
                    iterations=iteration, actions=actions,
                )
            response = result.text

            spec = parse_command_execution(response) if has_command_execution(response) else None
            if spec is None and has_command_execution(response):
                self.logger.warning("Command block without COMMAND or END_EXECUTE")
                click.echo(click.style(f"❌ {sub_mind.name} sent an incomplete command", fg="red"))
                return AssistantResult(
                    success=False, error=INCOMPLETE_COMMAND_MESSAGE, sub_mind_name=sub_mind.name,
                    iterations=iteration, actions=actions,
                )
            if spec is not None:
                narration = remove_command_blocks(response)
                if narration:
                    click.echo(narration + "\n")
                last = self.runner.run(spec, skip_confirmation=self.skip_confirmation)
                if last.interactive_block:
                    self._hand_off(spec)
                actions.append(self._record(iteration, spec, last))
                continue

            if needs_clarification(response):
                clarified, transcript = self._clarify(prompt, response)
                if clarified is None:
                    return AssistantResult(
                        success=False, error="No clarification provided",
                        sub_mind_name=sub_mind.name, iterations=iteration, actions=actions,
                    )
                if not clarified.ok:
                    return AssistantResult(
                        success=False, error=clarified.error, sub_mind_name=sub_mind.name,
                        iterations=iteration, actions=actions,
                    )
                if has_command_execution(clarified.text):
                    request = f"{request}{transcript}"
                    continue
                response = clarified.text

            answer = remove_command_blocks(response)
            if answer:
                click.echo(click.style(f"✅ {sub_mind.name} completed successfully!\n", fg="green"))
                return AssistantResult(
                    success=True, response=answer, sub_mind_name=sub_mind.name,
                    iterations=iteration, actions=actions,
                )
            click.echo(click.style(f"❌ {sub_mind.name} returned no answer", fg="red"))
            return AssistantResult(
                success=False, error=EMPTY_RESPONSE_MESSAGE, sub_mind_name=sub_mind.name,
                iterations=iteration, actions=actions,
            )

        click.echo(click.style(f"⚠️  {sub_mind.name} reached maximum iterations", fg="yellow"))
        return AssistantResult(
            success=True,
            response=MAX_ITERATIONS_MESSAGE,
            sub_mind_name=sub_mind.name,
            iterations=iteration,
            actions=actions,
        )

    def _run_io(self, sub_mind: SubMindDescriptor, request: str) -> AssistantResult:
        prompt = f"{sub_mind.system_prompt}\n\nUser Request: {request}"
        result = self._generate(prompt)
        if not result.ok:
            click.echo(click.style(f"❌ {sub_mind.name} encountered an error", fg="red"))
            return AssistantResult(success=False, error=result.error, sub_mind_name=sub_mind.name)
        response = result.text

        if needs_clarification(response):
            clarified, _ = self._clarify(prompt, response)
            if clarified is None:
                return AssistantResult(
                    success=False, error="No clarification provided", sub_mind_name=sub_mind.name
                )
            if not clarified.ok:
                return AssistantResult(
                    success=False, error=clarified.error, sub_mind_name=sub_mind.name
                )
            response = clarified.text

        actions: List[Dict[str, Any]] = []
        if has_tool_calls(response):
            response, actions = self._apply_file_tools(prompt, response)

        click.echo(click.style(f"✅ {sub_mind.name} completed successfully!\n", fg="green"))
        return AssistantResult(
            success=True,
            response=response,
            sub_mind_name=sub_mind.name,
            iterations=1,
            actions=actions,
        )

    def _apply_file_tools(self, prompt: str, response: str) -> Tuple[str, List[Dict[str, Any]]]:
        """
        Execute file tool calls and feed read results back once.

        Args:
            prompt: Prompt that produced ``response``.
            response: Model response holding tool calls.

        Returns:
            Display text and one action record per executed call.
        """
        results = self.file_tools.execute(parse_tool_calls(response))
        reads = [r for r in results if r.tool == "read" and r.success]
        text = remove_tool_calls(response)

        if reads:
            contents = "\n".join(f"--- {r.filename} ---\n{r.content}" for r in reads)
            follow_up = (
                f"{prompt}\n\nAssistant: {response}\n\nFile contents:\n{contents}\n\n"
                "Using the file contents above, complete the user's request."
            )
            result = self._generate(follow_up)
            if result.ok:
                if has_tool_calls(result.text):
                    results.extend(r for r in self.file_tools.execute(parse_tool_calls(result.text))
                                   if r.tool == "write")
                text = remove_tool_calls(result.text)
            else:
                self.logger.warning(f"Follow-up after file read failed: {result.error}")
                text = "\n\n".join(filter(None, [text, contents]))

        errors = [r.error for r in results if not r.success and r.error]
        if errors:
            text = "\n".join(filter(None, [text] + [f"Error: {e}" for e in errors]))
        return text, [self._file_action(r) for r in results]

    @staticmethod
    def _file_action(result: FileToolResult) -> Dict[str, Any]:
        return {
            "action": f"{result.tool.capitalize()} file",
            "filename": result.filename,
            "result": "Success" if result.success else "Failed",
            "error": result.error,
        }

    def _clarify(self, prompt: str, response: str) -> Tuple[Optional[GenerationResult], str]:
        """
        Ask the user until the model stops requesting clarification.

        Args:
            prompt: Prompt that produced ``response``.
            response: Response starting with CLARIFICATION_NEEDED.

        Returns:
            The final generation (None if the user gave no answer) and the
            question/answer transcript.
        """
        transcript = ""
        while needs_clarification(response):
            question = extract_clarification_question(response)
            click.echo("\n" + click.style("Flash needs clarification:", fg="yellow"))
            click.echo(question)
            answer = self.ask().strip()
            if not answer:
                click.echo(click.style("No input provided. Exiting...", fg="yellow"))
                return None, transcript

            transcript += f"\n\nAssistant: {question}\n\nUser clarification: {answer}"
            result = self._generate(prompt + transcript)
            if not result.ok:
                return result, transcript
            response = result.text
        return GenerationResult(ok=True, text=response), transcript


def build_runner_settings(config: Config) -> RunnerSettings:
    """Map the [detector] section onto runner timings."""
    detector = config.detector
    return RunnerSettings(
        initial_silence=float(detector["initial_silence"]),
        minimum_silence=float(detector["minimum_silence"]),
        recheck_delay=float(detector["recheck_delay"]),
        interrupt_grace=float(detector["interrupt_grace"]),
        confirm_destructive_commands=config.confirm_destructive_commands,
    )


def build_detector(
    config: Config, gateway: ModelGateway, registry: SubMindRegistry, provider: str
) -> StuckPromptDetector:
    """
    Build the stuck-prompt detector with its own rate limiter.

    Args:
        config: Loaded configuration.
        gateway: Gateway used for tier-2 analysis.
        registry: Registry holding the analysis sub-mind.
        provider: Provider for this run; analysis follows it.

    Returns:
        StuckPromptDetector.
    """
    detector = config.detector
    limiter = RateLimiter(
        max_requests=int(detector["max_requests"]),
        window_seconds=float(detector["window_seconds"]),
    )
    model = detector["analysis_model"] if provider == "google" else config.local_model
    analyzer = QuickAnalyzer(gateway, limiter, registry, provider=provider, model=model)
    return StuckPromptDetector(analyzer, mode=detector["mode"])


def build_orchestrator(
    config: Config,
    provider: str,
    model: str,
    skip_confirmation: bool = False,
    gateway: Optional[ModelGateway] = None,
    registry: Optional[SubMindRegistry] = None,
) -> Orchestrator:
    """
    Wire the gateway, detector, runner and registry for one process run.

    Args:
        config: Loaded configuration.
        provider: Resolved provider.
        model: Resolved model.
        skip_confirmation: Run destructive commands without asking.
        gateway: Existing gateway to reuse.
        registry: Existing registry to reuse.

    Returns:
        Orchestrator.
    """
    gateway = gateway or ModelGateway(config)
    registry = registry or build_default_registry()
    runner = CommandRunner(
        detector=build_detector(config, gateway, registry, provider),
        settings=build_runner_settings(config),
    )
    return Orchestrator(
        config,
        gateway,
        registry,
        runner,
        provider,
        model,
        skip_confirmation=skip_confirmation,
    )
