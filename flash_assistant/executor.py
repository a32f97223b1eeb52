"""Supervised command execution for flash-assistant.

``CommandRunner`` runs one shell command on behalf of the model, mirrors
its output to the terminal as it arrives and watches for silence. When
the child stays quiet long enough the ``StuckPromptDetector`` is asked
whether it is waiting for input; a positive verdict interrupts the child
and the run ends as an interactive block.
"""

import codecs
import enum
import os
import re
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import click

from flash_assistant.logger import get_logger


# (pattern, warning shown before confirmation)
DESTRUCTIVE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\brm\s+(?:-\S+\s+)*(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)\b"),
     "This will permanently delete files and directories!"),
    (re.compile(r"\bgit\s+push\b[^;&|]*(?:--force(?:-with-lease)?\b|\s-f\b|\s\+\S)"),
     "This will overwrite remote history!"),
    (re.compile(r"\bgit\s+reset\s+--hard\b"),
     "This will discard all local changes!"),
    (re.compile(r"\bgit\s+clean\s+-[a-zA-Z]*f"),
     "This will delete untracked files!"),
    (re.compile(r"\b(?:drop\s+(?:database|table|schema)|truncate\s+table)\b|\bdropdb\b", re.IGNORECASE),
     "This will permanently delete database data!"),
    (re.compile(r"\b(?:kill|pkill)\s+(?:-9|-KILL|-SIGKILL|-s\s+KILL)\b|\bkillall\b"),
     "This will force-kill running processes!"),
    (re.compile(r"\bdocker(?:-compose|\s+compose)?\s+(?:system\s+prune|volume\s+(?:prune|rm)|"
                r"image\s+prune|container\s+prune|network\s+prune|rm\s+-f|rmi\b|down\s+(?:.*\s)?-v\b)"),
     "This will remove Docker resources and their data!"),
    (re.compile(r"\bsudo\b[^;&|]*\b(?:rm|rmdir|unlink|shred|dd|mkfs(?:\.\w+)?|wipefs|truncate|delete)\b"),
     "This deletes data with administrator privileges!"),
    (re.compile(r"\bmkfs(?:\.\w+)?\b|\bdd\s+[^;&|]*\bof=/dev/"),
     "This will overwrite a disk or partition!"),
]


def find_destructive_pattern(command: str) -> Optional[str]:
    """
    Find the first destructive pattern a command matches.

    Args:
        command: Shell command text.

    Returns:
        The warning for the matched pattern, or None.
    """
    for pattern, warning in DESTRUCTIVE_PATTERNS:
        if pattern.search(command):
            return warning
    return None


def is_destructive(command: str) -> bool:
    """Check if a command matches the destructive pattern set."""
    return find_destructive_pattern(command) is not None


@dataclass(frozen=True)
class CommandSpec:
    """A command requested by the model, consumed once per execution."""

    command: str
    working_directory: Optional[str] = None
    prerequisite_check: Optional[str] = None
    is_destructive: bool = False

    @classmethod
    def create(
        cls,
        command: str,
        working_directory: Optional[str] = None,
        prerequisite_check: Optional[str] = None,
        destructive: bool = False,
    ) -> "CommandSpec":
        """Build a spec, flagging it destructive by marker or by pattern."""
        return cls(
            command=command,
            working_directory=working_directory or None,
            prerequisite_check=prerequisite_check or None,
            is_destructive=destructive or is_destructive(command),
        )


class FailureKind(enum.Enum):
    PREREQUISITE_FAILURE = "prerequisite_failure"
    SPAWN_FAILURE = "spawn_failure"
    NON_ZERO_EXIT = "non_zero_exit"
    INTERACTIVE_BLOCK = "interactive_block"
    USER_CANCELLED = "user_cancelled"


class ExecutionState(enum.Enum):
    IDLE = "idle"
    PREREQUISITE_CHECK = "prerequisite_check"
    ABORTED = "aborted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERACTIVE_BLOCKED = "interactive_blocked"
    CANCELLED = "cancelled"


@dataclass
class ExecutionOutcome:
    """Terminal result of running one CommandSpec."""

    succeeded: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    interactive_block: bool = False
    cancelled: bool = False
    failure_kind: Optional[FailureKind] = None

    def __post_init__(self):
        if sum((self.succeeded, self.interactive_block, self.cancelled)) > 1:
            raise ValueError(
                "succeeded, interactive_block and cancelled are mutually exclusive"
            )

    @property
    def state(self) -> ExecutionState:
        """Final state of the execution state machine."""
        if self.cancelled:
            return ExecutionState.CANCELLED
        if self.interactive_block:
            return ExecutionState.INTERACTIVE_BLOCKED
        if self.failure_kind is FailureKind.PREREQUISITE_FAILURE:
            return ExecutionState.ABORTED
        if self.succeeded:
            return ExecutionState.COMPLETED
        return ExecutionState.FAILED

    def summary(self) -> str:
        """One-line description for the model and the user."""
        if self.cancelled:
            return "Cancelled by user before execution"
        if self.interactive_block:
            return "Interrupted: the command was waiting for interactive input"
        if self.succeeded:
            return f"Succeeded (exit code {self.exit_code})"
        return self.error or f"Failed (exit code {self.exit_code})"


@dataclass(frozen=True)
class OutputEvent:
    timestamp_ms: int
    source: str
    content: str


class OutputLog:
    """Ordered output events, dropping those older than the retention window."""

    def __init__(self, retention_ms: int = 120_000, clock: Callable[[], float] = time.time):
        self.retention_ms = retention_ms
        self._clock = clock
        self._events: deque = deque()
        self._lock = threading.Lock()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _purge(self, now_ms: int) -> None:
        while self._events and now_ms - self._events[0].timestamp_ms > self.retention_ms:
            self._events.popleft()

    def append(self, source: str, content: str, timestamp_ms: Optional[int] = None) -> OutputEvent:
        event = OutputEvent(
            timestamp_ms=self._now_ms() if timestamp_ms is None else timestamp_ms,
            source=source,
            content=content,
        )
        with self._lock:
            self._events.append(event)
            self._purge(event.timestamp_ms)
        return event

    def events(self, now_ms: Optional[int] = None) -> List[OutputEvent]:
        """Events still inside the retention window, oldest first."""
        with self._lock:
            self._purge(self._now_ms() if now_ms is None else now_ms)
            return list(self._events)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


@dataclass
class RunnerSettings:
    """Timing and gating options for CommandRunner, in seconds."""

    initial_silence: float = 4.0
    minimum_silence: float = 3.0
    recheck_delay: float = 5.0
    interrupt_grace: float = 10.0
    reader_join_timeout: float = 5.0
    tail_chars: int = 500
    retention_ms: int = 120_000
    confirm_destructive_commands: bool = True
    announce: bool = True


class InactivityWatchdog:
    """A single cancellable timer, re-armed on every output event.

    Each arm invalidates the previous one, so at most one chain of
    inactivity checks is ever live. The callback receives the generation
    it was armed with and should confirm it with ``is_current``.
    """

    def __init__(self, callback: Callable[[int], None]):
        self._callback = callback
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._closed = False
        self._lock = threading.Lock()

    def arm(self, delay: float) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(max(delay, 0.0), self._callback, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def is_current(self, generation: int) -> bool:
        with self._lock:
            return not self._closed and generation == self._generation

    def cancel(self) -> None:
        """Stop the watchdog for good."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


def _signal_process_group(process: subprocess.Popen, sig: int, logger) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(os.getpgid(process.pid), sig)
        elif sig == signal.SIGINT:
            process.terminate()
        else:
            process.kill()
    except (ProcessLookupError, PermissionError, OSError) as e:
        logger.debug(f"Could not signal process {process.pid}: {e}")


class _Execution:
    """Mutable state shared by the reader threads and the watchdog for one run."""

    def __init__(self, runner: "CommandRunner", process: subprocess.Popen):
        self.runner = runner
        self.settings = runner.settings
        self.process = process
        self.logger = runner.logger
        self.log = OutputLog(retention_ms=self.settings.retention_ms)
        self.combined: List[str] = []
        self.stdout_parts: List[str] = []
        self.stderr_parts: List[str] = []
        self.last_output = time.monotonic()
        self.blocked = False
        self.finished = False
        self.detector_calls = 0
        self.lock = threading.Lock()
        self.watchdog = InactivityWatchdog(self.on_inactivity)
        self._escalation: Optional[threading.Timer] = None

    def start(self) -> None:
        self.watchdog.arm(self.settings.initial_silence)

    def on_output(self, source: str, text: str) -> None:
        self.log.append(source, text)
        with self.lock:
            self.last_output = time.monotonic()
            self.combined.append(text)
            (self.stdout_parts if source == "stdout" else self.stderr_parts).append(text)
            if not self.blocked and not self.finished:
                self.watchdog.arm(self.settings.initial_silence)
        self.runner._mirror(source, text)

    def on_inactivity(self, generation: int) -> None:
        with self.lock:
            if self.blocked or self.finished or not self.watchdog.is_current(generation):
                return
            silence = time.monotonic() - self.last_output
            if silence < self.settings.minimum_silence:
                self.watchdog.arm(self.settings.minimum_silence - silence)
                return
            marker = self.last_output
            tail = "".join(self.combined)[-self.settings.tail_chars:]
            self.detector_calls += 1

        self.logger.debug(f"No output for {silence:.1f}s, consulting detector")
        try:
            blocked = self.runner.detector.is_waiting_for_input(
                tail, silence * 1000, self.log.events()
            )
        except Exception as e:
            self.logger.warning(f"Stuck-prompt detector failed: {e}")
            blocked = False

        with self.lock:
            if self.blocked or self.finished:
                return
            if self.last_output != marker:
                # Output arrived while the detector was thinking; its watchdog is already armed.
                return
            if blocked:
                self._flag_block()
            else:
                self.watchdog.arm(self.settings.recheck_delay)

    def _flag_block(self) -> None:
        """Interrupt the child once; caller holds ``self.lock``."""
        if self.blocked:
            return
        self.blocked = True
        self.watchdog.cancel()
        self.logger.info(f"Command appears to be waiting for input, interrupting pid {self.process.pid}")
        _signal_process_group(self.process, signal.SIGINT, self.logger)
        self._escalation = threading.Timer(self.settings.interrupt_grace, self._escalate)
        self._escalation.daemon = True
        self._escalation.start()

    def _escalate(self) -> None:
        if self.process.poll() is None:
            self.logger.warning(
                f"Process {self.process.pid} ignored the interrupt for "
                f"{self.settings.interrupt_grace}s, killing it"
            )
            _signal_process_group(self.process, signal.SIGKILL, self.logger)

    def finish(self) -> None:
        with self.lock:
            self.finished = True
            self.watchdog.cancel()
            if self._escalation is not None:
                self._escalation.cancel()


class CommandRunner:
    """Runs CommandSpecs under supervision, one at a time."""

    def __init__(
        self,
        detector=None,
        settings: Optional[RunnerSettings] = None,
        confirm: Optional[Callable[[CommandSpec], bool]] = None,
        stdout=None,
        stderr=None,
    ):
        """
        Initialize command runner.

        Args:
            detector: Object with ``is_waiting_for_input(output, silence_ms,
                events)``. Without one, silence never interrupts a command.
            settings: Timing and gating options.
            confirm: Asks the user to approve a destructive command.
                Defaults to an interactive terminal prompt.
            stdout: Stream receiving mirrored stdout; the terminal by default.
            stderr: Stream receiving mirrored stderr; the terminal by default.
        """
        self.detector = detector
        self.settings = settings or RunnerSettings()
        self.confirm = confirm or confirm_destructive_command
        self.stdout = stdout
        self.stderr = stderr
        self.logger = get_logger(f"{__name__}.CommandRunner")

    def _mirror(self, source: str, text: str) -> None:
        if source == "stderr":
            click.echo(text, nl=False, file=self.stderr, err=self.stderr is None)
        else:
            click.echo(text, nl=False, file=self.stdout)

    def _announce(self, message: str, **style) -> None:
        if self.settings.announce:
            click.echo(click.style(message, **style), file=self.stdout)

    def run(self, spec: CommandSpec, skip_confirmation: bool = False) -> ExecutionOutcome:
        """
        Execute a command spec to a terminal outcome.

        Args:
            spec: The command to run.
            skip_confirmation: Skip the destructive-command prompt.

        Returns:
            ExecutionOutcome. Failures are reported, never raised.
        """
        if (
            (spec.is_destructive or is_destructive(spec.command))
            and self.settings.confirm_destructive_commands
            and not skip_confirmation
        ):
            if not self.confirm(spec):
                self.logger.info(f"User declined destructive command: {spec.command}")
                return ExecutionOutcome(
                    succeeded=False,
                    cancelled=True,
                    error="Command cancelled by user",
                    failure_kind=FailureKind.USER_CANCELLED,
                )

        self._announce("━" * 38, fg="cyan")
        self._announce("🖥️  CLI Assistant: Executing command", fg="bright_cyan")
        self._announce(f"📂 Directory: {spec.working_directory or os.getcwd()}", fg="yellow")
        self._announce(f"⚡ Command: {spec.command}", fg="green")
        self._announce("━" * 38 + "\n", fg="cyan")

        if spec.prerequisite_check:
            failure = self._run_prerequisite(spec)
            if failure is not None:
                return failure

        try:
            process = self._spawn(spec)
        except (OSError, ValueError) as e:
            self.logger.error(f"Failed to start command: {e}")
            self._announce("❌ Command failed to start", fg="red")
            return ExecutionOutcome(
                succeeded=False,
                error=f"Failed to start command: {e}",
                failure_kind=FailureKind.SPAWN_FAILURE,
            )

        outcome = self._supervise(process)
        self._report(outcome)
        return outcome

    def _run_prerequisite(self, spec: CommandSpec) -> Optional[ExecutionOutcome]:
        """Run the prerequisite check; return an outcome only on failure."""
        self._announce(f"🔍 Running prerequisite check: {spec.prerequisite_check}", fg="yellow")
        try:
            result = subprocess.run(
                spec.prerequisite_check,
                shell=True,
                cwd=spec.working_directory,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                errors="replace",
            )
        except (OSError, ValueError) as e:
            self._announce("❌ Prerequisite check failed", fg="red")
            return ExecutionOutcome(
                succeeded=False,
                error=f"Prerequisite check failed: {e}",
                failure_kind=FailureKind.PREREQUISITE_FAILURE,
            )

        if result.returncode != 0:
            self.logger.debug(f"Prerequisite check exited with {result.returncode}")
            self._announce("❌ Prerequisite check failed", fg="red")
            detail = result.stderr.strip() or result.stdout.strip()
            message = f"Prerequisite check failed: '{spec.prerequisite_check}' exited with code {result.returncode}"
            if detail:
                message += f": {detail}"
            return ExecutionOutcome(
                succeeded=False,
                exit_code=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
                error=message,
                failure_kind=FailureKind.PREREQUISITE_FAILURE,
            )

        self._announce("✅ Prerequisite check passed\n", fg="green")
        return None

    def _spawn(self, spec: CommandSpec) -> subprocess.Popen:
        self.logger.debug(f"Spawning: {spec.command} (cwd={spec.working_directory or '.'})")
        return subprocess.Popen(
            spec.command,
            shell=True,
            cwd=spec.working_directory,
            # An open pipe nobody writes to: prompts block instead of reading EOF
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=0,
            start_new_session=hasattr(os, "killpg"),
        )

    def _pump(self, pipe, source: str, execution: _Execution) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        fd = pipe.fileno()
        try:
            while True:
                try:
                    chunk = os.read(fd, 4096)
                except OSError:
                    break
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    execution.on_output(source, text)
            text = decoder.decode(b"", final=True)
            if text:
                execution.on_output(source, text)
        finally:
            pipe.close()

    def _supervise(self, process: subprocess.Popen) -> ExecutionOutcome:
        execution = _Execution(self, process)
        readers = [
            threading.Thread(target=self._pump, args=(process.stdout, "stdout", execution), daemon=True),
            threading.Thread(target=self._pump, args=(process.stderr, "stderr", execution), daemon=True),
        ]
        for reader in readers:
            reader.start()
        if self.detector is not None:
            execution.start()

        try:
            exit_code = process.wait()
        except KeyboardInterrupt:
            execution.finish()
            _signal_process_group(process, signal.SIGKILL, self.logger)
            process.wait()
            raise
        finally:
            if process.stdin:
                try:
                    process.stdin.close()
                except OSError:
                    pass

        for reader in readers:
            reader.join(timeout=self.settings.reader_join_timeout)
        execution.finish()

        with execution.lock:
            blocked = execution.blocked
            combined = "".join(execution.combined)
            stdout = "".join(execution.stdout_parts)
            stderr = "".join(execution.stderr_parts)

        self.logger.debug(
            f"Process {process.pid} exited with {exit_code} "
            f"(blocked={blocked}, detector calls={execution.detector_calls})"
        )

        if blocked:
            return ExecutionOutcome(
                succeeded=False,
                stdout=combined,
                stderr="",
                error="Command was waiting for interactive input and was interrupted",
                interactive_block=True,
                failure_kind=FailureKind.INTERACTIVE_BLOCK,
            )
        if exit_code == 0:
            return ExecutionOutcome(succeeded=True, exit_code=0, stdout=stdout, stderr=stderr)
        return ExecutionOutcome(
            succeeded=False,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            error=f"Command exited with code {exit_code}",
            failure_kind=FailureKind.NON_ZERO_EXIT,
        )

    def _report(self, outcome: ExecutionOutcome) -> None:
        if outcome.succeeded:
            self._announce("\n" + "━" * 38, fg="cyan")
            self._announce("✅ Command completed successfully", fg="green")
            self._announce("━" * 38, fg="cyan")
        elif outcome.interactive_block:
            self._announce("\n" + "━" * 38, fg="yellow")
            self._announce("⌨️  Command is waiting for interactive input and was stopped", fg="yellow")
            self._announce("   Run it yourself in a terminal to answer its prompts.", fg="yellow")
            self._announce("━" * 38, fg="yellow")
        else:
            self._announce("\n" + "━" * 38, fg="red")
            self._announce("❌ Command failed", fg="red")
            self._announce(f"Exit code: {outcome.exit_code}", fg="red")
            self._announce("━" * 38, fg="red")


def confirm_destructive_command(spec: CommandSpec) -> bool:
    """
    Ask the user to approve a destructive command.

    Args:
        spec: The command awaiting approval.

    Returns:
        True only if the user explicitly agrees.
    """
    click.echo(click.style("\n⚠️  WARNING: Potentially destructive command detected!", fg="red"))
    click.echo(click.style("━" * 38, fg="red"))
    click.echo(click.style("Command to execute:", fg="yellow"))
    click.echo(click.style(f"  {spec.command}", fg="bright_red"))
    click.echo(click.style("━" * 38, fg="red"))
    warning = find_destructive_pattern(spec.command)
    if warning:
        click.echo(click.style(f"⚠️  {warning}", fg="yellow"))
    click.echo()

    try:
        confirmed = click.confirm(
            click.style("Do you want to proceed with this command?", fg="yellow"),
            default=False,
        )
    except click.exceptions.Abort:
        confirmed = False

    if not confirmed:
        click.echo(click.style("✅ Command cancelled by user", fg="green"))
    return confirmed
