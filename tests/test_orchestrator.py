"""Tests for main agent routing and the sub-mind loops."""

from unittest.mock import MagicMock

import pytest

from flash_assistant.agents import build_default_registry
from flash_assistant.agents.orchestrator import (
    EMPTY_RESPONSE_MESSAGE,
    INCOMPLETE_COMMAND_MESSAGE,
    MAX_ITERATIONS_MESSAGE,
    Orchestrator,
    build_detector,
    build_orchestrator,
    build_runner_settings,
)
from flash_assistant.client import GenerationResult
from flash_assistant.executor import ExecutionOutcome, FailureKind
from flash_assistant.file_tools import FileTools
from flash_assistant.prompt_builder import PromptBuilder


def ok(text):
    return GenerationResult(ok=True, text=text)


def command_block(command):
    return f"Running it.\nEXECUTE_COMMAND:\nCOMMAND: {command}\nEND_EXECUTE"


@pytest.fixture
def harness(config, tmp_path):
    gateway = MagicMock()
    runner = MagicMock()
    runner.run.return_value = ExecutionOutcome(succeeded=True, exit_code=0, stdout="ok\n")
    copy = MagicMock(return_value=True)
    answers = []
    orchestrator = Orchestrator(
        config,
        gateway,
        build_default_registry(),
        runner,
        "google",
        "gemini-2.5-flash",
        prompt_builder=PromptBuilder("google", "gemini-2.5-flash", cwd=tmp_path),
        file_tools=FileTools(base_dir=tmp_path, echo=False),
        ask=lambda: answers.pop(0) if answers else "",
        copy=copy,
    )
    return orchestrator, gateway, runner, copy, answers


def test_direct_answer(harness):
    orchestrator, gateway, runner, _, _ = harness
    gateway.generate.return_value = ok("Paris is the capital of France.")

    result = orchestrator.handle("capital of France?")

    assert result.success
    assert result.response == "Paris is the capital of France."
    assert result.sub_mind_name is None
    prompt = gateway.generate.call_args[0][0]
    assert "Available Sub-minds:" in prompt
    assert prompt.endswith("User: capital of France?")
    runner.run.assert_not_called()


def test_generation_failure(harness):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.return_value = GenerationResult(ok=False, error="quota exceeded")
    result = orchestrator.handle("hi")
    assert not result.success
    assert result.error == "quota exceeded"


def test_unknown_sub_mind(harness):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.return_value = ok("EXECUTE_SUBMIND: painter\nREQUEST: draw a cat")
    result = orchestrator.handle("draw a cat")
    assert not result.success
    assert "painter" in result.error
    assert gateway.generate.call_count == 1


def test_cli_loop_runs_command_then_answers(harness):
    orchestrator, gateway, runner, _, _ = harness
    gateway.generate.side_effect = [
        ok("EXECUTE_SUBMIND: cli\nREQUEST: show the python version"),
        ok(command_block("python3 --version")),
        ok("You are running Python 3.12."),
    ]

    result = orchestrator.handle("what python do I have")

    assert result.success
    assert result.sub_mind_name == "CLI Assistant"
    assert result.response == "You are running Python 3.12."
    assert result.iterations == 2
    assert result.actions[0]["command"] == "python3 --version"
    assert result.actions[0]["result"] == "Success"
    spec = runner.run.call_args[0][0]
    assert spec.command == "python3 --version"
    assert runner.run.call_args[1] == {"skip_confirmation": False}

    follow_up = gateway.generate.call_args_list[2][0][0]
    assert "Previous Actions and Results:" in follow_up
    assert "Command: python3 --version" in follow_up
    assert "The last command succeeded." in follow_up


def test_cli_loop_stops_at_max_iterations(harness, config):
    orchestrator, gateway, runner, _, _ = harness
    gateway.generate.return_value = ok(command_block("ls"))

    result = orchestrator.run_sub_mind("cli", "keep listing")

    assert result.success
    assert result.response == MAX_ITERATIONS_MESSAGE
    assert result.iterations == config.max_iterations
    assert runner.run.call_count == config.max_iterations


def test_cli_loop_empty_reply_is_not_max_iterations(harness):
    orchestrator, gateway, runner, _, _ = harness
    gateway.generate.side_effect = [ok(command_block("ls")), ok("   ")]

    result = orchestrator.run_sub_mind("cli", "list files")

    assert not result.success
    assert result.error == EMPTY_RESPONSE_MESSAGE
    assert result.response != MAX_ITERATIONS_MESSAGE
    assert result.iterations == 2
    assert runner.run.call_count == 1


def test_cli_loop_incomplete_command_block_fails(harness):
    orchestrator, gateway, runner, _, _ = harness
    gateway.generate.return_value = ok("Running it.\nEXECUTE_COMMAND:\nCOMMAND: ls -la")

    result = orchestrator.run_sub_mind("cli", "list files")

    assert not result.success
    assert result.error == INCOMPLETE_COMMAND_MESSAGE
    assert result.iterations == 1
    runner.run.assert_not_called()


def test_interactive_block_is_reported_and_copied(harness):
    orchestrator, gateway, runner, copy, _ = harness
    runner.run.return_value = ExecutionOutcome(
        succeeded=False,
        stdout="Password: ",
        error="Command was waiting for interactive input and was interrupted",
        interactive_block=True,
        failure_kind=FailureKind.INTERACTIVE_BLOCK,
    )
    gateway.generate.side_effect = [
        ok(command_block("ssh server")),
        ok("The command needs your password; run it yourself."),
    ]

    result = orchestrator.run_sub_mind("cli", "connect to the server")

    copy.assert_called_once_with("ssh server")
    assert result.actions[0]["state"] == "interactive_blocked"
    follow_up = gateway.generate.call_args_list[1][0][0]
    assert "wait for interactive input" in follow_up
    assert "Do not run it again as is" in follow_up


def test_interactive_block_not_copied_when_disabled(harness):
    orchestrator, gateway, runner, copy, _ = harness
    orchestrator.config.set("flash", "copy_interactive_commands", False)
    runner.run.return_value = ExecutionOutcome(succeeded=False, interactive_block=True)
    gateway.generate.side_effect = [ok(command_block("npm init")), ok("Done.")]

    orchestrator.run_sub_mind("cli", "init a project")
    copy.assert_not_called()


def test_failed_command_error_is_fed_back(harness):
    orchestrator, gateway, runner, _, _ = harness
    runner.run.return_value = ExecutionOutcome(
        succeeded=False, exit_code=127, stderr="make: not found",
        error="Command exited with code 127", failure_kind=FailureKind.NON_ZERO_EXIT,
    )
    gateway.generate.side_effect = [ok(command_block("make")), ok("make is not installed.")]

    result = orchestrator.run_sub_mind("cli", "build it")

    assert result.actions[0]["result"] == "Failed"
    assert result.actions[0]["output"] == "make: not found"
    follow_up = gateway.generate.call_args_list[1][0][0]
    assert "The last command failed." in follow_up
    assert "Error: Command exited with code 127" in follow_up


def test_skip_confirmation_is_passed_to_runner(harness):
    orchestrator, gateway, runner, _, _ = harness
    orchestrator.skip_confirmation = True
    gateway.generate.side_effect = [ok(command_block("rm -rf dist")), ok("Removed.")]
    orchestrator.run_sub_mind("cli", "remove dist")
    assert runner.run.call_args[1] == {"skip_confirmation": True}


def test_clarification_round_trip(harness):
    orchestrator, gateway, _, _, answers = harness
    answers.append("the dev branch")
    gateway.generate.side_effect = [
        ok("CLARIFICATION_NEEDED: Which branch?"),
        ok("Switching to dev is a good idea."),
    ]

    result = orchestrator.handle("switch branch")

    assert result.success
    assert result.response == "Switching to dev is a good idea."
    second_prompt = gateway.generate.call_args_list[1][0][0]
    assert "Assistant: Which branch?" in second_prompt
    assert "User clarification: the dev branch" in second_prompt


def test_empty_clarification_ends_turn(harness):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.return_value = ok("CLARIFICATION_NEEDED: Which file?")
    result = orchestrator.handle("open the file")
    assert not result.success
    assert result.error == "No clarification provided"
    assert gateway.generate.call_count == 1


def test_io_sub_mind_writes_file(harness, tmp_path):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.side_effect = [
        ok("EXECUTE_SUBMIND: io\nREQUEST: save planets"),
        ok("Saving.\nWRITE_FILE: planets.txt\nCONTENT:\nMercury\nVenus\nEND_CONTENT"),
    ]

    result = orchestrator.handle("save planets to planets.txt")

    assert result.success
    assert result.sub_mind_name == "I/O Agent"
    assert (tmp_path / "planets.txt").read_text() == "Mercury\nVenus"
    assert result.response == "Saving."
    assert result.actions == [
        {"action": "Write file", "filename": "planets.txt", "result": "Success", "error": None}
    ]


def test_io_read_results_feed_one_follow_up(harness, tmp_path):
    orchestrator, gateway, _, _, _ = harness
    (tmp_path / "todo.txt").write_text("buy milk")
    gateway.generate.side_effect = [
        ok("EXECUTE_SUBMIND: io\nREQUEST: summarize todo.txt"),
        ok("READ_FILE: todo.txt"),
        ok("Your list has one item: buy milk."),
    ]

    result = orchestrator.handle("summarize todo.txt")

    assert result.response == "Your list has one item: buy milk."
    assert gateway.generate.call_count == 3
    follow_up = gateway.generate.call_args_list[2][0][0]
    assert "--- todo.txt ---\nbuy milk" in follow_up


def test_io_rejects_paths(harness, tmp_path):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.side_effect = [ok("WRITE_FILE: ../evil.txt\nCONTENT:\nx\nEND_CONTENT")]
    result = orchestrator.run_sub_mind("io", "write outside")
    assert not (tmp_path.parent / "evil.txt").exists()
    assert "Invalid filename" in result.response
    assert result.actions[0]["result"] == "Failed"


def test_analysis_sub_mind_single_answer(harness):
    orchestrator, gateway, _, _, _ = harness
    gateway.generate.return_value = ok(" NO ")
    result = orchestrator.run_sub_mind("analysis", "does this log have errors?")
    assert result.success
    assert result.response == "NO"
    assert result.sub_mind_name == "Analysis Agent"


def test_runner_settings_from_config(config):
    config.set("detector", "initial_silence", 2)
    config.set("flash", "confirm_destructive_commands", False)
    settings = build_runner_settings(config)
    assert settings.initial_silence == 2.0
    assert settings.minimum_silence == 3.0
    assert settings.interrupt_grace == 10.0
    assert settings.confirm_destructive_commands is False


def test_detector_follows_provider(config):
    gateway = MagicMock()
    registry = build_default_registry()

    google = build_detector(config, gateway, registry, "google")
    assert google.mode == "tiered"
    assert google.analyzer.model == "gemini-2.0-flash"
    assert google.analyzer.rate_limiter.max_requests == 20

    local = build_detector(config, gateway, registry, "local")
    assert local.analyzer.provider == "local"
    assert local.analyzer.model == "gemma3n:e4b"


def test_build_orchestrator(config):
    orchestrator = build_orchestrator(config, "local", "gemma3n:e4b", skip_confirmation=True)
    assert orchestrator.provider == "local"
    assert orchestrator.skip_confirmation
    assert orchestrator.runner.detector is not None
    assert "cli" in orchestrator.registry
