"""Tests for stuck-prompt detection."""

from unittest.mock import MagicMock

import pytest

from flash_assistant.agents import build_default_registry
from flash_assistant.analysis import QuickAnalyzer
from flash_assistant.client import GenerationResult
from flash_assistant.detector import (
    StuckPromptDetector,
    Tier1Verdict,
    build_waiting_prompt,
    classify_output,
    is_active_stream,
    progress_markers,
    prompt_markers,
)
from flash_assistant.executor import OutputEvent
from flash_assistant.rate_limiter import RateLimiter


def make_detector(reply="NO", mode="tiered", max_requests=20, ok=True):
    gateway = MagicMock()
    gateway.generate.return_value = (
        GenerationResult(ok=True, text=reply, usage={"total_tokens": 5})
        if ok else GenerationResult(ok=False, error="boom")
    )
    limiter = RateLimiter(max_requests=max_requests, window_seconds=60, clock=lambda: 0.0)
    analyzer = QuickAnalyzer(gateway, limiter, build_default_registry(), echo=lambda message: None)
    return StuckPromptDetector(analyzer, mode=mode), gateway


@pytest.mark.parametrize("text", [
    "Enter password: ",
    "Do you want to continue? [Y/n] ",
    "Proceed? (y/N)",
    "Overwrite existing file?",
    "Press Enter to continue",
    "Select a framework:\n1) React\n2) Vue\n3) Svelte",
    "Username> ",
])
def test_interactive_output(text):
    assert classify_output(text) is Tier1Verdict.INTERACTIVE


@pytest.mark.parametrize("text", [
    "Downloading... 45%",
    "Installing dependencies",
    "[=====>     ] 12/40",
    "2024-05-01 12:00:01 server listening",
    "[INFO] compiled module",
    "12.5 MB/s ETA 0:03",
])
def test_long_running_output(text):
    assert classify_output(text) is Tier1Verdict.LONG_RUNNING


@pytest.mark.parametrize("text", ["", "   \n", "done", "hello world\n"])
def test_inconclusive_output(text):
    assert classify_output(text) is Tier1Verdict.INCONCLUSIVE


def test_progress_wins_over_prompt_in_last_lines():
    """A progress line after a question means the command moved on."""
    text = "Continue? [Y/n] y\nDownloading packages 10%"
    assert classify_output(text) is Tier1Verdict.LONG_RUNNING


def test_only_tail_is_considered():
    text = "Enter password: " + "x" * 600
    assert classify_output(text) is Tier1Verdict.INCONCLUSIVE


def test_marker_helpers_name_families():
    assert "percentage" in progress_markers("50% done")
    assert "credential" in prompt_markers("some output\nPassword:")
    assert prompt_markers("") == []


def test_active_stream_needs_three_progress_events():
    events = [OutputEvent(i, "stdout", f"Downloading {i}0%") for i in range(2)]
    assert not is_active_stream(events)
    events.append(OutputEvent(3, "stdout", "Downloading 30%"))
    assert is_active_stream(events)


def test_waiting_prompt_mentions_silence_and_tail():
    prompt = build_waiting_prompt("Enter name: ", 4200)
    assert "Enter name:" in prompt
    assert "4 seconds" in prompt
    assert "YES or NO" in prompt


def test_patterns_mode_is_deterministic():
    """The same inputs always give the same verdict."""
    detector = StuckPromptDetector(mode="patterns")
    verdicts = {detector.is_waiting_for_input("Password: ", 5000) for _ in range(5)}
    assert verdicts == {True}
    assert detector.is_waiting_for_input("Building project", 5000) is False


def test_no_analyzer_falls_back_to_patterns():
    detector = StuckPromptDetector(analyzer=None, mode="tiered")
    assert detector.mode == "patterns"


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        StuckPromptDetector(mode="guess")


def test_progress_short_circuits_without_model_call():
    detector, gateway = make_detector(reply="YES")
    assert detector.is_waiting_for_input("Downloading... 45%\n", 5000) is False
    gateway.generate.assert_not_called()


def test_active_event_stream_short_circuits():
    detector, gateway = make_detector(reply="YES")
    events = [OutputEvent(i, "stdout", f"Compiling module {i}") for i in range(4)]
    verdict = detector.evaluate("done", 5000, events)
    assert verdict.tier1 is Tier1Verdict.LONG_RUNNING
    assert verdict.blocked is False
    gateway.generate.assert_not_called()


def test_tier2_confirms_prompt():
    detector, gateway = make_detector(reply="YES")
    verdict = detector.evaluate("Enter password: ", 4000)
    assert verdict.blocked is True
    assert verdict.used_inference is True
    gateway.generate.assert_called_once()
    args = gateway.generate.call_args[0]
    assert "Analysis Request:" in args[0]
    assert args[1] == "google"
    assert gateway.generate.call_args[0][4] == {"max_output_tokens": 10}


def test_tier2_rejects_prompt():
    detector, _ = make_detector(reply="NO")
    assert detector.is_waiting_for_input("Enter password: ", 4000) is False


def test_tier2_failure_means_not_blocked():
    detector, gateway = make_detector(ok=False)
    assert detector.is_waiting_for_input("Enter password: ", 4000) is False
    gateway.generate.assert_called_once()


def test_tier2_exception_means_not_blocked():
    detector, gateway = make_detector()
    gateway.generate.side_effect = RuntimeError("network down")
    assert detector.is_waiting_for_input("Continue? ", 4000) is False


def test_rate_limit_caps_model_calls():
    """25 checks in one window make at most 20 model calls."""
    detector, gateway = make_detector(reply="NO", max_requests=20)
    verdicts = [detector.is_waiting_for_input("Continue? (y/n)", 4000) for _ in range(25)]

    assert gateway.generate.call_count == 20
    # Model said NO for the first 20; the rest fall back to the tier-1 verdict
    assert verdicts[:20] == [False] * 20
    assert verdicts[20:] == [True] * 5


def test_rate_limited_inconclusive_output_is_not_blocked():
    detector, gateway = make_detector(reply="YES", max_requests=1)
    assert detector.is_waiting_for_input("hello", 4000) is True
    assert detector.is_waiting_for_input("hello", 4000) is False
    assert gateway.generate.call_count == 1


def test_inference_mode_skips_prefilter():
    detector, gateway = make_detector(reply="NO", mode="inference")
    assert detector.is_waiting_for_input("Downloading... 45%", 5000) is False
    gateway.generate.assert_called_once()
