"""Stuck-prompt detection for supervised commands.

Decides whether a silent child process is waiting for terminal input it
will never receive. Two tiers:

1. Regular-expression heuristics over the tail of the output. Pure
   functions of the text; always available.
2. A short YES/NO question to the analysis sub-mind, admitted by the
   shared rate limiter.

In ``tiered`` mode (the default) tier 1 is a pre-filter: progress output
short-circuits to "not blocked" without any model call, everything else
is confirmed by tier 2. When tier 2 is denied by the rate limiter the
tier-1 verdict stands; when tier 2 fails the answer is "not blocked".
``inference`` mode skips the pre-filter, ``patterns`` mode never calls
the model.
"""

import enum
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Pattern, Tuple

from flash_assistant.analysis import QuickAnalyzer
from flash_assistant.logger import get_logger

TAIL_CHARS = 500

# Lines at the end of the tail inspected for progress markers
PROGRESS_LINES = 3

# Progress events in the output ring that count as an active stream
ACTIVE_EVENT_THRESHOLD = 3

# (family, pattern, applies to the whole tail rather than the last line)
INTERACTIVE_PATTERNS: List[Tuple[str, Pattern, bool]] = [
    ("yes_no", re.compile(r"[(\[]\s*y(?:es)?\s*/\s*n(?:o)?\s*[)\]]", re.IGNORECASE), False),
    ("credential", re.compile(
        r"\b(?:password|passphrase|passcode|username|login|token|otp|verification code)\b",
        re.IGNORECASE,
    ), False),
    ("question", re.compile(r"\?\s*$"), False),
    ("prompt_glyph", re.compile(r"[:>›»❯]\s*$"), False),
    ("press_key", re.compile(r"\bpress\s+(?:enter|return|any key)\b", re.IGNORECASE), False),
    ("request_phrasing", re.compile(
        r"\b(?:enter|provide|choose|select|type|input|specify|pick)\b", re.IGNORECASE,
    ), False),
    ("numbered_menu", re.compile(r"^\s*(?:\d+[.)]|\[\d+\])\s+\S", re.MULTILINE), True),
]

LONG_RUNNING_PATTERNS: List[Tuple[str, Pattern]] = [
    ("percentage", re.compile(r"\b\d{1,3}(?:\.\d+)?\s?%")),
    ("progress_bar", re.compile(r"\[[=#>\-.\s]{3,}\]|[█▓▒░■#=]{4,}")),
    ("eta", re.compile(r"\bETA\b|\belapsed\b|\b\d+(?:\.\d+)?\s?(?:[KMG]i?B|kB|B)/s\b", re.IGNORECASE)),
    ("ing_verb", re.compile(
        r"\b(?:downloading|uploading|building|compiling|installing|fetching|resolving|"
        r"extracting|unpacking|processing|loading|copying|linking|updating|generating|"
        r"bundling|pulling|pushing|syncing|indexing|running|transpiling|packaging)\b",
        re.IGNORECASE,
    )),
    ("timestamp", re.compile(
        r"^\s*\[?(?:\d{4}-\d{2}-\d{2}[T ])?\d{2}:\d{2}:\d{2}", re.MULTILINE,
    )),
    ("log_level", re.compile(r"\[(?:INFO|DEBUG|WARN|WARNING|ERROR|TRACE)\]|\b(?:INFO|DEBUG|TRACE)\b[:\s]")),
]


class Tier1Verdict(enum.Enum):
    """Pattern-only classification of recent output."""

    INTERACTIVE = "interactive"
    LONG_RUNNING = "long_running"
    INCONCLUSIVE = "inconclusive"


@dataclass
class DetectorVerdict:
    """Full verdict with the evidence that produced it."""

    blocked: bool
    tier1: Tier1Verdict
    used_inference: bool = False
    reason: str = ""


def _last_lines(text: str, count: int) -> List[str]:
    lines = [line for line in text.splitlines() if line.strip()]
    return lines[-count:]


def progress_markers(text: str) -> List[str]:
    """
    Name the long-running pattern families found in ``text``.

    Args:
        text: Output text.

    Returns:
        Matching family names, in table order.
    """
    return [name for name, pattern in LONG_RUNNING_PATTERNS if pattern.search(text)]


def prompt_markers(text: str) -> List[str]:
    """
    Name the interactive pattern families matching the end of ``text``.

    Args:
        text: Output text; only its last non-empty line is used except
            for whole-tail families such as numbered menus.

    Returns:
        Matching family names, in table order.
    """
    lines = _last_lines(text, 1)
    if not lines:
        return []
    last_line = lines[0].rstrip()
    found = []
    for name, pattern, whole_tail in INTERACTIVE_PATTERNS:
        subject = text if whole_tail else last_line
        if pattern.search(subject):
            found.append(name)
    return found


def classify_output(text: str) -> Tier1Verdict:
    """
    Classify the tail of a command's output.

    Progress markers in the last few lines win over prompt markers.

    Args:
        text: Recent output; only the last ``TAIL_CHARS`` characters count.

    Returns:
        Tier1Verdict.
    """
    tail = (text or "")[-TAIL_CHARS:]
    if not tail.strip():
        return Tier1Verdict.INCONCLUSIVE
    if progress_markers("\n".join(_last_lines(tail, PROGRESS_LINES))):
        return Tier1Verdict.LONG_RUNNING
    if prompt_markers(tail):
        return Tier1Verdict.INTERACTIVE
    return Tier1Verdict.INCONCLUSIVE


def is_active_stream(events: Iterable) -> bool:
    """
    Check whether the retained output events show ongoing progress.

    Args:
        events: OutputEvent-like objects with a ``content`` attribute.

    Returns:
        True if at least ``ACTIVE_EVENT_THRESHOLD`` events carry
        progress markers.
    """
    count = 0
    for event in events:
        if progress_markers(event.content):
            count += 1
            if count >= ACTIVE_EVENT_THRESHOLD:
                return True
    return False


def build_waiting_prompt(output: str, silence_ms: float) -> str:
    """Build the tier-2 question for the analysis sub-mind."""
    truncated = (output or "")[-TAIL_CHARS:]
    return f'''Terminal output (last {TAIL_CHARS} chars):
"""
{truncated}
"""

Time since last output: {round(silence_ms / 1000)} seconds

Is this command waiting for user input? Consider:
- Interactive prompts (questions, selections, confirmations)
- Active processing (logs, downloads, builds) means NOT waiting
- Common patterns: "?", "›", "(Y/n)", "Select:", "Choose:"

Answer only: YES or NO'''


class StuckPromptDetector:
    """Answers whether a silent process is stuck on an interactive prompt.

    Holds no state between calls; the only shared state is the rate
    limiter inside the ``QuickAnalyzer``.
    """

    MODES = ("tiered", "inference", "patterns")

    def __init__(
        self,
        analyzer: Optional[QuickAnalyzer] = None,
        mode: str = "tiered",
        max_output_tokens: int = 10,
    ):
        if mode not in self.MODES:
            raise ValueError(f"Unknown detector mode: {mode}")
        self.analyzer = analyzer
        self.mode = mode if analyzer is not None else "patterns"
        self.max_output_tokens = max_output_tokens
        self.logger = get_logger(f"{__name__}.StuckPromptDetector")

    def evaluate(self, output: str, silence_ms: float, events: Iterable = ()) -> DetectorVerdict:
        """
        Produce a verdict with its supporting evidence.

        Args:
            output: Recent output text (the last ~500 characters are used).
            silence_ms: Milliseconds since the last output.
            events: Retained OutputEvents for the activity heuristic.

        Returns:
            DetectorVerdict.
        """
        tier1 = classify_output(output)
        if tier1 is Tier1Verdict.INCONCLUSIVE and is_active_stream(events):
            tier1 = Tier1Verdict.LONG_RUNNING

        if self.mode != "inference" and tier1 is Tier1Verdict.LONG_RUNNING:
            return DetectorVerdict(False, tier1, reason="progress output")

        if self.mode == "patterns":
            return DetectorVerdict(tier1 is Tier1Verdict.INTERACTIVE, tier1, reason="patterns only")

        result = self.analyzer.analyze(
            build_waiting_prompt(output, silence_ms),
            max_output_tokens=self.max_output_tokens,
        )
        if result.fallback:
            return DetectorVerdict(
                tier1 is Tier1Verdict.INTERACTIVE, tier1, reason="rate limited, tier-1 fallback"
            )
        if not result.success:
            self.logger.debug(f"Tier-2 analysis unavailable: {result.error}")
            return DetectorVerdict(False, tier1, used_inference=True, reason="analysis unavailable")

        blocked = "YES" in result.response.upper()
        return DetectorVerdict(blocked, tier1, used_inference=True, reason=f"analysis: {result.response!r}")

    def is_waiting_for_input(self, output: str, silence_ms: float, events: Iterable = ()) -> bool:
        """
        Decide whether the process is blocked on input.

        Args:
            output: Recent output text.
            silence_ms: Milliseconds since the last output.
            events: Retained OutputEvents.

        Returns:
            True if the process should be treated as blocked.
        """
        verdict = self.evaluate(output, silence_ms, events)
        self.logger.debug(
            f"Verdict blocked={verdict.blocked} tier1={verdict.tier1.value} ({verdict.reason})"
        )
        return verdict.blocked
