"""Text markers exchanged with the model.

Every marker is line oriented: a sentinel start line, ``KEY: value``
lines, and (for blocks) a sentinel end line.

Command block::

    EXECUTE_COMMAND:
    COMMAND: npm test
    WORKING_DIR: ./app
    CHECK_FIRST: test -f package.json
    DESTRUCTIVE: yes
    END_EXECUTE

Sub-mind delegation (request runs to the next blank line)::

    EXECUTE_SUBMIND: cli
    REQUEST: run the tests

File tools::

    READ_FILE: notes.txt

    WRITE_FILE: notes.txt
    CONTENT:
    ...
    END_CONTENT
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from flash_assistant.executor import CommandSpec
from flash_assistant.logger import get_logger
from flash_assistant.sanitizer import InputSanitizer

COMMAND_START = "EXECUTE_COMMAND:"
COMMAND_END = "END_EXECUTE"
SUBMIND_START = "EXECUTE_SUBMIND:"
REQUEST_KEY = "REQUEST:"
READ_FILE = "READ_FILE:"
WRITE_FILE = "WRITE_FILE:"
CONTENT_START = "CONTENT:"
CONTENT_END = "END_CONTENT"
CLARIFICATION = "CLARIFICATION_NEEDED:"

_TRUTHY = ("yes", "true", "1", "y")

_sanitizer = InputSanitizer()

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubMindRequest:
    sub_mind_id: str
    request: str


@dataclass(frozen=True)
class FileToolCall:
    tool: str  # "read" or "write"
    filename: str
    content: Optional[str] = None


def _split_key(line: str) -> Tuple[str, str]:
    key, _, value = line.partition(":")
    return key.strip().upper(), value.strip()


def _command_block_spans(lines: List[str]) -> List[Tuple[int, int]]:
    """(start, end) line indexes of complete command blocks, end inclusive."""
    spans = []
    start = None
    for index, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith(COMMAND_START):
            start = index
        elif stripped == COMMAND_END and start is not None:
            spans.append((start, index))
            start = None
    return spans


def has_command_execution(text: str) -> bool:
    return COMMAND_START in text


def parse_command_blocks(text: str) -> List[CommandSpec]:
    """
    Parse every complete command block in a response.

    Args:
        text: Model response.

    Returns:
        CommandSpecs in order; blocks without a COMMAND line or an
        END_EXECUTE sentinel are skipped.
    """
    lines = text.splitlines()
    specs = []
    for start, end in _command_block_spans(lines):
        fields = {}
        for line in lines[start + 1:end]:
            if ":" not in line:
                continue
            key, value = _split_key(line)
            if key and key not in fields:
                fields[key] = value
        try:
            command = _sanitizer.sanitize_command(fields.get("COMMAND", ""))
        except ValueError as e:
            logger.debug(f"Skipping command block: {e}")
            continue
        specs.append(CommandSpec.create(
            command=command,
            working_directory=fields.get("WORKING_DIR"),
            prerequisite_check=fields.get("CHECK_FIRST"),
            destructive=fields.get("DESTRUCTIVE", "").lower() in _TRUTHY,
        ))
    return specs


def parse_command_execution(text: str) -> Optional[CommandSpec]:
    """Parse the first complete command block, if any."""
    specs = parse_command_blocks(text)
    return specs[0] if specs else None


def remove_command_blocks(text: str) -> str:
    """Drop complete command blocks from a response for display."""
    lines = text.splitlines()
    drop = set()
    for start, end in _command_block_spans(lines):
        drop.update(range(start, end + 1))
    return "\n".join(line for i, line in enumerate(lines) if i not in drop).strip()


def has_sub_mind_execution(text: str) -> bool:
    return SUBMIND_START in text


def _sub_mind_span(lines: List[str]) -> Optional[Tuple[int, int, SubMindRequest]]:
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped.startswith(SUBMIND_START):
            continue
        sub_mind_id = stripped[len(SUBMIND_START):].strip()
        if not sub_mind_id or index + 1 >= len(lines):
            continue
        request_line = lines[index + 1].strip()
        if not request_line.startswith(REQUEST_KEY):
            continue
        request_lines = [request_line[len(REQUEST_KEY):].strip()]
        end = index + 1
        for follow in lines[index + 2:]:
            if not follow.strip():
                break
            request_lines.append(follow.strip())
            end += 1
        request = "\n".join(part for part in request_lines if part)
        if request:
            return index, end, SubMindRequest(sub_mind_id.split()[0], request)
    return None


def parse_sub_mind_execution(text: str) -> Optional[SubMindRequest]:
    """
    Parse a delegation to a sub-mind.

    Args:
        text: Main agent response.

    Returns:
        SubMindRequest, or None if there is no complete delegation.
    """
    found = _sub_mind_span(text.splitlines())
    return found[2] if found else None


def remove_sub_mind_commands(text: str) -> str:
    lines = text.splitlines()
    found = _sub_mind_span(lines)
    while found:
        start, end, _ = found
        del lines[start:end + 1]
        found = _sub_mind_span(lines)
    return "\n".join(lines).strip()


def has_tool_calls(text: str) -> bool:
    return READ_FILE in text or WRITE_FILE in text


def _tool_spans(lines: List[str]) -> List[Tuple[int, int, FileToolCall]]:
    spans = []
    index = 0
    while index < len(lines):
        stripped = lines[index].strip()
        if stripped.startswith(READ_FILE):
            filename = stripped[len(READ_FILE):].strip()
            if filename:
                spans.append((index, index, FileToolCall("read", filename)))
        elif stripped.startswith(WRITE_FILE):
            filename = stripped[len(WRITE_FILE):].strip()
            if filename and index + 1 < len(lines) and lines[index + 1].strip() == CONTENT_START:
                end = index + 2
                while end < len(lines) and lines[end].strip() != CONTENT_END:
                    end += 1
                content = "\n".join(lines[index + 2:end]).strip()
                spans.append((index, min(end, len(lines) - 1), FileToolCall("write", filename, content)))
                index = end
        index += 1
    return spans


def parse_tool_calls(text: str) -> List[FileToolCall]:
    """
    Parse READ_FILE and WRITE_FILE calls.

    A WRITE_FILE without END_CONTENT takes the rest of the response.

    Args:
        text: Model response.

    Returns:
        Calls in the order they appear.
    """
    return [call for _, _, call in _tool_spans(text.splitlines())]


def remove_tool_calls(text: str) -> str:
    lines = text.splitlines()
    drop = set()
    for start, end, _ in _tool_spans(lines):
        drop.update(range(start, end + 1))
    kept = [line for i, line in enumerate(lines) if i not in drop and line.strip() != CONTENT_END]
    return "\n".join(kept).strip()


def needs_clarification(text: str) -> bool:
    return text.lstrip().startswith(CLARIFICATION)


def extract_clarification_question(text: str) -> str:
    if needs_clarification(text):
        return text.lstrip()[len(CLARIFICATION):].strip()
    return text
