"""File operations for the I/O sub-mind, limited to the working directory."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import click

from flash_assistant.logger import get_logger
from flash_assistant.protocol import FileToolCall
from flash_assistant.sanitizer import InputSanitizer


@dataclass
class FileToolResult:
    tool: str
    filename: str
    success: bool
    content: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class FileTools:
    """Reads and writes plain filenames inside one base directory."""

    def __init__(self, base_dir: Optional[Path] = None, echo: bool = True):
        self.base_dir = Path(base_dir) if base_dir else Path.cwd()
        self.echo = echo
        self.sanitizer = InputSanitizer()
        self.logger = get_logger(f"{__name__}.FileTools")

    def read_file(self, filename: str) -> FileToolResult:
        if not self.sanitizer.is_safe_filename(filename):
            return FileToolResult(
                "read", filename, False,
                error="Invalid filename. Only files in the current directory can be accessed.",
            )
        path = self.base_dir / filename
        try:
            return FileToolResult("read", filename, True, content=path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return FileToolResult(
                "read", filename, False,
                error=f"File '{filename}' not found in current directory.",
            )
        except (OSError, UnicodeDecodeError) as e:
            self.logger.debug(f"Read of {path} failed: {e}")
            return FileToolResult("read", filename, False, error=f"Error reading file: {e}")

    def write_file(self, filename: str, content: str) -> FileToolResult:
        if not self.sanitizer.is_safe_filename(filename):
            return FileToolResult(
                "write", filename, False,
                error="Invalid filename. Only files in the current directory can be created.",
            )
        path = self.base_dir / filename
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            self.logger.debug(f"Write of {path} failed: {e}")
            return FileToolResult("write", filename, False, error=f"Error writing file: {e}")
        return FileToolResult(
            "write", filename, True, message=f"File '{filename}' written successfully."
        )

    def list_files(self) -> List[str]:
        """Visible entries of the base directory, sorted."""
        try:
            return sorted(p.name for p in self.base_dir.iterdir() if not p.name.startswith("."))
        except OSError as e:
            self.logger.debug(f"Listing {self.base_dir} failed: {e}")
            return []

    def execute(self, calls: List[FileToolCall]) -> List[FileToolResult]:
        """
        Run parsed tool calls in order.

        Args:
            calls: Calls from ``protocol.parse_tool_calls``.

        Returns:
            One result per call.
        """
        results = []
        for call in calls:
            if self.echo:
                click.echo(click.style(f"\nExecuting {call.tool} tool...", fg="cyan"))
            if call.tool == "read":
                result = self.read_file(call.filename)
            else:
                result = self.write_file(call.filename, call.content or "")

            if self.echo:
                if result.success:
                    done = f"Read file: {call.filename}" if call.tool == "read" else result.message
                    click.echo(click.style(f"✅ {done}", fg="green"))
                else:
                    click.echo(click.style(f"❌ {result.error}", fg="red"))
            results.append(result)
        return results
