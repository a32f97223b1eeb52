"""System prompt builder for flash-assistant."""

import os
import platform
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from flash_assistant import __version__
from flash_assistant.agents.registry import SubMindRegistry
from flash_assistant.logger import get_logger


def _distribution_name(os_release: Path = Path("/etc/os-release")) -> Optional[str]:
    """Read PRETTY_NAME from os-release on Linux."""
    try:
        with open(os_release, "r") as f:
            for line in f:
                line = line.strip()
                if line.startswith("PRETTY_NAME="):
                    return line.split("=", 1)[1].strip().strip('"')
    except OSError:
        return None
    return None


class PromptBuilder:
    """Builds the hidden system prompt and the main agent's routing prompt."""

    def __init__(self, provider: str, model: str, cwd: Optional[Path] = None):
        """
        Initialize prompt builder.

        Args:
            provider: Active provider name.
            model: Active model name.
            cwd: Working directory reported to the model.
        """
        self.provider = provider
        self.model = model
        self.cwd = cwd or Path.cwd()
        self.logger = get_logger(f"{__name__}.PromptBuilder")

    def system_context(self) -> Dict[str, str]:
        """Collect the facts about this machine shown to the model."""
        now = datetime.now().astimezone()
        system = platform.system()
        context = {
            "now": now.strftime("%Y-%m-%d %H:%M:%S"),
            "iso": now.isoformat(timespec="seconds"),
            "tz": now.tzname() or "unknown",
            "os": f"{system} {sys.platform} {platform.release()} {platform.machine()}",
            "python": platform.python_version(),
            "shell": os.environ.get("SHELL") or os.environ.get("ComSpec") or "unknown",
            "terminal": os.environ.get("TERM", "unknown"),
            "cwd": str(self.cwd),
        }
        if system == "Linux":
            distribution = _distribution_name()
            if distribution:
                context["os"] += f" ({distribution})"
        return context

    def build_system_prompt(self) -> str:
        """
        Build the hidden system prompt.

        Returns:
            Prompt text describing the machine, clarification handling and
            the file tools.
        """
        ctx = self.system_context()
        posix = sys.platform != "win32"
        lines = [
            "System Context (hidden):",
            f"- Now: {ctx['now']} ({ctx['iso']}) TZ={ctx['tz']}",
            f"- OS: {ctx['os']}",
            f"- Python: {ctx['python']}",
            f"- Shell: {ctx['shell']}",
            f"- Terminal: {ctx['terminal']}",
            f"- CWD: {ctx['cwd']}",
            f"- Flash version: {__version__}",
            f"- Flash provider: {self.provider}",
            f"- Flash model: {self.model}",
            "",
            "Instructions:",
            f"- Provide instructions tailored for {sys.platform}.",
            "- Prefer POSIX shell commands; avoid Windows-specific commands unless asked."
            if posix else
            "- Prefer PowerShell or cmd commands; avoid POSIX-only commands unless asked.",
            "- Keep answers concise and actionable for terminal usage.",
            "",
            "Clarification handling:",
            "- If the user request is ambiguous or unclear, ask for clarification.",
            '- When asking for clarification, start your response with "CLARIFICATION_NEEDED:"',
            "- Offer 2-3 numbered options when possible and keep the question brief.",
            "",
            "File Tools:",
            "You can read and write files in the current directory only. Use these exact formats:",
            "",
            "To read a file:",
            "READ_FILE: filename.txt",
            "",
            "To write a file:",
            "WRITE_FILE: filename.txt",
            "CONTENT:",
            "Your file content goes here",
            "END_CONTENT",
            "",
            "Tool usage guidelines:",
            '- Only filenames are allowed, no paths (e.g., "file.txt" not "/path/to/file.txt").',
            "- Use the tools whenever the user asks to read, write, create, or save files.",
            "- Explain what you are doing alongside the tool call.",
        ]
        return "\n".join(lines)

    def build_main_agent_prompt(self, registry: SubMindRegistry) -> str:
        """
        Build the routing prompt for the main agent.

        Args:
            registry: Sub-minds the main agent may delegate to.

        Returns:
            System prompt plus delegation instructions.
        """
        return f"""{self.build_system_prompt()}

You are the Main Agent orchestrator. Your role is to:
1. Understand the user's request
2. Decide if you can answer directly or need to delegate to a sub-mind
3. If the request is ambiguous, ask for clarification
4. If a specialized task is needed, delegate to the appropriate sub-mind
{registry.format_for_prompt()}

Decision Guidelines:
- Answer directly for: general questions, explanations, simple calculations, advice
- Delegate to sub-minds for: specialized tasks that match their capabilities
- Ask for clarification when: the request is vague or could be interpreted multiple ways

To delegate to a sub-mind, use:
EXECUTE_SUBMIND: submind_id
REQUEST: The original user request to pass to the sub-mind

Example:
EXECUTE_SUBMIND: io
REQUEST: Save the list of planets to a file named planets.txt

Only delegate when you need a sub-mind's capabilities, and always pass the complete user request."""
