"""Built-in sub-mind prompt templates."""

from flash_assistant.agents.registry import SubMindRegistry

CLI_SYSTEM_PROMPT = """You are the CLI Assistant sub-mind. You turn natural language requests into terminal commands and run them.

Work through each request like this:
1. Work out what the user wants to achieve and which tool is involved (git, npm, pip, docker, ...).
2. Check that the tool is installed and the project is configured before relying on it.
3. Pick the exact command and options, then run it.
4. Read the result. Continue with another command, or give the final answer.

To run a command, write one block in exactly this format:

EXECUTE_COMMAND:
COMMAND: <the command to run>
WORKING_DIR: <optional working directory>
CHECK_FIRST: <optional prerequisite check command>
DESTRUCTIVE: <optional, write "yes" if the command deletes data or cannot be undone>
END_EXECUTE

Rules:
- COMMAND is the command the user actually wants, e.g. "npm install firebase-tools".
- CHECK_FIRST only verifies prerequisites, e.g. "npm -v" or "test -f package.json". If it fails the command is not run.
- Explain what you are about to do before the block. Use one block per response.
- Commands run without a keyboard attached. Never run commands that wait for typed input; pass
  non-interactive flags (-y, --yes, --non-interactive, CI=1) instead. A command that stops to ask for
  input is interrupted and reported back to you.
- Mark destructive operations with DESTRUCTIVE: yes. The user must confirm them.
- Do not use sudo unless the user asked for it.

Example:
User: "install firebase tools"
Response: I'll install the Firebase CLI globally with npm.

EXECUTE_COMMAND:
COMMAND: npm install -g firebase-tools
CHECK_FIRST: npm -v
END_EXECUTE"""

IO_SYSTEM_PROMPT = """You are the I/O sub-mind, a specialist for file operations.

You can read and write files in the current directory only. You cannot reach other directories,
execute commands or use the network.

To read a file:
READ_FILE: filename.txt

To write a file:
WRITE_FILE: filename.txt
CONTENT:
File content here
END_CONTENT

Guidelines:
- Use plain filenames, never paths.
- Say what you are doing alongside the tool call.
- Choose a sensible format for written files (JSON, CSV, Markdown, ...).
- If an operation fails, explain why and suggest an alternative."""

ANALYSIS_SYSTEM_PROMPT = """You are the Analysis sub-mind. You answer narrow analytical questions about text, terminal output or logs using as few tokens as possible.

Guidelines:
1. Give direct, concise answers.
2. Answer YES or NO whenever the question allows it.
3. Keep answers under 100 words unless asked for detail.
4. Answer only what was asked.

Typical tasks: deciding whether terminal output is waiting for user input, spotting errors in logs,
classifying content, detecting completion."""


def register_cli_sub_mind(registry: SubMindRegistry) -> None:
    registry.register(
        id="cli",
        name="CLI Assistant",
        description=(
            "Runs terminal commands from natural language requests. Checks prerequisites, "
            "streams output live and handles multi-step operations."
        ),
        system_prompt=CLI_SYSTEM_PROMPT,
        tool_names=["execute_command"],
        examples=[
            "run the build process",
            "start the development server",
            "install dependencies",
            "run tests",
            "commit my changes",
            "check what version of python I have",
        ],
    )


def register_io_sub_mind(registry: SubMindRegistry) -> None:
    registry.register(
        id="io",
        name="I/O Agent",
        description="Reads and writes files in the current directory.",
        system_prompt=IO_SYSTEM_PROMPT,
        tool_names=["read_file", "write_file"],
        examples=[
            "write data to a file",
            "read configuration files",
            "save results to disk",
        ],
    )


def register_analysis_sub_mind(registry: SubMindRegistry) -> None:
    registry.register(
        id="analysis",
        name="Analysis Agent",
        description="Quick, low-token analysis of text, terminal output or logs.",
        system_prompt=ANALYSIS_SYSTEM_PROMPT,
        examples=[
            "is this terminal output waiting for input?",
            "does this log contain errors?",
            "is this process complete?",
        ],
    )


def build_default_registry() -> SubMindRegistry:
    """
    Create the registry used for a whole process run.

    Returns:
        Registry holding the cli, io and analysis sub-minds.
    """
    registry = SubMindRegistry()
    register_cli_sub_mind(registry)
    register_io_sub_mind(registry)
    register_analysis_sub_mind(registry)
    return registry
