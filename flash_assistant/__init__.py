"""Flash - LLM-powered command-line assistant.

Forwards requests to Google Gemini or a local Ollama server, routes them
to specialist sub-minds and runs the shell commands the model asks for
under a supervisor that detects commands stuck on interactive prompts.
"""

__version__ = "0.3.1"

__all__ = [
    "__version__",
]
