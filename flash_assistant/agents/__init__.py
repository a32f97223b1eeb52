"""Specialist sub-minds and the main agent that routes between them."""

from flash_assistant.agents.registry import SubMindDescriptor, SubMindRegistry
from flash_assistant.agents.subminds import build_default_registry

__all__ = [
    "SubMindDescriptor",
    "SubMindRegistry",
    "build_default_registry",
]
