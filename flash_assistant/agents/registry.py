"""Registry of specialist sub-minds."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from flash_assistant.exceptions import SubMindError
from flash_assistant.logger import get_logger


@dataclass(frozen=True)
class SubMindDescriptor:
    """A named prompt template representing a specialist role."""

    id: str
    name: str
    system_prompt: str
    description: str = ""
    tool_names: FrozenSet[str] = field(default_factory=frozenset)
    examples: Tuple[str, ...] = ()


class SubMindRegistry:
    """Holds sub-minds keyed by id; each id may be registered once."""

    def __init__(self):
        self._sub_minds: Dict[str, SubMindDescriptor] = {}
        self.logger = get_logger(f"{__name__}.SubMindRegistry")

    def register(
        self,
        id: str,
        name: str,
        system_prompt: str,
        description: str = "",
        tool_names: Iterable[str] = (),
        examples: Iterable[str] = (),
    ) -> SubMindDescriptor:
        """
        Register a sub-mind.

        Args:
            id: Identifier the main agent uses to delegate.
            name: Display name.
            system_prompt: Prompt prepended to every request.
            description: One-line summary shown to the main agent.
            tool_names: Marker tools the sub-mind may use.
            examples: Sample requests, in display order.

        Returns:
            The stored descriptor.

        Raises:
            SubMindError: If a required field is empty or the id is taken.
        """
        if not id or not name or not system_prompt:
            raise SubMindError("Sub-mind must have id, name, and system_prompt")
        if id in self._sub_minds:
            raise SubMindError(f"Sub-mind '{id}' is already registered")

        descriptor = SubMindDescriptor(
            id=id,
            name=name,
            system_prompt=system_prompt,
            description=description,
            tool_names=frozenset(tool_names),
            examples=tuple(examples),
        )
        self._sub_minds[id] = descriptor
        self.logger.debug(f"Registered sub-mind {id} ({name})")
        return descriptor

    def get(self, id: str) -> Optional[SubMindDescriptor]:
        return self._sub_minds.get(id)

    def all(self) -> List[SubMindDescriptor]:
        """All sub-minds in registration order."""
        return list(self._sub_minds.values())

    def __contains__(self, id: str) -> bool:
        return id in self._sub_minds

    def __len__(self) -> int:
        return len(self._sub_minds)

    def format_for_prompt(self) -> str:
        """
        Describe the registered sub-minds for the main agent's prompt.

        Returns:
            Multi-line listing, or an empty string when nothing is registered.
        """
        if not self._sub_minds:
            return ""

        lines = ["", "Available Sub-minds:"]
        for sub_mind in self._sub_minds.values():
            lines.append("")
            lines.append(f"- {sub_mind.name} (ID: {sub_mind.id})")
            if sub_mind.description:
                lines.append(f"  Description: {sub_mind.description}")
            if sub_mind.examples:
                lines.append("  Examples: " + ", ".join(sub_mind.examples))
        return "\n".join(lines)
