"""
Tool classification: single source of truth for which tools are gated.

Read tools are always allowed (no phase check needed). Every other tool,
classified write or not classified at all, requires READY phase or a pending
override. Unknown tools are gated until someone registers them as read-only,
so a newly introduced tool can never slip through ungated.

Extension is a data change:

    registry = ToolRegistry.default()
    registry.register("mcp__docs__search", ToolClass.READ)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum


class ToolClass(StrEnum):
    READ = "read"
    WRITE = "write"
    UNKNOWN = "unknown"


# Tools that only read - always allowed
READ_TOOLS: frozenset[str] = frozenset(
    {
        "Glob",
        "Grep",
        "Read",
        "LS",
        "WebFetch",
        "WebSearch",
        "TaskOutput",
    }
)

# Tools that modify state - require READY phase
WRITE_TOOLS: frozenset[str] = frozenset(
    {
        "Edit",
        "Write",
        "MultiEdit",
        "Bash",
        "Task",
        "NotebookEdit",
        "KillShell",
        "TodoWrite",
    }
)


class ToolRegistry:
    """Mapping from tool name to ToolClass with a fail-closed default."""

    def __init__(self, entries: Mapping[str, ToolClass] | None = None):
        self._entries: dict[str, ToolClass] = dict(entries or {})

    @classmethod
    def default(cls) -> ToolRegistry:
        registry = cls()
        registry.register_many(READ_TOOLS, ToolClass.READ)
        registry.register_many(WRITE_TOOLS, ToolClass.WRITE)
        return registry

    def register(self, tool_name: str, tool_class: ToolClass) -> None:
        if tool_class == ToolClass.UNKNOWN:
            raise ValueError("UNKNOWN is the default for unregistered tools and cannot be registered")
        self._entries[tool_name] = tool_class

    def register_many(self, tool_names: Iterable[str], tool_class: ToolClass) -> None:
        for name in tool_names:
            self.register(name, tool_class)

    def classify(self, tool_name: str) -> ToolClass:
        """Classify a tool by name. Total: unregistered names are UNKNOWN."""
        return self._entries.get(tool_name, ToolClass.UNKNOWN)

    def requires_gating(self, tool_name: str) -> bool:
        """True unless the tool is registered read-only."""
        return self.classify(tool_name) != ToolClass.READ

    def is_read_only(self, tool_name: str) -> bool:
        return self.classify(tool_name) == ToolClass.READ


DEFAULT_REGISTRY = ToolRegistry.default()


def classify(tool_name: str) -> ToolClass:
    return DEFAULT_REGISTRY.classify(tool_name)


def requires_gating(tool_name: str) -> bool:
    return DEFAULT_REGISTRY.requires_gating(tool_name)


def is_read_only(tool_name: str) -> bool:
    return DEFAULT_REGISTRY.is_read_only(tool_name)
