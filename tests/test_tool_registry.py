"""Tests for tool classification."""

import pytest

from superego.tool_registry import (
    READ_TOOLS,
    WRITE_TOOLS,
    ToolClass,
    ToolRegistry,
    classify,
    is_read_only,
    requires_gating,
)


@pytest.mark.parametrize("tool_name", sorted(READ_TOOLS))
def test_read_tools_are_not_gated(tool_name: str) -> None:
    assert classify(tool_name) == ToolClass.READ
    assert is_read_only(tool_name)
    assert not requires_gating(tool_name)


@pytest.mark.parametrize("tool_name", sorted(WRITE_TOOLS))
def test_write_tools_are_gated(tool_name: str) -> None:
    assert classify(tool_name) == ToolClass.WRITE
    assert requires_gating(tool_name)


@pytest.mark.parametrize("tool_name", ["", "mcp__github__create_issue", "read", "EDIT", "Read "])
def test_unregistered_names_fail_closed(tool_name: str) -> None:
    """Lookup is exact and case-sensitive; anything unseen is gated."""
    assert classify(tool_name) == ToolClass.UNKNOWN
    assert requires_gating(tool_name)


def test_registry_extension_is_data_only() -> None:
    registry = ToolRegistry.default()
    registry.register("mcp__docs__search", ToolClass.READ)

    assert registry.is_read_only("mcp__docs__search")
    # The shared default registry is untouched
    assert classify("mcp__docs__search") == ToolClass.UNKNOWN


def test_unknown_cannot_be_registered() -> None:
    with pytest.raises(ValueError):
        ToolRegistry().register("Anything", ToolClass.UNKNOWN)
