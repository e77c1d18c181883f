from __future__ import annotations

from typing import Any

import pytest
from langchain_core.tools import tool

from conftest import RecordingTool
from toolforge.schemas.tools import ToolDefinition
from toolforge.tools.capabilities import FunctionTool, LangChainTool, as_capability
from toolforge.tools.exceptions import ToolResolutionError
from toolforge.tools.registry import ToolRegistry


@tool
def weather(city: str) -> str:
    """Return the weather for a city."""
    return f"sunny in {city}"


def test_register_resolve_and_unregister() -> None:
    registry = ToolRegistry()
    capability = registry.register(RecordingTool("search"))

    assert registry.get("search") is capability
    assert registry.resolve("search") is capability
    assert registry.has("search") and "search" in registry
    assert registry.list() == ["search"]
    assert len(registry) == 1

    assert registry.unregister("search") is True
    assert registry.unregister("search") is False
    assert registry.get("search") is None
    with pytest.raises(ToolResolutionError, match='Tool "search" not found.'):
        registry.get_required("search")


def test_tool_map_keys_override_tool_names() -> None:
    registry = ToolRegistry(tool_map={"alias": RecordingTool("original")})

    assert registry.list() == ["alias"]
    assert dict(registry.items())["alias"].name == "original"


def test_as_capability_variants() -> None:
    def handler(invocation: Any, config: Any) -> str:
        return "ok"

    assert isinstance(as_capability(weather), LangChainTool)
    assert isinstance(as_capability(handler), FunctionTool)
    assert as_capability(handler, name="custom").name == "custom"
    with pytest.raises(TypeError):
        as_capability(42)


def test_filtered_view_single_pass_and_cached() -> None:
    registry = ToolRegistry(
        [RecordingTool("a"), RecordingTool("b"), RecordingTool("c")],
        definitions=[
            ToolDefinition(name="a", allowed_callers=["code_execution"]),
            ToolDefinition(name="b"),
            ToolDefinition(name="c", allowed_callers=["direct", "code_execution"]),
            ToolDefinition(name="ghost", allowed_callers=["code_execution"]),
        ],
    )

    view = registry.programmatic_tools()

    assert list(view.tool_map) == ["a", "c"]
    assert [definition.name for definition in view.tool_defs] == ["a", "c", "ghost"]
    assert registry.programmatic_tools() is view
    assert [definition.name for definition in registry.filtered_view("direct").tool_defs] == ["b", "c"]


def test_replace_invalidates_cached_view() -> None:
    registry = ToolRegistry(
        [RecordingTool("a")],
        definitions={"a": {"allowed_callers": ["code_execution"]}, "b": {"allowed_callers": ["code_execution"]}},
    )
    before = registry.programmatic_tools()

    registry.replace([RecordingTool("b")])
    after = registry.programmatic_tools()

    assert after is not before
    assert list(before.tool_map) == ["a"]
    assert list(after.tool_map) == ["b"]
    assert registry.list() == ["b"]


def test_definitions_default_to_direct_callers() -> None:
    definition = ToolDefinition(name="x")

    assert definition.effective_callers() == ("direct",)
    assert definition.allows("direct") is True
    assert definition.allows("code_execution") is False
