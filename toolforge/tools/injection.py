"""Context injection for tools that need a view of the registry itself."""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Mapping

from ..core.config import ToolNodeSettings, get_settings
from .registry import ToolRegistry

__all__ = ["InjectedContextKind", "ContextInjectors", "inject_programmatic_tools", "inject_tool_registry"]


class InjectedContextKind(str, Enum):
    PROGRAMMATIC = "programmatic"
    TOOL_SEARCH = "tool_search"


def inject_programmatic_tools(base: Mapping[str, Any], registry: ToolRegistry) -> dict[str, Any]:
    view = registry.programmatic_tools()
    return {**base, "tool_map": dict(view.tool_map), "tool_defs": list(view.tool_defs)}


def inject_tool_registry(base: Mapping[str, Any], registry: ToolRegistry) -> dict[str, Any]:
    return {**base, "tool_registry": registry.definitions}


Injector = Callable[[Mapping[str, Any], ToolRegistry], dict[str, Any]]

_INJECTORS: dict[InjectedContextKind, Injector] = {
    InjectedContextKind.PROGRAMMATIC: inject_programmatic_tools,
    InjectedContextKind.TOOL_SEARCH: inject_tool_registry,
}


class ContextInjectors:
    """Maps tool names to the kind of registry context they receive."""

    def __init__(self, kinds: Mapping[str, InjectedContextKind] | None = None) -> None:
        self._kinds = dict(kinds or {})

    @classmethod
    def from_settings(cls, settings: ToolNodeSettings | None = None) -> "ContextInjectors":
        resolved = settings or get_settings().tool_node
        return cls(
            {
                resolved.programmatic_tool_name: InjectedContextKind.PROGRAMMATIC,
                resolved.tool_search_name: InjectedContextKind.TOOL_SEARCH,
            }
        )

    def kind_for(self, name: str) -> InjectedContextKind | None:
        return self._kinds.get(name)

    def apply(self, name: str, base: Mapping[str, Any], registry: ToolRegistry) -> dict[str, Any]:
        kind = self.kind_for(name)
        if kind is None:
            return dict(base)
        return _INJECTORS[kind](base, registry)
