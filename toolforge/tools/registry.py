from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Tuple

from ..core.config import ToolNodeSettings, get_settings
from ..core.logging import get_logger
from ..schemas.tools import ToolDefinition
from .capabilities import ToolCapability, as_capability
from .exceptions import ToolResolutionError

__all__ = ["ProgrammaticView", "RuntimeToolset", "ToolRegistry"]

logger = get_logger(name=__name__)


@dataclass(slots=True)
class ProgrammaticView:
    """Filtered slice of the registry handed to programmatic tool calling."""

    tool_map: dict[str, ToolCapability] = field(default_factory=dict)
    tool_defs: list[ToolDefinition] = field(default_factory=list)


@dataclass(slots=True)
class RuntimeToolset:
    """Replacement tool set returned by a dynamic loader for the upcoming batch."""

    tools: list[Any] = field(default_factory=list)
    tool_map: Mapping[str, Any] | None = None


def _coerce_definition(name: str, value: ToolDefinition | Mapping[str, Any]) -> ToolDefinition:
    if isinstance(value, ToolDefinition):
        return value
    payload = dict(value)
    payload.setdefault("name", name)
    return ToolDefinition.model_validate(payload)


class ToolRegistry:
    """Per-run tool map plus declarative definitions and the derived programmatic view.

    The tool map is replaceable only as a whole unit. Replacing it, or the
    definitions, drops the cached filtered views; nothing else is cached.
    """

    def __init__(
        self,
        tools: Iterable[Any] | None = None,
        *,
        tool_map: Mapping[str, Any] | None = None,
        definitions: Mapping[str, ToolDefinition | Mapping[str, Any]] | Iterable[ToolDefinition] | None = None,
        settings: ToolNodeSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings().tool_node
        self._tools: dict[str, ToolCapability] = {}
        self._definitions: dict[str, ToolDefinition] = {}
        self._views: dict[str, ProgrammaticView] = {}
        self._load(tools or (), tool_map)
        if definitions is not None:
            self.set_definitions(definitions)

    def register(self, tool: Any, *, name: str | None = None) -> ToolCapability:
        capability = as_capability(tool, name=name)
        key = name or capability.name
        self._tools[key] = capability
        self._views.clear()
        logger.debug("tool_registered", tool=key)
        return capability

    def unregister(self, name: str) -> bool:
        if name not in self._tools:
            return False
        del self._tools[name]
        self._views.clear()
        logger.debug("tool_unregistered", tool=name)
        return True

    def replace(self, tools: Iterable[Any] | None = None, *, tool_map: Mapping[str, Any] | None = None) -> None:
        """Swap in a new tool set (last writer wins) and invalidate the filtered views."""
        self._tools = {}
        self._load(tools or (), tool_map)
        self._views.clear()
        logger.debug("tool_registry_replaced", tools=sorted(self._tools))

    def set_definitions(
        self,
        definitions: Mapping[str, ToolDefinition | Mapping[str, Any]] | Iterable[ToolDefinition],
    ) -> None:
        if isinstance(definitions, Mapping):
            items = [_coerce_definition(name, value) for name, value in definitions.items()]
        else:
            items = [_coerce_definition(item.name, item) for item in definitions]
        self._definitions = {item.name: item for item in items}
        self._views.clear()

    def get(self, name: str) -> ToolCapability | None:
        return self._tools.get(name)

    def resolve(self, name: str) -> ToolCapability | None:
        return self.get(name)

    def get_required(self, name: str) -> ToolCapability:
        capability = self.get(name)
        if capability is None:
            raise ToolResolutionError(name)
        return capability

    def has(self, name: str) -> bool:
        return name in self._tools

    def list(self) -> list[str]:
        return sorted(self._tools)

    def items(self) -> Iterator[Tuple[str, ToolCapability]]:
        yield from self._tools.items()

    @property
    def tool_map(self) -> dict[str, ToolCapability]:
        return dict(self._tools)

    @property
    def definitions(self) -> dict[str, ToolDefinition]:
        return dict(self._definitions)

    def filtered_view(self, caller: str) -> ProgrammaticView:
        """Return tools whose declared callers include ``caller``.

        A single pass over the definitions builds both the capability map and
        the ordered definition list; the result is cached per caller tag.
        """
        cached = self._views.get(caller)
        if cached is not None:
            return cached

        view = ProgrammaticView()
        default_callers = self._settings.default_allowed_callers
        for name, definition in self._definitions.items():
            if not definition.allows(caller, default=default_callers):
                continue
            view.tool_defs.append(definition)
            capability = self._tools.get(name)
            if capability is not None:
                view.tool_map[name] = capability

        self._views[caller] = view
        return view

    def programmatic_tools(self) -> ProgrammaticView:
        return self.filtered_view(self._settings.programmatic_caller)

    def _load(self, tools: Iterable[Any], tool_map: Mapping[str, Any] | None) -> None:
        if tool_map is not None:
            for name, tool in tool_map.items():
                self._tools[name] = as_capability(tool, name=name)
            return
        for tool in tools:
            capability = as_capability(tool)
            self._tools[capability.name] = capability

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
