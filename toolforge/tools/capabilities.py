"""Invokable tool capabilities.

Every tool the executor can run is one of a closed set of variants behind the
``ToolCapability`` protocol:

- ``LangChainTool`` wraps a ``langchain_core`` ``BaseTool``. The tool receives
  the canonical tool-call dict, so it answers with a ``ToolMessage`` natively;
  step, turn and injected context are exposed under
  ``config["configurable"]["tool_call"]``.
- ``FunctionTool`` wraps a plain sync or async callable taking
  ``(invocation, config)``.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Protocol, Union, runtime_checkable

from langchain_core.messages import ToolCall
from langchain_core.runnables import RunnableConfig
from langchain_core.runnables.config import ensure_config, patch_config
from langchain_core.tools import BaseTool

__all__ = [
    "ToolInvocation",
    "ToolCapability",
    "FunctionTool",
    "LangChainTool",
    "as_capability",
    "tool_call_context",
]

TOOL_CALL_CONFIG_KEY = "tool_call"


@dataclass(slots=True)
class ToolInvocation:
    """Invocation context built by the executor for one canonical call."""

    call: ToolCall
    args: dict[str, Any]
    step_id: str | None = None
    turn: int = 0
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.call.get("id") or ""

    @property
    def name(self) -> str:
        return self.call["name"]

    def as_tool_call(self) -> ToolCall:
        return ToolCall(name=self.name, args=dict(self.args), id=self.id, type="tool_call")

    def metadata(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name, "step_id": self.step_id, "turn": self.turn}
        payload.update(self.extras)
        return payload


@runtime_checkable
class ToolCapability(Protocol):
    @property
    def name(self) -> str:
        ...

    async def ainvoke(self, invocation: ToolInvocation, config: RunnableConfig | None = None) -> Any:
        ...


ToolHandler = Callable[[ToolInvocation, RunnableConfig], Union[Any, Awaitable[Any]]]


@dataclass
class FunctionTool:
    """Capability backed by a plain function.

    Example:
        async def lookup(invocation, config):
            return {"query": invocation.args.get("query")}

        tool = FunctionTool(name="lookup", handler=lookup)
    """

    name: str
    handler: ToolHandler
    description: str = ""

    async def ainvoke(self, invocation: ToolInvocation, config: RunnableConfig | None = None) -> Any:
        result = self.handler(invocation, ensure_config(config))
        if inspect.isawaitable(result):
            result = await result
        return result


class LangChainTool:
    """Capability adapter for ``langchain_core`` tools."""

    def __init__(self, tool: BaseTool) -> None:
        self.tool = tool

    @property
    def name(self) -> str:
        return self.tool.name

    @property
    def description(self) -> str:
        return self.tool.description

    async def ainvoke(self, invocation: ToolInvocation, config: RunnableConfig | None = None) -> Any:
        base = ensure_config(config)
        configurable = dict(base.get("configurable") or {})
        configurable[TOOL_CALL_CONFIG_KEY] = invocation.metadata()
        return await self.tool.ainvoke(invocation.as_tool_call(), patch_config(base, configurable=configurable))

    def __repr__(self) -> str:
        return f"LangChainTool({self.tool.name!r})"


def as_capability(tool: Any, *, name: str | None = None) -> ToolCapability:
    """Coerce a tool-like object into a capability."""
    if isinstance(tool, BaseTool):
        return LangChainTool(tool)
    if isinstance(tool, (FunctionTool, LangChainTool)):
        return tool
    if isinstance(tool, ToolCapability):
        return tool
    if callable(tool):
        resolved = name or getattr(tool, "__name__", None)
        if not resolved:
            raise TypeError(f"Cannot determine a tool name for {tool!r}")
        return FunctionTool(name=resolved, handler=tool)
    raise TypeError(f"Unsupported tool type: {type(tool).__name__}")


def tool_call_context(config: Mapping[str, Any] | None) -> dict[str, Any]:
    """Return the step/turn/injected context a LangChainTool exposed in config."""
    if not config:
        return {}
    configurable = config.get("configurable") or {}
    context = configurable.get(TOOL_CALL_CONFIG_KEY)
    return dict(context) if isinstance(context, Mapping) else {}
