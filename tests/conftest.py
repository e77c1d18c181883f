from __future__ import annotations

from typing import Any

import pytest
from langchain_core.messages import AIMessage, HumanMessage

from toolforge.core.config import Settings, get_settings
from toolforge.tools.capabilities import FunctionTool, ToolInvocation


def make_call(name: str, call_id: str | None, **args: Any) -> dict[str, Any]:
    return {"name": name, "args": args, "id": call_id, "type": "tool_call"}


def make_turn(*calls: dict[str, Any], prompt: str = "hello") -> list[Any]:
    return [HumanMessage(content=prompt), AIMessage(content="", tool_calls=list(calls))]


class RecordingTool(FunctionTool):
    """FunctionTool that remembers every invocation it received."""

    def __init__(self, name: str, result: Any = "ok") -> None:
        self.invocations: list[ToolInvocation] = []
        self._result = result
        super().__init__(name=name, handler=self._handle)

    async def _handle(self, invocation: ToolInvocation, config: Any) -> Any:
        self.invocations.append(invocation)
        if callable(self._result):
            return self._result(invocation)
        return self._result


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def echo_tool() -> RecordingTool:
    return RecordingTool("echo", result=lambda invocation: {"echo": invocation.args})
