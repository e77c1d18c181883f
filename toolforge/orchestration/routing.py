from __future__ import annotations

from typing import Any, Collection, Sequence

from langchain_core.messages import AIMessage, BaseMessage
from langgraph.graph import END

from .chunks import has_tool_calls

__all__ = ["tools_condition"]


def _last_message(state: Sequence[BaseMessage] | Any) -> BaseMessage | None:
    if isinstance(state, Sequence):
        messages = state
    elif isinstance(state, dict):
        messages = state.get("messages") or []
    else:
        messages = getattr(state, "messages", None) or []
    return messages[-1] if messages else None


def _calls_invoked(message: AIMessage, invoked_tool_ids: Collection[str] | None) -> bool:
    if not invoked_tool_ids:
        return False
    calls = message.tool_calls or []
    return all(call.get("id") and call["id"] in invoked_tool_ids for call in calls)


def tools_condition(
    state: Sequence[BaseMessage] | Any,
    tool_node: str = "tools",
    invoked_tool_ids: Collection[str] | None = None,
) -> str:
    """Route to ``tool_node`` while the last assistant message still has calls to run.

    Calls recoverable from the provider's fallback location count as well. When
    every standard call id is already in ``invoked_tool_ids`` the graph ends.
    """
    message = _last_message(state)
    if not isinstance(message, AIMessage):
        return END
    if has_tool_calls(message) and not _calls_invoked(message, invoked_tool_ids):
        return tool_node
    return END
