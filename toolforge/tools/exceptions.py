from __future__ import annotations

import asyncio

from langgraph.errors import GraphInterrupt


class ToolError(RuntimeError):
    """Base class for tooling-related failures."""


class ToolResolutionError(ToolError):
    """Raised when a requested tool cannot be resolved."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'Tool "{name}" not found.')


ToolNotFoundError = ToolResolutionError


class ArgumentDecodeError(ToolError, ValueError):
    """Raised when a tool call argument payload is not a JSON object."""

    def __init__(self, raw: str, reason: str) -> None:
        self.raw = raw
        super().__init__(f"Unable to decode tool arguments: {reason}")


class ToolInvocationError(ToolError):
    """Raised when a capability fails and errors are not being converted to messages."""

    def __init__(self, message: str, *, tool_name: str = "", tool_call_id: str = "", cause: BaseException | None = None) -> None:
        self.tool_name = tool_name
        self.tool_call_id = tool_call_id
        self.cause = cause
        super().__init__(message)


class CallbackError(ToolError):
    """Raised internally when the error-reporting collaborator itself fails."""

    def __init__(self, message: str, *, original: BaseException, handler_error: BaseException) -> None:
        self.original = original
        self.handler_error = handler_error
        super().__init__(message)


class InvalidToolInputError(ToolError, TypeError):
    """Raised when the batch coordinator receives input it cannot interpret."""


def is_cancellation(exc: BaseException) -> bool:
    """Return True for cooperative interrupt signals that must never be swallowed."""
    return isinstance(exc, (GraphInterrupt, asyncio.CancelledError))
