from __future__ import annotations

import inspect
import json
import time
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, MutableMapping

from langchain_core.messages import ToolCall, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.types import Command
from pydantic import BaseModel

from ..core.config import ToolNodeSettings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_tool_invocation
from ..schemas.tools import ToolErrorInfo
from .capabilities import ToolInvocation
from .exceptions import CallbackError, ToolInvocationError, ToolResolutionError, is_cancellation
from .injection import ContextInjectors
from .registry import ToolRegistry

__all__ = ["ErrorHandler", "ToolExecutor", "serialize_output"]

logger = get_logger(name=__name__)

ErrorHandler = Callable[[ToolErrorInfo, Mapping[str, Any] | None], Awaitable[None] | None]


def _json_safe(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _json_safe(value.model_dump())
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return [_json_safe(item) for item in sorted(value, key=lambda item: repr(item))]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def serialize_output(output: Any) -> str:
    """Render a raw tool result as message content."""
    if isinstance(output, str):
        return output
    try:
        return json.dumps(_json_safe(output), ensure_ascii=False)
    except (TypeError, ValueError):
        return str(output)


class ToolExecutor:
    """Runs one canonical tool call and converts its result or failure into an outcome.

    The executor owns the per-instance usage counter. Counts are bumped before
    the capability runs, so failing attempts are counted as well.

    With ``handle_tool_errors`` off, a failure propagates as
    ``ToolInvocationError`` rather than as the original exception type. The
    original is available as ``cause`` and ``__cause__``; callers that need
    it must unwrap. Cancellation is always re-raised as-is.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        handle_tool_errors: bool | None = None,
        error_handler: ErrorHandler | None = None,
        tool_call_step_ids: MutableMapping[str, str] | None = None,
        injectors: ContextInjectors | None = None,
        settings: ToolNodeSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings().tool_node
        self.registry = registry
        self.handle_tool_errors = (
            self._settings.handle_tool_errors if handle_tool_errors is None else handle_tool_errors
        )
        self.error_handler = error_handler
        self.tool_call_step_ids = tool_call_step_ids
        self._injectors = injectors or ContextInjectors.from_settings(self._settings)
        self._usage: dict[str, int] = {}

    def get_tool_usage_counts(self) -> Mapping[str, int]:
        """Return a read-only snapshot of invocation counts per tool name."""
        return MappingProxyType(dict(self._usage))

    async def execute(self, call: ToolCall, config: RunnableConfig | None = None) -> ToolMessage | Command:
        name = call["name"]
        call_id = call.get("id") or ""
        args = dict(call.get("args") or {})
        start = time.perf_counter()
        try:
            capability = self.registry.get(name)
            if capability is None:
                raise ToolResolutionError(name)

            turn = self._usage.get(name, 0)
            self._usage[name] = turn + 1
            invocation = ToolInvocation(
                call=call,
                args=args,
                step_id=self._step_id(call_id),
                turn=turn,
                extras=self._injectors.apply(name, {}, self.registry),
            )
            logger.debug("tool_invocation_started", tool=name, tool_call_id=call_id, turn=turn)
            output = await capability.ainvoke(invocation, config)
        except Exception as exc:
            return await self._handle_failure(exc, name=name, call_id=call_id, args=args, config=config, start=start)

        record_tool_invocation(tool=name, outcome="success", latency=time.perf_counter() - start)
        if isinstance(output, Command):
            return output
        if isinstance(output, ToolMessage):
            return output
        return ToolMessage(
            status="success",
            name=capability.name,
            content=serialize_output(output),
            tool_call_id=call_id,
        )

    async def _handle_failure(
        self,
        exc: Exception,
        *,
        name: str,
        call_id: str,
        args: dict[str, Any],
        config: RunnableConfig | None,
        start: float,
    ) -> ToolMessage:
        latency = time.perf_counter() - start
        if is_cancellation(exc):
            record_tool_invocation(tool=name, outcome="interrupted", latency=latency)
            raise exc
        outcome = "not_found" if isinstance(exc, ToolResolutionError) else "error"
        record_tool_invocation(tool=name, outcome=outcome, latency=latency)
        if not self.handle_tool_errors:
            raise ToolInvocationError(
                f"Tool '{name}' failed: {exc}",
                tool_name=name,
                tool_call_id=call_id,
                cause=exc,
            ) from exc

        logger.warning("tool_invocation_failed", tool=name, tool_call_id=call_id, error=str(exc))
        if self.error_handler is not None:
            await self._report_error(exc, name=name, call_id=call_id, args=args, config=config)
        return ToolMessage(
            status="error",
            content=f"Error: {exc}\n {self._settings.error_suffix}",
            name=name,
            tool_call_id=call_id,
        )

    async def _report_error(
        self,
        exc: Exception,
        *,
        name: str,
        call_id: str,
        args: dict[str, Any],
        config: RunnableConfig | None,
    ) -> None:
        metadata = (config or {}).get("metadata")
        info = ToolErrorInfo(error=exc, id=call_id, name=name, input=args)
        try:
            result = self.error_handler(info, metadata)  # type: ignore[misc]
            if inspect.isawaitable(result):
                await result
        except Exception as handler_exc:
            failure = CallbackError("Error in error handler", original=exc, handler_error=handler_exc)
            logger.error(
                "tool_error_handler_failed",
                tool=name,
                tool_call_id=call_id,
                tool_args=args,
                step_id=self._step_id(call_id),
                turn=self._usage.get(name),
                original_error=str(failure.original),
                handler_error=str(failure.handler_error),
                exc_info=handler_exc,
            )

    def _step_id(self, call_id: str) -> str | None:
        if self.tool_call_step_ids is None or not call_id:
            return None
        return self.tool_call_step_ids.get(call_id)
