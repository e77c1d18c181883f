"""Batch coordination for the tool node.

One assistant turn becomes one batch: its calls are normalized, filtered
against results already in the conversation and against provider-executed
calls, run concurrently through the executor, and reconciled into the value
the graph node returns.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Iterable, Mapping, MutableMapping, Sequence, Union

from langchain_core.messages import AIMessage, BaseMessage, ToolCall, ToolMessage
from langchain_core.runnables import RunnableConfig, RunnableLambda

from ..core.config import ToolNodeSettings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_batch_status
from ..tools.exceptions import InvalidToolInputError
from ..tools.executor import ErrorHandler, ToolExecutor
from ..tools.injection import ContextInjectors
from ..tools.registry import RuntimeToolset, ToolRegistry
from .chunks import RecoverySource, normalize_tool_calls
from .outcomes import BatchStatus, ToolOutcome, reconcile_outputs, summarize_batch

__all__ = ["RuntimeToolLoader", "ToolBatchCoordinator", "TARGETED_CALL_KEY"]

logger = get_logger(name=__name__)

TARGETED_CALL_KEY = "lg_tool_call"

RuntimeToolLoader = Callable[
    [list[ToolCall]],
    Union[RuntimeToolset, Mapping[str, Any], Awaitable[Union[RuntimeToolset, Mapping[str, Any]]]],
]


class ToolBatchCoordinator:
    """Runs every pending tool call of an assistant turn and reconciles the outcomes.

    Accepted inputs:
        - ``{"lg_tool_call": call}``: a single call dispatched through ``Send``;
          it runs as-is without the satisfied or server-executed filters.
        - ``[message, ...]``: the conversation; outcomes come back as a list.
        - ``{"messages": [message, ...]}``: graph state; outcomes come back as a
          ``messages`` update.
    """

    def __init__(
        self,
        tools: Iterable[Any] | None = None,
        *,
        tool_map: Mapping[str, Any] | None = None,
        registry: ToolRegistry | None = None,
        definitions: Any = None,
        name: str | None = None,
        handle_tool_errors: bool | None = None,
        error_handler: ErrorHandler | None = None,
        tool_call_step_ids: MutableMapping[str, str] | None = None,
        recovered: RecoverySource = None,
        load_runtime_tools: RuntimeToolLoader | None = None,
        injectors: ContextInjectors | None = None,
        settings: ToolNodeSettings | None = None,
    ) -> None:
        self._settings = settings or get_settings().tool_node
        self.name = name or self._settings.name
        self.registry = registry or ToolRegistry(
            tools,
            tool_map=tool_map,
            definitions=definitions,
            settings=self._settings,
        )
        self.executor = ToolExecutor(
            self.registry,
            handle_tool_errors=handle_tool_errors,
            error_handler=error_handler,
            tool_call_step_ids=tool_call_step_ids,
            injectors=injectors,
            settings=self._settings,
        )
        self.recovered = recovered
        self.load_runtime_tools = load_runtime_tools
        self._status = BatchStatus.PENDING

    @property
    def handle_tool_errors(self) -> bool:
        return self.executor.handle_tool_errors

    @property
    def last_status(self) -> BatchStatus:
        return self._status

    def get_tool_usage_counts(self) -> Mapping[str, int]:
        return self.executor.get_tool_usage_counts()

    async def run(self, input: Any, config: RunnableConfig | None = None) -> Any:
        self._status = BatchStatus.PENDING
        as_list = isinstance(input, list)

        if self._is_targeted(input):
            calls: list[ToolCall] = [input[TARGETED_CALL_KEY]]
        else:
            messages = self._extract_messages(input)
            calls = normalize_tool_calls(
                self._last_ai_message(messages),
                self.recovered,
                id_prefix=self._settings.generated_id_prefix,
            )
            await self._apply_runtime_tools(calls)
            calls = self._pending_calls(calls, messages)

        outputs = await self._dispatch(calls, config)
        self._status = summarize_batch(outputs)
        record_batch_status(status=self._status.value)
        logger.debug("tool_batch_completed", node=self.name, calls=len(calls), status=self._status.value)
        return reconcile_outputs(outputs, as_list=as_list)

    def as_runnable(self) -> RunnableLambda:
        """Expose the coordinator as a runnable that can be added as a graph node."""
        return RunnableLambda(self.run, name=self.name)

    async def _dispatch(self, calls: Sequence[ToolCall], config: RunnableConfig | None) -> list[ToolOutcome]:
        self._status = BatchStatus.DISPATCHED
        try:
            return list(await asyncio.gather(*(self.executor.execute(call, config) for call in calls)))
        except (Exception, asyncio.CancelledError) as exc:
            self._status = BatchStatus.ABORTED
            record_batch_status(status=self._status.value)
            logger.warning(
                "tool_batch_aborted",
                node=self.name,
                calls=len(calls),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

    async def _apply_runtime_tools(self, calls: list[ToolCall]) -> None:
        if self.load_runtime_tools is None:
            return
        loaded = self.load_runtime_tools(list(calls))
        if inspect.isawaitable(loaded):
            loaded = await loaded
        if isinstance(loaded, RuntimeToolset):
            toolset = loaded
        else:
            toolset = RuntimeToolset(tools=list(loaded.get("tools") or []), tool_map=loaded.get("tool_map"))
        self.registry.replace(toolset.tools, tool_map=toolset.tool_map)

    def _pending_calls(self, calls: Sequence[ToolCall], messages: Sequence[BaseMessage]) -> list[ToolCall]:
        satisfied = {message.tool_call_id for message in messages if isinstance(message, ToolMessage)}
        server_prefix = self._settings.server_tool_id_prefix
        pending: list[ToolCall] = []
        for call in calls:
            call_id = call.get("id")
            if call_id and call_id in satisfied:
                logger.debug("tool_call_already_satisfied", tool=call["name"], tool_call_id=call_id)
                continue
            if call_id and call_id.startswith(server_prefix):
                logger.debug("tool_call_server_executed", tool=call["name"], tool_call_id=call_id)
                continue
            pending.append(call)
        return pending

    @staticmethod
    def _is_targeted(input: Any) -> bool:
        return isinstance(input, Mapping) and TARGETED_CALL_KEY in input

    @staticmethod
    def _extract_messages(input: Any) -> list[BaseMessage]:
        if isinstance(input, list):
            return input
        if isinstance(input, Mapping):
            messages = input.get("messages")
            if isinstance(messages, list) and all(isinstance(item, BaseMessage) for item in messages):
                return messages
        raise InvalidToolInputError(
            "ToolBatchCoordinator only accepts a list of messages or {'messages': [...]} as input."
        )

    @staticmethod
    def _last_ai_message(messages: Sequence[BaseMessage]) -> AIMessage:
        for message in reversed(messages):
            if isinstance(message, AIMessage):
                return message
        raise InvalidToolInputError("ToolBatchCoordinator only accepts AIMessages as input.")
