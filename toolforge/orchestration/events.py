"""Stream notification handling for multi-agent runs.

``StepEventRouter`` decides per notification what reaches the transport, while
every notification is still fed to the content aggregator. ``ModelEndHandler``
and ``ToolEndHandler`` bridge model and tool completion events back into the
tool-call pipeline.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Collection, Iterable, Mapping, Protocol, Union, runtime_checkable

from langchain_core.messages import AIMessage, ToolCall
from pydantic import BaseModel

from ..core.config import EventSettings, get_settings
from ..core.logging import get_logger
from ..core.metrics import record_stream_event
from ..schemas.events import (
    AgentUpdate,
    GraphEvent,
    OutboundEvent,
    RunStep,
    RunStepCompleted,
    RunStepDelta,
    StepMetadata,
    ToolCallDelta,
)
from .chunks import RecoverySource, normalize_tool_calls

__all__ = [
    "EventHandler",
    "EventSink",
    "QueueEventSink",
    "ListenerEventSink",
    "StepEventRouter",
    "HandlerRegistry",
    "ModelEndHandler",
    "ToolEndHandler",
    "PROGRAMMATIC_METADATA_KEY",
]

logger = get_logger(name=__name__)

PROGRAMMATIC_METADATA_KEY = "programmatic_tool_calling"

Aggregator = Callable[[OutboundEvent], Union[Awaitable[None], None]]
Listener = Callable[[OutboundEvent], Union[Awaitable[None], None]]
ToolCallHandler = Callable[[list[ToolCall], Mapping[str, Any]], Union[Awaitable[None], None]]
ToolEndCallback = Callable[[Mapping[str, Any], Mapping[str, Any]], Union[Awaitable[None], None]]
CompletionHandler = Callable[[Mapping[str, Any], Mapping[str, Any], bool], Union[Awaitable[None], None]]


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


def _as_payload(data: Any) -> dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, BaseModel):
        return data.model_dump(by_alias=True)
    if isinstance(data, Mapping):
        return dict(data)
    raise TypeError(f"Unsupported event payload type: {type(data).__name__}")


@runtime_checkable
class EventHandler(Protocol):
    async def handle(self, event: str, data: Any, metadata: Mapping[str, Any] | None = None) -> Any:
        ...


@runtime_checkable
class EventSink(Protocol):
    async def send(self, event: OutboundEvent) -> None:
        ...


class QueueEventSink:
    """Bounded FIFO channel; ``send`` waits while the queue is full."""

    def __init__(self, maxsize: int | None = None, *, settings: EventSettings | None = None) -> None:
        resolved = settings or get_settings().events
        self._queue: asyncio.Queue[OutboundEvent] = asyncio.Queue(
            maxsize=resolved.queue_maxsize if maxsize is None else maxsize
        )

    async def send(self, event: OutboundEvent) -> None:
        await self._queue.put(event)

    async def get(self) -> OutboundEvent:
        return await self._queue.get()

    def drain(self) -> list[OutboundEvent]:
        items: list[OutboundEvent] = []
        while not self._queue.empty():
            items.append(self._queue.get_nowait())
        return items

    def qsize(self) -> int:
        return self._queue.qsize()


class ListenerEventSink:
    """Calls listeners in registration order; a failing listener does not stop the others."""

    def __init__(self, listeners: Iterable[Listener] | None = None) -> None:
        self._listeners: list[Listener] = list(listeners or [])

    def subscribe(self, listener: Listener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def send(self, event: OutboundEvent) -> None:
        for listener in list(self._listeners):
            try:
                await _maybe_await(listener(event))
            except Exception as exc:
                logger.warning(
                    "stream_listener_failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    stream_event=event.event,
                    error=str(exc),
                )


class StepEventRouter:
    """Applies multi-agent visibility rules to run-step notifications.

    Tool-call steps and output of the terminal agent are always forwarded.
    Other agents are forwarded unless ``hide_sequential_outputs`` is set; a
    hidden run step is replaced by an agent-update notice, while hidden deltas
    are dropped. Tool-call deltas lose their null closing fragments on the way
    out, but the aggregator always receives the original payload.
    """

    def __init__(
        self,
        sink: EventSink,
        *,
        aggregate: Aggregator | None = None,
        settings: EventSettings | None = None,
    ) -> None:
        self.sink = sink
        self.aggregate = aggregate
        self._settings = settings or get_settings().events
        self._routes: dict[str, Callable[[str, dict[str, Any], StepMetadata], Awaitable[None]]] = {
            GraphEvent.ON_RUN_STEP.value: self._on_run_step,
            GraphEvent.ON_RUN_STEP_DELTA.value: self._on_run_step_delta,
            GraphEvent.ON_RUN_STEP_COMPLETED.value: self._on_run_step_completed,
            GraphEvent.ON_MESSAGE_DELTA.value: self._on_content_delta,
            GraphEvent.ON_REASONING_DELTA.value: self._on_content_delta,
        }

    @property
    def events(self) -> tuple[str, ...]:
        return tuple(self._routes)

    def register_with(self, registry: "HandlerRegistry") -> None:
        for event in self._routes:
            registry.register(event, self)

    async def handle(self, event: str, data: Any, metadata: Mapping[str, Any] | StepMetadata | None = None) -> None:
        route = self._routes.get(str(getattr(event, "value", event)))
        if route is None:
            logger.debug("stream_event_unrouted", stream_event=str(event))
            return
        meta = metadata if isinstance(metadata, StepMetadata) else StepMetadata.model_validate(metadata or {})
        payload = _as_payload(data)
        await route(str(getattr(event, "value", event)), payload, meta)
        await self._aggregate(event, payload)

    def _visible(self, meta: StepMetadata) -> bool:
        return meta.is_last_agent or not meta.hide_sequential_outputs

    async def _on_run_step(self, event: str, payload: dict[str, Any], meta: StepMetadata) -> None:
        step = RunStep.model_validate(payload)
        if step.is_tool_call_step or self._visible(meta):
            await self._forward(event, payload)
            return
        agent_name = meta.name or self._settings.default_agent_name
        action = "performing a task..." if step.is_tool_call_step else "thinking..."
        update = AgentUpdate(run_id=meta.run_id, message=f"{agent_name} is {action}")
        await self.sink.send(
            OutboundEvent(event=self._settings.agent_update_event, data=update.model_dump(by_alias=True))
        )
        record_stream_event(event=event, action="substituted")

    async def _on_run_step_delta(self, event: str, payload: dict[str, Any], meta: StepMetadata) -> None:
        delta = RunStepDelta.model_validate(payload)
        if delta.carries_tool_calls:
            raw_calls = list(payload["delta"]["tool_calls"])
            kept = [
                raw
                for raw in raw_calls
                if not ToolCallDelta.model_validate(_as_payload(raw)).is_terminal_empty
            ]
            if kept:
                filtered = {**payload, "delta": {**payload["delta"], "tool_calls": kept}}
                await self._forward(event, filtered)
            if len(kept) < len(raw_calls):
                record_stream_event(event=event, action="filtered")
            return
        await self._forward_if_visible(event, payload, meta)

    async def _on_run_step_completed(self, event: str, payload: dict[str, Any], meta: StepMetadata) -> None:
        if RunStepCompleted.model_validate(payload).has_result:
            await self._forward(event, payload)
            return
        await self._forward_if_visible(event, payload, meta)

    async def _on_content_delta(self, event: str, payload: dict[str, Any], meta: StepMetadata) -> None:
        await self._forward_if_visible(event, payload, meta)

    async def _forward_if_visible(self, event: str, payload: dict[str, Any], meta: StepMetadata) -> None:
        if self._visible(meta):
            await self._forward(event, payload)
        else:
            record_stream_event(event=event, action="suppressed")

    async def _forward(self, event: str, payload: dict[str, Any]) -> None:
        await self.sink.send(OutboundEvent(event=event, data=payload))
        record_stream_event(event=event, action="forwarded")

    async def _aggregate(self, event: Any, payload: dict[str, Any]) -> None:
        if self.aggregate is None:
            return
        await _maybe_await(self.aggregate(OutboundEvent(event=str(getattr(event, "value", event)), data=payload)))


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, EventHandler] = {}

    def register(self, event: str | GraphEvent, handler: EventHandler) -> None:
        self._handlers[str(getattr(event, "value", event))] = handler

    def get_handler(self, event: str | GraphEvent) -> EventHandler | None:
        return self._handlers.get(str(getattr(event, "value", event)))

    async def dispatch(self, event: str | GraphEvent, data: Any, metadata: Mapping[str, Any] | None = None) -> Any:
        handler = self.get_handler(event)
        if handler is None:
            logger.debug("stream_event_without_handler", stream_event=str(getattr(event, "value", event)))
            return None
        return await handler.handle(str(getattr(event, "value", event)), data, metadata)


class ModelEndHandler:
    """Collects usage and re-dispatches tool calls that streaming failed to surface.

    Some providers only expose finished calls in ``additional_kwargs``; those
    are recovered with the shared chunk state. Calls are handed to
    ``tool_call_handler`` when any of them has no step yet, has a step but was
    never invoked, or when the provider is listed in ``eager_providers``.
    """

    def __init__(
        self,
        collected_usage: list[Any] | None = None,
        *,
        tool_call_handler: ToolCallHandler | None = None,
        recovered: RecoverySource = None,
        tool_call_step_ids: Mapping[str, str] | None = None,
        invoked_tool_ids: Collection[str] | None = None,
        eager_providers: Collection[str] = (),
    ) -> None:
        if collected_usage is not None and not isinstance(collected_usage, list):
            raise TypeError("collected_usage must be a list")
        self.collected_usage = collected_usage
        self.tool_call_handler = tool_call_handler
        self.recovered = recovered
        self.tool_call_step_ids = tool_call_step_ids
        self.invoked_tool_ids = invoked_tool_ids
        self.eager_providers = frozenset(eager_providers)

    async def handle(self, event: str, data: Any, metadata: Mapping[str, Any] | None = None) -> None:
        if metadata is None:
            logger.warning("stream_event_missing_metadata", stream_event=event)
            return
        output = _as_payload(data).get("output")
        if not isinstance(output, AIMessage):
            return

        usage = output.usage_metadata
        if usage is not None and self.collected_usage is not None:
            self.collected_usage.append(usage)

        calls = normalize_tool_calls(output, self.recovered)
        if not calls or self.tool_call_handler is None:
            return
        eager = metadata.get("ls_provider") in self.eager_providers
        if eager or self._has_unprocessed(calls):
            logger.debug("model_end_tool_calls_dispatched", calls=len(calls), eager=eager)
            await _maybe_await(self.tool_call_handler(calls, metadata))

    def _has_unprocessed(self, calls: Iterable[ToolCall]) -> bool:
        step_ids = self.tool_call_step_ids or {}
        for call in calls:
            call_id = call.get("id")
            if not call_id:
                return True
            if call_id not in step_ids:
                return True
            if self.invoked_tool_ids is not None and call_id not in self.invoked_tool_ids:
                return True
        return False


class ToolEndHandler:
    """Forwards finished tool output to the tool-end callback and the completion handler.

    Output produced inside programmatic tool calling is skipped. Failures are
    logged and never raised to the stream.
    """

    def __init__(
        self,
        callback: ToolEndCallback | None = None,
        *,
        on_completed: CompletionHandler | None = None,
        omit_output: Callable[[str | None], bool] | None = None,
    ) -> None:
        self.callback = callback
        self.on_completed = on_completed
        self.omit_output = omit_output

    async def handle(self, event: str, data: Any, metadata: Mapping[str, Any] | None = None) -> None:
        try:
            if metadata is None:
                logger.warning("stream_event_missing_metadata", stream_event=event)
                return
            payload = _as_payload(data)
            output = payload.get("output")
            if output is None:
                logger.warning("tool_end_missing_output", stream_event=event)
                return
            if metadata.get(PROGRAMMATIC_METADATA_KEY) is True:
                return

            if self.callback is not None:
                await _maybe_await(self.callback(payload, metadata))
            if self.on_completed is not None:
                omit = bool(self.omit_output(getattr(output, "name", None))) if self.omit_output else False
                await _maybe_await(self.on_completed({"input": payload.get("input"), "output": output}, metadata, omit))
        except Exception:
            logger.exception("tool_end_handler_failed", stream_event=event)
