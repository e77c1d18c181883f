"""Reconstruction of canonical tool calls from streamed, possibly malformed model output.

Some providers deliver a complete ``tool_calls`` list on the final assistant
message. Others stream fragments and leave the finished calls only in
``additional_kwargs["tool_calls"]``, sometimes without the name or id that an
earlier fragment carried. The accumulator remembers the last known identity per
stream index so those gaps can be filled at finalization.

Correlation is positional: fragments and fallback records are matched by their
index within the turn.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage, ToolCall, ToolCallChunk
from langchain_core.messages.tool import tool_call as make_tool_call

from ..core.config import ToolNodeSettings, get_settings
from ..core.logging import get_logger
from ..core.metrics import increment_call_recovery
from ..tools.exceptions import ArgumentDecodeError

__all__ = [
    "RecoveredCallInfo",
    "ChunkAccumulator",
    "decode_arguments",
    "parse_arguments",
    "generate_tool_call_id",
    "normalize_tool_calls",
    "convert_raw_tool_calls",
    "fallback_tool_calls",
    "has_tool_calls",
]

logger = get_logger(name=__name__)

FALLBACK_TOOL_CALLS_KEY = "tool_calls"


@dataclass(slots=True)
class RecoveredCallInfo:
    """Last-known-good identity for one stream index."""

    index: int
    name: str = ""
    id: str = ""


@dataclass(slots=True)
class _PartialCall:
    index: int
    id: str = ""
    name: str = ""
    arguments: str = ""


def generate_tool_call_id(prefix: str = "generated_") -> str:
    return f"{prefix}{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def decode_arguments(raw: Any) -> dict[str, Any]:
    """Decode an argument payload into a JSON object, raising on anything else."""
    if raw is None:
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if not isinstance(raw, str):
        raise ArgumentDecodeError(repr(raw), f"unsupported payload type {type(raw).__name__}")
    text = raw.strip()
    if not text:
        return {}
    try:
        parsed = json.loads(text, strict=False)
    except json.JSONDecodeError as exc:
        raise ArgumentDecodeError(raw, str(exc)) from exc
    if not isinstance(parsed, dict):
        raise ArgumentDecodeError(raw, f"expected an object, got {type(parsed).__name__}")
    return parsed


def parse_arguments(raw: Any) -> dict[str, Any]:
    """Decode arguments, falling back to an empty object for malformed payloads."""
    try:
        return decode_arguments(raw)
    except ArgumentDecodeError as exc:
        logger.debug("tool_arguments_decode_failed", error=str(exc))
        return {}


class ChunkAccumulator:
    """Tracks partially streamed tool calls for one assistant turn, keyed by stream index."""

    def __init__(self, *, id_prefix: str | None = None, settings: ToolNodeSettings | None = None) -> None:
        resolved = settings or get_settings().tool_node
        self.id_prefix = id_prefix or resolved.generated_id_prefix
        self._partials: dict[int, _PartialCall] = {}
        self._recovered: dict[int, RecoveredCallInfo] = {}
        self._generated: dict[int, str] = {}

    def observe(self, chunk: ToolCallChunk | Mapping[str, Any]) -> None:
        """Merge one fragment into the state for its index.

        Argument text only ever grows: a terminal fragment with ``None`` or an
        empty string never erases what was accumulated.
        """
        name = chunk.get("name") or ""
        call_id = chunk.get("id") or ""
        index = self._resolve_index(chunk.get("index"), call_id, name)

        partial = self._partials.get(index)
        if partial is None:
            partial = _PartialCall(index=index)
            self._partials[index] = partial
        if name and not partial.name:
            partial.name = name
        if call_id and not partial.id:
            partial.id = call_id

        args = chunk.get("args")
        if isinstance(args, str) and args:
            partial.arguments += args
        elif isinstance(args, Mapping) and args and not partial.arguments:
            partial.arguments = json.dumps(dict(args), ensure_ascii=False)

        if name or call_id:
            previous = self._recovered.get(index) or RecoveredCallInfo(index=index)
            self._recovered[index] = RecoveredCallInfo(
                index=index,
                name=name or previous.name,
                id=call_id or previous.id,
            )

    def observe_message(self, message: AIMessageChunk) -> None:
        for chunk in message.tool_call_chunks or ():
            self.observe(chunk)

    def recovered(self, index: int) -> RecoveredCallInfo | None:
        return self._recovered.get(index)

    def recovered_info(self) -> dict[int, RecoveredCallInfo]:
        return dict(self._recovered)

    def generated_id(self, index: int) -> str:
        """Return the synthesized id for ``index``, creating it once per turn."""
        existing = self._generated.get(index)
        if existing is None:
            existing = generate_tool_call_id(self.id_prefix)
            self._generated[index] = existing
        return existing

    def accumulated_calls(self) -> list[dict[str, Any]]:
        """Accumulated fragments in the provider's raw ``tool_calls`` wire shape, ordered by index."""
        records: list[dict[str, Any]] = []
        for index in sorted(self._partials):
            partial = self._partials[index]
            records.append(
                {
                    "id": partial.id,
                    "type": "function",
                    "function": {"name": partial.name, "arguments": partial.arguments},
                }
            )
        return records

    def finalize(self, message: BaseMessage | None = None) -> list[ToolCall]:
        """Produce canonical tool calls for the turn.

        With a final message, its standard call list or fallback records win;
        otherwise the accumulated fragments themselves are converted.
        """
        if message is not None:
            return normalize_tool_calls(message, self, id_prefix=self.id_prefix)
        return convert_raw_tool_calls(self.accumulated_calls(), self, id_prefix=self.id_prefix)

    def reset(self) -> None:
        self._partials.clear()
        self._recovered.clear()
        self._generated.clear()

    def _resolve_index(self, raw_index: Any, call_id: str, name: str) -> int:
        if isinstance(raw_index, int):
            return raw_index
        if call_id:
            for index, partial in self._partials.items():
                if partial.id == call_id:
                    return index
        if not self._partials:
            return 0
        last = max(self._partials)
        if call_id or name:
            return last + 1
        return last

    def __len__(self) -> int:
        return len(self._partials)


RecoverySource = ChunkAccumulator | Mapping[int, RecoveredCallInfo] | None


def _recovered_for(source: RecoverySource, index: int) -> RecoveredCallInfo | None:
    if source is None:
        return None
    if isinstance(source, ChunkAccumulator):
        return source.recovered(index)
    return source.get(index)


def _synthesize_id(source: RecoverySource, index: int, prefix: str) -> str:
    increment_call_recovery(field="generated_id")
    if isinstance(source, ChunkAccumulator):
        return source.generated_id(index)
    return generate_tool_call_id(prefix)


def fallback_tool_calls(message: BaseMessage) -> list[Mapping[str, Any]]:
    raw = (message.additional_kwargs or {}).get(FALLBACK_TOOL_CALLS_KEY)
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return []
    return [record for record in raw if isinstance(record, Mapping)]


def _record_fields(record: Mapping[str, Any]) -> tuple[str, str, Any]:
    function = record.get("function")
    if not isinstance(function, Mapping):
        function = record
    name = function.get("name") or ""
    arguments = function.get("arguments")
    if arguments is None:
        arguments = function.get("args")
    return str(record.get("id") or ""), str(name), arguments


def convert_raw_tool_calls(
    records: Sequence[Mapping[str, Any]],
    recovered: RecoverySource = None,
    *,
    id_prefix: str | None = None,
) -> list[ToolCall]:
    """Convert provider ``tool_calls`` records into canonical calls.

    Missing names and ids are back-filled from the recovered identity at the
    same position; calls that still have no name are dropped.
    """
    return _convert_positioned(list(enumerate(records)), recovered, id_prefix=id_prefix)


def _convert_positioned(
    positioned: Sequence[tuple[int, Mapping[str, Any]]],
    recovered: RecoverySource,
    *,
    id_prefix: str | None,
) -> list[ToolCall]:
    prefix = id_prefix or get_settings().tool_node.generated_id_prefix
    explicit_ids = {_record_fields(record)[0] for _, record in positioned} - {""}
    used_ids: set[str] = set()
    calls: list[ToolCall] = []
    for index, record in positioned:
        call_id, name, arguments = _record_fields(record)
        info = _recovered_for(recovered, index)
        if not name and info is not None and info.name:
            name = info.name
            increment_call_recovery(field="name")
        if not call_id and info is not None and info.id and info.id not in explicit_ids | used_ids:
            call_id = info.id
            increment_call_recovery(field="id")
        if not name:
            logger.debug("tool_call_dropped_without_name", index=index)
            continue
        if not call_id:
            call_id = _synthesize_id(recovered, index, prefix)
        used_ids.add(call_id)
        calls.append(make_tool_call(name=name, args=parse_arguments(arguments), id=call_id))
    return calls


def _recovered_snapshot(source: RecoverySource) -> dict[int, RecoveredCallInfo]:
    if source is None:
        return {}
    if isinstance(source, ChunkAccumulator):
        return source.recovered_info()
    return dict(source)


def _stream_order(
    entries: Sequence[Mapping[str, Any]],
    recovered: RecoverySource,
) -> list[tuple[int, Mapping[str, Any]]]:
    """Place parsed and rejected calls back at their stream positions.

    An explicit ``index`` wins, then a recovered entry with the same id, then
    an unclaimed recovered entry with the same name. Whatever remains fills
    the lowest free positions in its original order.
    """
    known = _recovered_snapshot(recovered)
    positions: list[int | None] = [None] * len(entries)
    claimed: set[int] = set()

    for slot, entry in enumerate(entries):
        index = entry.get("index")
        if isinstance(index, int) and index not in claimed:
            positions[slot] = index
            claimed.add(index)

    def match(field: str) -> None:
        for slot, entry in enumerate(entries):
            value = entry.get(field)
            if positions[slot] is not None or not value:
                continue
            for index in sorted(known):
                if index not in claimed and getattr(known[index], field) == value:
                    positions[slot] = index
                    claimed.add(index)
                    break

    match("id")
    match("name")

    free = 0
    for slot in range(len(entries)):
        if positions[slot] is None:
            while free in claimed:
                free += 1
            positions[slot] = free
            claimed.add(free)

    order = sorted(range(len(entries)), key=lambda slot: positions[slot])
    return [(positions[slot], entries[slot]) for slot in order]


def normalize_tool_calls(
    message: BaseMessage,
    recovered: RecoverySource = None,
    *,
    id_prefix: str | None = None,
) -> list[ToolCall]:
    """Return the canonical tool calls carried by an assistant message.

    A standard call list is used as-is only when it is complete: every entry
    named and identified, and nothing rejected as invalid. Otherwise the raw
    records in the fallback location are converted with positional recovery.
    ``AIMessage`` itself parses those records into ``tool_calls`` on
    construction, dropping malformed ones into ``invalid_tool_calls``, so the
    raw records are the more faithful source.
    """
    prefix = id_prefix or get_settings().tool_node.generated_id_prefix
    standard = list(getattr(message, "tool_calls", None) or [])
    invalid = list(getattr(message, "invalid_tool_calls", None) or [])
    if standard and not invalid and all(call.get("name") and call.get("id") for call in standard):
        return [
            make_tool_call(name=call["name"], args=parse_arguments(call.get("args")), id=call["id"])
            for call in standard
        ]

    records = fallback_tool_calls(message)
    if records:
        return convert_raw_tool_calls(records, recovered, id_prefix=prefix)
    # Parsed and rejected calls arrive in separate lists; restore stream order first.
    flattened = [
        {"id": call.get("id"), "name": call.get("name"), "args": call.get("args"), "index": call.get("index")}
        for call in [*standard, *invalid]
    ]
    return _convert_positioned(_stream_order(flattened, recovered), recovered, id_prefix=prefix)


def has_tool_calls(message: BaseMessage) -> bool:
    """True when the message carries standard calls or a usable fallback record."""
    if not isinstance(message, AIMessage):
        return False
    if any(call.get("name") for call in message.tool_calls):
        return True
    for record in fallback_tool_calls(message):
        _, name, arguments = _record_fields(record)
        if name or (isinstance(arguments, str) and arguments):
            return True
    return False
