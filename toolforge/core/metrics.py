from __future__ import annotations

from prometheus_client import Counter, Histogram

from .config import get_settings

TOOL_INVOCATIONS_TOTAL = Counter(
    "toolforge_tool_invocations_total",
    "Tool invocation attempts grouped by outcome",
    labelnames=("tool", "outcome"),
)

TOOL_LATENCY_SECONDS = Histogram(
    "toolforge_tool_latency_seconds",
    "Latency of individual tool invocations",
    labelnames=("tool",),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
)

TOOL_BATCHES_TOTAL = Counter(
    "toolforge_tool_batches_total",
    "Tool batches grouped by terminal status",
    labelnames=("status",),
)

DIRECTIVE_MERGES_TOTAL = Counter(
    "toolforge_directive_merges_total",
    "Parent-graph directives folded into an earlier directive of the same batch",
)

TOOL_CALL_RECOVERIES_TOTAL = Counter(
    "toolforge_tool_call_recoveries_total",
    "Tool call identity fields recovered from earlier chunks or synthesized",
    labelnames=("field",),
)

STREAM_EVENTS_TOTAL = Counter(
    "toolforge_stream_events_total",
    "Stream notifications grouped by routing action",
    labelnames=("event", "action"),
)


def _enabled() -> bool:
    return get_settings().observability.prometheus_enabled


def record_tool_invocation(*, tool: str, outcome: str, latency: float | None = None) -> None:
    if not _enabled():
        return
    TOOL_INVOCATIONS_TOTAL.labels(tool=tool, outcome=outcome).inc()
    if latency is not None:
        TOOL_LATENCY_SECONDS.labels(tool=tool).observe(max(0.0, latency))


def record_batch_status(*, status: str) -> None:
    if not _enabled():
        return
    TOOL_BATCHES_TOTAL.labels(status=status).inc()


def increment_directive_merge(count: int = 1) -> None:
    if not _enabled() or count <= 0:
        return
    DIRECTIVE_MERGES_TOTAL.inc(count)


def increment_call_recovery(*, field: str) -> None:
    if not _enabled():
        return
    TOOL_CALL_RECOVERIES_TOTAL.labels(field=field).inc()


def record_stream_event(*, event: str, action: str) -> None:
    if not _enabled():
        return
    STREAM_EVENTS_TOTAL.labels(event=event, action=action).inc()
