"""
Orchestration Package

Tool-call handling for one assistant turn:
- Streamed chunk accumulation and tool-call normalization
- Batch coordination and outcome reconciliation
- Graph routing for the tool node
- Stream event routing and model/tool completion handlers
"""

from .batch import RuntimeToolLoader, ToolBatchCoordinator
from .chunks import (
    ChunkAccumulator,
    RecoveredCallInfo,
    generate_tool_call_id,
    has_tool_calls,
    normalize_tool_calls,
    parse_arguments,
)
from .events import (
    EventSink,
    HandlerRegistry,
    ListenerEventSink,
    ModelEndHandler,
    QueueEventSink,
    StepEventRouter,
    ToolEndHandler,
)
from .outcomes import (
    BatchStatus,
    OutcomeKind,
    classify_outcome,
    is_parent_dispatch,
    merge_parent_directives,
    reconcile_outputs,
    summarize_batch,
)
from .routing import tools_condition

__all__ = [
    # Chunks
    "ChunkAccumulator",
    "RecoveredCallInfo",
    "generate_tool_call_id",
    "has_tool_calls",
    "normalize_tool_calls",
    "parse_arguments",
    # Batch
    "RuntimeToolLoader",
    "ToolBatchCoordinator",
    "BatchStatus",
    "OutcomeKind",
    "classify_outcome",
    "is_parent_dispatch",
    "merge_parent_directives",
    "reconcile_outputs",
    "summarize_batch",
    # Routing
    "tools_condition",
    # Events
    "EventSink",
    "HandlerRegistry",
    "ListenerEventSink",
    "ModelEndHandler",
    "QueueEventSink",
    "StepEventRouter",
    "ToolEndHandler",
]
