from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from langchain_core.messages import BaseMessage, ToolMessage
from langgraph.types import Command, Send

from ..core.logging import get_logger
from ..core.metrics import increment_directive_merge

__all__ = [
    "OutcomeKind",
    "BatchStatus",
    "ToolOutcome",
    "classify_outcome",
    "is_parent_dispatch",
    "merge_parent_directives",
    "reconcile_outputs",
    "summarize_batch",
]

logger = get_logger(name=__name__)

ToolOutcome = BaseMessage | Command


class OutcomeKind(str, Enum):
    MESSAGE = "message"
    DIRECTIVE = "directive"


class BatchStatus(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    ALL_SUCCEEDED = "all_succeeded"
    PARTIALLY_FAILED = "partially_failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in {BatchStatus.ALL_SUCCEEDED, BatchStatus.PARTIALLY_FAILED, BatchStatus.ABORTED}


def classify_outcome(value: Any) -> OutcomeKind:
    if isinstance(value, Command):
        return OutcomeKind.DIRECTIVE
    if isinstance(value, BaseMessage):
        return OutcomeKind.MESSAGE
    raise TypeError(f"Unsupported tool outcome type: {type(value).__name__}")


def is_parent_dispatch(command: Command) -> bool:
    """True for a directive aimed at the parent graph whose targets are all ``Send`` objects."""
    goto = command.goto
    return (
        command.graph == Command.PARENT
        and isinstance(goto, (list, tuple))
        and all(isinstance(target, Send) for target in goto)
    )


def merge_parent_directives(outputs: Sequence[ToolOutcome]) -> tuple[list[ToolOutcome], Command | None]:
    """Split outputs into pass-through items and one merged parent directive.

    Dispatch targets are concatenated in the order of ``outputs``. The merged
    directive only carries ``graph`` and ``goto``.
    """
    remaining: list[ToolOutcome] = []
    targets: list[Send] | None = None
    merged_count = 0
    for output in outputs:
        if classify_outcome(output) is OutcomeKind.DIRECTIVE and is_parent_dispatch(output):
            if targets is None:
                targets = list(output.goto)
            else:
                targets.extend(output.goto)
                merged_count += 1
            continue
        remaining.append(output)

    if targets is None:
        return remaining, None
    if merged_count:
        increment_directive_merge(merged_count)
        logger.debug("parent_directives_merged", directives=merged_count + 1, targets=len(targets))
    return remaining, Command(graph=Command.PARENT, goto=targets)


def reconcile_outputs(outputs: Sequence[ToolOutcome], *, as_list: bool) -> Any:
    """Shape executor outcomes into the node's return value.

    Without directives the messages come back flat (a list, or a ``messages``
    update). Otherwise each message is wrapped on its own, other directives pass
    through, and the merged parent directive goes last.
    """
    kinds = [classify_outcome(output) for output in outputs]
    if OutcomeKind.DIRECTIVE not in kinds:
        return list(outputs) if as_list else {"messages": list(outputs)}

    remaining, parent = merge_parent_directives(outputs)
    combined: list[Any] = []
    for output in remaining:
        if isinstance(output, Command):
            combined.append(output)
        elif as_list:
            combined.append([output])
        else:
            combined.append({"messages": [output]})
    if parent is not None:
        combined.append(parent)
    return combined


def summarize_batch(outputs: Sequence[ToolOutcome]) -> BatchStatus:
    for output in outputs:
        if isinstance(output, ToolMessage) and output.status == "error":
            return BatchStatus.PARTIALLY_FAILED
    return BatchStatus.ALL_SUCCEEDED
