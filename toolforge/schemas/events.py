from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GraphEvent(str, Enum):
    ON_RUN_STEP = "on_run_step"
    ON_RUN_STEP_DELTA = "on_run_step_delta"
    ON_RUN_STEP_COMPLETED = "on_run_step_completed"
    ON_MESSAGE_DELTA = "on_message_delta"
    ON_REASONING_DELTA = "on_reasoning_delta"
    CHAT_MODEL_END = "on_chat_model_end"
    TOOL_END = "on_tool_end"


class StepType(str, Enum):
    TOOL_CALLS = "tool_calls"
    MESSAGE_CREATION = "message_creation"


class StepMetadata(BaseModel):
    """Per-step metadata attached by the graph runtime to every stream notification."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    run_id: str | None = None
    last_agent_id: str | None = None
    langgraph_node: str | None = None
    hide_sequential_outputs: bool = False

    @field_validator("hide_sequential_outputs", mode="before")
    @classmethod
    def _null_means_shown(cls, value: Any) -> Any:
        return False if value is None else value

    @property
    def is_last_agent(self) -> bool:
        if not self.last_agent_id or not self.langgraph_node:
            return False
        return self.langgraph_node.endswith(self.last_agent_id)


class ToolCallDelta(BaseModel):
    """One tool-call fragment inside a run-step delta."""

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    args: str | dict[str, Any] | None = None
    id: str | None = None
    index: int | None = None
    type: str | None = None

    @property
    def is_terminal_empty(self) -> bool:
        # Providers close a streamed call with an explicit null args fragment.
        explicit_null_args = "args" in self.model_fields_set and self.args is None
        return explicit_null_args and self.name is None and self.id is None


class StepDetails(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: StepType
    tool_calls: list[dict[str, Any]] = Field(default_factory=list)
    message_creation: dict[str, Any] | None = None


class RunStep(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str | None = None
    run_id: str | None = Field(default=None, alias="runId")
    index: int | None = None
    step_details: StepDetails = Field(..., alias="stepDetails")

    @property
    def is_tool_call_step(self) -> bool:
        return self.step_details.type == StepType.TOOL_CALLS


class DeltaPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: StepType | None = None
    tool_calls: list[ToolCallDelta] | None = None


class RunStepDelta(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    delta: DeltaPayload = Field(default_factory=DeltaPayload)

    @property
    def carries_tool_calls(self) -> bool:
        return self.delta.type == StepType.TOOL_CALLS and self.delta.tool_calls is not None


class RunStepCompleted(BaseModel):
    model_config = ConfigDict(extra="allow")

    result: Any | None = None

    @property
    def has_result(self) -> bool:
        return self.result is not None


class AgentUpdate(BaseModel):
    """Progress notice sent in place of a hidden agent's raw output."""

    model_config = ConfigDict(populate_by_name=True)

    run_id: str | None = Field(default=None, alias="runId")
    message: str = Field(..., min_length=1)


class OutboundEvent(BaseModel):
    """Notification handed to the transport or the content aggregator."""

    event: str = Field(..., min_length=1)
    data: Any = None


__all__ = [
    "AgentUpdate",
    "DeltaPayload",
    "GraphEvent",
    "OutboundEvent",
    "RunStep",
    "RunStepCompleted",
    "RunStepDelta",
    "StepDetails",
    "StepMetadata",
    "StepType",
    "ToolCallDelta",
]
