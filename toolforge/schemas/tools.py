from __future__ import annotations

from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_ALLOWED_CALLERS: tuple[str, ...] = ("direct",)


class ToolDefinition(BaseModel):
    """Registry record describing a tool and who may call it."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    description: str = Field(default="")
    parameters: dict[str, Any] = Field(default_factory=dict)
    allowed_callers: list[str] | None = Field(
        default=None,
        description="Callers permitted to invoke the tool; absent means direct model calls only.",
    )

    def effective_callers(self, default: Iterable[str] = DEFAULT_ALLOWED_CALLERS) -> tuple[str, ...]:
        if self.allowed_callers is None:
            return tuple(default)
        return tuple(self.allowed_callers)

    def allows(self, caller: str, *, default: Iterable[str] = DEFAULT_ALLOWED_CALLERS) -> bool:
        return caller in self.effective_callers(default)


class ToolErrorInfo(BaseModel):
    """Payload handed to the error-reporting collaborator when a tool fails."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    error: BaseException
    id: str
    name: str
    input: dict[str, Any] = Field(default_factory=dict)
