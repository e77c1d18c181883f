from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ToolNodeSettings(BaseModel):
    name: str = Field("tools", min_length=1, description="Graph node name used when the coordinator is mounted.")
    handle_tool_errors: bool = Field(
        True,
        description="Convert tool failures into error ToolMessages instead of propagating them.",
    )
    server_tool_id_prefix: str = Field(
        "srvtoolu_",
        min_length=1,
        description="Tool call ids with this prefix are executed by the model provider and never invoked locally.",
    )
    generated_id_prefix: str = Field(
        "generated_",
        min_length=1,
        description="Prefix for tool call ids synthesized when the upstream never supplied one.",
    )
    programmatic_caller: str = Field(
        "code_execution",
        min_length=1,
        description="Caller tag marking tools that may be invoked from programmatic tool calling.",
    )
    default_allowed_callers: list[str] = Field(
        default_factory=lambda: ["direct"],
        description="Caller set assumed for registry records that do not declare allowed_callers.",
    )
    programmatic_tool_name: str = Field(
        "run_tools_with_code",
        min_length=1,
        description="Tool that receives the filtered programmatic tool map and definitions.",
    )
    tool_search_name: str = Field(
        "tool_search_regex",
        min_length=1,
        description="Tool that receives the full registry of tool definitions.",
    )
    error_suffix: str = Field("Please fix your mistakes.", description="Appended to error ToolMessage content.")


class EventSettings(BaseModel):
    agent_update_event: str = Field("on_agent_update", min_length=1)
    default_agent_name: str = Field("Agent", min_length=1)
    queue_maxsize: int = Field(256, ge=0, description="Bound for queued outbound notifications (0 = unbounded).")


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = Field(True, description="Render structured logs as JSON lines instead of console output.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    tool_node: ToolNodeSettings = Field(default_factory=ToolNodeSettings)  # type: ignore[arg-type]
    events: EventSettings = Field(default_factory=EventSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_prefix="TOOLFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        materialized = dict(overrides)
        allowed_keys = {"environment", "tool_node", "events", "observability"}
        filtered = {key: value for key, value in materialized.items() if key in allowed_keys}
        if filtered:
            return Settings(**filtered)
    return _get_cached_settings()
