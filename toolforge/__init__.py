"""Tool-call reconciliation and execution for LangGraph agents."""

from .orchestration import ChunkAccumulator, StepEventRouter, ToolBatchCoordinator, tools_condition
from .tools import FunctionTool, ToolExecutor, ToolRegistry

__all__ = [
    "ChunkAccumulator",
    "FunctionTool",
    "StepEventRouter",
    "ToolBatchCoordinator",
    "ToolExecutor",
    "ToolRegistry",
    "tools_condition",
]

__version__ = "0.1.0"
