from .capabilities import FunctionTool, LangChainTool, ToolCapability, ToolInvocation, as_capability
from .exceptions import (
    ArgumentDecodeError,
    CallbackError,
    InvalidToolInputError,
    ToolError,
    ToolInvocationError,
    ToolNotFoundError,
    ToolResolutionError,
    is_cancellation,
)
from .executor import ErrorHandler, ToolExecutor
from .injection import ContextInjectors, InjectedContextKind
from .registry import ProgrammaticView, RuntimeToolset, ToolRegistry

__all__ = [
    "ArgumentDecodeError",
    "CallbackError",
    "ContextInjectors",
    "ErrorHandler",
    "FunctionTool",
    "InjectedContextKind",
    "InvalidToolInputError",
    "LangChainTool",
    "ProgrammaticView",
    "RuntimeToolset",
    "ToolCapability",
    "ToolError",
    "ToolExecutor",
    "ToolInvocation",
    "ToolInvocationError",
    "ToolNotFoundError",
    "ToolRegistry",
    "ToolResolutionError",
    "as_capability",
    "is_cancellation",
]
