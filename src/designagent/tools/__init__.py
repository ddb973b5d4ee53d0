"""Tool execution - map agent tools onto REST calls."""

from designagent.tools.executor import (
    build_request,
    code_from_status,
    execute_tool,
    extract_error,
    raise_for_result,
)
from designagent.tools.types import (
    ToolError,
    ToolExecutionContext,
    ToolExecutionError,
    ToolExecutionResult,
    ToolMetadata,
)

__all__ = [
    # Executor
    "build_request",
    "code_from_status",
    "execute_tool",
    "extract_error",
    "raise_for_result",
    # Types
    "ToolError",
    "ToolExecutionContext",
    "ToolExecutionError",
    "ToolExecutionResult",
    "ToolMetadata",
]
