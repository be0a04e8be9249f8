"""Tool declarations and the execution bridge."""

from expense_assistant.tools.bridge import ToolExecution, ToolExecutionBridge
from expense_assistant.tools.declarations import (
    MUTATING_TOOLS,
    TOOL_DECLARATIONS,
    tool_names,
)

__all__ = [
    "MUTATING_TOOLS",
    "TOOL_DECLARATIONS",
    "ToolExecution",
    "ToolExecutionBridge",
    "tool_names",
]
