"""Tools package for the bridge core."""

from .execution import ToolInvoker, format_feedback
from .models import ExecutionRecord, ToolCallCandidate, ToolDefinition
from .parsing import ParsingStrategy, ToolCallParser
from .registry import ToolRegistry

__all__ = [
    "ExecutionRecord",
    "ParsingStrategy",
    "ToolCallCandidate",
    "ToolCallParser",
    "ToolDefinition",
    "ToolInvoker",
    "ToolRegistry",
    "format_feedback",
]
