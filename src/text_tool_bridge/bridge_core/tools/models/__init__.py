"""Tool-related data models."""

from .models import ToolDefinition
from .tool_call import ToolCallCandidate, ExecutionRecord

__all__ = ["ToolDefinition", "ToolCallCandidate", "ExecutionRecord"]
