"""Tool execution and outcome feedback."""

from .feedback import CONTINUE_INSTRUCTION, format_feedback
from .invoker import ToolInvoker

__all__ = ["ToolInvoker", "format_feedback", "CONTINUE_INSTRUCTION"]
