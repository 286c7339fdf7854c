"""Data models for detected tool calls and their execution outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ToolCallCandidate:
    """A tool call recognized in one block of model text."""

    tool_name: str
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExecutionRecord:
    """Outcome of one tool invocation.

    ``error`` is None exactly when the invocation succeeded; a successful tool may
    still return None as its output.
    """

    tool_name: str
    input: Any
    output: Any = None
    error: Optional[str] = None
    timestamp: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def call_id(self) -> str:
        return f"call_{self.timestamp}"

    def to_tool_call(self) -> Dict[str, Any]:
        """Describe the invocation as a ``tool-call`` entry."""
        return {
            "type": "tool-call",
            "tool_call_id": self.call_id,
            "tool_name": self.tool_name,
            "args": self.input,
        }

    def to_tool_result(self) -> Dict[str, Any]:
        """Describe the outcome as a ``tool-result`` entry."""
        return {
            "type": "tool-result",
            "tool_call_id": self.call_id,
            "tool_name": self.tool_name,
            "args": self.input,
            "result": self.output,
            "is_error": not self.succeeded,
        }
