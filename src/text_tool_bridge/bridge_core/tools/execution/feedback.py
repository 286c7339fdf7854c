"""Render execution records as the next user turn."""

import json
from typing import Any

from pydantic_core import to_jsonable_python

from ..models import ExecutionRecord

CONTINUE_INSTRUCTION = "Please continue with the task using this information."


def _to_json(value: Any) -> str:
    return json.dumps(value, indent=2, default=lambda obj: to_jsonable_python(obj, fallback=str))


def format_feedback(record: ExecutionRecord) -> str:
    """Build the feedback prompt that reports a tool outcome to the model.

    Args:
        record: The outcome of the tool invocation.

    Returns:
        A success or failure report followed by the instruction to continue.
    """
    if record.succeeded:
        body = f"Tool execution completed:\n- Tool: {record.tool_name}\n- Result: {_to_json(record.output)}"
    else:
        body = (
            f"Tool execution failed:\n- Tool: {record.tool_name}\n- Error: {record.error}\n"
            f"- Input: {_to_json(record.input)}"
        )
    return f"{body}\n\n{CONTINUE_INSTRUCTION}"
