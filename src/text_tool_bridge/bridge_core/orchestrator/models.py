"""Run state and results of the conversation orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..messages import AnyTurnMessage
from ..tools.models import ExecutionRecord


class ConversationPhase(str, Enum):
    """Where a run currently is in its prompt/turn/tool cycle."""

    PROMPTING = "prompting"
    AWAITING_TURN = "awaiting_turn"
    TOOL_DETECTED = "tool_detected"
    EXECUTING = "executing"
    DONE = "done"


@dataclass
class ConversationState:
    """Mutable state of exactly one run.

    Attributes:
        session_id: Session the run is tracked under.
        current_prompt: Prompt sent with the next transport call.
        iteration_count: Number of tool executions so far.
        accumulated_messages: Every normalized message of every turn, in order.
        execution_history: Records of the tool executions of this run.
        phase: Current phase of the run.
    """

    session_id: str
    current_prompt: str
    iteration_count: int = 0
    accumulated_messages: List[AnyTurnMessage] = field(default_factory=list)
    execution_history: List[ExecutionRecord] = field(default_factory=list)
    phase: ConversationPhase = ConversationPhase.PROMPTING


class SessionMetadata(BaseModel):
    session_id: str
    cost: Optional[float] = None
    duration_ms: int = 0
    is_error: bool = False
    total_turns: int = 0


class RunResult(BaseModel):
    """Outcome of a batch run.

    Attributes:
        text: The final answer shown to the caller.
        execution_history: Every tool execution of the run, in order.
        tool_calls: ``tool-call`` entries derived from the history.
        tool_results: ``tool-result`` entries derived from the history.
        session: Cost, duration and turn statistics of the run.
        messages: All normalized transport messages of the run.
    """

    text: str
    execution_history: List[ExecutionRecord] = Field(default_factory=list)
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    tool_results: List[Dict[str, Any]] = Field(default_factory=list)
    session: SessionMetadata
    messages: List[AnyTurnMessage] = Field(default_factory=list)
