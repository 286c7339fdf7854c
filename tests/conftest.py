import json
import os
from typing import Annotated, Any, Callable, Dict, List, Optional, Sequence, Union

import pytest
from dotenv import find_dotenv, load_dotenv
from openai import AsyncOpenAI
from pydantic import Field

from text_tool_bridge.bridge_core import ModelTransport, RawMessage, ToolRegistry

# Load environment variables from .env file
env_file = find_dotenv(usecwd=True)
if env_file:
    load_dotenv(env_file)


TurnScript = Union[Sequence[Sequence[RawMessage]], Callable[[str, int], Sequence[RawMessage]]]


class ScriptedTransport(ModelTransport):
    """Transport that replays canned turns and records what it was asked.

    ``turns`` is either a list of turns (each a list of raw messages) or a callable
    receiving the prompt and the zero-based call index. When the list runs out, the
    last turn is repeated.
    """

    def __init__(self, turns: TurnScript, max_retries: int = 0, base_retry_delay: float = 0.0) -> None:
        super().__init__(max_retries=max_retries, base_retry_delay=base_retry_delay)
        self.turns = turns
        self.prompts: List[str] = []
        self.options: List[Dict[str, Any]] = []
        self.ended: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def _invoke_impl(self, prompt: str, options: Dict[str, Any]) -> List[RawMessage]:
        index = len(self.prompts)
        self.prompts.append(prompt)
        self.options.append(options)
        if callable(self.turns):
            return list(self.turns(prompt, index))
        return list(self.turns[min(index, len(self.turns) - 1)])

    async def end_conversation(self, session_id: str) -> None:
        self.ended.append(session_id)


def assistant(text: str, session_id: Optional[str] = None, partial: bool = False) -> Dict[str, Any]:
    message: Dict[str, Any] = {
        "type": "assistant",
        "session_id": session_id,
        "message": {"content": [{"type": "text", "text": text}]},
    }
    if partial:
        message["partial"] = True
    return message


def result(text: str = "", cost: float = 0.0, is_error: bool = False) -> Dict[str, Any]:
    return {
        "type": "result",
        "total_cost_usd": cost,
        "duration_ms": 5,
        "num_turns": 1,
        "is_error": is_error,
        "result": text,
    }


def tool_request(tool: str, **parameters: Any) -> str:
    return f'Let me check.\n```json\n{json.dumps({"tool": tool, "parameters": parameters})}\n```'


@pytest.fixture
def calculator_registry() -> ToolRegistry:
    registry = ToolRegistry()

    @registry.tool
    def calculator(expression: Annotated[str, Field(description="Arithmetic expression")]) -> Dict[str, Any]:
        """Evaluate an arithmetic expression."""
        if expression == "10 * 4.2":
            return {"result": 42}
        raise ValueError(f"Unsupported expression: {expression}")

    return registry


@pytest.fixture
def openai_client() -> AsyncOpenAI:
    api_key = os.getenv("OPENAI_API_KEY") or "dummy_key"
    return AsyncOpenAI(api_key=api_key, base_url=os.getenv("OPENAI_BASE_URL"))
