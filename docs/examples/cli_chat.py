import ast
import asyncio
import logging
import operator
import os
from typing import Annotated

from dotenv import load_dotenv
from openai import AsyncOpenAI
from pydantic import Field

from text_tool_bridge import ConversationOrchestrator, OpenAITransport, ToolRegistry, setup_logging

# Load environment variables
load_dotenv()

registry = ToolRegistry()


_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.USub: operator.neg,
}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.left), _evaluate(node.right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression element: {ast.dump(node)}")


@registry.tool
def calculator(expression: Annotated[str, Field(description="Arithmetic expression, e.g. '10 * 4.2'")]) -> dict:
    """Evaluate a basic arithmetic expression."""
    return {"result": _evaluate(ast.parse(expression, mode="eval").body)}


async def main() -> None:
    """
    Runs a CLI chat in which the model calls tools by writing JSON in its replies.
    """
    setup_logging(level=logging.INFO)
    print("Welcome to the CLI Chat (OpenAI, text tool calls)!")

    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("Error: OPENAI_API_KEY not found in environment variables.")
        return

    transport = OpenAITransport(
        client=AsyncOpenAI(api_key=api_key, base_url=os.getenv("OPENAI_BASE_URL")),
        model_name=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        sys_instruction="You are a helpful assistant.",
    )
    orchestrator = ConversationOrchestrator(transport, registry)

    print("\nStart chatting! Type 'exit' or 'quit' to stop.")
    while True:
        user_input = input("\nYou: ").strip()
        if user_input.lower() in ["exit", "quit"]:
            print("Goodbye!")
            break

        if not user_input:
            continue

        try:
            result = await orchestrator.run(user_input)
            for record in result.execution_history:
                outcome = record.error if record.error is not None else record.output
                print(f"  [{record.tool_name}] {record.input} -> {outcome}")
            print(f"Assistant: {result.text}")

        except Exception as e:
            print(f"An error occurred: {e}")


if __name__ == "__main__":
    asyncio.run(main())
