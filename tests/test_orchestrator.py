import asyncio
from typing import Annotated, Any, Dict, List, Sequence
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.types import CallToolResult, ListToolsResult, TextContent
from mcp.types import Tool as MCPTool
from pydantic import Field

from conftest import ScriptedTransport, assistant, result, tool_request
from text_tool_bridge.bridge_core import (
    BridgeOptions,
    ConversationOrchestrator,
    OptionsError,
    RunCancelledError,
    SessionTracker,
    StreamEvent,
    ToolDefinition,
    ToolNotFoundError,
    ToolRegistry,
    TransportError,
)


async def collect(stream: Any) -> List[StreamEvent]:
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_calculator_result_is_fed_back_to_the_model(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport(
        [
            [assistant(tool_request("calculator", expression="10 * 4.2")), result(cost=0.01)],
            [assistant("10 times 4.2 is 42."), result(cost=0.02)],
        ]
    )
    orchestrator = ConversationOrchestrator(transport, calculator_registry)

    run = await orchestrator.run("What is 10 times 4.2?")

    assert transport.call_count == 2
    assert transport.prompts[0] == "What is 10 times 4.2?"
    assert "42" in transport.prompts[1]
    assert transport.prompts[1].startswith("Tool execution completed:")
    assert len(run.execution_history) == 1
    record = run.execution_history[0]
    assert record.tool_name == "calculator"
    assert record.input == {"expression": "10 * 4.2"}
    assert record.output == {"result": 42}
    assert run.text.endswith("10 times 4.2 is 42.")
    assert run.tool_calls == [record.to_tool_call()]
    assert run.tool_results[0]["result"] == {"result": 42}
    assert run.session.cost == pytest.approx(0.03)
    assert run.session.total_turns == 2
    assert not run.session.is_error


@pytest.mark.asyncio
async def test_plain_answer_without_tools() -> None:
    transport = ScriptedTransport([[assistant("Hello"), result("Hello")]])
    orchestrator = ConversationOrchestrator(transport)

    run = await orchestrator.run("Hi")

    assert run.text == "Hello"
    assert run.execution_history == []
    assert transport.call_count == 1
    assert "append_system_prompt" not in transport.options[0]


@pytest.mark.asyncio
async def test_failing_tool_does_not_abort_the_run() -> None:
    registry = ToolRegistry()

    def explode() -> None:
        raise RuntimeError("boom")

    registry.register(ToolDefinition(name="explode", description="Always fails.", func=explode))
    transport = ScriptedTransport(
        [
            [assistant(tool_request("explode"))],
            [assistant("Sorry, the tool failed. Here is my best answer anyway.")],
        ]
    )
    orchestrator = ConversationOrchestrator(transport, registry)

    run = await orchestrator.run("Do the thing")

    assert len(run.execution_history) == 1
    assert run.execution_history[0].error == "boom"
    assert run.tool_results[0]["is_error"] is True
    assert "Tool execution failed:" in transport.prompts[1]
    assert "- Error: boom" in transport.prompts[1]
    assert "Sorry, the tool failed." in run.text


@pytest.mark.asyncio
async def test_iterations_are_bounded() -> None:
    registry = ToolRegistry()
    calls: List[Dict[str, Any]] = []
    registry.register(ToolDefinition(name="again", description="Always asks for more.", func=lambda: calls.append({})))
    transport = ScriptedTransport([[assistant(tool_request("again"))]])
    orchestrator = ConversationOrchestrator(transport, registry, options={"max_iterations": 5})

    run = await orchestrator.run("Loop forever")

    assert len(calls) == 5
    assert transport.call_count == 5
    assert len(run.execution_history) == 5


@pytest.mark.asyncio
async def test_only_the_latest_assistant_text_is_parsed(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport(
        [[assistant(tool_request("calculator", expression="10 * 4.2")), assistant("Actually, never mind.")]]
    )
    orchestrator = ConversationOrchestrator(transport, calculator_registry)

    run = await orchestrator.run("What is 10 times 4.2?")

    assert transport.call_count == 1
    assert run.execution_history == []


@pytest.mark.asyncio
async def test_streaming_parses_only_the_latest_assistant_message(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport(
        [[assistant(tool_request("calculator", expression="10 * 4.2")), assistant("Actually, never mind.")]]
    )
    orchestrator = ConversationOrchestrator(transport, calculator_registry)

    events = await collect(orchestrator.run_streaming("What is 10 times 4.2?"))

    assert transport.call_count == 1
    assert events[-1].payload["status"] == "completed"
    assert events[-1].payload["tool_calls"] == []


@pytest.mark.asyncio
async def test_final_text_falls_back_to_terminal_result() -> None:
    transport = ScriptedTransport([[{"type": "system", "model": "m"}, result("Done from result")]])

    run = await ConversationOrchestrator(transport).run("Hi")

    assert run.text == "Done from result"


@pytest.mark.asyncio
async def test_internal_labels_are_removed_from_final_text() -> None:
    raw = {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "text", "text": "Checked the files."},
                {"type": "tool_use", "name": "Read", "input": {}},
            ]
        },
    }
    transport = ScriptedTransport([[raw]])

    run = await ConversationOrchestrator(transport).run("Look around")

    assert run.text == "Checked the files."


@pytest.mark.asyncio
async def test_tool_catalogue_and_session_are_forwarded(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport([[assistant("No tools needed.")]])
    orchestrator = ConversationOrchestrator(
        transport, calculator_registry, options={"append_system_prompt": "Be brief.", "max_turns": 3}
    )

    run = await orchestrator.run("Hi")

    options = transport.options[0]
    assert options["append_system_prompt"].startswith("Be brief.\n\n## Available Tools")
    assert "- calculator: Evaluate an arithmetic expression. [Parameters: expression: string]" in options[
        "append_system_prompt"
    ]
    assert options["max_turns"] == 3
    assert options["session_id"] == run.session.session_id
    assert transport.ended == [run.session.session_id]


@pytest.mark.asyncio
async def test_custom_system_prompt_suppresses_catalogue(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport([[assistant("ok")]])
    orchestrator = ConversationOrchestrator(transport, calculator_registry)

    await orchestrator.run("Hi", options={"custom_system_prompt": "You are terse."})

    assert transport.options[0]["custom_system_prompt"] == "You are terse."
    assert "append_system_prompt" not in transport.options[0]


@pytest.mark.asyncio
async def test_max_steps_override_is_an_alias_for_max_turns() -> None:
    transport = ScriptedTransport([[assistant("ok")]])

    await ConversationOrchestrator(transport).run("Hi", options={"max_steps": 7})

    assert transport.options[0]["max_turns"] == 7


@pytest.mark.asyncio
async def test_invalid_run_options_raise_before_the_transport_is_called() -> None:
    transport = ScriptedTransport([[assistant("ok")]])

    with pytest.raises(OptionsError, match="max_turns"):
        await ConversationOrchestrator(transport).run("Hi", options={"max_turns": 0})
    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_transport_failure_is_wrapped_and_recorded() -> None:
    def fail(prompt: str, index: int) -> Sequence[Any]:
        raise ConnectionError("socket closed")

    tracker = SessionTracker()
    orchestrator = ConversationOrchestrator(ScriptedTransport(fail), session_tracker=tracker)

    with pytest.raises(TransportError, match="Tool bridge execution failed: socket closed"):
        await orchestrator.run("Hi")

    sessions = [tracker.get_session(sid) for sid in list(tracker._sessions)]
    assert len(sessions) == 1
    assert sessions[0] is not None
    assert sessions[0].is_error
    assert not sessions[0].is_active
    tracker.cancel_pending_cleanups()


@pytest.mark.asyncio
async def test_abort_before_start_raises_without_calling_transport() -> None:
    transport = ScriptedTransport([[assistant("ok")]])
    abort = asyncio.Event()
    abort.set()

    with pytest.raises(RunCancelledError):
        await ConversationOrchestrator(transport).run("Hi", abort_event=abort)
    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_abort_during_tool_execution_discards_the_result() -> None:
    abort = asyncio.Event()
    registry = ToolRegistry()

    def cancel_me() -> str:
        abort.set()
        return "finished anyway"

    registry.register(ToolDefinition(name="cancel_me", description="Sets the abort flag.", func=cancel_me))
    transport = ScriptedTransport([[assistant(tool_request("cancel_me"))]])

    with pytest.raises(RunCancelledError, match="Generation aborted"):
        await ConversationOrchestrator(transport, registry).run("Go", abort_event=abort)
    assert transport.call_count == 1


@pytest.mark.asyncio
async def test_session_is_observable_until_cleanup() -> None:
    tracker = SessionTracker()
    orchestrator = ConversationOrchestrator(
        ScriptedTransport([[assistant("ok")]]), session_tracker=tracker, options={"session_cleanup_delay": 0.01}
    )

    run = await orchestrator.run("Hi")

    info = orchestrator.get_session_info(run.session.session_id)
    assert info is not None and not info.is_active
    assert orchestrator.list_active_sessions() == []
    await asyncio.sleep(0.05)
    assert orchestrator.get_session_info(run.session.session_id) is None


@pytest.mark.asyncio
async def test_streaming_run_emits_events_in_order(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport(
        [
            [assistant(tool_request("calculator", expression="10 * 4.2")), result(cost=0.01)],
            [assistant("It is 42."), result(cost=0.01)],
        ]
    )
    orchestrator = ConversationOrchestrator(transport, calculator_registry)

    events = await collect(orchestrator.run_streaming("What is 10 times 4.2?"))

    assert [event.type for event in events] == [
        "metadata",
        "content",
        "complete",
        "metadata",
        "content",
        "complete",
        "metadata",
    ]
    assert events[0].payload["status"] == "started"
    assert events[3].payload["tool_execution"] == {"name": "calculator", "result": {"result": 42}, "error": None}
    final = events[-1].payload
    assert final["status"] == "completed"
    assert final["text"].endswith("It is 42.")
    assert len(final["tool_calls"]) == 1
    assert final["cost"] == pytest.approx(0.02)
    assert final["is_error"] is False
    assert {event.payload["session_id"] for event in events} == {final["session_id"]}


@pytest.mark.asyncio
async def test_streaming_detects_calls_split_across_fragments(calculator_registry: ToolRegistry) -> None:
    request = tool_request("calculator", expression="10 * 4.2")
    middle = len(request) // 2
    transport = ScriptedTransport(
        [
            [assistant(request[:middle], partial=True), assistant(request[middle:], partial=True)],
            [assistant("42.")],
        ]
    )

    events = await collect(ConversationOrchestrator(transport, calculator_registry).run_streaming("Go"))

    assert transport.call_count == 2
    assert events[-1].payload["tool_results"][0]["result"] == {"result": 42}


@pytest.mark.asyncio
async def test_streaming_fragments_are_superseded_by_a_later_message(calculator_registry: ToolRegistry) -> None:
    request = tool_request("calculator", expression="10 * 4.2")
    transport = ScriptedTransport(
        [[assistant(request[:10], partial=True), assistant(request[10:], partial=True), assistant("Never mind.")]]
    )

    events = await collect(ConversationOrchestrator(transport, calculator_registry).run_streaming("Go"))

    assert transport.call_count == 1
    assert events[-1].payload["tool_calls"] == []
    assert events[-1].payload["text"] == request + "Never mind."


@pytest.mark.asyncio
async def test_streaming_errors_become_error_events() -> None:
    def fail(prompt: str, index: int) -> Sequence[Any]:
        raise RuntimeError("stream broke")

    events = await collect(ConversationOrchestrator(ScriptedTransport(fail)).run_streaming("Hi"))

    assert [event.type for event in events] == ["metadata", "error"]
    assert events[-1].payload["error"]["message"] == "stream broke"
    assert events[-1].payload["error"]["error_type"] == "RuntimeError"


@pytest.mark.asyncio
async def test_streaming_invalid_options_yield_a_single_error_event() -> None:
    transport = ScriptedTransport([[assistant("ok")]])

    events = await collect(ConversationOrchestrator(transport).run_streaming("Hi", options={"timeout_ms": 5}))

    assert len(events) == 1
    assert events[0].type == "error"
    assert events[0].payload["error"]["error_type"] == "OptionsError"
    assert transport.call_count == 0


@pytest.mark.asyncio
async def test_streaming_abort_stops_after_the_current_event() -> None:
    abort = asyncio.Event()
    transport = ScriptedTransport([[assistant("first"), assistant("second")]])
    orchestrator = ConversationOrchestrator(transport)

    events: List[StreamEvent] = []
    async for event in orchestrator.run_streaming("Hi", abort_event=abort):
        events.append(event)
        if event.type == "content":
            abort.set()

    assert [event.type for event in events] == ["metadata", "content", "error"]
    assert events[-1].payload["error"]["error_type"] == "RunCancelledError"


@pytest.mark.asyncio
async def test_disallowed_tools_are_hidden_and_reported_as_not_found(calculator_registry: ToolRegistry) -> None:
    transport = ScriptedTransport(
        [[assistant(tool_request("calculator", expression="10 * 4.2"))], [assistant("I cannot calculate that.")]]
    )
    orchestrator = ConversationOrchestrator(
        transport, calculator_registry, options={"disallowed_tools": ["calculator"]}
    )

    run = await orchestrator.run("What is 10 times 4.2?")

    assert "append_system_prompt" not in transport.options[0]
    assert run.execution_history[0].error == 'Tool "calculator" not found'
    assert 'Tool "calculator" not found' in transport.prompts[1]
    assert "calculator" in orchestrator.registry


@pytest.mark.asyncio
async def test_allowed_tools_limit_the_catalogue(calculator_registry: ToolRegistry) -> None:
    @calculator_registry.tool
    def lookup(term: Annotated[str, Field(description="Term to look up")]) -> str:
        """Look up a term."""
        return term

    transport = ScriptedTransport([[assistant("ok")]])
    orchestrator = ConversationOrchestrator(transport, calculator_registry, options={"allowed_tools": ["lookup"]})

    await orchestrator.run("Hi")

    catalogue = transport.options[0]["append_system_prompt"]
    assert "- lookup: Look up a term. [Parameters: term: string]" in catalogue
    assert "calculator" not in catalogue
    assert transport.options[0]["allowed_tools"] == ["lookup"]


@pytest.mark.asyncio
async def test_execute_tool_respects_tool_restrictions(calculator_registry: ToolRegistry) -> None:
    orchestrator = ConversationOrchestrator(
        ScriptedTransport([[assistant("ok")]]), calculator_registry, options={"allowed_tools": ["other"]}
    )

    with pytest.raises(ToolNotFoundError):
        await orchestrator.execute_tool("calculator", {"expression": "10 * 4.2"})


@pytest.mark.asyncio
async def test_stdio_mcp_servers_provide_tools_for_the_run() -> None:
    session = AsyncMock()
    session.__aenter__.return_value = session
    session.list_tools = AsyncMock(
        return_value=ListToolsResult(
            tools=[
                MCPTool(
                    name="read_file",
                    description="Read a file.",
                    inputSchema={"type": "object", "properties": {"path": {"type": "string"}}, "required": ["path"]},
                )
            ]
        )
    )
    session.call_tool = AsyncMock(return_value=CallToolResult(content=[TextContent(type="text", text="hello")]))
    transport = ScriptedTransport(
        [[assistant(tool_request("read_file", path="/tmp/a.txt"))], [assistant("It says hello.")]]
    )
    servers = {
        "fs": {"command": "npx", "args": ["server-filesystem", "/tmp"]},
        "remote": {"type": "sse", "url": "http://localhost:8000/sse"},
    }
    orchestrator = ConversationOrchestrator(transport, options={"mcp_servers": servers})

    with patch("text_tool_bridge.mcp_wrapper.wrapper.stdio_client", new_callable=MagicMock) as stdio:
        stdio.return_value = AsyncMock()
        stdio.return_value.__aenter__.return_value = (AsyncMock(), AsyncMock())
        with patch("text_tool_bridge.mcp_wrapper.wrapper.ClientSession", return_value=session):
            run = await orchestrator.run("Read /tmp/a.txt")

    assert stdio.call_count == 1
    assert stdio.call_args.args[0].command == "npx"
    assert "- read_file: Read a file. [Parameters: path: string]" in transport.options[0]["append_system_prompt"]
    session.call_tool.assert_awaited_once_with("read_file", arguments={"path": "/tmp/a.txt"})
    assert run.execution_history[0].output == "hello"
    assert run.text.endswith("It says hello.")
    stdio.return_value.__aexit__.assert_awaited()
    assert "read_file" not in orchestrator.registry


def test_tool_management(calculator_registry: ToolRegistry) -> None:
    orchestrator = ConversationOrchestrator(ScriptedTransport([[assistant("ok")]]), calculator_registry)

    def lookup(term: Annotated[str, Field(description="Term to look up")]) -> str:
        """Look up a term."""
        return term

    orchestrator.add_tool(lookup)
    orchestrator.add_tool("lookup", description="Look up a term, again.", func=lookup, parameters={"type": "object"})
    orchestrator.remove_tool("calculator")
    orchestrator.remove_tool("never_registered")

    assert orchestrator.list_tool_names() == ["lookup"]
    assert orchestrator.describe_tools() == {"lookup": "Look up a term, again."}


@pytest.mark.asyncio
async def test_execute_tool_directly(calculator_registry: ToolRegistry) -> None:
    orchestrator = ConversationOrchestrator(ScriptedTransport([[assistant("ok")]]), calculator_registry)

    assert await orchestrator.execute_tool("calculator", {"expression": "10 * 4.2"}) == {"result": 42}
    with pytest.raises(ToolNotFoundError):
        await orchestrator.execute_tool("missing")
    with pytest.raises(ValueError, match="Unsupported expression"):
        await orchestrator.execute_tool("calculator", {"expression": "1 + 1"})


def test_update_options_keeps_previous_options_on_error() -> None:
    orchestrator = ConversationOrchestrator(ScriptedTransport([[assistant("ok")]]), options=BridgeOptions(max_turns=4))

    updated = orchestrator.update_options({"max_iterations": 2})
    with pytest.raises(OptionsError):
        orchestrator.update_options({"permission_mode": "yolo"})

    assert updated.max_iterations == 2
    assert orchestrator.options.max_turns == 4
    assert orchestrator.options.max_iterations == 2
