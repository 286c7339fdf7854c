"""The tool detection and execution loop."""

import asyncio
import time
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence, Type, Union

from pydantic import BaseModel

from ..base import ModelTransport
from ..config import BridgeOptions, McpStdioServerConfig, validate_options
from ..exceptions import OptionsError, RunCancelledError, TransportError
from ..logger import get_logger
from ..messages import AnyTurnMessage, AssistantText, ResponseNormalizer, StreamEvent, Terminal
from ..messages.normalizer import PromptInput
from ..session import SessionRecord, SessionTracker
from ..tools import ToolCallParser, ToolDefinition, ToolInvoker, ToolRegistry, format_feedback
from ..tools.models import ExecutionRecord
from ...mcp_wrapper import MCPClientWrapper
from .models import ConversationPhase, ConversationState, RunResult, SessionMetadata

logger = get_logger(__name__)

OptionOverrides = Optional[Mapping[str, Any]]


class ConversationOrchestrator:
    """
    Drives a conversation between a text-only model transport and registered tools.

    Each run sends the prompt to the transport, looks for a tool call in the latest
    assistant text, executes the first call found, and sends the outcome back as the
    next prompt. The loop ends when the model stops asking for tools or after
    ``max_iterations`` tool executions. Tool failures are reported to the model and
    never abort a run; transport failures and cancellation do.
    """

    def __init__(
        self,
        transport: ModelTransport,
        registry: Optional[ToolRegistry] = None,
        *,
        options: Optional[Union[BridgeOptions, Mapping[str, Any]]] = None,
        session_tracker: Optional[SessionTracker] = None,
        parser: Optional[ToolCallParser] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        """
        Initializes the orchestrator.

        Args:
            transport: The model transport each turn is sent through.
            registry: Tools the model may call. Defaults to an empty registry.
            options: Default options for every run.
            session_tracker: Tracker shared with other orchestrators, if any.
            parser: Tool call parser. Defaults to all built-in strategies.
            normalizer: Raw message normalizer.

        Raises:
            OptionsError: If ``options`` are invalid.
        """
        self.transport = transport
        self.registry = registry if registry is not None else ToolRegistry()
        self.options = validate_options(options)
        self.sessions = session_tracker if session_tracker is not None else SessionTracker()
        self.parser = parser if parser is not None else ToolCallParser(registry=self.registry)
        self._custom_parser = parser is not None
        self.normalizer = normalizer if normalizer is not None else ResponseNormalizer()

    async def run(
        self,
        prompt: PromptInput,
        options: OptionOverrides = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> RunResult:
        """
        Runs the conversation until the model stops requesting tools.

        Args:
            prompt: A string, a list of strings, or a list of chat messages.
            options: Per-run option overrides (``max_steps`` is accepted for ``max_turns``).
            abort_event: Setting this event cancels the run at the next checkpoint.

        Returns:
            The final text, the tool execution history and session statistics.

        Raises:
            OptionsError: If the option overrides are invalid.
            RunCancelledError: If ``abort_event`` was set during the run.
            TransportError: If the transport failed.
        """
        run_options = self.options.merged(options)
        session = self.sessions.create_session()
        state = ConversationState(session_id=session.session_id, current_prompt=self.normalizer.extract_prompt(prompt))
        started = time.monotonic()
        mcp_sessions = AsyncExitStack()

        logger.info(f"Starting run {state.session_id} (max iterations: {run_options.max_iterations}).")
        try:
            registry = await self._prepare_registry(run_options, mcp_sessions)
            parser = self._parser_for(registry)
            invoker = ToolInvoker(registry, tool_timeout=run_options.tool_timeout)
            transport_options = self._build_transport_options(run_options, state.session_id, registry)

            while state.iteration_count < run_options.max_iterations:
                self._check_abort(abort_event)
                state.phase = ConversationPhase.AWAITING_TURN
                logger.debug(f"Iteration {state.iteration_count + 1}/{run_options.max_iterations}")

                raw_messages = await self.transport.invoke(state.current_prompt, transport_options)
                turn = self.normalizer.normalize_all(raw_messages)
                for message in turn:
                    self._track_message(state.session_id, message)
                state.accumulated_messages.extend(turn)

                text = self.normalizer.extract_latest_assistant_text(self._assemble_fragments(turn))
                record = await self._execute_detected(state, parser, invoker, text, abort_event)
                if record is None:
                    break
            else:
                logger.warning(f"Max tool iterations ({run_options.max_iterations}) reached. Stopping execution.")

            state.phase = ConversationPhase.DONE
            return self._build_result(state, started)

        except RunCancelledError:
            logger.info(f"Run {state.session_id} was cancelled.")
            raise
        except Exception as exc:
            self.sessions.update_session(state.session_id, is_error=True)
            logger.error(f"Run {state.session_id} failed: {exc}")
            raise TransportError(f"Tool bridge execution failed: {exc}") from exc
        finally:
            await mcp_sessions.aclose()
            await self._release_session(state.session_id, run_options)

    async def run_streaming(
        self,
        prompt: PromptInput,
        options: OptionOverrides = None,
        abort_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Runs the conversation and yields stream events as they happen.

        Fatal errors, including cancellation, are yielded as a single ``error`` event
        after which the stream ends; this generator does not raise them. The last event
        of a successful run is ``metadata`` with ``status == "completed"`` and the
        run summary.

        Args:
            prompt: A string, a list of strings, or a list of chat messages.
            options: Per-run option overrides.
            abort_event: Setting this event cancels the run at the next checkpoint.

        Yields:
            Stream events in the order they were produced.
        """
        try:
            run_options = self.options.merged(options)
        except OptionsError as exc:
            yield self.normalizer.error_event(exc)
            return

        session = self.sessions.create_session()
        state = ConversationState(session_id=session.session_id, current_prompt=self.normalizer.extract_prompt(prompt))
        started = time.monotonic()
        mcp_sessions = AsyncExitStack()
        content_parts: List[str] = []

        yield self.normalizer.metadata_event(
            {"status": "started", "options": run_options.model_dump(mode="json")}, state.session_id
        )
        try:
            registry = await self._prepare_registry(run_options, mcp_sessions)
            parser = self._parser_for(registry)
            invoker = ToolInvoker(registry, tool_timeout=run_options.tool_timeout)
            transport_options = self._build_transport_options(run_options, state.session_id, registry)

            while state.iteration_count < run_options.max_iterations:
                self._check_abort(abort_event)
                state.phase = ConversationPhase.AWAITING_TURN
                turn: List[AnyTurnMessage] = []

                async for raw in self.transport.stream(state.current_prompt, transport_options):
                    message = self.normalizer.to_turn_message(raw)
                    self._track_message(state.session_id, message)
                    state.accumulated_messages.append(message)
                    turn.append(message)

                    event = self.normalizer.to_stream_event(message, state.session_id)
                    if event.type == "content":
                        content_parts.append(event.payload.get("content") or "")
                    yield event
                    self._check_abort(abort_event)

                text = self.normalizer.extract_latest_assistant_text(self._assemble_fragments(turn))
                record = await self._execute_detected(state, parser, invoker, text, abort_event)
                if record is None:
                    break
                yield self.normalizer.metadata_event(
                    {"tool_execution": {"name": record.tool_name, "result": record.output, "error": record.error}},
                    state.session_id,
                )
            else:
                logger.warning(f"Max tool iterations ({run_options.max_iterations}) reached. Stopping execution.")

            state.phase = ConversationPhase.DONE
            self.sessions.end_session(state.session_id)
            summary = self._session_metadata(state.session_id, started)
            yield self.normalizer.metadata_event(
                {
                    "status": "completed",
                    "text": "".join(content_parts),
                    "tool_calls": [record.to_tool_call() for record in state.execution_history],
                    "tool_results": [record.to_tool_result() for record in state.execution_history],
                    "cost": summary.cost,
                    "duration_ms": summary.duration_ms,
                    "is_error": summary.is_error,
                },
                state.session_id,
            )

        except Exception as exc:
            if not isinstance(exc, RunCancelledError):
                self.sessions.update_session(state.session_id, is_error=True)
            logger.error(f"Streaming run {state.session_id} failed: {exc}")
            yield self.normalizer.error_event(exc, state.session_id)
        finally:
            await mcp_sessions.aclose()
            await self._release_session(state.session_id, run_options)

    # Session API

    def get_session_info(self, session_id: str) -> Optional[SessionRecord]:
        return self.sessions.get_session(session_id)

    def list_active_sessions(self) -> List[SessionRecord]:
        return self.sessions.active_sessions()

    def end_session(self, session_id: str) -> None:
        """Mark a session as ended and schedule its cleanup."""
        self.sessions.end_session(session_id)
        self.sessions.schedule_cleanup(session_id, self.options.session_cleanup_delay)

    # Tool API

    def add_tool(
        self,
        name_or_tool: Union[str, ToolDefinition, Callable],
        description: Optional[str] = None,
        func: Optional[Callable] = None,
        parameters: Optional[Union[Dict[str, Any], Type[BaseModel]]] = None,
    ) -> ToolDefinition:
        """Register a tool, replacing any tool of the same name.

        Accepts the same arguments as ``ToolRegistry.register``.
        """
        name = self._tool_name(name_or_tool)
        if name is not None and name in self.registry:
            logger.info(f"Replacing existing tool '{name}'.")
            self.registry.unregister(name)
        return self.registry.register(name_or_tool, description=description, func=func, parameters=parameters)

    def remove_tool(self, tool_name: str) -> None:
        """Remove a tool. Unknown names are ignored."""
        if tool_name in self.registry:
            self.registry.unregister(tool_name)

    def list_tool_names(self) -> List[str]:
        return self.registry.names

    def describe_tools(self) -> Dict[str, str]:
        return self.registry.descriptions

    async def execute_tool(self, tool_name: str, parameters: Any = None) -> Any:
        """
        Executes a tool directly, outside of any run.

        Raises:
            ToolNotFoundError: If the tool is not registered.
            ToolValidationError: If the parameters do not match the tool's shape.
            Exception: Whatever the tool itself raises.
        """
        invoker = ToolInvoker(self._permitted(self.registry, self.options), tool_timeout=self.options.tool_timeout)
        return await invoker.invoke(tool_name, parameters)

    def update_options(self, overrides: Mapping[str, Any]) -> BridgeOptions:
        """Validate and apply new default options.

        Raises:
            OptionsError: If the resulting options are invalid. The current options stay in place.
        """
        self.options = self.options.merged(overrides)
        return self.options

    # Internals

    async def _execute_detected(
        self,
        state: ConversationState,
        parser: ToolCallParser,
        invoker: ToolInvoker,
        text: Optional[str],
        abort_event: Optional[asyncio.Event],
    ) -> Optional[ExecutionRecord]:
        """Execute the first tool call in ``text`` and prepare the feedback prompt.

        Returns:
            The execution record, or None if the text requests no tool.
        """
        if not text or not text.strip():
            logger.debug("No assistant text in this turn. Loop finished.")
            return None

        candidate = parser.detect(text)
        if candidate is None:
            logger.debug("No tool call found in response. Loop finished.")
            return None

        state.phase = ConversationPhase.TOOL_DETECTED
        logger.info(
            f"Iteration {state.iteration_count + 1}: executing tool '{candidate.tool_name}' "
            f"with parameters {candidate.parameters}"
        )
        state.phase = ConversationPhase.EXECUTING
        record = await invoker.execute(candidate.tool_name, candidate.parameters)
        self._check_abort(abort_event)

        state.execution_history.append(record)
        state.current_prompt = format_feedback(record)
        state.iteration_count += 1
        state.phase = ConversationPhase.PROMPTING
        return record

    async def _prepare_registry(self, run_options: BridgeOptions, mcp_sessions: AsyncExitStack) -> ToolRegistry:
        """Build the tool set of a single run.

        Stdio MCP servers named in the options are connected on ``mcp_sessions`` and
        their tools added for the duration of the run. ``allowed_tools`` and
        ``disallowed_tools`` apply to registered and MCP tools alike.
        """
        registry = self.registry
        if run_options.mcp_servers:
            registry = self.registry.restricted()
            for name, server in run_options.mcp_servers.items():
                if not isinstance(server, McpStdioServerConfig):
                    logger.warning(f"MCP server '{name}' uses the unsupported '{server.type}' transport. Skipping.")
                    continue
                logger.info(f"Connecting MCP server '{name}'...")
                wrapper = await mcp_sessions.enter_async_context(MCPClientWrapper.from_config(server))
                await wrapper.load_into(registry)
        return self._permitted(registry, run_options)

    @staticmethod
    def _permitted(registry: ToolRegistry, options: BridgeOptions) -> ToolRegistry:
        if options.allowed_tools or options.disallowed_tools:
            return registry.restricted(options.allowed_tools, options.disallowed_tools)
        return registry

    def _parser_for(self, registry: ToolRegistry) -> ToolCallParser:
        if self._custom_parser or registry is self.registry:
            return self.parser
        return ToolCallParser(registry=registry)

    @staticmethod
    def _assemble_fragments(turn: Sequence[AnyTurnMessage]) -> List[AnyTurnMessage]:
        """Join each run of partial assistant messages into one complete message."""
        assembled: List[AnyTurnMessage] = []
        fragments: List[str] = []
        for message in turn:
            if isinstance(message, AssistantText) and message.partial:
                fragments.append(message.content)
                continue
            if fragments:
                assembled.append(AssistantText(content="".join(fragments)))
                fragments = []
            assembled.append(message)
        if fragments:
            assembled.append(AssistantText(content="".join(fragments)))
        return assembled

    def _build_transport_options(
        self, run_options: BridgeOptions, session_id: str, registry: ToolRegistry
    ) -> Dict[str, Any]:
        transport_options = run_options.to_transport_options()
        tool_prompt = registry.tool_prompt
        if tool_prompt and not run_options.custom_system_prompt:
            append = run_options.append_system_prompt
            transport_options["append_system_prompt"] = f"{append}\n\n{tool_prompt}" if append else tool_prompt
        transport_options["session_id"] = session_id
        return transport_options

    def _track_message(self, session_id: str, message: AnyTurnMessage) -> None:
        session = self.sessions.get_session(session_id)
        if session is None:
            return
        if isinstance(message, AssistantText):
            self.sessions.update_session(session_id, total_turns=session.total_turns + 1)
        elif isinstance(message, Terminal):
            updates: Dict[str, Any] = {"is_error": session.is_error or message.is_error}
            if message.cost is not None:
                updates["total_cost"] = session.total_cost + message.cost
            self.sessions.update_session(session_id, **updates)

    def _build_result(self, state: ConversationState, started: float) -> RunResult:
        self.sessions.end_session(state.session_id)
        return RunResult(
            text=self._final_text(state.accumulated_messages),
            execution_history=list(state.execution_history),
            tool_calls=[record.to_tool_call() for record in state.execution_history],
            tool_results=[record.to_tool_result() for record in state.execution_history],
            session=self._session_metadata(state.session_id, started),
            messages=list(state.accumulated_messages),
        )

    def _final_text(self, messages: Sequence[AnyTurnMessage]) -> str:
        texts = [
            cleaned
            for cleaned in (
                self.normalizer.clean_internal_labels(message.content)
                for message in messages
                if isinstance(message, AssistantText)
            )
            if cleaned
        ]
        if texts:
            return "\n\n".join(texts)
        for message in reversed(messages):
            if isinstance(message, Terminal) and message.result_text:
                return message.result_text
        return ""

    def _session_metadata(self, session_id: str, started: float) -> SessionMetadata:
        session = self.sessions.get_session(session_id)
        duration_ms = int((time.monotonic() - started) * 1000)
        if session is None:
            return SessionMetadata(session_id=session_id, duration_ms=duration_ms)
        return SessionMetadata(
            session_id=session_id,
            cost=session.total_cost,
            duration_ms=duration_ms,
            is_error=session.is_error,
            total_turns=session.total_turns,
        )

    async def _release_session(self, session_id: str, run_options: BridgeOptions) -> None:
        self.sessions.end_session(session_id)
        try:
            await self.transport.end_conversation(session_id)
        except Exception as exc:
            logger.warning(f"Transport failed to end conversation {session_id}: {exc}")
        self.sessions.schedule_cleanup(session_id, run_options.session_cleanup_delay)

    @staticmethod
    def _check_abort(abort_event: Optional[asyncio.Event]) -> None:
        if abort_event is not None and abort_event.is_set():
            raise RunCancelledError("Generation aborted")

    @staticmethod
    def _tool_name(name_or_tool: Union[str, ToolDefinition, Callable]) -> Optional[str]:
        if isinstance(name_or_tool, ToolDefinition):
            return name_or_tool.name
        if isinstance(name_or_tool, str):
            return name_or_tool
        return getattr(name_or_tool, "__name__", None)
