"""Validation and execution of detected tool calls."""

from __future__ import annotations

import asyncio
import inspect
import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ValidationError

from ..models import ExecutionRecord, ToolDefinition
from ..registry import ToolRegistry
from ...exceptions import ToolExecutionError, ToolNotFoundError, ToolValidationError
from ...logger import get_logger

logger = get_logger(__name__)


class _Clock:
    """Millisecond timestamps that strictly increase within the process."""

    _lock = threading.Lock()
    _last = 0

    @classmethod
    def next(cls) -> int:
        with cls._lock:
            now = int(time.time() * 1000)
            cls._last = now if now > cls._last else cls._last + 1
            return cls._last


class ToolInvoker:
    """Runs tools from a registry and records every outcome.

    ``execute`` never raises: unknown tools, invalid arguments and failing tools all
    produce an ``ExecutionRecord`` with ``error`` set, so the caller can feed the
    failure back to the model. ``invoke`` is the raising variant for direct calls.
    """

    def __init__(self, registry: ToolRegistry, tool_timeout: float = 180.0) -> None:
        """Initialize the invoker.

        Args:
            registry: Tool registry used to resolve tool definitions.
            tool_timeout: Timeout in seconds for a single tool execution.
        """
        self._registry = registry
        self._tool_timeout = tool_timeout
        self._history: List[ExecutionRecord] = []

    async def execute(self, tool_name: str, parameters: Any) -> ExecutionRecord:
        """Validate ``parameters`` and run the named tool.

        Args:
            tool_name: Name of the tool to run.
            parameters: Raw arguments (dict, JSON string, or None).

        Returns:
            The execution record, also appended to the history.
        """
        logger.debug(f"Handling tool call: {tool_name}")
        try:
            output = await self._run(tool_name, parameters)
        except (ToolNotFoundError, ToolValidationError) as exc:
            logger.warning(str(exc))
            return self._record(tool_name, parameters, error=str(exc))
        except Exception as exc:
            msg = str(exc) or type(exc).__name__
            logger.warning(f"Tool '{tool_name}' failed: {msg} ({type(exc).__name__})")
            return self._record(tool_name, parameters, error=msg)

        logger.info(f"Tool '{tool_name}' executed successfully.")
        return self._record(tool_name, parameters, output=output)

    async def invoke(self, tool_name: str, parameters: Any = None) -> Any:
        """Run a tool directly and return its output.

        Raises:
            ToolNotFoundError: If the tool is not registered.
            ToolValidationError: If the arguments do not match the tool's shape.
            Exception: Whatever the tool itself raises.
        """
        return await self._run(tool_name, parameters)

    def get_execution_history(self) -> List[ExecutionRecord]:
        """Return a copy of the records produced so far, in completion order."""
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    async def _run(self, tool_name: str, parameters: Any) -> Any:
        tool_def = self._registry.get(tool_name)
        if tool_def is None:
            raise ToolNotFoundError(f'Tool "{tool_name}" not found')

        function_args = self._normalize_function_args(tool_name, parameters)
        function_args = self._validate(tool_def, function_args)

        logger.info(f"Executing tool '{tool_name}'...")
        return await self._execute_tool(tool_def.func, function_args)

    def _record(self, tool_name: str, parameters: Any, output: Any = None, error: Optional[str] = None) -> ExecutionRecord:
        record = ExecutionRecord(
            tool_name=tool_name,
            input=parameters if parameters is not None else {},
            output=output,
            error=error,
            timestamp=_Clock.next(),
        )
        self._history.append(record)
        return record

    @staticmethod
    def _validate(tool_def: ToolDefinition, function_args: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and coerce arguments against the tool's args model, if it has one."""
        if tool_def.args_model is None:
            return function_args
        try:
            validated: BaseModel = tool_def.args_model(**function_args)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}" for error in exc.errors()
            )
            raise ToolValidationError(f'Invalid input for tool "{tool_def.name}": {details}') from exc
        # Attribute access keeps nested models and coerced types intact
        return {name: getattr(validated, name) for name in type(validated).model_fields}

    @staticmethod
    def _normalize_function_args(tool_name: str, raw_args: Any) -> Dict[str, Any]:
        """Normalize tool arguments into a dictionary.

        Handles JSON strings, dictionaries, or None values.

        Raises:
            ToolValidationError: If arguments cannot be parsed or are not an object.
        """
        if raw_args is None or raw_args == "":
            return {}

        if isinstance(raw_args, dict):
            return raw_args

        if isinstance(raw_args, str):
            try:
                parsed = json.loads(raw_args)
            except json.JSONDecodeError as exc:
                raise ToolValidationError(f'Failed to parse arguments for tool "{tool_name}": {exc}') from exc

            if parsed is None:
                return {}
            if not isinstance(parsed, dict):
                raise ToolValidationError(
                    f'Failed to parse arguments for tool "{tool_name}": arguments must decode to a JSON object.'
                )
            return parsed

        try:
            return dict(raw_args)
        except (TypeError, ValueError) as exc:
            raise ToolValidationError(f'Failed to parse arguments for tool "{tool_name}": {exc}') from exc

    async def _execute_tool(self, tool_function: Callable[..., Any], function_args: Dict[str, Any]) -> Any:
        """Execute the tool function, handling async/sync and timeouts.

        Raises:
            ToolExecutionError: If execution times out.
        """
        try:
            if inspect.iscoroutinefunction(tool_function):
                return await asyncio.wait_for(tool_function(**function_args), timeout=self._tool_timeout)

            result = await asyncio.wait_for(
                asyncio.to_thread(tool_function, **function_args),
                timeout=self._tool_timeout,
            )
            # Sync wrappers may hand back an awaitable
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self._tool_timeout)
            return result

        except asyncio.TimeoutError as exc:
            raise ToolExecutionError(f"Tool execution timed out after {self._tool_timeout} seconds.") from exc
