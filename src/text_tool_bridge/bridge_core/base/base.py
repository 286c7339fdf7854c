"""Abstract model transport used by the conversation orchestrator."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Coroutine, Dict, List, Optional, TypeVar

from ..logger import get_logger

logger = get_logger(__name__)

RawMessage = Any
T = TypeVar("T")


class ModelTransport(ABC):
    """Abstract base class for model transports.

    A transport sends one prompt to a model and returns the raw messages of that turn.
    The raw message shape is transport-specific; the orchestrator only ever inspects it
    through the ``ResponseNormalizer``. Transports that keep conversation history
    between prompts key it by the ``session_id`` option and drop it in
    ``end_conversation``.
    """

    def __init__(self, max_retries: int = 3, base_retry_delay: float = 1.0):
        self.max_retries = max_retries
        self.base_retry_delay = base_retry_delay

    async def _execute_with_retry(
        self,
        func: Callable[..., Coroutine[Any, Any, T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Executes a function with retry logic.

        Args:
            func: The asynchronous function to execute.
            *args: Positional arguments for the function.
            **kwargs: Keyword arguments for the function.

        Returns:
            The result of the function call.

        Raises:
            Exception: The last encountered exception if all retries fail.
        """
        delay = self.base_retry_delay
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if attempt == self.max_retries:
                    raise

                logger.warning(f"Transport error (Retry: {attempt + 1}/{self.max_retries}): {e}. Waiting {delay}s...")
                await asyncio.sleep(delay)
                delay *= 2  # Exponential backoff

        msg = f"Failed to get a model turn after {self.max_retries} retries."
        logger.error(msg)
        raise TimeoutError(msg)

    async def invoke(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> List[RawMessage]:
        """
        Runs one complete model turn.

        Args:
            prompt: The prompt for this turn.
            options: Transport options built by the orchestrator.

        Returns:
            Every raw message the model produced for this turn, in order.
        """
        return await self._execute_with_retry(self._invoke_impl, prompt, dict(options or {}))

    def stream(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> AsyncIterator[RawMessage]:
        """
        Runs one model turn and yields its raw messages as they arrive.

        Streaming calls are not retried: messages already yielded cannot be taken back.

        Args:
            prompt: The prompt for this turn.
            options: Transport options built by the orchestrator.

        Returns:
            An async iterator over the turn's raw messages.
        """
        return self._stream_impl(prompt, dict(options or {}))

    async def end_conversation(self, session_id: str) -> None:
        """Release any per-session state. The default transport keeps none."""
        return None

    @abstractmethod
    async def _invoke_impl(self, prompt: str, options: Dict[str, Any]) -> List[RawMessage]:
        pass

    async def _stream_impl(self, prompt: str, options: Dict[str, Any]) -> AsyncIterator[RawMessage]:
        for message in await self._invoke_impl(prompt, options):
            yield message
