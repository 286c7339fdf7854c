"""OpenAI chat completions transport for text-based tool calling."""

import time
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple, cast

from openai import AsyncOpenAI, NotFoundError
from openai.types.chat import ChatCompletion

from text_tool_bridge.bridge_core import ModelTransport, RawMessage, get_logger

logger = get_logger(__name__)


class OpenAITransport(ModelTransport):
    """
    Model transport for OpenAI chat completions.

    No tool declarations are sent: tools are described in the system prompt and the
    model requests them in plain text. Each session keeps its own message history
    until ``end_conversation`` is called.
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model_name: str,
        sys_instruction: str = "",
        temp: float = 1.0,
        max_tokens: int = 3000,
        prompt_token_price: float = 0.0,
        completion_token_price: float = 0.0,
        max_retries: int = 3,
        base_retry_delay: float = 1.0,
    ):
        """
        Initializes the OpenAI transport.

        Args:
            client: The initialized AsyncOpenAI client.
            model_name: The identifier for the OpenAI model to use (e.g., 'gpt-4o-mini').
            sys_instruction: Base system instruction. ``custom_system_prompt`` replaces it,
                ``append_system_prompt`` is appended to it.
            temp: The temperature for text generation.
            max_tokens: The maximum number of tokens to generate per turn.
            prompt_token_price: USD per prompt token, used for cost reporting.
            completion_token_price: USD per completion token, used for cost reporting.
            max_retries: Retries for failed (non-streaming) requests.
            base_retry_delay: Initial backoff delay in seconds.
        """
        super().__init__(max_retries=max_retries, base_retry_delay=base_retry_delay)
        self.client: AsyncOpenAI = client
        self.model: str = model_name
        self.sys_instruction = sys_instruction
        self.temperature = temp
        self.max_tokens = max_tokens
        self.prompt_token_price = prompt_token_price
        self.completion_token_price = completion_token_price
        self._histories: Dict[str, List[Dict[str, Any]]] = {}

    async def _invoke_impl(self, prompt: str, options: Dict[str, Any]) -> List[RawMessage]:
        started = time.monotonic()
        session_id = options.get("session_id")
        is_new = session_id is None or session_id not in self._histories
        messages = self._prepare_messages(prompt, options)

        response, model = await self._create_completion(messages, options)

        text = ""
        stop_reason = None
        if response.choices:
            text = response.choices[0].message.content or ""
            stop_reason = response.choices[0].finish_reason

        usage = response.usage.model_dump() if response.usage is not None else None
        self._remember(session_id, messages, text)

        raw: List[RawMessage] = []
        if is_new:
            raw.append(self._system_message(session_id, model, options))
        raw.append(
            {
                "type": "assistant",
                "session_id": session_id,
                "message": {"content": text, "usage": usage, "stop_reason": stop_reason},
            }
        )
        raw.append(self._result_message(session_id, text, usage, started))
        return raw

    async def _stream_impl(self, prompt: str, options: Dict[str, Any]) -> AsyncIterator[RawMessage]:
        started = time.monotonic()
        session_id = options.get("session_id")
        is_new = session_id is None or session_id not in self._histories
        messages = self._prepare_messages(prompt, options)
        model = options.get("model") or self.model

        if is_new:
            yield self._system_message(session_id, model, options)

        stream = await self.client.chat.completions.create(
            model=model,
            messages=cast(Iterable[Any], messages),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            stream=True,
            stream_options={"include_usage": True},
            **self._request_kwargs(options),
        )

        parts: List[str] = []
        usage: Optional[Dict[str, Any]] = None
        async for chunk in stream:
            if getattr(chunk, "usage", None) is not None:
                usage = chunk.usage.model_dump()
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta.content if choice.delta is not None else None
            if delta:
                parts.append(delta)
                yield {
                    "type": "assistant",
                    "session_id": session_id,
                    "partial": True,
                    "message": {"content": delta, "stop_reason": choice.finish_reason},
                }

        text = "".join(parts)
        self._remember(session_id, messages, text)
        yield self._result_message(session_id, text, usage, started)

    async def end_conversation(self, session_id: str) -> None:
        self._histories.pop(session_id, None)

    async def _create_completion(
        self, messages: List[Dict[str, Any]], options: Dict[str, Any]
    ) -> Tuple[ChatCompletion, str]:
        model = options.get("model") or self.model
        try:
            response = await self._request(model, messages, options)
        except NotFoundError:
            fallback = options.get("fallback_model")
            if not fallback or fallback == model:
                raise
            logger.warning(f"Model '{model}' not found. Falling back to '{fallback}'.")
            model = fallback
            response = await self._request(model, messages, options)
        return response, model

    async def _request(self, model: str, messages: List[Dict[str, Any]], options: Dict[str, Any]) -> ChatCompletion:
        logger.debug(f"Sending request to OpenAI model: {model}")
        return await self.client.chat.completions.create(
            model=model,
            messages=cast(Iterable[Any], messages),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            **self._request_kwargs(options),
        )

    @staticmethod
    def _request_kwargs(options: Dict[str, Any]) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {}
        if options.get("timeout_ms"):
            kwargs["timeout"] = options["timeout_ms"] / 1000
        return kwargs

    def _prepare_messages(self, prompt: str, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Build the request messages without touching the stored history."""
        session_id = options.get("session_id")
        history = self._histories.get(session_id, []) if session_id is not None else []
        messages = list(history)
        if not messages:
            system_prompt = self._system_prompt(options)
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _system_prompt(self, options: Dict[str, Any]) -> str:
        base = options.get("custom_system_prompt") or self.sys_instruction
        append = options.get("append_system_prompt")
        if append:
            return f"{base}\n\n{append}" if base else append
        return base

    def _remember(self, session_id: Optional[str], messages: List[Dict[str, Any]], text: str) -> None:
        if session_id is None:
            return
        self._histories[session_id] = [*messages, {"role": "assistant", "content": text}]

    def _cost(self, usage: Optional[Dict[str, Any]]) -> float:
        if not usage:
            return 0.0
        prompt_tokens = usage.get("prompt_tokens") or 0
        completion_tokens = usage.get("completion_tokens") or 0
        return prompt_tokens * self.prompt_token_price + completion_tokens * self.completion_token_price

    @staticmethod
    def _system_message(session_id: Optional[str], model: str, options: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "type": "system",
            "session_id": session_id,
            "cwd": options.get("cwd"),
            "tools": [],
            "model": model,
            "permissionMode": options.get("permission_mode", "default"),
        }

    def _result_message(
        self, session_id: Optional[str], text: str, usage: Optional[Dict[str, Any]], started: float
    ) -> Dict[str, Any]:
        return {
            "type": "result",
            "session_id": session_id,
            "total_cost_usd": self._cost(usage),
            "duration_ms": int((time.monotonic() - started) * 1000),
            "num_turns": 1,
            "is_error": False,
            "result": text,
        }
