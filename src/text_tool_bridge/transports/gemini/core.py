"""Gemini transport for text-based tool calling."""

import time
from typing import Any, AsyncIterator, Dict, List, Optional

from google.genai import types
from google.genai.client import AsyncClient
from google.genai.types import GenerateContentResponse

from text_tool_bridge.bridge_core import ModelTransport, RawMessage, get_logger

logger = get_logger(__name__)


class GeminiTransport(ModelTransport):
    """
    Model transport for Google's Gemini models.

    Tools are never declared to the API; the model sees them only through the system
    prompt. Conversation history is kept per session as ``types.Content`` objects.
    """

    def __init__(
        self,
        aclient: AsyncClient,
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
        Initializes the Gemini transport.

        Args:
            aclient: The initialized Google GenAI async client (``Client(...).aio``).
            model_name: The identifier for the Gemini model to use (e.g., 'gemini-flash-latest').
            sys_instruction: Base system instruction.
            temp: The temperature for text generation.
            max_tokens: The maximum number of tokens to generate per turn.
            prompt_token_price: USD per prompt token, used for cost reporting.
            completion_token_price: USD per candidate token, used for cost reporting.
            max_retries: Retries for failed (non-streaming) requests.
            base_retry_delay: Initial backoff delay in seconds.
        """
        super().__init__(max_retries=max_retries, base_retry_delay=base_retry_delay)
        self.client: AsyncClient = aclient
        self.model: str = model_name
        self.sys_instruction = sys_instruction
        self.temperature = temp
        self.max_tokens = max_tokens
        self.prompt_token_price = prompt_token_price
        self.completion_token_price = completion_token_price
        self._histories: Dict[str, List[types.Content]] = {}
        logger.info(f"Initialized GeminiTransport with model='{model_name}', temp={temp}, max_tokens={max_tokens}")

    async def _invoke_impl(self, prompt: str, options: Dict[str, Any]) -> List[RawMessage]:
        started = time.monotonic()
        session_id = options.get("session_id")
        is_new = session_id is None or session_id not in self._histories
        model = options.get("model") or self.model
        contents = self._prepare_contents(prompt, session_id)

        logger.debug(f"Asking Gemini (model={model}): {prompt[:50]}...")
        response: GenerateContentResponse = await self.client.models.generate_content(
            model=model, contents=contents, config=self._build_config(options)  # type: ignore[arg-type]
        )

        text = self._response_text(response)
        self._remember(session_id, contents, text)

        raw: List[RawMessage] = []
        if is_new:
            raw.append(self._system_message(session_id, model, options))
        raw.append(
            {
                "type": "assistant",
                "session_id": session_id,
                "message": {
                    "content": text,
                    "usage": self._usage(response),
                    "stop_reason": self._finish_reason(response),
                },
            }
        )
        raw.append(self._result_message(session_id, text, self._usage(response), started))
        return raw

    async def _stream_impl(self, prompt: str, options: Dict[str, Any]) -> AsyncIterator[RawMessage]:
        started = time.monotonic()
        session_id = options.get("session_id")
        model = options.get("model") or self.model
        if session_id is None or session_id not in self._histories:
            yield self._system_message(session_id, model, options)

        contents = self._prepare_contents(prompt, session_id)
        stream = await self.client.models.generate_content_stream(
            model=model, contents=contents, config=self._build_config(options)  # type: ignore[arg-type]
        )

        parts: List[str] = []
        usage: Optional[Dict[str, Any]] = None
        async for chunk in stream:
            usage = self._usage(chunk) or usage
            delta = self._response_text(chunk)
            if delta:
                parts.append(delta)
                yield {
                    "type": "assistant",
                    "session_id": session_id,
                    "partial": True,
                    "message": {"content": delta, "stop_reason": self._finish_reason(chunk)},
                }

        text = "".join(parts)
        self._remember(session_id, contents, text)
        yield self._result_message(session_id, text, usage, started)

    async def end_conversation(self, session_id: str) -> None:
        self._histories.pop(session_id, None)

    def _build_config(self, options: Dict[str, Any]) -> types.GenerateContentConfig:
        base = options.get("custom_system_prompt") or self.sys_instruction
        append = options.get("append_system_prompt")
        system_instruction = f"{base}\n\n{append}" if base and append else (append or base)

        config_kwargs: Dict[str, Any] = {"temperature": self.temperature, "max_output_tokens": self.max_tokens}
        if system_instruction:
            config_kwargs["system_instruction"] = system_instruction
        if options.get("timeout_ms"):
            config_kwargs["http_options"] = types.HttpOptions(timeout=int(options["timeout_ms"]))
        if options.get("max_thinking_tokens"):
            config_kwargs["thinking_config"] = types.ThinkingConfig(thinking_budget=options["max_thinking_tokens"])
        return types.GenerateContentConfig(**config_kwargs)

    def _prepare_contents(self, prompt: str, session_id: Optional[str]) -> List[types.Content]:
        history = self._histories.get(session_id, []) if session_id is not None else []
        return [*history, types.Content(role="user", parts=[types.Part(text=prompt)])]

    def _remember(self, session_id: Optional[str], contents: List[types.Content], text: str) -> None:
        if session_id is None:
            return
        self._histories[session_id] = [*contents, types.Content(role="model", parts=[types.Part(text=text)])]

    @staticmethod
    def _response_text(response: GenerateContentResponse) -> str:
        if not response.candidates:
            return ""
        content = response.candidates[0].content
        if content is None or not content.parts:
            return ""
        return "".join(part.text for part in content.parts if part.text)

    @staticmethod
    def _finish_reason(response: GenerateContentResponse) -> Optional[str]:
        if not response.candidates or response.candidates[0].finish_reason is None:
            return None
        reason = response.candidates[0].finish_reason
        return getattr(reason, "value", str(reason))

    @staticmethod
    def _usage(response: GenerateContentResponse) -> Optional[Dict[str, Any]]:
        metadata = response.usage_metadata
        if metadata is None:
            return None
        return {
            "prompt_tokens": metadata.prompt_token_count or 0,
            "completion_tokens": metadata.candidates_token_count or 0,
            "total_tokens": metadata.total_token_count or 0,
        }

    def _cost(self, usage: Optional[Dict[str, Any]]) -> float:
        if not usage:
            return 0.0
        return usage["prompt_tokens"] * self.prompt_token_price + usage["completion_tokens"] * self.completion_token_price

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
