"""Convert raw transport messages into canonical turn messages and stream events."""

import re
from collections.abc import Mapping
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..logger import get_logger
from .models import (
    AnyTurnMessage,
    AssistantText,
    ContentBlock,
    ImageBlock,
    MetadataEvent,
    StreamEvent,
    SystemInfo,
    Terminal,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    TurnMessage,
    UnknownBlock,
    UserText,
)

logger = get_logger(__name__)

PromptInput = Union[str, Sequence[Any], None]


def _field(raw: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an attribute-style object."""
    if isinstance(raw, Mapping):
        return raw.get(name, default)
    return getattr(raw, name, default)


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _identifier(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (Mapping, list, tuple)):
        return None
    return str(value)


def _number(value: Any) -> Any:
    # Booleans are not numbers here
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


class ResponseNormalizer:
    """
    Maps heterogeneous raw transport messages onto ``TurnMessage`` variants.

    Raw messages are discriminated by their ``type`` field (``assistant``, ``user``,
    ``system``, ``result``). Content may live directly on the message or on a nested
    ``message`` object, and may be a string or a list of typed blocks. A bare string is
    treated as assistant text. Everything else is passed through as ``MetadataEvent``.
    """

    TOOL_USE_LABEL = "[tool: {name}]"
    IMAGE_PLACEHOLDER = "[Image]"
    ERROR_CODE = "TOOL_BRIDGE_ERROR"

    # Bracketed labels such as "[tool: calculator]" on a line of their own
    _INTERNAL_LABEL_PATTERN = re.compile(r"^\[[A-Za-z_]+:\s*[^\]]+\]\s*$\n?", re.MULTILINE)

    def to_turn_message(self, raw: Any) -> AnyTurnMessage:
        """Normalize a single raw transport message.

        Args:
            raw: The transport's message object or dictionary.

        Returns:
            The matching ``TurnMessage`` variant.
        """
        if isinstance(raw, TurnMessage):
            return raw  # type: ignore[return-value]
        if isinstance(raw, str):
            return AssistantText(content=raw)

        message_type = _field(raw, "type")
        session_id = _identifier(_field(raw, "session_id"))

        if message_type == "assistant":
            inner = self._inner_message(raw)
            return AssistantText(
                content=self.render_assistant(self.to_content_blocks(self._content_of(raw))),
                session_id=session_id,
                usage=self._as_dict(_field(inner, "usage")),
                stop_reason=_text(_field(inner, "stop_reason")),
                partial=_field(raw, "partial") is True,
            )

        if message_type == "user":
            return UserText(
                content=self.render_user(self.to_content_blocks(self._content_of(raw))),
                session_id=session_id,
            )

        if message_type == "system":
            tools = _field(raw, "tools")
            return SystemInfo(
                session_id=session_id,
                cwd=_text(_field(raw, "cwd")),
                tools=list(tools) if isinstance(tools, (list, tuple)) else [],
                model=_text(_field(raw, "model")),
                permission_mode=_text(_field(raw, "permissionMode", _field(raw, "permission_mode"))),
            )

        if message_type == "result":
            turn_count = _field(raw, "num_turns")
            return Terminal(
                session_id=session_id,
                cost=_number(_field(raw, "total_cost_usd")),
                duration_ms=_number(_field(raw, "duration_ms")),
                turn_count=turn_count if isinstance(turn_count, int) and not isinstance(turn_count, bool) else None,
                is_error=bool(_field(raw, "is_error", False)),
                result_text=_text(_field(raw, "result")),
            )

        logger.debug("Passing through raw message of type %r as metadata.", message_type)
        return MetadataEvent(session_id=session_id, payload=raw)

    def normalize_all(self, raw_messages: Iterable[Any]) -> List[AnyTurnMessage]:
        """Normalize a batch of raw messages, preserving order."""
        return [self.to_turn_message(raw) for raw in raw_messages]

    def extract_latest_assistant_text(self, messages: Sequence[Any]) -> Optional[str]:
        """Return the most recent non-empty assistant text in ``messages``.

        The scan runs from the end toward the start, so a tool call in an earlier turn
        of the same batch is never picked up once a later assistant turn exists.

        Args:
            messages: Raw messages, ``TurnMessage`` instances, or a mix of both.

        Returns:
            The assistant text, or None if there is none.
        """
        for message in reversed(list(messages)):
            normalized = self.to_turn_message(message)
            if isinstance(normalized, AssistantText) and normalized.content.strip():
                return normalized.content
        return None

    def to_content_blocks(self, content: Any) -> List[ContentBlock]:
        """Parse string-or-list content into typed blocks."""
        if content is None:
            return []
        if isinstance(content, str):
            return [TextBlock(text=content)]
        if isinstance(content, (list, tuple)):
            return [self.parse_block(block) for block in content]
        return [UnknownBlock(raw=content)]

    def parse_block(self, block: Any) -> ContentBlock:
        """Parse a single raw content block. Never raises."""
        if block is None or isinstance(block, (str, int, float, bool, list, tuple)):
            return UnknownBlock(raw=block)

        kind = _field(block, "type")
        if kind == "text":
            text = _field(block, "text")
            return TextBlock(text=text) if isinstance(text, str) else UnknownBlock(raw=block)
        if kind == "tool_use":
            tool_input = _field(block, "input")
            return ToolUseBlock(
                name=str(_field(block, "name") or "unknown"),
                input=tool_input if isinstance(tool_input, Mapping) else {},
                id=_identifier(_field(block, "id")),
            )
        if kind == "tool_result":
            return ToolResultBlock(
                content=self._render_tool_result_content(_field(block, "content")),
                tool_use_id=_identifier(_field(block, "tool_use_id")),
            )
        if kind == "image":
            source = _field(block, "source")
            return ImageBlock(media_type=_text(_field(source, "media_type")) if source is not None else None)
        return UnknownBlock(raw=block)

    def render_assistant(self, blocks: Sequence[ContentBlock]) -> str:
        """Render assistant blocks: text verbatim, tool calls as labels, tool results as content."""
        parts: List[str] = []
        for block in blocks:
            if isinstance(block, TextBlock):
                parts.append(block.text)
            elif isinstance(block, ToolUseBlock):
                parts.append(self.TOOL_USE_LABEL.format(name=block.name))
            elif isinstance(block, ToolResultBlock):
                parts.append(block.content)
        if len(blocks) == 1 and isinstance(blocks[0], TextBlock):
            return parts[0]
        return "\n".join(part for part in parts if part)

    def render_user(self, blocks: Sequence[ContentBlock]) -> str:
        """Render user blocks: text verbatim, images as a placeholder, everything else dropped."""
        parts: List[str] = []
        for block in blocks:
            if isinstance(block, TextBlock):
                parts.append(block.text)
            elif isinstance(block, ImageBlock):
                parts.append(self.IMAGE_PLACEHOLDER)
        if len(blocks) == 1 and isinstance(blocks[0], TextBlock):
            return parts[0]
        return "\n".join(part for part in parts if part)

    def clean_internal_labels(self, text: str) -> str:
        """Strip bracketed transport labels (e.g. ``[tool: x]``) from user-facing text."""
        if not text:
            return ""
        return self._INTERNAL_LABEL_PATTERN.sub("", text).strip()

    def to_stream_event(self, raw: Any, session_id: Optional[str] = None) -> StreamEvent:
        """Convert a raw message into an outward-facing stream event.

        Args:
            raw: The raw transport message.
            session_id: Fallback session id used when the raw message carries none.

        Returns:
            The corresponding ``StreamEvent``.
        """
        message = self.to_turn_message(raw)
        sid = message.session_id or session_id

        if isinstance(message, AssistantText):
            return StreamEvent(
                type="content",
                payload={
                    "content": message.content,
                    "session_id": sid,
                    "usage": message.usage,
                    "stop_reason": message.stop_reason,
                },
            )
        if isinstance(message, UserText):
            return StreamEvent(type="metadata", payload={"user_message": message.content, "session_id": sid})
        if isinstance(message, SystemInfo):
            return StreamEvent(
                type="metadata",
                payload={
                    "system_info": {
                        "cwd": message.cwd,
                        "tools": message.tools,
                        "model": message.model,
                        "permission_mode": message.permission_mode,
                    },
                    "session_id": sid,
                },
            )
        if isinstance(message, Terminal):
            return StreamEvent(
                type="complete",
                payload={
                    "result": message.result_text,
                    "total_cost": message.cost,
                    "session_id": sid,
                    "is_error": message.is_error,
                    "duration": message.duration_ms,
                },
            )
        return StreamEvent(type="metadata", payload={"data": message.payload, "session_id": sid})

    def error_event(self, error: Union[BaseException, str], session_id: Optional[str] = None) -> StreamEvent:
        """Build an ``error`` stream event."""
        return StreamEvent(
            type="error",
            payload={
                "error": {
                    "code": self.ERROR_CODE,
                    "message": error if isinstance(error, str) else str(error),
                    "error_type": None if isinstance(error, str) else type(error).__name__,
                },
                "session_id": session_id,
            },
        )

    @staticmethod
    def metadata_event(metadata: Dict[str, Any], session_id: Optional[str] = None) -> StreamEvent:
        """Build a ``metadata`` stream event carrying ``metadata`` and the session id."""
        return StreamEvent(type="metadata", payload={**metadata, "session_id": session_id})

    def extract_prompt(self, messages: PromptInput) -> str:
        """Flatten caller input into a single prompt string.

        Accepts a string, a list of strings, or a list of chat messages whose content is
        a string or a list of blocks (only text blocks are kept).
        """
        if messages is None:
            return ""
        if isinstance(messages, str):
            return messages

        lines: List[str] = []
        for message in messages:
            if isinstance(message, str):
                lines.append(message)
                continue
            content = _field(message, "content")
            if isinstance(content, str):
                lines.append(content)
            elif isinstance(content, (list, tuple)):
                blocks = self.to_content_blocks(content)
                lines.append("".join(block.text for block in blocks if isinstance(block, TextBlock)))
        return "\n".join(line for line in lines if line)

    @staticmethod
    def _inner_message(raw: Any) -> Any:
        inner = _field(raw, "message")
        if inner is not None and not isinstance(inner, str):
            return inner
        return raw

    @staticmethod
    def _content_of(raw: Any) -> Any:
        # Content may sit on the message itself or on a nested "message" object
        inner = _field(raw, "message")
        if isinstance(inner, str):
            return inner
        if inner is not None:
            nested = _field(inner, "content")
            if nested is not None:
                return nested
        return _field(raw, "content")

    @staticmethod
    def _as_dict(value: Any) -> Optional[Dict[str, Any]]:
        if value is None:
            return None
        if isinstance(value, Mapping):
            return dict(value)
        dump = getattr(value, "model_dump", None)
        if callable(dump):
            dumped = dump()
            return dumped if isinstance(dumped, dict) else None
        return None

    def _render_tool_result_content(self, content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, (list, tuple)):
            return "\n".join(
                block.text for block in self.to_content_blocks(content) if isinstance(block, TextBlock) and block.text
            )
        return ""
