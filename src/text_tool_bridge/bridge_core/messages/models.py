"""Canonical turn message and stream event models.

Every raw transport message is mapped into one of the ``TurnMessage`` variants before
any core logic looks at it. Assistant and user content is first parsed into
``ContentBlock`` variants; anything unrecognized becomes an ``UnknownBlock``.
"""

from abc import ABC
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TextBlock(BaseModel):
    """Plain text produced by the model or the user."""

    kind: Literal["text"] = "text"
    text: str


class ToolUseBlock(BaseModel):
    """Marker for a tool invocation performed inside the transport."""

    kind: Literal["tool_use"] = "tool_use"
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ToolResultBlock(BaseModel):
    """Marker for the result of a tool invocation performed inside the transport."""

    kind: Literal["tool_result"] = "tool_result"
    content: str = ""
    tool_use_id: Optional[str] = None


class ImageBlock(BaseModel):
    """Image attachment. Only its presence is rendered."""

    kind: Literal["image"] = "image"
    media_type: Optional[str] = None


class UnknownBlock(BaseModel):
    """Block of an unrecognized kind, null, or not an object. Renders as nothing."""

    kind: Literal["unknown"] = "unknown"
    raw: Any = None


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock, ImageBlock, UnknownBlock]


class TurnMessage(ABC, BaseModel):
    """Base model for normalized turn messages.

    Attributes:
        kind: Discriminator of the variant.
        session_id: Transport-side session identifier, when the transport reports one.
    """

    kind: str
    session_id: Optional[str] = None


class AssistantText(TurnMessage):
    """Text authored by the assistant, with tool chatter rendered as bracketed labels.

    ``partial`` marks a streamed delta. Consecutive partial messages are fragments of
    one assistant message.
    """

    kind: Literal["assistant-text"] = "assistant-text"
    content: str
    usage: Optional[Dict[str, Any]] = None
    stop_reason: Optional[str] = None
    partial: bool = False


class UserText(TurnMessage):
    """Text authored by the user (or echoed back by the transport)."""

    kind: Literal["user-text"] = "user-text"
    content: str


class SystemInfo(TurnMessage):
    """Initialization event describing the transport's environment."""

    kind: Literal["system-info"] = "system-info"
    cwd: Optional[str] = None
    tools: List[Any] = Field(default_factory=list)
    model: Optional[str] = None
    permission_mode: Optional[str] = None


class Terminal(TurnMessage):
    """Summary emitted by the transport when a turn is finished."""

    kind: Literal["terminal"] = "terminal"
    cost: Optional[float] = None
    duration_ms: Optional[float] = None
    turn_count: Optional[int] = None
    is_error: bool = False
    result_text: Optional[str] = None


class MetadataEvent(TurnMessage):
    """Opaque raw message the normalizer does not interpret."""

    kind: Literal["metadata"] = "metadata"
    payload: Any = None


AnyTurnMessage = Union[AssistantText, UserText, SystemInfo, Terminal, MetadataEvent]


class StreamEvent(BaseModel):
    """Outward-facing event emitted by a streaming run.

    Attributes:
        type: One of ``content``, ``metadata``, ``error`` or ``complete``.
        payload: Event data. ``content`` events carry the text delta under ``content``.
    """

    type: Literal["content", "metadata", "error", "complete"]
    payload: Dict[str, Any] = Field(default_factory=dict)
