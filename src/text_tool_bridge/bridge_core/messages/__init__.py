"""Expose canonical turn message models and the response normalizer."""

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
from .normalizer import ResponseNormalizer

__all__ = [
    "AnyTurnMessage",
    "AssistantText",
    "ContentBlock",
    "ImageBlock",
    "MetadataEvent",
    "StreamEvent",
    "SystemInfo",
    "Terminal",
    "TextBlock",
    "ToolResultBlock",
    "ToolUseBlock",
    "TurnMessage",
    "UnknownBlock",
    "UserText",
    "ResponseNormalizer",
]
