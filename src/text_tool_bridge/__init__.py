"""Text Tool Bridge - tool calling for models that can only answer in text."""

from .bridge_core import (
    BridgeOptions,
    ConversationOrchestrator,
    ExecutionRecord,
    ModelTransport,
    ResponseNormalizer,
    RunResult,
    SessionTracker,
    StreamEvent,
    ToolBridgeError,
    ToolCallParser,
    ToolDefinition,
    ToolInvoker,
    ToolRegistry,
    get_logger,
    setup_logging,
)
from .transports import GeminiTransport, OpenAITransport

__all__ = [
    "BridgeOptions",
    "ConversationOrchestrator",
    "ExecutionRecord",
    "ModelTransport",
    "ResponseNormalizer",
    "RunResult",
    "SessionTracker",
    "StreamEvent",
    "ToolBridgeError",
    "ToolCallParser",
    "ToolDefinition",
    "ToolInvoker",
    "ToolRegistry",
    "get_logger",
    "setup_logging",
    "GeminiTransport",
    "OpenAITransport",
]
