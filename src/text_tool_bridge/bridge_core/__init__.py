"""Public exports for the tool bridge core."""

from .base import ModelTransport, RawMessage
from .config import BridgeOptions, McpServerConfig, McpStdioServerConfig, validate_options
from .exceptions import (
    ToolBridgeError,
    ToolRegistrationError,
    ToolNotFoundError,
    ToolValidationError,
    ToolExecutionError,
    TransportError,
    RunCancelledError,
    OptionsError,
)
from .logger import get_logger, setup_logging
from .messages import (
    AnyTurnMessage,
    AssistantText,
    MetadataEvent,
    ResponseNormalizer,
    StreamEvent,
    SystemInfo,
    Terminal,
    TurnMessage,
    UserText,
)
from .orchestrator import ConversationOrchestrator, ConversationPhase, ConversationState, RunResult, SessionMetadata
from .session import SessionRecord, SessionTracker
from .tools import (
    ExecutionRecord,
    ParsingStrategy,
    ToolCallCandidate,
    ToolCallParser,
    ToolDefinition,
    ToolInvoker,
    ToolRegistry,
    format_feedback,
)
from .tools.schema import SchemaValidator

__all__ = [
    "ModelTransport",
    "RawMessage",
    "BridgeOptions",
    "McpServerConfig",
    "McpStdioServerConfig",
    "validate_options",
    "ToolBridgeError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolExecutionError",
    "TransportError",
    "RunCancelledError",
    "OptionsError",
    "get_logger",
    "setup_logging",
    "AnyTurnMessage",
    "AssistantText",
    "MetadataEvent",
    "ResponseNormalizer",
    "StreamEvent",
    "SystemInfo",
    "Terminal",
    "TurnMessage",
    "UserText",
    "ConversationOrchestrator",
    "ConversationPhase",
    "ConversationState",
    "RunResult",
    "SessionMetadata",
    "SessionRecord",
    "SessionTracker",
    "ExecutionRecord",
    "ParsingStrategy",
    "ToolCallCandidate",
    "ToolCallParser",
    "ToolDefinition",
    "ToolInvoker",
    "ToolRegistry",
    "format_feedback",
    "SchemaValidator",
]
