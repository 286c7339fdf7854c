"""
Exception hierarchy for the text tool bridge.

Tool-related errors (registration, lookup, validation, execution) are recoverable
inside a conversation run: the orchestrator turns them into feedback for the next
model turn. Transport errors and cancellation are fatal to the run.
"""


class ToolBridgeError(Exception):
    """Base exception for all bridge errors."""

    pass


class ToolRegistrationError(ToolBridgeError):
    """Raised when a tool cannot be registered."""

    pass


class ToolNotFoundError(ToolBridgeError):
    """Raised when a requested tool is not found in the registry."""

    pass


class ToolValidationError(ToolBridgeError):
    """Raised when tool parameters or a tool definition are invalid."""

    pass


class ToolExecutionError(ToolBridgeError):
    """Raised when a tool fails during execution."""

    pass


class TransportError(ToolBridgeError):
    """Raised when the model transport fails to complete a turn."""

    pass


class RunCancelledError(ToolBridgeError):
    """Raised when a run is aborted through its abort event."""

    pass


class OptionsError(ToolBridgeError, ValueError):
    """Raised when bridge options fail validation."""

    pass
