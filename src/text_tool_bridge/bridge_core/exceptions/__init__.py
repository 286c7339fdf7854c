"""Export the bridge's exception hierarchy."""

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

__all__ = [
    "ToolBridgeError",
    "ToolRegistrationError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolExecutionError",
    "TransportError",
    "RunCancelledError",
    "OptionsError",
]
