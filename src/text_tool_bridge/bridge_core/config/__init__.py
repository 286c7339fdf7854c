"""Expose bridge option models and their validation entry point."""

from .options import (
    BridgeOptions,
    McpHttpServerConfig,
    McpServerConfig,
    McpSSEServerConfig,
    McpStdioServerConfig,
    PermissionMode,
    validate_options,
)

__all__ = [
    "BridgeOptions",
    "McpHttpServerConfig",
    "McpServerConfig",
    "McpSSEServerConfig",
    "McpStdioServerConfig",
    "PermissionMode",
    "validate_options",
]
