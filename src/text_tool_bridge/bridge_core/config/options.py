"""Validated run options for the conversation orchestrator."""

import os
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, ValidationError, field_validator

from ..exceptions import OptionsError
from ..logger import get_logger

logger = get_logger(__name__)

PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]


class McpStdioServerConfig(BaseModel):
    """MCP server started as a subprocess and spoken to over stdio."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["stdio"] = "stdio"
    command: str
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None


class McpSSEServerConfig(BaseModel):
    """MCP server reachable through server-sent events."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["sse"]
    url: str
    headers: Optional[Dict[str, str]] = None


class McpHttpServerConfig(BaseModel):
    """MCP server reachable through streamable HTTP."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["http"]
    url: str
    headers: Optional[Dict[str, str]] = None


def _server_type(value: Any) -> str:
    # Servers without an explicit type are stdio servers
    if isinstance(value, Mapping):
        return value.get("type", "stdio")
    return getattr(value, "type", "stdio")


McpServerConfig = Annotated[
    Union[
        Annotated[McpStdioServerConfig, Tag("stdio")],
        Annotated[McpSSEServerConfig, Tag("sse")],
        Annotated[McpHttpServerConfig, Tag("http")],
    ],
    Discriminator(_server_type),
]


class BridgeOptions(BaseModel):
    """Options shared by every run of an orchestrator.

    The transport-facing fields are forwarded through ``to_transport_options``; the
    remaining fields bound the tool loop itself.

    Attributes:
        max_turns: Upper bound of model turns the transport may take per invocation.
        allowed_tools: Tool names the model may call. Empty means no restriction.
        disallowed_tools: Tool names the model must not call. Wins over ``allowed_tools``.
        permission_mode: Permission mode forwarded to the transport.
        cwd: Working directory forwarded to the transport.
        timeout_ms: Transport timeout in milliseconds.
        model: Optional model override.
        fallback_model: Optional model to use when ``model`` is unavailable.
        append_system_prompt: Text appended to the transport's system prompt.
        custom_system_prompt: Text replacing the transport's system prompt.
        max_thinking_tokens: Thinking budget; 0 disables it.
        mcp_servers: MCP servers whose tools are added to each run. Only stdio servers
            are connected by the orchestrator; the others are forwarded to the transport.
        max_iterations: Maximum number of tool executions per run.
        session_cleanup_delay: Seconds a finished session stays observable.
        tool_timeout: Seconds a single tool execution may take.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    max_turns: int = Field(default=10, ge=1, le=100)
    allowed_tools: List[str] = Field(default_factory=list)
    disallowed_tools: List[str] = Field(default_factory=list)
    permission_mode: PermissionMode = "default"
    cwd: str = Field(default_factory=os.getcwd)
    timeout_ms: int = Field(default=300_000, ge=1_000, le=3_600_000)
    model: Optional[str] = None
    fallback_model: Optional[str] = None
    append_system_prompt: str = ""
    custom_system_prompt: str = ""
    max_thinking_tokens: int = Field(default=0, ge=0)
    mcp_servers: Dict[str, McpServerConfig] = Field(default_factory=dict)
    max_iterations: int = Field(default=5, ge=1)
    session_cleanup_delay: float = Field(default=30.0, ge=0)
    tool_timeout: float = Field(default=180.0, gt=0)

    @field_validator("allowed_tools", "disallowed_tools", mode="before")
    @classmethod
    def _keep_string_entries(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise ValueError("must be a list of strings")
        return [item for item in value if isinstance(item, str)]

    def to_transport_options(self) -> Dict[str, Any]:
        """Build the options dictionary handed to the model transport.

        Only fields that differ from their neutral value are included, so transports
        can rely on ``key in options`` checks.

        Returns:
            A plain dictionary of transport options.
        """
        options: Dict[str, Any] = {
            "max_turns": self.max_turns,
            "cwd": self.cwd,
            "timeout_ms": self.timeout_ms,
        }
        if self.allowed_tools:
            options["allowed_tools"] = list(self.allowed_tools)
        if self.disallowed_tools:
            options["disallowed_tools"] = list(self.disallowed_tools)
        if self.permission_mode != "default":
            options["permission_mode"] = self.permission_mode
        if self.model:
            options["model"] = self.model
        if self.fallback_model:
            options["fallback_model"] = self.fallback_model
        if self.append_system_prompt:
            options["append_system_prompt"] = self.append_system_prompt
        if self.custom_system_prompt:
            options["custom_system_prompt"] = self.custom_system_prompt
        if self.max_thinking_tokens > 0:
            options["max_thinking_tokens"] = self.max_thinking_tokens
        if self.mcp_servers:
            options["mcp_servers"] = {
                name: server.model_dump(exclude_none=True) for name, server in self.mcp_servers.items()
            }
        return options

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "BridgeOptions":
        """Return a validated copy with ``overrides`` applied.

        ``max_steps`` is accepted as an alias for ``max_turns``. ``None`` values are
        ignored so callers can forward optional arguments untouched.

        Raises:
            OptionsError: If the merged options are invalid.
        """
        if not overrides:
            return self
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "max_steps" in changes:
            changes["max_turns"] = changes.pop("max_steps")
        return validate_options({**self.model_dump(), **changes})


def validate_options(options: Optional[Union[BridgeOptions, Mapping[str, Any]]] = None) -> BridgeOptions:
    """Validate raw options and fill in defaults.

    Args:
        options: A ``BridgeOptions`` instance, a mapping of option values, or None.

    Returns:
        A fully populated ``BridgeOptions`` instance.

    Raises:
        OptionsError: If any option is invalid. The message names the offending field.
    """
    if options is None:
        return BridgeOptions()
    if isinstance(options, BridgeOptions):
        return options
    try:
        return BridgeOptions(**dict(options))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        msg = f"Invalid bridge options: {details}"
        logger.error(msg)
        raise OptionsError(msg) from exc
