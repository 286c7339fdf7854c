"""Load MCP server tools into a ToolRegistry over an async stdio client session."""

from contextlib import AsyncExitStack
from types import TracebackType
from typing import Any, List, Optional, Type, cast

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.types import CallToolResult, EmbeddedResource, ImageContent, TextContent
from mcp.types import Tool as MCPTool

from ..bridge_core.config import McpStdioServerConfig
from ..bridge_core.exceptions import ToolExecutionError
from ..bridge_core.logger import get_logger
from ..bridge_core.tools.registry import ToolRegistry
from ..bridge_core.tools.schema import SchemaValidator

logger = get_logger(__name__)

__all__ = ["MCPClientWrapper"]


class MCPClientWrapper:
    """Exposes the tools of a Model Context Protocol (MCP) server as text-callable tools.

    Each MCP tool becomes a registry entry whose argument shape is the tool's input
    schema. Calls are proxied through the open client session, so the wrapper must stay
    entered for as long as the tools are used.
    """

    def __init__(self, command: str, args: List[str], env: Optional[dict[str, str]] = None):
        """Initializes the wrapper with parameters for the MCP server process.

        Args:
            command: The command to run the server.
            args: List of arguments for the command.
            env: Optional dictionary of environment variables.
        """
        self._server_params = StdioServerParameters(command=command, args=args, env=env)
        self._session: Optional[ClientSession] = None
        self._exit_stack = AsyncExitStack()

    @classmethod
    def from_config(cls, config: McpStdioServerConfig) -> "MCPClientWrapper":
        """Create a wrapper from a stdio entry of ``BridgeOptions.mcp_servers``."""
        return cls(command=config.command, args=list(config.args), env=config.env)

    async def __aenter__(self) -> "MCPClientWrapper":
        """Starts the server process and initializes the session."""
        logger.debug("Initializing MCP client session...")
        read, write = await self._exit_stack.enter_async_context(stdio_client(self._server_params))

        self._session = await self._exit_stack.enter_async_context(ClientSession(read, write))

        await self._session.initialize()
        logger.info("MCP client session initialized successfully.")
        return self

    async def __aexit__(
        self, exc_type: Optional[Type[BaseException]], exc_val: Optional[BaseException], exc_tb: Optional[TracebackType]
    ) -> None:
        logger.debug("Closing MCP client session...")
        await self._exit_stack.aclose()
        self._session = None
        logger.info("MCP client session closed.")

    async def load_into(self, registry: ToolRegistry) -> List[str]:
        """Registers every tool of the MCP server in ``registry``.

        Args:
            registry: The ToolRegistry to register the tools into.

        Returns:
            Names of the tools that were registered.

        Raises:
            RuntimeError: If the MCP Client is not connected.
        """
        if not self._session:
            raise RuntimeError("MCP Client is not connected. Use 'async with'.")

        logger.debug("Fetching tools from MCP server...")
        result = await self._session.list_tools()
        logger.info(f"Found {len(result.tools)} tools from MCP server.")

        return [tool.name for tool in result.tools if self._register_single_tool(registry, tool)]

    def _register_single_tool(self, registry: ToolRegistry, tool: MCPTool) -> bool:
        tool_name = tool.name
        tool_description = tool.description or f"Tool {tool_name} provided by MCP server."

        async def mcp_proxy(**kwargs: Any) -> str:
            """Forward a tool call to the MCP server and flatten its content blocks to text."""
            if not self._session:
                raise RuntimeError(f"Cannot call tool '{tool_name}': MCP session is not active.")

            # Omitted optional arguments arrive as None after validation
            arguments = {key: value for key, value in kwargs.items() if value is not None}
            logger.info(f"Delegating tool '{tool_name}' to MCP Server...")
            logger.debug(f"Tool arguments: {arguments}")

            mcp_result = await self._session.call_tool(tool_name, arguments=arguments)
            result_text = self._render_content(mcp_result)
            if mcp_result.isError:
                raise ToolExecutionError(result_text or f"MCP tool '{tool_name}' reported an error.")

            logger.debug(f"Tool '{tool_name}' result: {result_text[:200]}")
            return result_text

        mcp_proxy.__name__ = tool_name
        mcp_proxy.__doc__ = tool_description

        parameters = SchemaValidator.sanitize_schema(tool.inputSchema or {})

        try:
            registry.register(
                name_or_tool=tool_name, description=tool_description, func=mcp_proxy, parameters=parameters
            )
        except Exception as e:
            logger.error(f"Error registering MCP Tool '{tool_name}': {e}")
            return False
        logger.info(f"MCP Tool '{tool_name}' successfully registered.")
        return True

    @staticmethod
    def _render_content(mcp_result: CallToolResult) -> str:
        if not mcp_result.content:
            return "" if mcp_result.isError else "Success"

        output = []
        for c in mcp_result.content:
            if c.type == "text":
                output.append(cast(TextContent, c).text)
            elif c.type == "image":
                output.append(f"[Image: {cast(ImageContent, c).mimeType}]")
            elif c.type == "resource":
                output.append(f"[Resource: {cast(EmbeddedResource, c).resource.uri}]")
            else:
                output.append(f"[Unknown content type: {c.type}]")
        return "\n".join(output)
