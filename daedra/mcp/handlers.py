"""MCP method handlers and the per-connection handshake state machine."""

import logging
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from daedra.config.loader import Settings
from daedra.mcp.connection import Connection, ConnectionState, Method
from daedra.mcp.errors import (
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
)
from daedra.mcp.models import (
    Capabilities,
    InitializeParams,
    InitializeResult,
    ServerInfo,
    ToolCallParams,
    ToolsListResult,
)
from daedra.mcp.registry import ToolRegistry, describe_validation_error

logger = logging.getLogger(__name__)

# MCP protocol version we support
PROTOCOL_VERSION = "2024-11-05"

SERVER_INSTRUCTIONS = (
    "Use search_duckduckgo to find pages on the web and visit_page to read "
    "a page as Markdown."
)

Handler = Callable[[Connection, Any], Awaitable[Any]]


class MCPHandlers:
    """Handlers for MCP protocol methods."""

    def __init__(self, registry: ToolRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings
        self._routes: dict[Method, Handler] = {
            Method.INITIALIZE: self.handle_initialize,
            Method.INITIALIZED: self.handle_initialized,
            Method.PING: self.handle_ping,
            Method.TOOLS_LIST: self.handle_tools_list,
            Method.TOOLS_CALL: self.handle_tools_call,
        }

    async def handle_initialize(self, connection: Connection, params: Any) -> dict[str, Any]:
        """Handle the initialize request."""
        try:
            init_params = InitializeParams.model_validate(params or {})
        except ValidationError as e:
            # Clients send very different initialize payloads; proceed with
            # defaults rather than refusing the handshake.
            logger.warning(f"Invalid initialize params: {e}")
            init_params = InitializeParams()

        # A repeated initialize is answered again without leaving Ready
        if not connection.is_ready:
            connection.begin_initialize(
                protocol_version=init_params.protocolVersion,
                client_info=(
                    init_params.clientInfo.model_dump() if init_params.clientInfo else None
                ),
                capabilities=init_params.capabilities,
            )
        logger.info(
            f"Initialize from {connection.client_info or 'unknown client'} "
            f"(protocol {init_params.protocolVersion or 'unspecified'})"
        )

        result = InitializeResult(
            protocolVersion=PROTOCOL_VERSION,
            capabilities=Capabilities(),
            serverInfo=ServerInfo(
                name=self.settings.server_name,
                version=self.settings.server_version,
            ),
            instructions=SERVER_INSTRUCTIONS,
        )
        return result.model_dump(exclude_none=True)

    async def handle_initialized(self, connection: Connection, params: Any) -> dict[str, Any]:
        """Handle the initialized notification: completes the handshake."""
        if connection.state is ConnectionState.INITIALIZING:
            connection.mark_ready()
            logger.info("Client confirmed initialization")
        return {}

    async def handle_ping(self, connection: Connection, params: Any) -> dict[str, Any]:
        return {}

    async def handle_tools_list(self, connection: Connection, params: Any) -> dict[str, Any]:
        """Handle the tools/list request."""
        tools = self.registry.list_tools()
        result = ToolsListResult(tools=tools)
        return result.model_dump()

    async def handle_tools_call(self, connection: Connection, params: Any) -> dict[str, Any]:
        """Handle the tools/call request."""
        if not isinstance(params, dict):
            raise InvalidParamsError("tools/call params must be an object")
        try:
            call_params = ToolCallParams.model_validate(params)
        except ValidationError as e:
            summary, details = describe_validation_error(e)
            raise InvalidParamsError(f"Invalid tools/call params: {summary}", data=details) from None

        logger.info(f"Calling tool: {call_params.name}")
        result = await self.registry.call_tool(call_params.name, call_params.arguments)
        return result.model_dump()

    def check_state(self, connection: Connection, method: Method | None) -> None:
        """
        Enforce the handshake ordering for a request.

        Raises:
            InvalidRequestError: The method is not allowed in the current state.
        """
        state = connection.state
        if state is ConnectionState.UNINITIALIZED:
            if method is not Method.INITIALIZE:
                raise InvalidRequestError("Server not initialized")
        elif state is ConnectionState.INITIALIZING:
            if method is not Method.INITIALIZED:
                raise InvalidRequestError(
                    "Initialization not complete: waiting for notifications/initialized"
                )

    async def dispatch(self, connection: Connection, method_name: str, params: Any) -> Any:
        """
        Dispatch a method call to the appropriate handler.

        Raises:
            McpError: Protocol errors (state, unknown method, bad params).
        """
        method = Method.parse(method_name)
        self.check_state(connection, method)

        if method is None:
            raise MethodNotFoundError(f"Method not found: {method_name}")

        handler = self._routes[method]
        return await handler(connection, params)
