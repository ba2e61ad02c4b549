"""MCP (Model Context Protocol) implementation with JSON-RPC 2.0."""

from daedra.mcp.models import (
    JsonRpcRequest,
    JsonRpcResponse,
    JsonRpcError,
    Tool,
    TextContent,
    ToolCallResult,
)
from daedra.mcp.errors import (
    PARSE_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    INVALID_PARAMS,
    INTERNAL_ERROR,
    McpError,
    InvalidParamsError,
    InvalidRequestError,
    MethodNotFoundError,
)

__all__ = [
    "JsonRpcRequest",
    "JsonRpcResponse",
    "JsonRpcError",
    "Tool",
    "TextContent",
    "ToolCallResult",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "McpError",
    "InvalidParamsError",
    "InvalidRequestError",
    "MethodNotFoundError",
]
