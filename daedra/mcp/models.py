"""Pydantic models for MCP JSON-RPC 2.0 protocol."""

from typing import Any, Literal
from pydantic import BaseModel, Field


# =============================================================================
# JSON-RPC 2.0 Base Models
# =============================================================================


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None = None  # None for notifications
    method: str
    params: Any = None

    @property
    def is_notification(self) -> bool:
        return self.id is None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            data["data"] = self.data
        return data


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response object."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None = None
    result: Any = None
    error: JsonRpcError | None = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        """Custom serialization: exactly one of result / error is emitted."""
        data: dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            data["error"] = self.error.model_dump()
        else:
            data["result"] = self.result
        return data


# =============================================================================
# MCP Content Types
# =============================================================================


class TextContent(BaseModel):
    """Text content returned by tools."""

    type: Literal["text"] = "text"
    text: str


# =============================================================================
# MCP Tool Models
# =============================================================================


class Tool(BaseModel):
    """MCP tool definition."""

    name: str = Field(..., description="Tool name")
    description: str = Field(..., description="Human-readable description")
    inputSchema: dict[str, Any] = Field(
        ..., description="JSON Schema for tool input"
    )


class ToolCallResult(BaseModel):
    """Result of a tool call.

    ``errorCode`` is an application code reported under ``_meta`` when the
    tool itself failed.
    """

    content: list[TextContent]
    isError: bool = False
    errorCode: int | None = None

    def model_dump(self, **kwargs: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "content": [item.model_dump() for item in self.content],
            "isError": self.isError,
        }
        if self.errorCode is not None:
            data["_meta"] = {"errorCode": self.errorCode}
        return data


# =============================================================================
# MCP Protocol Models
# =============================================================================


class ClientInfo(BaseModel):
    """Client information sent during initialization."""

    name: str
    version: str = ""


class ServerInfo(BaseModel):
    """Server information returned during initialization."""

    name: str
    version: str


class Capabilities(BaseModel):
    """Server capabilities."""

    tools: dict[str, Any] = Field(default_factory=lambda: {"listChanged": False})


class InitializeParams(BaseModel):
    """Parameters for initialize request."""

    protocolVersion: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: ClientInfo | None = None


class InitializeResult(BaseModel):
    """Result of initialize request."""

    protocolVersion: str
    capabilities: Capabilities
    serverInfo: ServerInfo
    instructions: str | None = None


class ToolsListResult(BaseModel):
    """Result of tools/list request."""

    tools: list[Tool]


class ToolCallParams(BaseModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = Field(default_factory=dict)
