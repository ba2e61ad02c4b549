"""JSON-RPC 2.0 error codes, protocol exceptions and error response helpers."""

from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700  # Invalid JSON was received
INVALID_REQUEST = -32600  # The JSON sent is not a valid Request object
METHOD_NOT_FOUND = -32601  # The method does not exist / is not available
INVALID_PARAMS = -32602  # Invalid method parameter(s)
INTERNAL_ERROR = -32603  # Internal JSON-RPC error

# Application codes (-32000 to -32099). These never appear in a JSON-RPC
# error object; they are reported in the _meta of an isError tool result.
TOOL_EXECUTION_ERROR = -32000  # Tool execution failed
UPSTREAM_RATE_LIMITED = -32002  # Upstream service rate limited us
BOT_PROTECTION_DETECTED = -32003  # Target page is behind a bot challenge
UPSTREAM_TIMEOUT = -32004  # Upstream service timed out
INVALID_TOOL_ARGUMENT = -32005  # Argument passed the schema but is unusable


def error_message(code: int) -> str:
    """Get the standard message for a JSON-RPC error code."""
    messages = {
        PARSE_ERROR: "Parse error",
        INVALID_REQUEST: "Invalid Request",
        METHOD_NOT_FOUND: "Method not found",
        INVALID_PARAMS: "Invalid params",
        INTERNAL_ERROR: "Internal error",
        TOOL_EXECUTION_ERROR: "Tool execution error",
        UPSTREAM_RATE_LIMITED: "Rate limit exceeded",
        BOT_PROTECTION_DETECTED: "Bot protection detected",
        UPSTREAM_TIMEOUT: "Upstream timeout",
        INVALID_TOOL_ARGUMENT: "Invalid tool argument",
    }
    return messages.get(code, "Unknown error")


def make_error_data(code: int, message: str | None = None, data: Any = None) -> dict[str, Any]:
    """Create an error object for JSON-RPC response."""
    error: dict[str, Any] = {
        "code": code,
        "message": message or error_message(code),
    }
    if data is not None:
        error["data"] = data
    return error


class McpError(Exception):
    """A protocol-level failure that maps onto a JSON-RPC error object."""

    code = INTERNAL_ERROR

    def __init__(self, message: str | None = None, data: Any = None, code: int | None = None):
        if code is not None:
            self.code = code
        self.message = message or error_message(self.code)
        self.data = data
        super().__init__(self.message)

    def to_error_data(self) -> dict[str, Any]:
        return make_error_data(self.code, self.message, self.data)


class InvalidRequestError(McpError):
    code = INVALID_REQUEST


class MethodNotFoundError(McpError):
    code = METHOD_NOT_FOUND


class InvalidParamsError(McpError):
    code = INVALID_PARAMS


class ParseError(McpError):
    """Raised for messages that cannot be turned into a request.

    ``request_id`` holds the id recovered from the raw message, if any.
    """

    code = PARSE_ERROR

    def __init__(
        self,
        message: str | None = None,
        request_id: int | str | None = None,
        code: int | None = None,
    ):
        super().__init__(message, code=code)
        self.request_id = request_id


class TransportClosedError(Exception):
    """The peer went away or stopped reading."""
