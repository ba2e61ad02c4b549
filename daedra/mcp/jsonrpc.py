"""JSON-RPC 2.0 message processing."""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from daedra.mcp.connection import Connection
from daedra.mcp.errors import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    McpError,
    ParseError,
    make_error_data,
)
from daedra.mcp.handlers import MCPHandlers
from daedra.mcp.models import JsonRpcError, JsonRpcRequest, JsonRpcResponse
from daedra.mcp.registry import describe_validation_error
from daedra.utils.logging import set_request_id

logger = logging.getLogger(__name__)

# Top-level "id" member in text that failed to parse as JSON.
_ID_PATTERN = re.compile(r'"id"\s*:\s*(-?\d+|"(?:[^"\\]|\\.)*")')


def recover_id(text: str) -> int | str | None:
    """Best-effort extraction of a request id from a malformed message."""
    match = _ID_PATTERN.search(text)
    if match is None:
        return None
    try:
        value = json.loads(match.group(1))
    except ValueError:
        return None
    return value if isinstance(value, (int, str)) else None


def _valid_id(value: Any) -> int | str | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, (int, str)) else None


class JsonRpcProcessor:
    """Process JSON-RPC 2.0 messages for a connection."""

    def __init__(self, handlers: MCPHandlers):
        self.handlers = handlers

    def parse_request(self, raw_data: str | bytes) -> JsonRpcRequest:
        """
        Parse a JSON-RPC request from raw data.

        Raises:
            ParseError: With code -32700 for undecodable/non-JSON input and
                -32600 for JSON that is not a valid request. ``request_id``
                is set when an id could be recovered.
        """
        if isinstance(raw_data, bytes):
            try:
                raw_data = raw_data.decode("utf-8")
            except UnicodeDecodeError as e:
                text = raw_data.decode("utf-8", errors="replace")
                raise ParseError(f"Invalid UTF-8: {e}", request_id=recover_id(text)) from None

        try:
            data = json.loads(raw_data)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON: {e}", request_id=recover_id(raw_data)) from None

        if not isinstance(data, dict):
            raise ParseError(
                "Invalid JSON-RPC request: expected a single JSON object",
                code=INVALID_REQUEST,
            )

        try:
            return JsonRpcRequest.model_validate(data)
        except ValidationError as e:
            summary, _ = describe_validation_error(e)
            raise ParseError(
                f"Invalid JSON-RPC request: {summary}",
                request_id=_valid_id(data.get("id")),
                code=INVALID_REQUEST,
            ) from None

    async def process_request(
        self, request: JsonRpcRequest, connection: Connection
    ) -> JsonRpcResponse | None:
        """
        Process a validated JSON-RPC request on a connection.

        Returns None for notifications (requests without id) and for closed
        connections. Never raises for handler failures.
        """
        if connection.is_closed:
            return None

        is_notification = request.is_notification
        if not is_notification:
            set_request_id(request.id)

        try:
            result = await self.handlers.dispatch(connection, request.method, request.params)
        except McpError as e:
            if is_notification:
                logger.warning(f"Dropped notification {request.method}: {e.message}")
                return None
            logger.info(f"Request {request.method} rejected: {e.message}")
            return JsonRpcResponse(id=request.id, error=JsonRpcError(**e.to_error_data()))
        except Exception:
            logger.exception(f"Error handling method {request.method}")
            if is_notification:
                return None
            return JsonRpcResponse(
                id=request.id,
                error=JsonRpcError(**make_error_data(INTERNAL_ERROR)),
            )

        # Notifications don't get responses
        if is_notification:
            return None
        return JsonRpcResponse(id=request.id, result=result)

    async def handle_message(
        self, raw_data: str | bytes, connection: Connection
    ) -> JsonRpcResponse | None:
        """
        Handle a raw JSON-RPC message end-to-end.

        A parse failure yields an error response whose id is None when no id
        could be recovered; transports decide whether that can be delivered.
        """
        try:
            request = self.parse_request(raw_data)
        except ParseError as e:
            logger.warning(f"Rejected message: {e.message}")
            return JsonRpcResponse(id=e.request_id, error=JsonRpcError(**e.to_error_data()))

        return await self.process_request(request, connection)

    def serialize_response(self, response: JsonRpcResponse) -> str:
        """Serialize a JSON-RPC response to a single-line JSON string."""
        return json.dumps(response.model_dump(), separators=(",", ":"), ensure_ascii=False)
