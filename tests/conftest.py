"""Pytest configuration and fixtures."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport
from pydantic import BaseModel

from daedra.cache import ResultCache
from daedra.config.loader import Settings
from daedra.mcp.connection import Connection, TransportKind
from daedra.mcp.handlers import MCPHandlers
from daedra.mcp.jsonrpc import JsonRpcProcessor
from daedra.mcp.models import TextContent
from daedra.mcp.registry import ToolRegistry
from daedra.server import McpServer
from daedra.tools.errors import SearchError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class EchoArgs(BaseModel):
    message: str
    repeat: int = 1


class FailArgs(BaseModel):
    reason: str = "upstream exploded"


class ToolSpy:
    """Test tools that record how often they actually run."""

    def __init__(self):
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def echo(self, args: EchoArgs) -> list[TextContent]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        return [TextContent(text=f"echo: {args.message * args.repeat}")]

    async def fail(self, args: FailArgs) -> list[TextContent]:
        self.calls += 1
        raise SearchError(args.reason)


ECHO_SCHEMA = {
    "type": "object",
    "properties": {
        "message": {"type": "string"},
        "repeat": {"type": "integer", "default": 1},
    },
    "required": ["message"],
}


@pytest.fixture
def settings():
    """Settings that ignore any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(max_entries=100, clock=clock)


@pytest.fixture
def spy():
    return ToolSpy()


@pytest.fixture
def registry(cache, spy):
    """Registry with the in-memory test tools."""
    registry = ToolRegistry(cache, default_ttl=60)
    registry.register(
        name="echo",
        description="Echo a message back",
        input_schema=ECHO_SCHEMA,
        args_model=EchoArgs,
        handler=spy.echo,
    )
    registry.register(
        name="fail",
        description="Always fails",
        input_schema={"type": "object", "properties": {"reason": {"type": "string"}}},
        args_model=FailArgs,
        handler=spy.fail,
        failure_message="Search failed",
    )
    return registry


@pytest.fixture
def processor(registry, settings):
    return JsonRpcProcessor(MCPHandlers(registry, settings))


@pytest.fixture
def connection():
    return Connection(TransportKind.STDIO)


@pytest.fixture
def sample_jsonrpc_request():
    """Sample JSON-RPC request factory."""
    def _make_request(method: str, params: dict = None, id: int | None = 1):
        request = {"jsonrpc": "2.0", "method": method}
        if id is not None:
            request["id"] = id
        if params is not None:
            request["params"] = params
        return request
    return _make_request


@pytest.fixture
def initialize_params():
    return {
        "protocolVersion": "2024-11-05",
        "capabilities": {},
        "clientInfo": {"name": "test", "version": "1.0"},
    }


@pytest.fixture
def rpc(processor, sample_jsonrpc_request):
    """Send one request through the processor, returning the response dict."""
    async def _rpc(connection, method, params=None, id=1):
        raw = json.dumps(sample_jsonrpc_request(method, params, id))
        response = await processor.handle_message(raw, connection)
        return response.model_dump() if response is not None else None
    return _rpc


@pytest.fixture
async def ready_connection(rpc, initialize_params):
    """A connection that completed the initialize handshake."""
    connection = Connection(TransportKind.STDIO)
    await rpc(connection, "initialize", initialize_params, id=0)
    await rpc(connection, "notifications/initialized", id=None)
    assert connection.is_ready
    return connection


@pytest.fixture
def server(settings, cache, registry):
    return McpServer(settings, cache=cache, registry=registry)


@pytest.fixture
def app(server):
    return server.create_app()


@pytest.fixture
def client(app):
    """Synchronous test client for FastAPI app."""
    return TestClient(app)


@pytest.fixture
async def async_client(app):
    """Async test client for FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
