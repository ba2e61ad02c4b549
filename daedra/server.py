"""Server wiring: cache, tool registry, protocol handlers and transports."""

import logging
import sys
from typing import IO, TYPE_CHECKING

from daedra.cache import ResultCache
from daedra.config.loader import Settings, get_provider_config, get_enabled_providers, load_tools_config
from daedra.mcp.connection import Connection, TransportKind
from daedra.mcp.handlers import MCPHandlers
from daedra.mcp.jsonrpc import JsonRpcProcessor
from daedra.mcp.registry import ToolRegistry
from daedra.mcp.transport_stdio import StdioTransport, open_stdio_streams
from daedra.utils.http import close_shared_client
from daedra.utils.logging import get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


class McpServer:
    """One server instance. Every connection on it shares the cache."""

    def __init__(
        self,
        settings: Settings,
        cache: ResultCache | None = None,
        registry: ToolRegistry | None = None,
    ):
        self.settings = settings
        self.cache = cache or ResultCache(
            max_entries=settings.cache_max_entries,
            enabled=settings.cache_enabled,
        )
        self.registry = registry or ToolRegistry(self.cache, default_ttl=settings.cache_ttl)
        self.handlers = MCPHandlers(self.registry, settings)
        self.processor = JsonRpcProcessor(self.handlers)

    def load_tools(self) -> dict[str, bool]:
        """Load the providers enabled in the tools config."""
        log = get_logger("startup")
        config = load_tools_config(self.settings.tools_config)
        providers = get_enabled_providers(config)
        log.info("Loading providers", providers=providers)

        results = {
            name: self.registry.load_provider(name, get_provider_config(name, config))
            for name in providers
        }
        for provider, success in results.items():
            if not success:
                log.warning("Failed to load provider", provider=provider)

        log.info(
            "Tool registry ready",
            tool_count=self.registry.tool_count,
            provider_count=self.registry.provider_count,
        )
        return results

    async def run_stdio(self, stdin: IO | None = None, stdout: IO | None = None) -> None:
        """Serve a single stdio connection until stdin closes."""
        reader, writer = await open_stdio_streams(
            limit=self.settings.max_message_bytes,
            stdin=stdin or sys.stdin,
            stdout=stdout or sys.stdout,
        )
        transport = StdioTransport(reader, writer, write_timeout=self.settings.write_timeout)
        connection = Connection(TransportKind.STDIO)

        get_logger("stdio").info(
            "Serving MCP on stdio",
            server_name=self.settings.server_name,
            version=self.settings.server_version,
            cache_enabled=self.cache.enabled,
        )
        try:
            await transport.serve(self.processor, connection)
        finally:
            writer.close()
            logger.info(str(self.cache.stats()))
            await close_shared_client()

    def create_app(self) -> "FastAPI":
        """Build the HTTP + SSE application for this server."""
        from daedra.main import create_app

        return create_app(self)
