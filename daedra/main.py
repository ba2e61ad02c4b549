"""FastAPI application for the SSE transport."""

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from daedra import SERVER_DESCRIPTION
from daedra.mcp.errors import INVALID_REQUEST, TransportClosedError, make_error_data
from daedra.mcp.handlers import PROTOCOL_VERSION
from daedra.mcp.transport_sse import SessionManager, create_sse_response
from daedra.utils.http import close_shared_client
from daedra.utils.logging import get_logger, set_request_id

if TYPE_CHECKING:
    from daedra.server import McpServer

logger = logging.getLogger(__name__)

MESSAGE_ENDPOINT = "/message"


def _error_body(code: int, message: str) -> dict:
    return {"jsonrpc": "2.0", "id": None, "error": make_error_data(code, message)}


def create_app(server: "McpServer") -> FastAPI:
    """Create the HTTP app serving MCP over SSE for a server instance."""
    settings = server.settings
    sessions = SessionManager(
        queue_size=settings.session_queue_size,
        write_timeout=settings.write_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        log = get_logger("startup")
        log.info(
            "Starting MCP server",
            server_name=settings.server_name,
            version=settings.server_version,
            tool_count=server.registry.tool_count,
            cache_enabled=server.cache.enabled,
        )
        sessions.start_cleanup_task()
        if server.cache.enabled:
            server.cache.start_sweeper()

        yield

        # Shutdown
        log.info("Shutting down MCP server", cache=str(server.cache.stats()))
        sessions.stop_cleanup_task()
        sessions.close_all()
        server.cache.stop_sweeper()
        await close_shared_client()

    app = FastAPI(
        title=settings.server_name,
        description=SERVER_DESCRIPTION,
        version=settings.server_version,
        lifespan=lifespan,
    )
    app.state.server = server
    app.state.sessions = sessions

    # Browser-based inspectors connect cross-origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next):
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID") or set_request_id()
        set_request_id(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # =========================================================================
    # Health and Info Endpoints
    # =========================================================================

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict:
        """Root endpoint with server info."""
        stats = server.cache.stats()
        return {
            "name": settings.server_name,
            "version": settings.server_version,
            "description": SERVER_DESCRIPTION,
            "endpoints": {
                "health": "/health",
                "sse": "/sse",
                "message": MESSAGE_ENDPOINT,
            },
            "tools_available": server.registry.tool_count,
            "sessions": sessions.session_count,
            "cache": {
                "enabled": stats.enabled,
                "entries": stats.entries,
                "hits": stats.hits,
                "misses": stats.misses,
            },
            "mcp_protocol_version": PROTOCOL_VERSION,
        }

    # =========================================================================
    # MCP Endpoints
    # =========================================================================

    @app.get("/sse")
    async def sse_endpoint(request: Request):
        """
        SSE endpoint for MCP session establishment.

        The stream starts with an 'endpoint' event naming the URL to POST
        messages to; responses to those messages arrive as 'message' events.
        """
        session = sessions.create_session()
        get_logger("sse").info("SSE session created", session_id=session.session_id)
        return create_sse_response(session, sessions, MESSAGE_ENDPOINT)

    @app.post(MESSAGE_ENDPOINT)
    async def message_endpoint(request: Request) -> Response:
        """
        Message endpoint for JSON-RPC requests on an SSE session.

        Accepted messages get HTTP 202; their responses are delivered on the
        session's event stream.
        """
        session_id = request.query_params.get("session_id")
        if not session_id:
            return JSONResponse(
                status_code=400,
                content=_error_body(INVALID_REQUEST, "Missing session_id query parameter"),
            )

        session = sessions.get_session(session_id)
        if session is None:
            return JSONResponse(
                status_code=404,
                content=_error_body(INVALID_REQUEST, f"Unknown or expired session: {session_id}"),
            )

        body = await request.body()
        response = await server.processor.handle_message(body, session.connection)

        if response is not None and response.id is None:
            # Unparseable without an id: only the POST itself can carry the error
            return JSONResponse(status_code=400, content=response.model_dump())

        if response is not None:
            try:
                await session.send_event("message", server.processor.serialize_response(response))
            except TransportClosedError as e:
                logger.warning(f"Dropping session {session_id}: {e}")
                sessions.remove_session(session_id)
                return JSONResponse(
                    status_code=410,
                    content=_error_body(INVALID_REQUEST, str(e)),
                )

        return Response(status_code=202)

    return app
