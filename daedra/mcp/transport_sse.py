"""SSE (Server-Sent Events) transport for MCP."""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator

from sse_starlette.sse import EventSourceResponse

from daedra.mcp.connection import Connection, TransportKind
from daedra.mcp.errors import TransportClosedError

logger = logging.getLogger(__name__)

# Session timeout (30 minutes)
SESSION_TIMEOUT = timedelta(minutes=30)

# Keepalive interval on an idle stream
PING_INTERVAL = 30.0

DEFAULT_QUEUE_SIZE = 256


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session:
    """An MCP session: a connection plus the event queue feeding its stream."""

    def __init__(
        self,
        session_id: str,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        write_timeout: float = 10.0,
    ):
        self.session_id = session_id
        self.connection = Connection(TransportKind.SSE, connection_id=session_id)
        self.created_at = _utcnow()
        self.last_activity = _utcnow()
        self.queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue(maxsize=queue_size)
        self.write_timeout = write_timeout
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        """Update last activity timestamp."""
        self.last_activity = _utcnow()

    def is_expired(self) -> bool:
        """Check if the session has expired."""
        return _utcnow() - self.last_activity > SESSION_TIMEOUT

    async def send_event(self, event_type: str, data: Any) -> None:
        """
        Queue an event for the client's stream.

        Raises:
            TransportClosedError: The session is closed, or the client stopped
                draining its stream and the queue stayed full past the write
                timeout (the session is closed in that case).
        """
        if self._closed:
            raise TransportClosedError(f"Session {self.session_id} is closed")
        try:
            await asyncio.wait_for(
                self.queue.put({"event": event_type, "data": data}),
                timeout=self.write_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Session {self.session_id} stopped reading; closing it")
            self.close()
            raise TransportClosedError(
                f"Session {self.session_id} write timed out"
            ) from None

    def close(self) -> None:
        """Mark the session and its connection as closed."""
        if self._closed:
            return
        self._closed = True
        self.connection.close()
        # Wake a stream blocked on an empty queue
        try:
            self.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def events(
        self, message_endpoint: str, ping_interval: float = PING_INTERVAL
    ) -> AsyncGenerator[dict[str, Any], None]:
        """Yield the stream's events: the endpoint first, then queued messages."""
        yield {
            "event": "endpoint",
            "data": f"{message_endpoint}?session_id={self.session_id}",
        }

        while not self._closed:
            try:
                event = await asyncio.wait_for(self.queue.get(), timeout=ping_interval)
            except asyncio.TimeoutError:
                # Send keepalive ping
                yield {"event": "ping", "data": ""}
                continue
            if event is None:
                break
            yield event


class SessionManager:
    """Manages MCP sessions for one server."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE, write_timeout: float = 10.0):
        self.queue_size = queue_size
        self.write_timeout = write_timeout
        self._sessions: dict[str, Session] = {}
        self._cleanup_task: asyncio.Task | None = None

    def create_session(self) -> Session:
        """Create a new session."""
        session_id = str(uuid.uuid4())
        session = Session(session_id, self.queue_size, self.write_timeout)
        self._sessions[session_id] = session
        logger.info(f"Created session: {session_id}")
        return session

    def get_session(self, session_id: str) -> Session | None:
        """Get a live session by ID."""
        session = self._sessions.get(session_id)
        if session is not None:
            if session.is_expired() or session.is_closed:
                self.remove_session(session_id)
                return None
            session.touch()
        return session

    def remove_session(self, session_id: str) -> None:
        """Remove a session."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.close()
            logger.info(f"Removed session: {session_id}")

    def cleanup_expired(self) -> int:
        """Remove expired sessions."""
        expired = [
            sid for sid, session in self._sessions.items() if session.is_expired()
        ]
        for sid in expired:
            self.remove_session(sid)
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)

    def start_cleanup_task(self, interval: float = 60.0) -> None:
        """Start background task to clean up expired sessions."""
        if self._cleanup_task is not None:
            return

        async def cleanup_loop():
            while True:
                await asyncio.sleep(interval)
                self.cleanup_expired()

        self._cleanup_task = asyncio.create_task(cleanup_loop())

    def stop_cleanup_task(self) -> None:
        """Stop the cleanup background task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    def close_all(self) -> None:
        for session_id in list(self._sessions):
            self.remove_session(session_id)

    @property
    def session_count(self) -> int:
        """Return the number of active sessions."""
        return len(self._sessions)


def create_sse_response(
    session: Session,
    manager: SessionManager,
    message_endpoint: str,
) -> EventSourceResponse:
    """Create an SSE response streaming a session's events."""

    async def event_generator() -> AsyncGenerator[dict[str, Any], None]:
        try:
            async for event in session.events(message_endpoint):
                yield event
        except asyncio.CancelledError:
            logger.info(f"SSE stream cancelled for session {session.session_id}")
            raise
        finally:
            manager.remove_session(session.session_id)

    return EventSourceResponse(event_generator())
