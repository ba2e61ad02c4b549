"""Per-connection protocol state and the set of methods the server knows."""

import logging
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class TransportKind(str, Enum):
    STDIO = "stdio"
    SSE = "sse"


class ConnectionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class Method(str, Enum):
    """Methods the dispatcher routes. Anything else is unknown."""

    INITIALIZE = "initialize"
    INITIALIZED = "notifications/initialized"
    PING = "ping"
    TOOLS_LIST = "tools/list"
    TOOLS_CALL = "tools/call"

    @classmethod
    def parse(cls, name: str) -> "Method | None":
        """Map a wire method name to a Method, or None when unknown.

        The bare ``initialized`` form is accepted as an alias of
        ``notifications/initialized``; no other method takes a prefix.
        """
        if name == "initialized":
            return cls.INITIALIZED
        try:
            return cls(name)
        except ValueError:
            return None


class Connection:
    """State of one client session, owned by its transport."""

    def __init__(self, transport: TransportKind, connection_id: str | None = None):
        self.transport = transport
        self.connection_id = connection_id or transport.value
        self.state = ConnectionState.UNINITIALIZED
        self.protocol_version: str | None = None
        self.client_info: dict[str, Any] | None = None
        self.client_capabilities: dict[str, Any] = {}

    @property
    def is_ready(self) -> bool:
        return self.state is ConnectionState.READY

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    def begin_initialize(
        self,
        protocol_version: str | None,
        client_info: dict[str, Any] | None,
        capabilities: dict[str, Any],
    ) -> None:
        self.protocol_version = protocol_version
        self.client_info = client_info
        self.client_capabilities = capabilities
        self._transition(ConnectionState.INITIALIZING)

    def mark_ready(self) -> None:
        if self.state is ConnectionState.INITIALIZING:
            self._transition(ConnectionState.READY)

    def close(self) -> None:
        if self.state is not ConnectionState.CLOSED:
            self._transition(ConnectionState.CLOSED)

    def _transition(self, new_state: ConnectionState) -> None:
        logger.debug(
            f"Connection {self.connection_id}: {self.state.value} -> {new_state.value}"
        )
        self.state = new_state

    def __repr__(self) -> str:
        return f"Connection({self.transport.value!r}, {self.connection_id!r}, state={self.state.value!r})"
