"""Errors raised by the search and fetch collaborators.

Each carries the application code the registry reports in an isError
tool result.
"""

from daedra.mcp.errors import (
    BOT_PROTECTION_DETECTED,
    INVALID_TOOL_ARGUMENT,
    TOOL_EXECUTION_ERROR,
    UPSTREAM_RATE_LIMITED,
    UPSTREAM_TIMEOUT,
)


class DaedraError(Exception):
    """Base class for tool-level failures."""

    code = TOOL_EXECUTION_ERROR


class SearchError(DaedraError):
    pass


class FetchError(DaedraError):
    pass


class InvalidArgumentsError(DaedraError):
    code = INVALID_TOOL_ARGUMENT


class RateLimitExceededError(DaedraError):
    code = UPSTREAM_RATE_LIMITED

    def __init__(self, message: str = "Rate limit exceeded, please try again later"):
        super().__init__(message)


class BotProtectionError(DaedraError):
    code = BOT_PROTECTION_DETECTED

    def __init__(self, message: str = "Bot protection detected on target page"):
        super().__init__(message)


class UpstreamTimeoutError(DaedraError):
    code = UPSTREAM_TIMEOUT

    def __init__(self, message: str = "Operation timed out"):
        super().__init__(message)
