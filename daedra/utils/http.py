"""HTTP client utilities with retry, timeout handling, and connection pooling."""

import asyncio
import logging

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from daedra.config.loader import get_settings
from daedra.tools.errors import RateLimitExceededError

logger = logging.getLogger(__name__)

# DuckDuckGo and many sites serve degraded pages to non-browser agents
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

DEFAULT_HEADERS = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

MAX_REDIRECTS = 10

# Maximum response body we are willing to read (10 MiB)
MAX_CONTENT_SIZE = 10 * 1024 * 1024

RETRYABLE_ERRORS = (httpx.ConnectError, httpx.TimeoutException, RateLimitExceededError)


# =============================================================================
# Connection Pooling - Shared HTTP Client
# =============================================================================

_shared_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


def create_http_client(
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """
    Create an async HTTP client with browser-like defaults.

    Args:
        timeout: Request timeout in seconds. Uses default from settings if None.
        transport: Optional transport override (tests pass httpx.MockTransport).

    Returns:
        Configured httpx.AsyncClient instance.
    """
    if timeout is None:
        timeout = float(get_settings().request_timeout)

    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        max_redirects=MAX_REDIRECTS,
        headers=DEFAULT_HEADERS,
        transport=transport,
        limits=httpx.Limits(
            max_keepalive_connections=10,
            max_connections=20,
            keepalive_expiry=30.0,
        ),
    )


async def get_shared_client() -> httpx.AsyncClient:
    """Get the process-wide HTTP client, creating it on first use.

    Reusing one client keeps TCP connections and TLS sessions warm across
    tool calls.
    """
    global _shared_client

    if _shared_client is None or _shared_client.is_closed:
        async with _client_lock:
            # Double-check after acquiring lock
            if _shared_client is None or _shared_client.is_closed:
                _shared_client = create_http_client()
                logger.debug("Created shared HTTP client with connection pooling")

    return _shared_client


async def close_shared_client() -> None:
    """Close the shared HTTP client (call on shutdown)."""
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
        logger.debug("Closed shared HTTP client")


# =============================================================================
# Retry Policy
# =============================================================================


def http_retrying(attempts: int = 3, wait: wait_base | None = None) -> AsyncRetrying:
    """
    Retry policy for upstream requests.

    Retries connection errors, timeouts and HTTP 429 with exponential
    backoff; the last exception is re-raised once attempts run out.

    Usage:
        async for attempt in http_retrying():
            with attempt:
                response = await client.get(url)
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait if wait is not None else wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True,
    )


def check_content_size(response: httpx.Response) -> bool:
    """Return False when the declared body size exceeds MAX_CONTENT_SIZE."""
    content_length = response.headers.get("content-length")
    if content_length is None:
        return True
    try:
        return int(content_length) <= MAX_CONTENT_SIZE
    except ValueError:
        return True
