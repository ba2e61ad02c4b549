"""Utility modules: logging and HTTP client."""

from daedra.utils.logging import setup_logging, get_logger
from daedra.utils.http import create_http_client, get_shared_client, close_shared_client

__all__ = [
    "setup_logging",
    "get_logger",
    "create_http_client",
    "get_shared_client",
    "close_shared_client",
]
