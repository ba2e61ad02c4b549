"""daedra - web search and research MCP server."""

SERVER_NAME = "daedra"
VERSION = "0.1.0"
SERVER_DESCRIPTION = "Web search and research MCP server"

__all__ = ["SERVER_NAME", "VERSION", "SERVER_DESCRIPTION"]
