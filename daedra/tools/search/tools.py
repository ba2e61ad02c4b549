"""DuckDuckGo search tool."""

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator

from daedra.mcp.models import TextContent
from daedra.mcp.registry import ToolRegistry
from daedra.tools.search.client import SearchClient, SearchOptions

logger = logging.getLogger(__name__)

TOOL_NAME = "search_duckduckgo"

INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The search query string",
        },
        "options": {
            "type": "object",
            "description": "Optional search configuration",
            "properties": {
                "region": {
                    "type": "string",
                    "description": "Region for search results (e.g., 'us-en', 'wt-wt' for worldwide)",
                    "default": "wt-wt",
                },
                "safe_search": {
                    "type": "string",
                    "enum": ["OFF", "MODERATE", "STRICT"],
                    "description": "Safe search filtering level",
                    "default": "MODERATE",
                },
                "num_results": {
                    "type": "integer",
                    "description": "Maximum number of results to return",
                    "default": 10,
                    "minimum": 1,
                    "maximum": 50,
                },
                "time_range": {
                    "type": "string",
                    "description": "Time range filter (d=day, w=week, m=month, y=year)",
                },
            },
        },
    },
    "required": ["query"],
}


class SearchArgs(BaseModel):
    query: str = Field(..., min_length=1)
    options: SearchOptions = Field(default_factory=SearchOptions)

    @field_validator("query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("query must not be empty")
        return value

    @field_validator("options", mode="before")
    @classmethod
    def _default_options(cls, value: Any) -> Any:
        return {} if value is None else value


def register_tools(
    registry: ToolRegistry,
    options: dict[str, Any],
    client: SearchClient | None = None,
) -> None:
    """Register the search tool with the registry."""
    client = client or SearchClient()

    async def search_handler(args: SearchArgs) -> list[TextContent]:
        response = await client.search(args.query, args.options)
        return [TextContent(text=response.model_dump_json(indent=2))]

    registry.register(
        name=TOOL_NAME,
        description=(
            "Search the web using DuckDuckGo. Returns structured search results "
            "with metadata."
        ),
        input_schema=INPUT_SCHEMA,
        args_model=SearchArgs,
        handler=search_handler,
        cache_ttl=options.get("cache_ttl"),
        failure_message="Search failed",
    )
