"""Page fetch tool."""

import logging
from typing import Any

from pydantic import BaseModel, Field

from daedra.mcp.models import TextContent
from daedra.mcp.registry import ToolRegistry
from daedra.tools.fetch.client import FetchClient

logger = logging.getLogger(__name__)

TOOL_NAME = "visit_page"

INPUT_SCHEMA = {
    "type": "object",
    "properties": {
        "url": {
            "type": "string",
            "format": "uri",
            "description": "URL of the page to visit",
        },
        "selector": {
            "type": "string",
            "description": "Optional CSS selector to target specific content",
        },
        "include_images": {
            "type": "boolean",
            "description": "Whether to include image references in the response",
            "default": False,
        },
    },
    "required": ["url"],
}


class VisitPageArgs(BaseModel):
    # Scheme checks happen in the handler so a bad URL is a tool error
    url: str = Field(..., min_length=1)
    selector: str | None = None
    include_images: bool = False


def register_tools(
    registry: ToolRegistry,
    options: dict[str, Any],
    client: FetchClient | None = None,
) -> None:
    """Register the page fetch tool with the registry."""
    client = client or FetchClient()

    async def visit_page_handler(args: VisitPageArgs) -> list[TextContent]:
        page = await client.fetch(
            args.url,
            selector=args.selector,
            include_images=args.include_images,
        )
        return [TextContent(text=page.to_markdown())]

    registry.register(
        name=TOOL_NAME,
        description=(
            "Visit a webpage and extract its content as Markdown. Useful for "
            "reading articles, documentation, or any web page."
        ),
        input_schema=INPUT_SCHEMA,
        args_model=VisitPageArgs,
        handler=visit_page_handler,
        cache_ttl=options.get("cache_ttl"),
        failure_message="Failed to fetch page",
    )
