"""Command-line interface for daedra."""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from daedra import SERVER_DESCRIPTION
from daedra.config.loader import Settings
from daedra.mcp.handlers import PROTOCOL_VERSION
from daedra.mcp.registry import describe_validation_error
from daedra.server import McpServer
from daedra.tools.errors import DaedraError, InvalidArgumentsError
from daedra.tools.fetch.client import FetchClient, PageContent
from daedra.tools.fetch.tools import VisitPageArgs
from daedra.tools.search.client import SearchClient, SearchOptions, SearchResponse
from daedra.utils.http import close_shared_client
from daedra.utils.logging import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="daedra",
        description=SERVER_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Serve MCP over stdio (for desktop assistants)
  daedra serve

  # Serve MCP over HTTP + SSE
  daedra serve --transport sse --port 3000

  # One-off search and page fetch
  daedra search "rust async runtime" -n 5
  daedra fetch https://example.com --selector article
        """,
    )
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log critical errors")
    parser.add_argument(
        "-f",
        "--format",
        choices=["pretty", "json", "json-compact"],
        default="pretty",
        help="Output format for search, fetch and info",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the MCP server")
    serve.add_argument("-t", "--transport", choices=["stdio", "sse"], help="Transport to serve on")
    serve.add_argument("-p", "--port", type=int, help="Port for the SSE transport")
    serve.add_argument("--host", help="Bind address for the SSE transport")
    serve.add_argument("--no-cache", action="store_true", help="Disable the result cache")
    serve.add_argument("--cache-ttl", type=int, metavar="SECONDS", help="Cache lifetime")

    search = subparsers.add_parser("search", help="Search DuckDuckGo")
    search.add_argument("query", help="Search query")
    search.add_argument("-n", "--num-results", type=int, default=10, help="Number of results (1-50)")
    search.add_argument("-r", "--region", default="wt-wt", help="Region, e.g. us-en")
    search.add_argument(
        "-s",
        "--safe-search",
        choices=["off", "moderate", "strict"],
        default="moderate",
        help="Safe search level",
    )
    search.add_argument("-t", "--time-range", help="day, week, month or year")

    fetch = subparsers.add_parser("fetch", help="Fetch a page as Markdown")
    fetch.add_argument("url", help="HTTP(S) URL to fetch")
    fetch.add_argument("-s", "--selector", help="CSS selector for the content to extract")
    fetch.add_argument("--include-images", action="store_true", help="Keep image references")

    subparsers.add_parser("info", help="Show server information")
    subparsers.add_parser("check", help="Verify that search works")

    return parser


def resolve_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment with command-line overrides applied."""
    overrides: dict[str, Any] = {}
    if args.verbose:
        overrides["log_level"] = "DEBUG"
    elif args.quiet:
        overrides["log_level"] = "CRITICAL"

    if args.command == "serve":
        overrides.update(
            transport=args.transport,
            port=args.port,
            host=args.host,
            cache_ttl=args.cache_ttl,
        )
        if args.no_cache:
            overrides["cache_enabled"] = False

    return Settings().with_overrides(**overrides)


# =============================================================================
# Output
# =============================================================================


def emit(data: Any, output_format: str, pretty: Callable[[], str]) -> None:
    """Write a command's result to stdout."""
    if output_format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
    elif output_format == "json-compact":
        print(json.dumps(data, separators=(",", ":"), ensure_ascii=False))
    else:
        print(pretty())


def render_search(response: SearchResponse) -> str:
    meta = response.metadata
    lines = [f"Found {meta.result_count} results for '{meta.query}':", ""]
    for i, result in enumerate(response.data, 1):
        lines.append(f"{i}. {result.title}")
        lines.append(f"   {result.url}")
        if result.description:
            lines.append(f"   {result.description}")
        lines.append("")
    return "\n".join(lines).rstrip()


def render_page(page: PageContent) -> str:
    return page.to_markdown()


# =============================================================================
# Commands
# =============================================================================


async def run_search(args: argparse.Namespace) -> int:
    options = SearchOptions(
        region=args.region,
        safe_search=args.safe_search,
        num_results=args.num_results,
        time_range=args.time_range,
    )
    response = await SearchClient().search(args.query, options)
    emit(response.model_dump(mode="json"), args.format, lambda: render_search(response))
    return EXIT_OK


async def run_fetch(args: argparse.Namespace) -> int:
    page_args = VisitPageArgs(
        url=args.url,
        selector=args.selector,
        include_images=args.include_images,
    )
    page = await FetchClient().fetch(
        page_args.url,
        selector=page_args.selector,
        include_images=page_args.include_images,
    )
    emit(page.model_dump(mode="json"), args.format, lambda: render_page(page))
    return EXIT_OK


async def run_check(args: argparse.Namespace) -> int:
    response = await SearchClient().search("duckduckgo", SearchOptions(num_results=1))
    if not response.data:
        print("Search reachable but returned no results", file=sys.stderr)
        return EXIT_FAILURE
    print(f"OK: search returned {response.metadata.result_count} result(s)")
    return EXIT_OK


def run_info(args: argparse.Namespace, settings: Settings) -> int:
    server = McpServer(settings)
    server.load_tools()
    info = {
        "name": settings.server_name,
        "version": settings.server_version,
        "description": SERVER_DESCRIPTION,
        "protocol_version": PROTOCOL_VERSION,
        "tools": [tool.model_dump() for tool in server.registry.list_tools()],
        "settings": {
            "transport": settings.transport,
            "host": settings.host,
            "port": settings.port,
            "cache_enabled": settings.cache_enabled,
            "cache_ttl": settings.cache_ttl,
            "cache_max_entries": settings.cache_max_entries,
        },
    }

    def pretty() -> str:
        lines = [
            f"{settings.server_name} {settings.server_version}",
            SERVER_DESCRIPTION,
            f"MCP protocol: {PROTOCOL_VERSION}",
            "",
            "Tools:",
        ]
        lines += [f"  {tool['name']}: {tool['description']}" for tool in info["tools"]]
        lines += ["", "Settings:"]
        lines += [f"  {key}: {value}" for key, value in info["settings"].items()]
        return "\n".join(lines)

    emit(info, args.format, pretty)
    return EXIT_OK


def run_serve(settings: Settings) -> int:
    server = McpServer(settings)
    server.load_tools()

    if settings.transport == "sse":
        import uvicorn

        uvicorn.run(
            server.create_app(),
            host=settings.host,
            port=settings.port,
            log_config=None,
        )
        return EXIT_OK

    # stdout belongs to the protocol; anything printed goes to stderr instead
    protocol_stdout = sys.stdout
    sys.stdout = sys.stderr
    try:
        asyncio.run(server.run_stdio(stdout=protocol_stdout))
    finally:
        sys.stdout = protocol_stdout
    return EXIT_OK


async def _one_shot(command: Callable[[], Awaitable[int]]) -> int:
    try:
        return await command()
    finally:
        await close_shared_client()


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``daedra`` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = resolve_settings(args)
    except ValidationError as e:
        summary, _ = describe_validation_error(e)
        print(f"Invalid configuration: {summary}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(settings.log_level, settings.log_format)

    commands: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
        "search": run_search,
        "fetch": run_fetch,
        "check": run_check,
    }

    try:
        if args.command == "serve":
            return run_serve(settings)
        if args.command == "info":
            return run_info(args, settings)
        return asyncio.run(_one_shot(lambda: commands[args.command](args)))
    except ValidationError as e:
        summary, _ = describe_validation_error(e)
        print(f"Invalid arguments: {summary}", file=sys.stderr)
        return EXIT_USAGE
    except InvalidArgumentsError as e:
        print(f"Invalid arguments: {e}", file=sys.stderr)
        return EXIT_USAGE
    except DaedraError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
