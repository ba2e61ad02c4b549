"""Tests for the daedra command-line interface."""

import json

import pytest
import structlog

from daedra.cli import build_parser, main, resolve_settings
from daedra.tools.errors import SearchError
from daedra.tools.search.client import (
    ContentType,
    ResultMetadata,
    SearchClient,
    SearchOptions,
    SearchResponse,
    SearchResult,
)


@pytest.fixture(autouse=True)
def logging_calls(monkeypatch):
    """Keep main() from reconfiguring process-wide logging during tests."""
    calls = []
    monkeypatch.setattr("daedra.cli.setup_logging", lambda *args: calls.append(args))
    # structlog's default prints to stdout, which carries command output here
    structlog.configure(logger_factory=structlog.stdlib.LoggerFactory())
    yield calls
    structlog.reset_defaults()


@pytest.fixture
def fake_search(monkeypatch):
    """Replace the DuckDuckGo call with a canned response."""
    queries = []

    async def search(self, query, options=None):
        queries.append((query, options))
        result = SearchResult(
            title="The Rust Programming Language",
            url="https://doc.rust-lang.org/book/",
            description="An introductory book about Rust.",
            metadata=ResultMetadata(type=ContentType.DOCUMENTATION, source="doc.rust-lang.org"),
        )
        return SearchResponse.build(query, [result], options or SearchOptions())

    monkeypatch.setattr(SearchClient, "search", search)
    return queries


class TestArguments:
    """Tests for argument parsing and settings resolution."""

    def test_serve_flags_override_settings(self):
        args = build_parser().parse_args(
            ["-v", "serve", "-t", "sse", "-p", "8080", "--no-cache", "--cache-ttl", "5"]
        )
        settings = resolve_settings(args)

        assert settings.log_level == "DEBUG"
        assert settings.transport == "sse"
        assert settings.port == 8080
        assert settings.cache_enabled is False
        assert settings.cache_ttl == 5

    def test_quiet(self):
        settings = resolve_settings(build_parser().parse_args(["-q", "info"]))
        assert settings.log_level == "CRITICAL"

    def test_logging_is_configured_from_settings(self, logging_calls, capsys):
        assert main(["-v", "info"]) == 0
        assert logging_calls == [("DEBUG", "console")]

    def test_verbose_and_quiet_conflict(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["-v", "-q", "info"])
        assert exc_info.value.code == 2

    def test_invalid_port_is_a_usage_error(self, capsys):
        """Test that a port outside 1-65535 exits with code 2."""
        assert main(["serve", "--port", "70000"]) == 2
        assert "Invalid configuration" in capsys.readouterr().err


class TestInfo:
    def test_info_pretty(self, capsys):
        assert main(["info"]) == 0

        out = capsys.readouterr().out
        assert "daedra" in out
        assert "search_duckduckgo" in out
        assert "visit_page" in out

    def test_info_json(self, capsys):
        assert main(["-f", "json", "info"]) == 0

        info = json.loads(capsys.readouterr().out)
        assert info["protocol_version"] == "2024-11-05"
        assert {tool["name"] for tool in info["tools"]} == {"search_duckduckgo", "visit_page"}


class TestSearchCommand:
    def test_search_json(self, fake_search, capsys):
        assert main(["-f", "json", "search", "rust book", "-n", "5", "-s", "strict"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert data["type"] == "search_results"
        assert data["data"][0]["url"] == "https://doc.rust-lang.org/book/"
        query, options = fake_search[0]
        assert query == "rust book"
        assert options.num_results == 5
        assert options.safe_search.value == "STRICT"

    def test_search_compact_json_is_one_line(self, fake_search, capsys):
        assert main(["-f", "json-compact", "search", "rust"]) == 0

        out = capsys.readouterr().out
        assert out.count("\n") == 1
        assert json.loads(out)["metadata"]["result_count"] == 1

    def test_search_pretty(self, fake_search, capsys):
        assert main(["search", "rust"]) == 0

        out = capsys.readouterr().out
        assert "Found 1 results for 'rust':" in out
        assert "1. The Rust Programming Language" in out

    def test_invalid_options_are_a_usage_error(self, fake_search):
        assert main(["search", "rust", "-n", "0"]) == 2
        assert main(["search", "rust", "-t", "decade"]) == 2
        assert fake_search == []

    def test_upstream_failure_exits_1(self, monkeypatch, capsys):
        async def failing(self, query, options=None):
            raise SearchError("HTTP 503")

        monkeypatch.setattr(SearchClient, "search", failing)

        assert main(["search", "rust"]) == 1
        assert "HTTP 503" in capsys.readouterr().err


class TestFetchCommand:
    def test_non_http_url_is_a_usage_error(self, capsys):
        """Test that an ftp:// URL is rejected without a request."""
        assert main(["fetch", "ftp://example.com/file"]) == 2
        assert "Invalid URL" in capsys.readouterr().err
