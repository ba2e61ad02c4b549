"""DuckDuckGo HTML search client."""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import parse_qs, urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field, field_validator
from tenacity.wait import wait_base

from daedra.tools.errors import RateLimitExceededError, SearchError, UpstreamTimeoutError
from daedra.utils.http import get_shared_client, http_retrying

logger = logging.getLogger(__name__)

DDG_HTML_URL = "https://html.duckduckgo.com/html/"

TIME_RANGES = {"day": "d", "week": "w", "month": "m", "year": "y"}


# =============================================================================
# Options and Result Models
# =============================================================================


class SafeSearch(str, Enum):
    OFF = "OFF"
    MODERATE = "MODERATE"
    STRICT = "STRICT"

    @property
    def ddg_value(self) -> int:
        """Value of DuckDuckGo's ``kp`` form field."""
        return {SafeSearch.OFF: -2, SafeSearch.MODERATE: -1, SafeSearch.STRICT: 1}[self]


class SearchOptions(BaseModel):
    """Search configuration; every field has a default."""

    region: str = "wt-wt"
    safe_search: SafeSearch = SafeSearch.MODERATE
    num_results: int = Field(default=10, ge=1, le=50)
    time_range: str | None = None

    @field_validator("safe_search", mode="before")
    @classmethod
    def _upper_safe_search(cls, value):
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("time_range")
    @classmethod
    def _normalize_time_range(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip().lower()
        if value in TIME_RANGES.values():
            return value
        if value in TIME_RANGES:
            return TIME_RANGES[value]
        raise ValueError("time_range must be one of day, week, month, year (or d, w, m, y)")


class ContentType(str, Enum):
    DOCUMENTATION = "documentation"
    SOCIAL = "social"
    ARTICLE = "article"
    FORUM = "forum"
    VIDEO = "video"
    SHOPPING = "shopping"
    OTHER = "other"


class ResultMetadata(BaseModel):
    type: ContentType
    source: str


class SearchResult(BaseModel):
    title: str
    url: str
    description: str
    metadata: ResultMetadata


class SearchContext(BaseModel):
    region: str
    safe_search: str
    num_results: int


class QueryAnalysis(BaseModel):
    language: str
    topics: list[str]


class SearchMetadata(BaseModel):
    query: str
    timestamp: str
    result_count: int
    search_context: SearchContext
    query_analysis: QueryAnalysis


class SearchResponse(BaseModel):
    """Search results plus metadata, serialized as the tool's output."""

    type: str = "search_results"
    data: list[SearchResult]
    metadata: SearchMetadata

    @classmethod
    def build(cls, query: str, results: list[SearchResult], options: SearchOptions) -> "SearchResponse":
        return cls(
            data=results,
            metadata=SearchMetadata(
                query=query,
                timestamp=datetime.now(timezone.utc).isoformat(),
                result_count=len(results),
                search_context=SearchContext(
                    region=options.region,
                    safe_search=options.safe_search.value,
                    num_results=options.num_results,
                ),
                query_analysis=QueryAnalysis(
                    language=detect_language(query),
                    topics=detect_topics(results),
                ),
            ),
        )


# =============================================================================
# Heuristics
# =============================================================================

_CONTENT_TYPE_PATTERNS: list[tuple[ContentType, tuple[str, ...]]] = [
    (
        ContentType.DOCUMENTATION,
        ("docs.", "/docs/", "/documentation/", "readthedocs", "javadoc", "/api/",
         "github.com", "gitlab.com", "stackoverflow.com", "stackexchange.com", "bitbucket.org"),
    ),
    (
        ContentType.SOCIAL,
        ("twitter.com", "x.com", "facebook.com", "linkedin.com", "instagram.com", "tiktok.com"),
    ),
    (ContentType.FORUM, ("reddit.com", "forum", "discourse", "community.")),
    (ContentType.VIDEO, ("youtube.com", "youtu.be", "vimeo.com", "twitch.tv")),
    (ContentType.SHOPPING, ("amazon.", "ebay.", "shop.", "/shop/", "store.")),
]

# Script ranges checked in order; the first match wins
_LANGUAGE_RANGES = [
    ("zh", "一", "鿿"),
    ("ja", "぀", "ヿ"),
    ("ko", "가", "힯"),
    ("ru", "Ѐ", "ӿ"),
    ("ar", "؀", "ۿ"),
]


def detect_content_type(url: str) -> ContentType:
    """Classify a result URL. Anything unrecognized counts as an article."""
    lower_url = url.lower()
    for content_type, patterns in _CONTENT_TYPE_PATTERNS:
        if any(pattern in lower_url for pattern in patterns):
            return content_type
    return ContentType.ARTICLE


def detect_language(text: str) -> str:
    for language, low, high in _LANGUAGE_RANGES:
        if any(low <= char <= high for char in text):
            return language
    return "en"


def detect_topics(results: list[SearchResult]) -> list[str]:
    """Coarse topic tags for a result set, sorted for stable output."""
    topics: set[str] = set()
    for result in results:
        title = result.title.lower()
        url = result.url.lower()

        if any(p in url for p in ("github.com", "stackoverflow.com", "gitlab.com")) or any(
            p in title for p in ("programming", "code")
        ):
            topics.add("technology")
        if any(p in url for p in ("docs.", "/docs/", "/documentation/")) or any(
            p in title for p in ("documentation", "api reference")
        ):
            topics.add("documentation")
        if (
            "news." in url
            or "/news/" in url
            or result.metadata.type is ContentType.ARTICLE
        ):
            topics.add("news")
        if any(p in url for p in (".edu", "arxiv.org", "scholar.google")) or any(
            p in title for p in ("research", "study")
        ):
            topics.add("academic")
    return sorted(topics)


def extract_actual_url(href: str) -> str:
    """Unwrap DuckDuckGo's ``/l/?uddg=`` redirect links."""
    if "uddg=" in href:
        params = parse_qs(urlparse(href).query)
        if "uddg" in params:
            return params["uddg"][0]
    if href.startswith("//"):
        return f"https:{href}"
    return href


def extract_domain(url: str) -> str:
    host = urlparse(url).hostname
    if host:
        return host
    match = re.match(r"^(?:https?://)?([^/]+)", url)
    return match.group(1) if match else "unknown"


def clean_text(text: str) -> str:
    """Collapse runs of whitespace."""
    return " ".join(text.split())


def parse_results(html: str, max_results: int) -> list[SearchResult]:
    """Parse a DuckDuckGo HTML results page."""
    soup = BeautifulSoup(html, "html.parser")
    results: list[SearchResult] = []

    for element in soup.select("div.result"):
        if len(results) >= max_results:
            break

        link = element.select_one("a.result__a")
        if link is None or not link.get("href"):
            continue

        url = extract_actual_url(link["href"])
        if not url.startswith("http"):
            continue

        snippet = element.select_one(".result__snippet")
        results.append(
            SearchResult(
                title=clean_text(link.get_text()),
                url=url,
                description=clean_text(snippet.get_text()) if snippet else "",
                metadata=ResultMetadata(
                    type=detect_content_type(url),
                    source=extract_domain(url),
                ),
            )
        )

    if not results:
        logger.warning("No search results found in response")
    return results


# =============================================================================
# Client
# =============================================================================


class SearchClient:
    """Client for DuckDuckGo's HTML search endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ):
        self._client = client
        self.retry_wait = retry_wait

    async def _http(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else await get_shared_client()

    @staticmethod
    def build_params(query: str, options: SearchOptions) -> dict[str, str]:
        params = {
            "q": query,
            "kl": options.region,
            "kp": str(options.safe_search.ddg_value),
        }
        if options.time_range:
            params["df"] = options.time_range
        return params

    async def _post(self, params: dict[str, str]) -> str:
        client = await self._http()
        response = await client.post(DDG_HTML_URL, data=params)
        if response.status_code == 429:
            logger.warning("Search rate limited (HTTP 429)")
            raise RateLimitExceededError()
        if not response.is_success:
            raise SearchError(f"HTTP {response.status_code}")
        return response.text

    async def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """
        Perform a DuckDuckGo search.

        Raises:
            SearchError: Upstream failure or unexpected status.
            RateLimitExceededError: Still rate limited after retries.
            UpstreamTimeoutError: Still timing out after retries.
        """
        options = options or SearchOptions()
        params = self.build_params(query, options)
        logger.info(f"Searching DuckDuckGo: {query!r} (region={options.region})")

        try:
            async for attempt in http_retrying(wait=self.retry_wait):
                with attempt:
                    html = await self._post(params)
        except httpx.TimeoutException:
            raise UpstreamTimeoutError() from None
        except httpx.HTTPError as e:
            raise SearchError(f"HTTP request failed: {e}") from e

        results = parse_results(html, options.num_results)
        logger.info(f"Search for {query!r} returned {len(results)} results")
        return SearchResponse.build(query, results, options)
