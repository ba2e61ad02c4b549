"""Web page fetching and Markdown extraction."""

import logging
from datetime import datetime, timezone
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup, Tag
from markdownify import markdownify as md
from pydantic import BaseModel
from soupsieve import SelectorSyntaxError
from tenacity.wait import wait_base

from daedra.tools.errors import (
    BotProtectionError,
    FetchError,
    InvalidArgumentsError,
    RateLimitExceededError,
    UpstreamTimeoutError,
)
from daedra.utils.http import (
    MAX_CONTENT_SIZE,
    check_content_size,
    get_shared_client,
    http_retrying,
)

logger = logging.getLogger(__name__)

# Tried in order when no selector is given
CONTENT_SELECTORS = [
    "main",
    "article",
    "[role='main']",
    "#content",
    ".content",
    ".main",
    ".post",
    ".article",
    ".entry-content",
    ".post-content",
]

# Page chrome stripped before conversion
REMOVE_SELECTORS = [
    "script",
    "style",
    "noscript",
    "header",
    "footer",
    "nav",
    "[role='navigation']",
    "aside",
    ".sidebar",
    "[role='complementary']",
    ".nav",
    ".menu",
    ".header",
    ".footer",
    ".advertisement",
    ".ads",
    ".ad",
    ".cookie-notice",
    ".cookie-banner",
    ".popup",
    ".modal",
    "[class*='cookie']",
    "[class*='banner']",
    "[class*='social']",
    "[class*='share']",
    "[class*='comment']",
]

BOT_PROTECTION_SELECTORS = [
    "#challenge-running",
    "#cf-challenge-running",
    "#px-captcha",
    "#ddos-protection",
    "#waf-challenge-html",
    ".cf-browser-verification",
]

SUSPICIOUS_TITLES = [
    "security check",
    "ddos protection",
    "please wait",
    "just a moment",
    "attention required",
    "access denied",
    "blocked",
    "captcha",
    "verify you are human",
]

TITLE_SEPARATORS = [" | ", " - ", " :: ", " — "]

MAX_LINKS = 50
MIN_WORDS_FOR_LINKS = 50


class PageLink(BaseModel):
    text: str
    url: str


class PageContent(BaseModel):
    url: str
    title: str
    content: str
    timestamp: str
    word_count: int
    links: list[PageLink] | None = None
    bot_protection_detected: bool = False

    def to_markdown(self) -> str:
        """Render the page as the visit_page tool output."""
        lines = [
            f"# {self.title}",
            "",
            f"**URL:** {self.url}",
            f"**Fetched:** {self.timestamp}",
            f"**Words:** {self.word_count}",
        ]
        if self.bot_protection_detected:
            lines.append(
                "**Warning:** This page shows signs of bot protection; "
                "the content may be a challenge page."
            )
        lines += ["", "---", "", self.content]
        if self.links:
            lines += ["", "---", "", "## Links", ""]
            lines += [f"- [{link.text}]({link.url})" for link in self.links]
        return "\n".join(lines)


def is_valid_url(url: str) -> bool:
    """Only absolute HTTP(S) URLs may be fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def clean_title(title: str) -> str:
    """Drop site-name suffixes such as "Page | Site"."""
    for separator in TITLE_SEPARATORS:
        title = title.split(separator)[0]
    return title.strip()


def clean_markdown(markdown: str) -> str:
    """Trim lines, collapse blank runs and drop empty list markers."""
    lines: list[str] = []
    prev_blank = False
    for line in markdown.splitlines():
        stripped = line.strip()
        if not stripped:
            if not prev_blank:
                lines.append("")
                prev_blank = True
            continue
        if stripped in ("-", "*", "+"):
            continue
        lines.append(stripped)
        prev_blank = False
    return "\n".join(lines).strip()


def detect_bot_protection(soup: BeautifulSoup) -> bool:
    for selector in BOT_PROTECTION_SELECTORS:
        if soup.select_one(selector) is not None:
            return True
    if soup.title is not None:
        title = soup.title.get_text().lower()
        return any(marker in title for marker in SUSPICIOUS_TITLES)
    return False


def extract_title(soup: BeautifulSoup) -> str:
    for element in (soup.title, soup.find("h1")):
        if element is not None:
            title = element.get_text().strip()
            if title:
                return clean_title(title)
    return "Untitled"


def extract_links(soup: BeautifulSoup, base_url: str) -> list[PageLink]:
    """Absolute, de-duplicated links with meaningful text."""
    links: list[PageLink] = []
    seen: set[str] = set()
    for anchor in soup.select("a[href]"):
        href = anchor["href"].strip()
        if href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        url = urljoin(base_url, href)
        if url in seen or not url.startswith(("http://", "https://")):
            continue
        seen.add(url)

        text = " ".join(anchor.get_text().split())
        if len(text) > 2:
            links.append(PageLink(text=text, url=url))
        if len(links) >= MAX_LINKS:
            break
    return links


def select_content(soup: BeautifulSoup, selector: str | None) -> Tag | None:
    """
    Choose the element to convert.

    Raises:
        InvalidArgumentsError: The selector is not valid CSS.
    """
    if selector:
        try:
            element = soup.select_one(selector)
        except SelectorSyntaxError:
            raise InvalidArgumentsError(f"Invalid CSS selector: {selector}") from None
        if element is not None:
            return element
    else:
        for candidate in CONTENT_SELECTORS:
            element = soup.select_one(candidate)
            if element is not None:
                return element
    return soup.body


def html_to_markdown(html: str, include_images: bool = False) -> str:
    strip = [] if include_images else ["img"]
    return md(html, heading_style="ATX", bullets="-", strip=strip)


def parse_page(
    html: str,
    url: str,
    selector: str | None = None,
    include_images: bool = False,
) -> PageContent:
    """Turn a fetched HTML document into PageContent."""
    soup = BeautifulSoup(html, "html.parser")

    # Detection and title use the untouched document
    bot_protection = detect_bot_protection(soup)
    if bot_protection:
        logger.warning(f"Bot protection markers detected on {url}")
    title = extract_title(soup)
    links = extract_links(soup, url)

    for remove in REMOVE_SELECTORS:
        for element in soup.select(remove):
            element.decompose()

    element = select_content(soup, selector)
    markdown = html_to_markdown(str(element), include_images) if element is not None else ""
    content = clean_markdown(markdown)
    word_count = len(content.split())
    if word_count < 10:
        logger.warning(f"Extracted content from {url} is very short")

    return PageContent(
        url=url,
        title=title,
        content=content,
        timestamp=datetime.now(timezone.utc).isoformat(),
        word_count=word_count,
        links=links if word_count >= MIN_WORDS_FOR_LINKS else None,
        bot_protection_detected=bot_protection,
    )


class FetchClient:
    """Fetches pages and converts them to Markdown."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        retry_wait: wait_base | None = None,
    ):
        self._client = client
        self.retry_wait = retry_wait

    async def _http(self) -> httpx.AsyncClient:
        return self._client if self._client is not None else await get_shared_client()

    async def _get(self, url: str) -> str:
        client = await self._http()
        response = await client.get(url)
        status = response.status_code

        if status == 429:
            logger.warning(f"Fetch rate limited (HTTP 429): {url}")
            raise RateLimitExceededError()
        if status == 403:
            raise BotProtectionError()
        if not response.is_success:
            raise FetchError(f"HTTP {status}")
        if not check_content_size(response) or len(response.content) > MAX_CONTENT_SIZE:
            raise FetchError("Content too large")
        return response.text

    async def fetch(
        self,
        url: str,
        selector: str | None = None,
        include_images: bool = False,
    ) -> PageContent:
        """
        Fetch a page and extract its content.

        Raises:
            InvalidArgumentsError: Non-HTTP(S) URL or invalid selector.
            BotProtectionError: The site answered 403.
            RateLimitExceededError: Still rate limited after retries.
            UpstreamTimeoutError: Still timing out after retries.
            FetchError: Any other upstream failure.
        """
        if not is_valid_url(url):
            raise InvalidArgumentsError("Invalid URL: must be HTTP or HTTPS")

        logger.info(f"Fetching page: {url}")
        try:
            async for attempt in http_retrying(wait=self.retry_wait):
                with attempt:
                    html = await self._get(url)
        except httpx.TimeoutException:
            raise UpstreamTimeoutError() from None
        except httpx.HTTPError as e:
            raise FetchError(f"HTTP request failed: {e}") from e

        page = parse_page(html, url, selector=selector, include_images=include_images)
        logger.info(f"Fetched {url}: {page.title!r} ({page.word_count} words)")
        return page
