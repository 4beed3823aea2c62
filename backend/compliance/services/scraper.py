"""
Web Scraper

Fetches pages found by the search provider so the job runner can attach
their text to search results.

Contract:
  scrape_url() never raises. Every failure (invalid URL, robots.txt
  disallow, HTTP error, timeout, unsupported content type) is reported in
  ScrapedContent.error so one bad source cannot fail a whole batch.

Extraction:
  text/html   title + visible text; script, style, navigation, header,
              footer and aside blocks are dropped; optional link list
  PDF         recorded by content type only, not parsed
  other       rejected as unsupported
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from html.parser import HTMLParser
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import httpx
from pydantic import BaseModel, Field

from compliance.models.base import utcnow

logger = logging.getLogger(__name__)

_GOV_SUFFIXES = (".gov", ".mil", ".gc.ca", ".europa.eu")
_GOV_INFIX    = ".gov."

_SKIPPED_TAGS = frozenset({"script", "style", "noscript", "iframe", "nav", "header", "footer", "aside", "svg", "form"})
_BLOCK_TAGS   = frozenset({"p", "div", "br", "li", "tr", "section", "article", "h1", "h2", "h3", "h4", "h5", "h6", "table", "ul", "ol"})

_WS_RUN    = re.compile(r"[ \t\f\v\r]+")
_NEWLINES  = re.compile(r"\n\s*\n+")

MAX_ROBOTS_ENTRIES = 256


def is_government_url(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    if not host:
        return False
    return host.endswith(_GOV_SUFFIXES) or _GOV_INFIX in host


class ScrapedContent(BaseModel):
    url:           str
    title:         str = ""
    content:       str = ""
    text_content:  str = ""
    links:         list[str] = Field(default_factory=list)
    last_modified: str | None = None
    content_type:  str = ""
    error:         str | None = None
    is_government: bool = False
    content_size:  int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class ScrapeOptions:
    extract_links:      bool  = False
    timeout_seconds:    float = 30.0
    user_agent:         str   = "ComplianceBot/1.0"
    respect_robots_txt: bool  = True
    max_content_chars:  int   = 200_000


# ---------------------------------------------------------------------------
# HTML → text
# ---------------------------------------------------------------------------

class _TextExtractor(HTMLParser):
    def __init__(self, base_url: str) -> None:
        super().__init__(convert_charrefs=True)
        self._base_url   = base_url
        self._skip_depth = 0
        self._in_title   = False
        self.title_parts: list[str] = []
        self.text_parts:  list[str] = []
        self.links:       list[str] = []

    def handle_starttag(self, tag, attrs):
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
            return
        if tag == "title":
            self._in_title = True
        if tag in _BLOCK_TAGS:
            self.text_parts.append("\n")
        if tag == "a" and not self._skip_depth:
            href = dict(attrs).get("href") or ""
            if href and not href.startswith(("#", "javascript:", "mailto:")):
                self.links.append(urljoin(self._base_url, href))

    def handle_endtag(self, tag):
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
            return
        if tag == "title":
            self._in_title = False
        if tag in _BLOCK_TAGS:
            self.text_parts.append("\n")

    def handle_data(self, data):
        if self._in_title:
            self.title_parts.append(data)
            return
        if not self._skip_depth:
            self.text_parts.append(data)


def extract_html(html: str, base_url: str) -> tuple[str, str, list[str]]:
    """Return (title, visible text, absolute links) for an HTML document."""
    parser = _TextExtractor(base_url)
    parser.feed(html)
    parser.close()

    title = " ".join("".join(parser.title_parts).split())
    text  = _WS_RUN.sub(" ", "".join(parser.text_parts))
    text  = "\n".join(line.strip() for line in text.split("\n"))
    text  = _NEWLINES.sub("\n\n", text).strip()

    return title, text, list(dict.fromkeys(parser.links))


# ---------------------------------------------------------------------------
# Scraper
# ---------------------------------------------------------------------------

class WebScraper:
    def __init__(
        self,
        client:          httpx.AsyncClient,
        default_options: ScrapeOptions | None = None,
        request_delay:   float = 0.0,
        max_robots:      int = MAX_ROBOTS_ENTRIES,
    ) -> None:
        self._client          = client
        self._default_options = default_options or ScrapeOptions()
        self._request_delay   = request_delay
        self._max_robots      = max_robots
        self._robots: OrderedDict[str, RobotFileParser | None] = OrderedDict()

    @classmethod
    def from_settings(cls, settings) -> "WebScraper":
        options = ScrapeOptions(
            timeout_seconds=settings.scrape_timeout_seconds,
            user_agent=settings.scrape_user_agent,
            respect_robots_txt=settings.scrape_respect_robots_txt,
        )
        client = httpx.AsyncClient(follow_redirects=True, timeout=settings.scrape_timeout_seconds)
        return cls(client, options, request_delay=settings.scrape_request_delay_seconds)

    @property
    def default_options(self) -> ScrapeOptions:
        return self._default_options

    async def aclose(self) -> None:
        await self._client.aclose()

    # -----------------------------------------------------------------------
    # robots.txt
    # -----------------------------------------------------------------------

    async def _robots_for(self, url: str, options: ScrapeOptions) -> RobotFileParser | None:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if origin in self._robots:
            self._robots.move_to_end(origin)
            return self._robots[origin]

        parser: RobotFileParser | None = None
        try:
            response = await self._client.get(
                f"{origin}/robots.txt",
                headers={"User-Agent": options.user_agent},
                timeout=min(5.0, options.timeout_seconds),
            )
            if response.status_code == 200:
                parser = RobotFileParser()
                parser.parse(response.text.splitlines())
        except httpx.HTTPError as exc:
            logger.debug("robots.txt unavailable | origin=%s error=%s", origin, exc)

        self._robots[origin] = parser
        while len(self._robots) > self._max_robots:
            self._robots.popitem(last=False)
        return parser

    async def _allowed(self, url: str, options: ScrapeOptions) -> bool:
        robots = await self._robots_for(url, options)
        return robots is None or robots.can_fetch(options.user_agent, url)

    # -----------------------------------------------------------------------
    # Scraping
    # -----------------------------------------------------------------------

    async def scrape_url(self, url: str, options: ScrapeOptions | None = None) -> ScrapedContent:
        options = options or self._default_options
        is_gov  = is_government_url(url)

        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ScrapedContent(url=url, error="Invalid URL", is_government=is_gov)

        try:
            if options.respect_robots_txt and not await self._allowed(url, options):
                logger.warning("Scrape disallowed by robots.txt | url=%s", url)
                return ScrapedContent(url=url, error="Scraping not allowed by robots.txt", is_government=is_gov)

            response = await self._client.get(
                url,
                headers={
                    "User-Agent": options.user_agent,
                    "Accept":     "text/html,application/xhtml+xml,application/pdf;q=0.9,*/*;q=0.8",
                },
                timeout=options.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            return self._failure(url, is_gov, f"HTTP {exc.response.status_code}")
        except httpx.TimeoutException:
            return self._failure(url, is_gov, f"Timed out after {options.timeout_seconds}s")
        except httpx.HTTPError as exc:
            return self._failure(url, is_gov, f"{type(exc).__name__}: {exc}")

        content_type  = response.headers.get("content-type", "").split(";")[0].strip().lower()
        last_modified = response.headers.get("last-modified")
        size          = len(response.content)

        if content_type == "application/pdf":
            name = urlparse(str(response.url)).path.rsplit("/", 1)[-1] or "document.pdf"
            return ScrapedContent(
                url=url,
                title=name,
                content="PDF document detected",
                text_content="PDF document detected",
                content_type=content_type,
                last_modified=last_modified,
                is_government=is_gov,
                content_size=size,
            )

        if content_type not in ("text/html", "application/xhtml+xml", "text/plain"):
            logger.warning("Scrape unsupported content | url=%s type=%s", url, content_type)
            return ScrapedContent(
                url=url,
                content_type=content_type,
                error=f"Unsupported content type: {content_type or 'unknown'}",
                is_government=is_gov,
                content_size=size,
            )

        html = response.text
        if content_type == "text/plain":
            title, text, links = "", html.strip(), []
        else:
            title, text, links = extract_html(html, str(response.url))

        logger.info("Scraped | url=%s chars=%d gov=%s", url, len(text), is_gov)
        return ScrapedContent(
            url=url,
            title=title or parsed.netloc,
            content=html[: options.max_content_chars],
            text_content=text[: options.max_content_chars],
            links=links if options.extract_links else [],
            last_modified=last_modified,
            content_type=content_type,
            is_government=is_gov,
            content_size=size,
        )

    @staticmethod
    def _failure(url: str, is_gov: bool, error: str) -> ScrapedContent:
        logger.warning("Scrape failed | url=%s error=%s", url, error)
        return ScrapedContent(url=url, error=error, is_government=is_gov)

    async def scrape_many(self, urls: list[str], options: ScrapeOptions | None = None) -> list[ScrapedContent]:
        """Scrape one sub-batch concurrently; results keep the input order."""
        if self._request_delay <= 0:
            return list(await asyncio.gather(*(self.scrape_url(u, options) for u in urls)))

        results = []
        for i, url in enumerate(urls):
            if i:
                await asyncio.sleep(self._request_delay)
            results.append(await self.scrape_url(url, options))
        return results


def scrape_metadata(results: list[ScrapedContent], started: float, finished: float) -> dict:
    return {
        "total_urls":        len(results),
        "successful_scrapes": sum(1 for r in results if r.ok),
        "government_sources": sum(1 for r in results if r.is_government),
        "scraping_time_ms":  int((finished - started) * 1000),
        "timestamp":         utcnow().isoformat(),
    }
