"""Documentation site scraper.

Discovers pages from a Sphinx/readthedocs navigation tree and extracts the
main text of each page. Requests are spaced by a fixed delay and every URL
is fetched at most once per connector instance.
"""
import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup

from docqa import config
from docqa.errors import ConnectorError

logger = structlog.get_logger()

NAV_LINK_SELECTOR = ".toctree-l1 a, .toctree-l2 a"
CONTENT_SELECTORS = [".document", ".content", "main", "article", ".section"]
NON_CONTENT_SELECTOR = "nav, header, footer, .navigation, .sidebar, .toc, script, style"


@dataclass
class ScrapedPage:
    """Text extracted from one documentation page."""

    url: str
    title: str
    text: str
    sections: List[str] = field(default_factory=list)


def _clean_text(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


class DocsSiteConnector:
    """Async scraper for a paginated documentation site."""

    def __init__(
        self,
        base_url: str = None,
        scrape_delay: float = None,
        max_pages: int = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the scraper.

        Args:
            base_url: Index page of the documentation (default from config)
            scrape_delay: Seconds to wait after each page request
            max_pages: Maximum number of pages discovered
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.DOCS_SITE_URL
        self.scrape_delay = config.SCRAPE_DELAY if scrape_delay is None else scrape_delay
        self.max_pages = max_pages or config.SCRAPE_MAX_PAGES
        self.timeout = timeout or config.SCRAPE_TIMEOUT
        self._transport = transport
        self._visited: set = set()

        parsed = urlparse(self.base_url)
        self._origin = f"{parsed.scheme}://{parsed.netloc}"
        self._path_prefix = parsed.path if parsed.path.endswith("/") else parsed.path + "/"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0 (compatible; docqa/1.0)"},
            transport=self._transport,
        )

    async def _fetch_index(self) -> BeautifulSoup:
        try:
            async with self._client() as client:
                response = await client.get(self.base_url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("docs_index_fetch_failed", url=self.base_url, error=str(e))
            raise ConnectorError("docs-site", f"failed to fetch {self.base_url}: {e}") from e
        return BeautifulSoup(response.text, "html.parser")

    async def discover_pages(self) -> List[str]:
        """Find documentation page URLs from the navigation tree.

        Returns:
            Unique page URLs in navigation order, capped at max_pages

        Raises:
            ConnectorError: If the index page cannot be fetched
        """
        soup = await self._fetch_index()

        urls: List[str] = []
        links = soup.select(NAV_LINK_SELECTOR) + soup.select(f'a[href^="{self._path_prefix}"]')

        for link in links:
            href = link.get("href")
            if not href or "#" in href or href.startswith("javascript:"):
                continue

            if href.startswith("http"):
                full_url = href
            elif href.startswith("/"):
                full_url = f"{self._origin}{href}"
            else:
                full_url = urljoin(self.base_url, href)

            if full_url not in urls:
                urls.append(full_url)

        logger.info("docs_pages_discovered", found=len(urls), max_pages=self.max_pages)
        return urls[: self.max_pages]

    async def scrape_page(self, url: str) -> Optional[ScrapedPage]:
        """Scrape a single documentation page.

        Returns:
            ScrapedPage, or None if the URL was already scraped or failed
        """
        if url in self._visited:
            return None

        try:
            async with self._client() as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("docs_page_scrape_failed", url=url, error=str(e))
            return None

        self._visited.add(url)
        soup = BeautifulSoup(response.text, "html.parser")

        h1 = soup.find("h1")
        title = _clean_text(h1.get_text()) if h1 else ""
        if not title and soup.title:
            title = _clean_text(soup.title.get_text())
        title = title or "Untitled"

        # Headings are collected before non-content elements are stripped
        sections = []
        for heading in soup.find_all(["h1", "h2", "h3"]):
            heading_text = _clean_text(heading.get_text())
            if len(heading_text) > 3:
                sections.append(heading_text)

        main = None
        for selector in CONTENT_SELECTORS:
            main = soup.select_one(selector)
            if main is not None:
                break
        if main is None:
            main = soup.body or soup

        for element in main.select(NON_CONTENT_SELECTOR):
            element.decompose()

        text = _clean_text(main.get_text(" "))

        logger.debug("docs_page_scraped", url=url, title=title, chars=len(text))

        await asyncio.sleep(self.scrape_delay)

        return ScrapedPage(url=url, title=title, text=text, sections=sections)

    async def scrape_all(self, min_chars: int = None) -> List[ScrapedPage]:
        """Discover and scrape every page with substantial content.

        Raises:
            ConnectorError: If page discovery fails
        """
        min_chars = config.SCRAPE_MIN_PAGE_CHARS if min_chars is None else min_chars
        urls = await self.discover_pages()

        pages = []
        for url in urls:
            page = await self.scrape_page(url)
            if page and len(page.text) > min_chars:
                pages.append(page)

        logger.info("docs_scrape_completed", discovered=len(urls), kept=len(pages))
        return pages

    async def get_index_structure(self) -> Dict[str, List[str]]:
        """Map each top-level navigation entry to its subsection titles.

        Raises:
            ConnectorError: If the index page cannot be fetched
        """
        soup = await self._fetch_index()

        structure: Dict[str, List[str]] = {}
        for item in soup.select(".toctree-l1"):
            link = item.find("a")
            title = _clean_text(link.get_text()) if link else ""
            if not title:
                continue
            structure[title] = [
                _clean_text(sub.get_text())
                for sub in item.select(".toctree-l2 > a")
                if _clean_text(sub.get_text())
            ]
        return structure
