"""HTML helpers: search URL building, result parsing and readable-text extraction."""

import logging
from typing import (
    Callable,
    List,
)
from urllib.parse import (
    parse_qs,
    quote_plus,
    urljoin,
    urlparse,
)

from bs4 import BeautifulSoup

from scoutchat.core.schema import SearchResult

logger = logging.getLogger(__name__)

SEARCH_URLS = {
    "duckduckgo": "https://html.duckduckgo.com/html/?q={query}",
    "google": "https://www.google.com/search?q={query}",
    "bing": "https://www.bing.com/search?q={query}",
}

CONTENT_SELECTORS = ["p", "h1", "h2", "h3"]


def build_search_url(engine: str | None, query: str) -> str:
    """Search page URL for *engine*; unknown engines fall back to DuckDuckGo."""
    template = SEARCH_URLS.get((engine or "duckduckgo").lower(), SEARCH_URLS["duckduckgo"])
    return template.format(query=quote_plus(query))


def resolve_redirect(href: str) -> str:
    """Unwrap DuckDuckGo ``/l/?uddg=`` redirect links."""
    parsed = urlparse(urljoin("https://duckduckgo.com", href))
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    if href.startswith("//"):
        return "https:" + href
    return href


def parse_search_results(html: str) -> List[SearchResult]:
    """Parse result anchors (``a.result__a``) and their snippets from a search page."""
    soup = BeautifulSoup(html, "html.parser")
    results: List[SearchResult] = []
    for anchor in soup.select("a.result__a"):
        href = anchor.get("href")
        if not href:
            continue
        container = anchor.find_parent(class_="result") or anchor.parent
        snippet_el = container.select_one(".result__snippet") if container else None
        results.append(
            SearchResult(
                title=anchor.get_text(strip=True),
                url=resolve_redirect(str(href)),
                snippet=snippet_el.get_text(" ", strip=True) if snippet_el else "",
            )
        )
    if not results:
        logger.debug("No search result anchors found")
    return results


def extract_selectors(soup: BeautifulSoup, url: str) -> List[str]:
    """Selectors whose text makes up a page's readable content, in priority order."""
    return list(CONTENT_SELECTORS)


def extract_fallbacks(soup: BeautifulSoup, url: str) -> List[Callable[[], str]]:
    """Strategies tried in order when no selector yields text."""

    def meta_description() -> str:
        meta = soup.find("meta", attrs={"name": "description"})
        content = meta.get("content") if meta else None
        return str(content).strip() if content else ""

    def title() -> str:
        return soup.title.get_text(strip=True) if soup.title else ""

    def body_text() -> str:
        return soup.body.get_text(" ", strip=True) if soup.body else ""

    return [meta_description, title, body_text]


def extract_page_text(html: str, url: str) -> str:
    """Readable text of a page, or ``""`` if nothing could be extracted."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()

    texts = [
        text
        for selector in extract_selectors(soup, url)
        for el in soup.select(selector)
        if (text := el.get_text(" ", strip=True))
    ]
    if texts:
        return "\n\n".join(texts)

    for strategy in extract_fallbacks(soup, url):
        text = strategy()
        if text:
            logger.debug("Used fallback %s for %s", strategy.__name__, url)
            return text
    return ""
