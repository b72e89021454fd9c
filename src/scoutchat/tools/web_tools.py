"""Built-in web tools: ``web_search``, ``read_url`` and ``instant_answer``."""

import json
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    List,
    Optional,
)
from urllib.parse import quote_plus

from scoutchat.agent.model_interface import ModelError
from scoutchat.agent.tool_executor import (
    ToolArgumentInvalid,
    ToolExecutionError,
)
from scoutchat.core.schema import (
    ReadResult,
    SearchResult,
)
from scoutchat.tools import register_tool
from scoutchat.tools.extraction import (
    build_search_url,
    extract_page_text,
    parse_search_results,
)
from scoutchat.tools.relay import RelayExhaustedError

if TYPE_CHECKING:
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

INSTANT_ANSWER_URL = "https://api.duckduckgo.com/?q={query}&format=json&pretty=1"

REFINE_SYSTEM_PROMPT = "You are an assistant that helps improve web search queries."


# --- Helpers ---
def dedupe_results(results: Iterable[SearchResult]) -> List[SearchResult]:
    """Drop results whose URL was already seen, keeping first-seen order."""
    seen: set[str] = set()
    unique: List[SearchResult] = []
    for result in results:
        if result.url in seen:
            continue
        seen.add(result.url)
        unique.append(result)
    return unique


def format_search_results(query: str, results: List[SearchResult]) -> str:
    lines = [f"{i}. {r.title} ({r.url}) - {r.snippet}" for i, r in enumerate(results, start=1)]
    return f'Search results for "{query}" (total {len(results)}):\n' + "\n".join(lines)


async def _refine_query(
    session: "Session", query: str, results: List[SearchResult]
) -> str:
    """Ask the model for a better query.  Returns ``""`` when it cannot help."""
    listing = "\n".join(f"{i}. {r.title} - {r.snippet}" for i, r in enumerate(results, start=1))
    prompt = (
        "The initial web search for the user question did not yield enough relevant results.\n\n"
        f"User question: {session.state.original_question or query}\n"
        f"Initial query: {query}\n"
        f"Search results (titles and snippets):\n{listing}\n\n"
        "Suggest a better search query to find more relevant information. Reply with only the "
        "improved query, or repeat the previous query if no better query is possible."
    )
    try:
        reply = await session.model.ask(REFINE_SYSTEM_PROMPT, prompt)
    except ModelError as exc:
        logger.warning("Query refinement failed: %s", exc)
        return ""
    return reply.strip().strip('"').strip()


async def fetch_page_text(session: "Session", url: str) -> str:
    """Extracted text of *url*, cached per session.  Returns ``""`` if nothing could be fetched."""
    if url in session.page_cache:
        return session.page_cache[url]
    try:
        html = await session.relays.fetch_through(url, parse=lambda body: body if body.strip() else "")
    except RelayExhaustedError as exc:
        logger.warning("Could not fetch %s: %s", url, exc)
        return ""
    text = extract_page_text(html, url) if html else ""
    if text:
        session.page_cache[url] = text
    return text


# --- Tools ---
@register_tool("web_search", aliases=("search",))
async def web_search(
    session: "Session", query: str, engine: Optional[str] = None
) -> List[SearchResult]:
    """
    Search the web and return unique results (title, url, snippet).

    When fewer than ``MIN_SEARCH_RESULTS`` unique results come back the model is asked for a refined
    query, up to ``MAX_SEARCH_ATTEMPTS`` attempts in total.
    """
    cfg = session.settings
    engine = engine or cfg.SEARCH_ENGINE
    tried: List[str] = []
    current = query.strip()
    collected: List[SearchResult] = []

    for attempt in range(1, cfg.MAX_SEARCH_ATTEMPTS + 1):
        tried.append(current)
        session.sink.show_progress(f'Searching ({engine}) for "{current}"...')
        try:
            found = await session.relays.fetch_through(
                build_search_url(engine, current), parse=parse_search_results
            )
        except RelayExhaustedError as exc:
            session.state.append("assistant", f"Web search failed: {exc}")
            raise ToolExecutionError(f"Web search failed for '{current}': {exc}") from exc

        logger.debug("Attempt %d for %r returned %d results", attempt, current, len(found))
        collected = dedupe_results([*collected, *found])
        unique = dedupe_results(found)
        if len(unique) >= cfg.MIN_SEARCH_RESULTS or attempt == cfg.MAX_SEARCH_ATTEMPTS:
            break

        refined = await _refine_query(session, current, unique)
        if not refined or refined in tried:
            logger.debug("No better query than %r", current)
            break
        logger.info("Refined search query: %r -> %r", current, refined)
        current = refined

    if not collected:
        session.sink.narrate(f'No search results found for "{query}" after {len(tried)} attempts.')

    session.state.append("assistant", format_search_results(query, collected))
    session.state.last_search_results = list(collected)
    return collected


@register_tool("read_url")
async def read_url(
    session: "Session", url: str, start: int = 0, length: Optional[int] = None
) -> ReadResult:
    """Read a page and return the window ``[start, start+length)`` of its text."""
    if not url.startswith(("http://", "https://")):
        raise ToolArgumentInvalid(f"Invalid arguments for tool 'read_url': bad url {url!r}")
    start = max(start, 0)
    if not length or length <= 0:
        length = session.settings.READ_DEFAULT_LENGTH

    session.sink.show_progress(f"Reading content from {url}...")
    text = await fetch_page_text(session, url)
    snippet = text[start : start + length]
    has_more = start + length < len(text)

    session.state.append(
        "assistant", f"Read content from {url}:\n{snippet}{'...' if has_more else ''}"
    )
    return ReadResult(url=url, content=snippet, has_more=has_more)


@register_tool("instant_answer")
async def instant_answer(session: "Session", query: str) -> Dict[str, Any]:
    """Look up a structured quick answer (DuckDuckGo instant-answer API)."""
    url = INSTANT_ANSWER_URL.format(query=quote_plus(query))
    session.sink.show_progress(f'Retrieving instant answer for "{query}"...')
    try:
        payload = await session.relays.fetch_through(url, parse=json.loads)
    except RelayExhaustedError:
        logger.info("Relays failed for instant answer, trying a direct fetch")
        try:
            resp = await session.relays.client.get(url, timeout=session.settings.FETCH_TIMEOUT)
            resp.raise_for_status()
            payload = resp.json()
        except Exception as exc:  # noqa: BLE001
            session.state.append("assistant", f"Instant answer failed: {exc}")
            raise ToolExecutionError(f"Instant answer failed for '{query}': {exc}") from exc

    text = json.dumps(payload, indent=2)
    session.sink.narrate(text)
    session.state.append("assistant", text)
    return payload
