"""Adaptive chunked reading: keep reading a page while the model says it needs more."""

import logging
from typing import (
    TYPE_CHECKING,
    List,
)

from scoutchat.agent.model_interface import ModelError
from scoutchat.core.schema import ReadResult

if TYPE_CHECKING:
    from scoutchat.agent.session import Session

logger = logging.getLogger(__name__)

NEED_MORE_SYSTEM_PROMPT = "You are an assistant that decides if more content is needed from a web page."
NEED_MORE_PROMPT = (
    "Given the following snippet from {url}, do you need more content to answer the user's "
    'question? Please reply with "YES" or "NO" and a brief reason. If YES, estimate how many more '
    "characters you need.\n\nSnippet:\n{snippet}"
)


async def needs_more_content(session: "Session", url: str, snippet: str) -> bool:
    """Ask the model whether to keep reading.  Any failure means no."""
    try:
        reply = await session.model.ask(
            NEED_MORE_SYSTEM_PROMPT, NEED_MORE_PROMPT.format(url=url, snippet=snippet)
        )
    except ModelError as exc:
        logger.warning("Deep-read decision failed for %s: %s", url, exc)
        return False
    return reply.strip().lower().startswith("yes")


async def deep_read(session: "Session", url: str) -> str:
    """
    Read *url* chunk by chunk and return the concatenated text.

    Reading stops when the page has no more content, the model answers anything but "yes",
    ``READ_MAX_CHUNKS`` chunks were read or ``READ_MAX_TOTAL`` characters were collected.

    Raises
    ------
    ToolExecutionError
        If the ``read_url`` tool itself fails.
    """
    cfg = session.settings
    chunks: List[str] = []
    total = 0
    start = 0
    while len(chunks) < cfg.READ_MAX_CHUNKS and total < cfg.READ_MAX_TOTAL:
        length = min(cfg.READ_CHUNK_SIZE, cfg.READ_MAX_TOTAL - total)
        result: ReadResult = await session.registry.invoke(
            "read_url", {"url": url, "start": start, "length": length}, session
        )
        if not result.content:
            break
        chunks.append(result.content)
        total += len(result.content)
        logger.debug("Read chunk %d of %s (%d chars)", len(chunks), url, len(result.content))
        if not result.has_more or not await needs_more_content(session, url, result.content):
            break
        start += length
    return "".join(chunks)
