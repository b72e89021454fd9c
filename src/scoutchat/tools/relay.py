"""
Health-scored pool of outbound relays.

Every outbound fetch (search pages, article pages, instant answers) goes through the pool.  Relays
are tried best-score first; a success rewards the relay, a failure penalises it, and the score is
updated before the next ordering so later fetches in the same session prefer relays that work.
"""

import logging
from typing import (
    Any,
    Callable,
    List,
    Optional,
    Sequence,
)
from urllib.parse import quote

import httpx

from scoutchat.config import (
    RelaySpec,
    Settings,
)

logger = logging.getLogger(__name__)

REWARD = 2
PENALTY = 2

_MISSING = object()


class RelayExhaustedError(RuntimeError):
    """Raised when every relay in the pool failed at the transport level."""


class Relay:
    """One outbound route.  ``{url}`` / ``{url_encoded}`` in *template* receive the target."""

    def __init__(self, name: str, template: str, score: int = 1) -> None:
        self.name = name
        self.template = template
        self.score = score

    def format_url(self, url: str) -> str:
        """Build the URL to request for *url*."""
        return self.template.replace("{url_encoded}", quote(url, safe="")).replace("{url}", url)

    def __repr__(self) -> str:
        return f"Relay({self.name!r}, score={self.score})"


class RelayPool:
    """Ordered, health-scored relays sharing one :class:`httpx.AsyncClient`."""

    def __init__(
        self,
        relays: Sequence[Relay | RelaySpec],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.relays: List[Relay] = [
            r if isinstance(r, Relay) else Relay(r.name, r.template) for r in relays
        ]
        if not self.relays:
            raise ValueError("RelayPool needs at least one relay")
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0 (compatible; scoutchat/0.1)"},
        )

    @classmethod
    def from_settings(cls, cfg: Settings, client: Optional[httpx.AsyncClient] = None) -> "RelayPool":
        """Build a pool from ``cfg.RELAYS``."""
        return cls(cfg.RELAYS, client=client, timeout=cfg.FETCH_TIMEOUT)

    def ordered(self) -> List[Relay]:
        """Relays by descending score; ties keep their configured order."""
        return sorted(self.relays, key=lambda relay: -relay.score)

    def reward(self, relay: Relay) -> None:
        relay.score += REWARD

    def penalize(self, relay: Relay) -> None:
        relay.score -= PENALTY

    async def _get(self, relay: Relay, url: str) -> str:
        resp = await self.client.get(relay.format_url(url), timeout=self.timeout)
        resp.raise_for_status()
        return resp.text

    async def fetch_through(self, url: str, parse: Optional[Callable[[str], Any]] = None) -> Any:
        """
        Fetch *url* through the best relay that works.

        Parameters
        ----------
        url:
            The target URL.
        parse:
            Optional callback turning the raw body into the caller's payload.  A callback that
            raises, or returns an empty payload, marks the relay as failed and the next one is
            tried.

        Returns
        -------
        Any
            The raw body, or the parsed payload.  If every relay answered but none produced a
            non-empty payload, the last (empty) payload is returned.

        Raises
        ------
        RelayExhaustedError
            If no relay answered at all.
        """
        last_error: Optional[BaseException] = None
        empty: Any = _MISSING
        for relay in self.ordered():
            logger.debug("Fetching %s via relay %s", url, relay.name)
            try:
                body = await self._get(relay, url)
            except httpx.HTTPError as exc:
                logger.debug("Relay %s failed for %s: %s", relay.name, url, exc)
                self.penalize(relay)
                last_error = exc
                continue

            if parse is None:
                self.reward(relay)
                return body

            try:
                payload = parse(body)
            except Exception as exc:  # noqa: BLE001
                logger.debug("Relay %s returned an unusable body for %s: %s", relay.name, url, exc)
                self.penalize(relay)
                last_error = exc
                continue

            if payload:
                self.reward(relay)
                return payload
            logger.debug("Relay %s returned an empty payload for %s", relay.name, url)
            self.penalize(relay)
            empty = payload

        if empty is not _MISSING:
            return empty
        raise RelayExhaustedError(f"All relays failed for {url}: {last_error}")

    async def aclose(self) -> None:
        """Close the underlying client if the pool created it.  Safe to call multiple times."""
        if self._owns_client and not self.client.is_closed:
            await self.client.aclose()
