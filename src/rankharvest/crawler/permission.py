"""
Crawl-permission checks backed by robots.txt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple
from urllib.robotparser import RobotFileParser

import httpx

logger = logging.getLogger(__name__)

MAX_ROBOTS_BYTES = 1_000_000


class PermissionPolicy:
    """
    Fetches, parses and caches robots.txt per host.

    A robots.txt that cannot be fetched (network error, 404, oversized file)
    is treated as allow-all and cached like a real one, so an unreachable
    host is not asked again on every target.
    """

    def __init__(
        self,
        user_agent: str,
        client: httpx.AsyncClient | None = None,
        cache_ttl: float = 12 * 60 * 60,
        timeout: float = 10.0,
    ) -> None:
        self.user_agent = user_agent
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True, headers={"User-Agent": user_agent})
        self._cache: Dict[str, Tuple[float, Optional[RobotFileParser]]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    async def _fetch_robots_txt(self, origin: str) -> str | None:
        url = f"{origin}/robots.txt"
        try:
            response = await self._client.get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug("No robots.txt found for %s", origin)
            else:
                logger.warning("Failed to fetch robots.txt for %s: %s", origin, e)
            return None
        except httpx.HTTPError as e:
            logger.warning("Failed to fetch robots.txt for %s: %s", origin, e)
            return None

        if len(response.content) > MAX_ROBOTS_BYTES:
            logger.warning("robots.txt for %s is larger than 1MB, skipping", origin)
            return None
        return response.text

    async def _parser_for(self, origin: str) -> Optional[RobotFileParser]:
        cached = self._cache.get(origin)
        if cached and time.monotonic() - cached[0] < self.cache_ttl:
            return cached[1]

        lock = self._locks.setdefault(origin, asyncio.Lock())
        async with lock:
            cached = self._cache.get(origin)
            if cached and time.monotonic() - cached[0] < self.cache_ttl:
                return cached[1]

            content = await self._fetch_robots_txt(origin)
            parser: Optional[RobotFileParser] = None
            if content is not None:
                parser = RobotFileParser()
                parser.parse(content.splitlines())
            self._cache[origin] = (time.monotonic(), parser)
            return parser

    async def is_allowed(self, url: str) -> bool:
        """True when the configured user agent may fetch ``url``."""
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            parsed = None
        if parsed is None or not parsed.scheme or not parsed.host:
            logger.warning("Could not parse URL for permission check: %s", url)
            return False

        parser = await self._parser_for(f"{parsed.scheme}://{parsed.netloc.decode('ascii')}")
        if parser is None:
            return True
        return parser.can_fetch(self.user_agent, url)

    async def close(self) -> None:
        if self._owns_client and not self._client.is_closed:
            await self._client.aclose()
