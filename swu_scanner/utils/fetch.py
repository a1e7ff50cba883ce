"""
swu_scanner/utils/fetch.py: HTTP fetching with ordered fallback strategies

A direct request is tried first, then each configured proxy in turn. The proxy
that last succeeded is tried first among the proxies on the next call.
"""

import asyncio
import json
import logging
from typing import Any, List, Optional
from urllib.parse import quote

import aiohttp

from swu_scanner.config import CORS_PROXY_TEMPLATES, FETCH_TIMEOUT

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when every fetch strategy failed for a URL."""

    def __init__(self, url: str, attempts: List[str]):
        self.url = url
        self.attempts = attempts
        detail = '; '.join(attempts) if attempts else 'no strategies configured'
        super().__init__(f"All requests failed for {url}: {detail}")


class DirectStrategy:
    """Request the URL as-is"""
    name = 'direct'

    def build_url(self, url: str) -> str:
        return url


class ProxyStrategy:
    """Route the request through a proxy URL template containing {url}"""

    def __init__(self, template: str):
        self.template = template
        self.name = template.split('/')[2] if '//' in template else template

    def build_url(self, url: str) -> str:
        return self.template.format(url=quote(url, safe="-_.!~*'()"))


class Fetcher:
    """Fetch bytes or JSON, falling back through proxy strategies"""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        proxy_templates: Optional[List[str]] = None,
        timeout: float = FETCH_TIMEOUT
    ):
        """
        Initialize fetcher

        Args:
            session: Shared aiohttp session (created on __aenter__ if None)
            proxy_templates: Proxy URL templates (default: CORS_PROXY_TEMPLATES)
            timeout: Total timeout per request in seconds
        """
        self.session = session
        self._owns_session = session is None
        self.direct = DirectStrategy()
        templates = CORS_PROXY_TEMPLATES if proxy_templates is None else proxy_templates
        self.proxies = [ProxyStrategy(t) for t in templates]
        self._proxy_index = 0
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> 'Fetcher':
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    def strategies(self) -> List[Any]:
        """Direct first, then proxies starting from the last one that worked"""
        n = len(self.proxies)
        rotated = [self.proxies[(self._proxy_index + i) % n] for i in range(n)]
        return [self.direct] + rotated

    async def fetch_bytes(self, url: str) -> bytes:
        """
        Fetch raw response body

        Raises:
            FetchError: if every strategy failed
        """
        if self.session is None:
            raise RuntimeError("Fetcher used outside of 'async with' and without a session")

        attempts = []
        for strategy in self.strategies():
            target = strategy.build_url(url)
            try:
                async with self.session.get(target, timeout=self._timeout) as response:
                    if response.status == 200:
                        data = await response.read()
                        if strategy is not self.direct:
                            self._proxy_index = self.proxies.index(strategy)
                            logger.debug(f"Fetched {url} via {strategy.name}")
                        return data
                    attempts.append(f"{strategy.name}: HTTP {response.status}")
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                attempts.append(f"{strategy.name}: {type(e).__name__}: {e}")

        raise FetchError(url, attempts)

    async def fetch_json(self, url: str) -> Any:
        """Fetch and decode a JSON document."""
        data = await self.fetch_bytes(url)
        try:
            return json.loads(data)
        except ValueError as e:
            raise FetchError(url, [f"invalid JSON: {e}"]) from e
