"""
Fetch pipeline: robots.txt gate, redirect-following GET and streaming
digest computation.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urljoin, urlsplit
from urllib.robotparser import RobotFileParser

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from .hasher import MultiHasher
from .outcome import (
    FETCH_EXCEPTIONS, FetchError, FetchErrorKind, HttpStatus, Outcome,
    classify_exception,
)
from .url_normalizer import normalize_url
from ..utils.clock import now_ms


@dataclass
class FetchResult:
    """Outcome of running one URL through the fetch pipeline."""
    url: str
    outcome: Outcome
    observed_at: int
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    date: Optional[str] = None
    digests: Dict[str, bytes] = field(default_factory=dict)
    fetch_time: float = 0.0
    bytes_downloaded: int = 0

    @property
    def status_code(self) -> int:
        """Value persisted in the status column."""
        return self.outcome.to_code()

    @property
    def error(self) -> Optional[FetchErrorKind]:
        if isinstance(self.outcome, FetchError):
            return self.outcome.kind
        return None


def failure(url: str, kind: FetchErrorKind) -> FetchResult:
    """A stored-able record for a fetch that produced no HTTP answer."""
    return FetchResult(url=url, outcome=FetchError(kind), observed_at=now_ms(),
                       final_url=url)


class RobotsChecker:
    """Evaluates robots.txt rules, caching the parsed rules per origin."""

    def __init__(self, user_agent: str, cache_ttl: float = 3600):
        self.user_agent = user_agent
        self.cache_ttl = cache_ttl
        self.robots_cache: Dict[str, Tuple[float, Optional[RobotFileParser]]] = {}
        self.logger = logging.getLogger(__name__)

    def _get_origin(self, url: str) -> str:
        parsed = urlsplit(url)
        return f"{parsed.scheme}://{parsed.netloc}"

    async def can_fetch(self, url: str, session: ClientSession) -> bool:
        """
        Check if URL can be fetched according to robots.txt.

        A missing or non-200 robots.txt allows everything. Network errors
        are not caught here; they become the failure of the whole fetch.
        """
        origin = self._get_origin(url)
        current_time = time.time()

        cached = self.robots_cache.get(origin)
        if cached and current_time - cached[0] < self.cache_ttl:
            rules = cached[1]
        else:
            rules = await self._load_rules(origin, session)
            if self.cache_ttl > 0:
                self._prune_cache(current_time)
                self.robots_cache[origin] = (current_time, rules)

        if rules is None:
            return True
        return rules.can_fetch(self.user_agent, url)

    def _prune_cache(self, current_time: float):
        """Drop entries whose rules have expired."""
        expired = [
            origin for origin, (fetched_at, _) in self.robots_cache.items()
            if current_time - fetched_at >= self.cache_ttl
        ]
        for origin in expired:
            del self.robots_cache[origin]

    async def _load_rules(self, origin: str,
                          session: ClientSession) -> Optional[RobotFileParser]:
        robots_url = f"{origin}/robots.txt"
        async with session.get(robots_url, allow_redirects=False) as response:
            if response.status != 200:
                self.logger.debug(f"No robots.txt at {robots_url} ({response.status})")
                return None
            robots_content = await response.text(errors='replace')

        rules = RobotFileParser()
        rules.set_url(robots_url)
        rules.parse(robots_content.splitlines())
        return rules


class WebFetcher:
    """
    Fetches URLs with robots.txt compliance and bounded redirect following,
    hashing response bodies as they stream.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_redirects: int = 5, robots_cache_ttl: float = 3600,
                 max_connections: int = 20, chunk_size: int = 64 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_redirects = max_redirects
        self.max_connections = max_connections
        self.chunk_size = chunk_size

        self.logger = logging.getLogger(__name__)
        self.robots_checker = RobotsChecker(user_agent, robots_cache_ttl)

        self.session: Optional[ClientSession] = None

        self.stats = {
            'total_fetches': 0,
            'http_responses': 0,
            'failed_fetches': 0,
            'robots_blocked': 0,
            'redirects_followed': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            # Digests are of the bytes as served, so no transparent decoding.
            self.session = aiohttp.ClientSession(
                timeout=ClientTimeout(total=self.request_timeout),
                headers={'User-Agent': self.user_agent},
                skip_auto_headers=('Accept-Encoding',),
                auto_decompress=False,
                connector=aiohttp.TCPConnector(
                    limit=self.max_connections,
                    ttl_dns_cache=300
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    async def fetch(self, url: str, redirect_count: int = 0) -> FetchResult:
        """
        Run a URL through the pipeline.

        Args:
            url: Normalized http(s) URL
            redirect_count: Redirects already followed to reach ``url``

        Returns:
            FetchResult; transport failures are reported in its outcome,
            never raised
        """
        if self.session is None:
            await self.start()

        start_time = time.time()
        self.stats['total_fetches'] += 1
        try:
            result = await self._fetch(url, redirect_count)
        except FETCH_EXCEPTIONS as e:
            kind = classify_exception(e)
            self.logger.info(f"Fetch of {url} failed: {kind.name}")
            result = failure(url, kind)

        result.url = url
        result.fetch_time = time.time() - start_time
        if result.error is None:
            self.stats['http_responses'] += 1
            self.stats['total_bytes_downloaded'] += result.bytes_downloaded
        else:
            self.stats['failed_fetches'] += 1
            if result.error == FetchErrorKind.BLOCKED:
                self.stats['robots_blocked'] += 1
        return result

    async def _fetch(self, url: str, redirect_count: int) -> FetchResult:
        if not await self.robots_checker.can_fetch(url, self.session):
            self.logger.info(f"Robots.txt blocks access to: {url}")
            return failure(url, FetchErrorKind.BLOCKED)

        async with self.session.get(url, allow_redirects=False) as response:
            location = response.headers.get('Location')
            if not (300 <= response.status < 400 and location):
                return await self._read_response(url, response)

            if redirect_count >= self.max_redirects:
                self.logger.info(f"Too many redirects at {url}")
                return failure(url, FetchErrorKind.TOO_MANY_REDIRECTS)

            target = normalize_url(urljoin(url, location))
            if target is None:
                self.logger.warning(f"Unusable redirect from {url} to {location!r}")
                return failure(url, FetchErrorKind.UNKNOWN)

        self.stats['redirects_followed'] += 1
        self.logger.debug(f"Following redirect {url} -> {target}")
        return await self._fetch(target, redirect_count + 1)

    async def _read_response(self, url: str, response) -> FetchResult:
        """Stream the body through every digest algorithm."""
        hasher = MultiHasher()
        async for chunk in response.content.iter_chunked(self.chunk_size):
            hasher.update(chunk)

        headers = response.headers
        result = FetchResult(
            url=url,
            outcome=HttpStatus(response.status),
            observed_at=now_ms(),
            final_url=url,
            content_type=headers.get('Content-Type'),
            etag=headers.get('ETag'),
            last_modified=headers.get('Last-Modified'),
            date=headers.get('Date'),
            digests=hasher.digests(),
            bytes_downloaded=hasher.bytes_hashed
        )
        self.logger.debug(f"Fetched {url}: {response.status} ({hasher.bytes_hashed} bytes)")
        return result

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
