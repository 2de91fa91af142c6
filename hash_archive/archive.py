"""
The hash archive service: wires storage, the fetch pipeline and the worker
pool together and exposes the query surface used by front ends.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .crawler.fetcher import WebFetcher
from .crawler.scheduler import WorkerPool
from .crawler.url_normalizer import normalize_url
from .hashing import codec
from .storage.database import DatabaseManager
from .storage.freshness import FreshnessEngine
from .storage.models import FreshnessState, HashSource, UrlHistory
from .utils.config import Config
from .utils.monitoring import ArchiveMonitor, initialize_monitoring


# Shown on the index page as a worked example.
EXAMPLE_URL = "http://torrents.linuxmint.com/torrents/linuxmint-17.3-cinnamon-64bit.iso.torrent"
EXAMPLE_HASH = "hash://sha256/212cc9f731e2237fb1e487eb5056080aeded67223f9c318cd450a30633e5dc62"

RECENT_URLS_LIMIT = 10


class SubmissionKind(Enum):
    URL = 'url'
    HASH = 'hash'
    EMPTY = 'empty'
    INVALID = 'invalid'


@dataclass(frozen=True)
class Submission:
    """Where a free-text lookup should be routed."""
    kind: SubmissionKind
    value: Optional[str] = None

    @property
    def is_url(self) -> bool:
        return self.kind is SubmissionKind.URL

    @property
    def is_hash(self) -> bool:
        return self.kind is SubmissionKind.HASH


def classify_submission(text: str) -> Submission:
    """Route free text to a URL history or a hash lookup. URLs win."""
    text = (text or '').strip()
    if not text:
        return Submission(SubmissionKind.EMPTY)
    url = normalize_url(text)
    if url:
        return Submission(SubmissionKind.URL, url)
    hash_text = codec.normalize(text)
    if hash_text:
        return Submission(SubmissionKind.HASH, hash_text)
    return Submission(SubmissionKind.INVALID)


class HashArchive:
    """
    Main service object. ``initialize`` opens storage and the fetcher,
    ``start`` launches workers and the recent-URL refresher.
    """

    def __init__(self, config: Config, monitor: Optional[ArchiveMonitor] = None):
        self.config = config
        self.logger = logging.getLogger(__name__)
        self.monitor = monitor or initialize_monitoring(
            config.monitoring.metrics_enabled,
            config.monitoring.prometheus_port
        )

        self.database: Optional[DatabaseManager] = None
        self.fetcher: Optional[WebFetcher] = None
        self.workers: Optional[WorkerPool] = None
        self.freshness: Optional[FreshnessEngine] = None

        self.recent_urls: List[str] = []
        self._refresh_task: Optional[asyncio.Task] = None

    async def initialize(self):
        """Initialize storage, fetcher and worker pool."""
        archive = self.config.archive
        try:
            self.database = DatabaseManager(self.config.database)
            await self.database.initialize()

            self.fetcher = WebFetcher(
                user_agent=archive.user_agent,
                request_timeout=archive.request_timeout,
                max_redirects=archive.max_redirects,
                robots_cache_ttl=archive.robots_cache_ttl,
                max_connections=archive.max_workers * 2
            )
            await self.fetcher.start()

            self.workers = WorkerPool(
                self.database,
                self.fetcher,
                max_workers=archive.max_workers,
                claim_lease_seconds=archive.claim_lease_seconds,
                monitor=self.monitor
            )
            self.freshness = FreshnessEngine(
                self.database,
                ttl_seconds=archive.freshness_ttl,
                on_enqueue=self.workers.wake
            )
            self.logger.info("Hash archive initialized")

        except Exception as e:
            self.logger.error(f"Failed to initialize hash archive: {e}")
            await self.close()
            raise

    def start(self):
        """Start workers for any backlog and the periodic refresh."""
        self.workers.start()
        if self._refresh_task is None:
            self._refresh_task = asyncio.create_task(self._refresh_loop())

    # Query surface

    def submit(self, text: str) -> Submission:
        return classify_submission(text)

    async def lookup_by_hash(self, hash_text: str) -> Optional[List[HashSource]]:
        """
        URLs that have served the given digest, most recent first.

        Returns:
            None if ``hash_text`` is not a recognizable hash identifier
        """
        ident = codec.parse(hash_text)
        if ident is None:
            return None
        return await self.database.find_sources(
            ident.algorithm, ident.digest, self.config.archive.sources_limit
        )

    async def lookup_history(self, url_text: str) -> Optional[UrlHistory]:
        """
        Recent responses for a URL and its freshness. Looking a URL up queues
        a crawl when it is outdated and none is pending.

        Returns:
            None if ``url_text`` is not an http(s) URL
        """
        url = normalize_url(url_text)
        if url is None:
            return None
        async with self.database.connection() as conn:
            responses = await self.database.load_responses(
                conn, url, self.config.archive.history_limit
            )
            state = await self.freshness.decide_and_enqueue(url, conn)
        self.monitor.record_decision(state.pending, state.outdated)
        return UrlHistory(url=url, state=state, responses=responses)

    async def request_crawl(self, url_text: str) -> Optional[FreshnessState]:
        """Queue a crawl of a URL if it is due; None for invalid URLs."""
        url = normalize_url(url_text)
        if url is None:
            return None
        state = await self.freshness.decide_and_enqueue(url)
        self.monitor.record_decision(state.pending, state.outdated)
        return state

    @property
    def example_lookups(self):
        return EXAMPLE_URL, EXAMPLE_HASH

    # Recent URLs

    async def refresh_recent_urls(self):
        """Replace the recent-URL list with a fresh query result."""
        self.recent_urls = await self.database.recent_urls(RECENT_URLS_LIMIT)
        self.monitor.update_free_connections(self.database.pool.available)

    async def _refresh_loop(self):
        """Periodically refresh the recent-URL list."""
        interval = self.config.archive.recent_urls_interval
        while True:
            try:
                await self.refresh_recent_urls()
            except Exception as e:
                self.logger.error(f"Error refreshing recent URLs: {e}")
            await asyncio.sleep(interval)

    async def close(self):
        """Stop background work and close all connections."""
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None

        if self.workers:
            await self.workers.stop()

        if self.fetcher:
            await self.fetcher.close()

        if self.database:
            await self.database.close()

        self.logger.info("Hash archive closed")
