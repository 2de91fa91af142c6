"""
Freshness & enqueue engine.

Decides, for one normalized URL, whether a crawl is already in flight,
whether the last observation is still fresh, and otherwise queues a new
crawl. The read and the insert happen in one write-locked transaction, which
is what keeps concurrent callers from queueing the same URL twice.
"""

import logging
from typing import Callable, Optional

import aiosqlite

from .database import DatabaseError, DatabaseManager, transaction
from .models import FreshnessState
from ..utils.clock import now_ms, seconds_to_ms


DEFAULT_TTL_SECONDS = 60 * 60 * 24


def classify(latest: Optional[tuple], now: int, ttl_ms: int) -> FreshnessState:
    """
    Freshness of a URL from its newest request.

    Args:
        latest: (request_id, response_time or None), or None if the URL was
            never requested
        now: Current time in milliseconds
        ttl_ms: How long an observation stays fresh
    """
    if latest is None:
        return FreshnessState(pending=False, outdated=True)
    response_time = latest[1]
    if response_time is None:
        return FreshnessState(pending=True, outdated=True)
    if response_time < now - ttl_ms:
        return FreshnessState(pending=False, outdated=True)
    return FreshnessState(pending=False, outdated=False)


class FreshnessEngine:
    """Transactional pending/fresh/stale decision plus enqueue."""

    def __init__(self, database: DatabaseManager,
                 ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 on_enqueue: Optional[Callable[[], None]] = None,
                 clock: Callable[[], int] = now_ms):
        self.database = database
        self.ttl_ms = seconds_to_ms(ttl_seconds)
        self.on_enqueue = on_enqueue
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    async def decide_and_enqueue(self, url: str,
                                 conn: Optional[aiosqlite.Connection] = None) -> FreshnessState:
        """
        Classify ``url`` and queue a crawl if it is outdated and not pending.

        Args:
            url: Normalized URL
            conn: Connection to run on; one is borrowed from the pool if None

        Raises:
            DatabaseError: the transaction was rolled back
        """
        if conn is None:
            async with self.database.connection() as pooled:
                return await self._decide(pooled, url)
        return await self._decide(conn, url)

    async def _decide(self, conn: aiosqlite.Connection, url: str) -> FreshnessState:
        enqueued = False
        try:
            async with transaction(conn):
                latest = await self.database.latest_request(conn, url)
                now = self.clock()
                state = classify(latest, now, self.ttl_ms)
                if state.outdated and not state.pending:
                    request_id = await self.database.insert_request(conn, url, now)
                    enqueued = True
        except aiosqlite.Error as e:
            raise DatabaseError(f"Freshness decision for {url} failed: {e}") from e

        if enqueued:
            self.logger.info(f"Queued request {request_id} for {url}")
            if self.on_enqueue:
                self.on_enqueue()
        return state
