"""
Relational storage for the archive: crawl requests, their responses, and the
content-addressed digest index.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import aiosqlite

from .models import CrawlRequest, CrawlResponse, HashSource
from .pool import ConnectionPool, open_connection_pool
from ..utils.clock import now_ms
from ..utils.config import DatabaseConfig


SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    request_id INTEGER PRIMARY KEY AUTOINCREMENT,
    url TEXT NOT NULL,
    request_time INTEGER NOT NULL,
    claim_time INTEGER
);
CREATE INDEX IF NOT EXISTS requests_url_idx ON requests (url, request_id);

CREATE TABLE IF NOT EXISTS responses (
    response_id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id INTEGER NOT NULL UNIQUE REFERENCES requests (request_id),
    status INTEGER NOT NULL,
    response_time INTEGER NOT NULL,
    content_type TEXT,
    etag TEXT,
    last_modified TEXT,
    date TEXT
);
CREATE INDEX IF NOT EXISTS responses_time_idx ON responses (response_time);

CREATE TABLE IF NOT EXISTS hashes (
    hash_id INTEGER PRIMARY KEY AUTOINCREMENT,
    algo TEXT NOT NULL,
    data BLOB NOT NULL,
    UNIQUE (algo, data)
);

CREATE TABLE IF NOT EXISTS response_hashes (
    response_id INTEGER NOT NULL REFERENCES responses (response_id),
    hash_id INTEGER NOT NULL REFERENCES hashes (hash_id),
    PRIMARY KEY (response_id, hash_id)
);
CREATE INDEX IF NOT EXISTS response_hashes_hash_idx ON response_hashes (hash_id);
"""


class DatabaseError(Exception):
    """Custom exception for database operations."""
    pass


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """
    Run the block inside ``BEGIN IMMEDIATE ... COMMIT``.

    The write lock is taken up front, so concurrent transactions on other
    connections wait (up to the busy timeout) instead of interleaving.
    Any exception, including a failed COMMIT, rolls back and propagates, so
    the connection never goes back to the pool inside a transaction.
    """
    await conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
        await conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            await conn.execute("ROLLBACK")
        raise


def _row_to_response(row: aiosqlite.Row) -> CrawlResponse:
    return CrawlResponse(
        response_id=row['response_id'],
        request_id=row['request_id'],
        status=row['status'],
        response_time=row['response_time'],
        content_type=row['content_type'],
        etag=row['etag'],
        last_modified=row['last_modified'],
        date=row['date']
    )


class DatabaseManager:
    """Owns the connection pool and every query the archive runs."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.pool: Optional[ConnectionPool] = None
        self.logger = logging.getLogger(__name__)

    async def initialize(self):
        """Open the connection pool and create missing tables."""
        try:
            self.pool = await open_connection_pool(
                self.config.path,
                size=self.config.pool_size,
                busy_timeout_ms=self.config.busy_timeout_ms
            )
            async with self.pool.connection() as conn:
                await conn.executescript(SCHEMA)
                released = await self._release_stale_claims(conn)
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to initialize database at {self.config.path}: {e}") from e
        if released:
            self.logger.warning(f"Released {released} claims left by a previous run")
        self.logger.info(f"Database initialized at {self.config.path}")

    async def _release_stale_claims(self, conn: aiosqlite.Connection) -> int:
        """
        Clear claims on unanswered requests. Only one process serves a
        database, so at startup every such claim belongs to a dead worker.
        """
        cursor = await conn.execute(
            "UPDATE requests SET claim_time = NULL\n"
            "WHERE claim_time IS NOT NULL AND NOT EXISTS (\n"
            "\tSELECT 1 FROM responses WHERE responses.request_id = requests.request_id)"
        )
        released = cursor.rowcount
        await cursor.close()
        return released

    def connection(self):
        """Borrow a pooled connection: ``async with db.connection() as conn``."""
        if not self.pool:
            raise DatabaseError("Database not initialized")
        return self.pool.connection()

    async def close(self):
        """Close database connections."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("Database connections closed")

    # Job queue

    async def latest_request(self, conn: aiosqlite.Connection,
                             url: str) -> Optional[Tuple[int, Optional[int]]]:
        """
        Newest request for ``url`` and the time it was answered.

        Returns:
            (request_id, response_time or None), or None if never requested
        """
        cursor = await conn.execute(
            "SELECT req.request_id, res.response_time\n"
            "FROM requests AS req\n"
            "LEFT JOIN responses AS res ON (req.request_id = res.request_id)\n"
            "WHERE req.url = ?\n"
            "ORDER BY req.request_id DESC LIMIT 1",
            (url,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None
        return row['request_id'], row['response_time']

    async def insert_request(self, conn: aiosqlite.Connection, url: str,
                             request_time: int) -> int:
        cursor = await conn.execute(
            "INSERT INTO requests (url, request_time) VALUES (?, ?)",
            (url, request_time)
        )
        request_id = cursor.lastrowid
        await cursor.close()
        return request_id

    async def claim_next_request(self, lease_ms: int = 0) -> Optional[CrawlRequest]:
        """
        Atomically mark and return the oldest unanswered, unclaimed request.

        Args:
            lease_ms: When positive, claims older than this that still have
                no response may be taken again

        Returns:
            The claimed request, or None if the queue is empty
        """
        now = now_ms()
        try:
            async with self.connection() as conn:
                async with transaction(conn):
                    cursor = await conn.execute(
                        "SELECT req.request_id, req.url, req.request_time\n"
                        "FROM requests AS req\n"
                        "LEFT JOIN responses AS res ON (req.request_id = res.request_id)\n"
                        "WHERE res.response_id IS NULL\n"
                        "AND (req.claim_time IS NULL OR (? > 0 AND req.claim_time < ?))\n"
                        "ORDER BY req.request_time ASC, req.request_id ASC LIMIT 1",
                        (lease_ms, now - lease_ms)
                    )
                    row = await cursor.fetchone()
                    await cursor.close()
                    if row is None:
                        return None
                    await conn.execute(
                        "UPDATE requests SET claim_time = ? WHERE request_id = ?",
                        (now, row['request_id'])
                    )
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to claim a request: {e}") from e
        return CrawlRequest(row['request_id'], row['url'], row['request_time'])

    async def release_claim(self, request: CrawlRequest):
        """Make an unanswered request claimable again."""
        try:
            async with self.connection() as conn:
                await conn.execute(
                    "UPDATE requests SET claim_time = NULL\n"
                    "WHERE request_id = ? AND NOT EXISTS (\n"
                    "\tSELECT 1 FROM responses WHERE responses.request_id = requests.request_id)",
                    (request.request_id,)
                )
        except aiosqlite.Error as e:
            raise DatabaseError(f"Failed to release request {request.request_id}: {e}") from e
        self.logger.debug(f"Released claim on request {request.request_id}")

    async def pending_count(self) -> int:
        """Number of requests that have no response yet."""
        async with self.connection() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) FROM requests AS req\n"
                "LEFT JOIN responses AS res ON (req.request_id = res.request_id)\n"
                "WHERE res.response_id IS NULL"
            )
            row = await cursor.fetchone()
            await cursor.close()
        return row[0]

    # Persistence

    async def store_response(self, request: CrawlRequest, result: Any) -> int:
        """
        Persist a fetch result and its digests for ``request`` in one
        transaction.

        Args:
            request: The request being answered
            result: A FetchResult

        Returns:
            The new response_id
        """
        try:
            async with self.connection() as conn:
                async with transaction(conn):
                    cursor = await conn.execute(
                        "INSERT INTO responses (request_id, status, response_time,\n"
                        "\tcontent_type, etag, last_modified, date)\n"
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (request.request_id, result.status_code, result.observed_at,
                         result.content_type, result.etag, result.last_modified,
                         result.date)
                    )
                    response_id = cursor.lastrowid
                    await cursor.close()
                    for algo, data in result.digests.items():
                        hash_id = await self._intern_hash(conn, algo, data)
                        await conn.execute(
                            "INSERT INTO response_hashes (response_id, hash_id)\n"
                            "VALUES (?, ?)",
                            (response_id, hash_id)
                        )
        except aiosqlite.Error as e:
            raise DatabaseError(
                f"Failed to store response for request {request.request_id}: {e}"
            ) from e
        self.logger.debug(f"Stored response {response_id} for {request.url}")
        return response_id

    async def _intern_hash(self, conn: aiosqlite.Connection, algo: str,
                           data: bytes) -> int:
        """Digest rows are shared: insert once, then look up the id."""
        await conn.execute(
            "INSERT OR IGNORE INTO hashes (algo, data) VALUES (?, ?)",
            (algo, data)
        )
        cursor = await conn.execute(
            "SELECT hash_id FROM hashes WHERE algo = ? AND data = ? LIMIT 1",
            (algo, data)
        )
        row = await cursor.fetchone()
        await cursor.close()
        return row['hash_id']

    # Lookups

    async def load_responses(self, conn: aiosqlite.Connection, url: str,
                             limit: int = 30) -> List[CrawlResponse]:
        """Most recent responses for a URL, newest first, with digests."""
        cursor = await conn.execute(
            "SELECT res.response_id, res.request_id, res.status, res.response_time,\n"
            "\tres.content_type, res.etag, res.last_modified, res.date\n"
            "FROM requests AS req\n"
            "INNER JOIN responses AS res ON (req.request_id = res.request_id)\n"
            "WHERE req.url = ?\n"
            "ORDER BY res.response_id DESC LIMIT ?",
            (url, limit)
        )
        responses = [_row_to_response(row) for row in await cursor.fetchall()]
        await cursor.close()

        for response in responses:
            response.digests = await self._load_digests(conn, response.response_id)
        return responses

    async def _load_digests(self, conn: aiosqlite.Connection,
                            response_id: int) -> Dict[str, bytes]:
        cursor = await conn.execute(
            "SELECT h.algo, h.data\n"
            "FROM response_hashes AS r\n"
            "INNER JOIN hashes AS h ON (r.hash_id = h.hash_id)\n"
            "WHERE r.response_id = ?",
            (response_id,)
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return {row['algo']: bytes(row['data']) for row in rows}

    async def find_sources(self, algo: str, data: bytes,
                           limit: int = 30) -> List[HashSource]:
        """URLs whose responses produced this digest, most recently seen first."""
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(
                    "SELECT req.url, MAX(res.response_time) AS response_time\n"
                    "FROM hashes AS h\n"
                    "INNER JOIN response_hashes AS rh ON (h.hash_id = rh.hash_id)\n"
                    "INNER JOIN responses AS res ON (rh.response_id = res.response_id)\n"
                    "INNER JOIN requests AS req ON (res.request_id = req.request_id)\n"
                    "WHERE h.algo = ? AND h.data = ?\n"
                    "GROUP BY req.url\n"
                    "ORDER BY response_time DESC LIMIT ?",
                    (algo, bytes(data), limit)
                )
                rows = await cursor.fetchall()
                await cursor.close()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Hash lookup failed: {e}") from e
        return [HashSource(row['url'], row['response_time']) for row in rows]

    async def recent_urls(self, limit: int = 10) -> List[str]:
        """URLs most recently answered with a 200."""
        try:
            async with self.connection() as conn:
                cursor = await conn.execute(
                    "SELECT req.url, MAX(res.response_time) AS response_time\n"
                    "FROM responses AS res\n"
                    "INNER JOIN requests AS req ON (res.request_id = req.request_id)\n"
                    "WHERE res.status = 200\n"
                    "GROUP BY req.url\n"
                    "ORDER BY response_time DESC LIMIT ?",
                    (limit,)
                )
                rows = await cursor.fetchall()
                await cursor.close()
        except aiosqlite.Error as e:
            raise DatabaseError(f"Recent URL query failed: {e}") from e
        return [row['url'] for row in rows]
