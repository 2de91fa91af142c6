"""
Shared fixtures for the test suites.
"""

import socket
from pathlib import Path

from hash_archive.crawler.fetcher import FetchResult
from hash_archive.crawler.hasher import MultiHasher
from hash_archive.crawler.outcome import HttpStatus
from hash_archive.storage.database import DatabaseManager
from hash_archive.utils.clock import now_ms
from hash_archive.utils.config import DatabaseConfig


async def open_test_database(directory: str, pool_size: int = 4) -> DatabaseManager:
    """An initialized database in a scratch directory."""
    database = DatabaseManager(DatabaseConfig(
        path=str(Path(directory) / 'archive.db'),
        pool_size=pool_size,
        busy_timeout_ms=5000
    ))
    await database.initialize()
    return database


def make_result(url: str, body: bytes = b'hello', status: int = 200,
                observed_at: int = None) -> FetchResult:
    """A FetchResult as the pipeline would produce for ``body``."""
    hasher = MultiHasher()
    hasher.update(body)
    return FetchResult(
        url=url,
        outcome=HttpStatus(status),
        observed_at=observed_at if observed_at is not None else now_ms(),
        final_url=url,
        content_type='text/plain',
        digests=hasher.digests()
    )


async def count_rows(database: DatabaseManager, table: str) -> int:
    async with database.connection() as conn:
        cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
        row = await cursor.fetchone()
        await cursor.close()
    return row[0]


def unused_port() -> int:
    """A local TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(('127.0.0.1', 0))
        return sock.getsockname()[1]
