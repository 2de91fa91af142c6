"""
Bounded resource pool and the sqlite connection pool built on it.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Generic, Iterable, List, TypeVar

import aiosqlite


T = TypeVar('T')

logger = logging.getLogger(__name__)


class ResourcePool(Generic[T]):
    """
    A fixed set of interchangeable resources.

    ``acquire`` returns a free resource or suspends until one is released.
    Waiters are served in FIFO order: ``release`` hands the resource straight
    to the oldest waiter, so a newcomer can never take it first.
    """

    def __init__(self, resources: Iterable[T]):
        self._resources: List[T] = list(resources)
        self._available: List[T] = list(self._resources)
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def size(self) -> int:
        return len(self._resources)

    @property
    def available(self) -> int:
        return len(self._available)

    @property
    def waiting(self) -> int:
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> T:
        if self._available and not self.waiting:
            return self._available.pop()

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Handed a resource just as we were cancelled: pass it on.
                self.release(waiter.result())
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self, resource: T):
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(resource)
                return
        self._available.append(resource)

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[T]:
        """Borrow a resource for the duration of the block."""
        resource = await self.acquire()
        try:
            yield resource
        finally:
            self.release(resource)

    def resources(self) -> List[T]:
        return list(self._resources)


class ConnectionPool(ResourcePool[aiosqlite.Connection]):
    """Pool of pre-opened sqlite connections."""

    async def close(self):
        for conn in self.resources():
            await conn.close()
        logger.info(f"Closed {self.size} database connections")


async def open_connection(path: str, busy_timeout_ms: int = 5000) -> aiosqlite.Connection:
    """Open a connection in autocommit mode; transactions are explicit."""
    conn = await aiosqlite.connect(path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
    await conn.execute("PRAGMA foreign_keys = ON")
    return conn


async def open_connection_pool(path: str, size: int = 16,
                               busy_timeout_ms: int = 5000) -> ConnectionPool:
    """Open ``size`` connections to the database at ``path``."""
    connections = []
    try:
        for _ in range(size):
            connections.append(await open_connection(path, busy_timeout_ms))
    except BaseException:
        for conn in connections:
            await conn.close()
        raise
    logger.info(f"Opened {size} database connections to {path}")
    return ConnectionPool(connections)
