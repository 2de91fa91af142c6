import asyncio
import os
import tempfile
import unittest

from hash_archive.storage.pool import ResourcePool, open_connection_pool


class TestResourcePool(unittest.IsolatedAsyncioTestCase):

    async def test_hands_out_every_resource(self):
        pool = ResourcePool(['a', 'b'])
        first = await pool.acquire()
        second = await pool.acquire()

        self.assertEqual({first, second}, {'a', 'b'})
        self.assertEqual(pool.available, 0)
        pool.release(first)
        pool.release(second)
        self.assertEqual(pool.available, 2)

    async def test_waiters_are_served_in_order(self):
        pool = ResourcePool(['only'])
        order = []

        async def borrower(name):
            async with pool.connection():
                order.append(name)
                await asyncio.sleep(0)

        held = await pool.acquire()
        tasks = []
        for name in ('first', 'second', 'third'):
            tasks.append(asyncio.create_task(borrower(name)))
            await asyncio.sleep(0)
        self.assertEqual(order, [])

        pool.release(held)
        await asyncio.gather(*tasks)
        self.assertEqual(order, ['first', 'second', 'third'])
        self.assertEqual(pool.available, 1)

    async def test_release_hands_off_to_waiter_before_newcomers(self):
        pool = ResourcePool(['only'])
        held = await pool.acquire()
        waiter = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)
        self.assertEqual(pool.waiting, 1)

        pool.release(held)
        newcomer = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)

        self.assertEqual(await asyncio.wait_for(waiter, 1), 'only')
        self.assertFalse(newcomer.done())
        self.assertEqual(pool.available, 0)

        pool.release('only')
        self.assertEqual(await asyncio.wait_for(newcomer, 1), 'only')

    async def test_cancelled_waiter_does_not_lose_resource(self):
        pool = ResourcePool(['only'])
        held = await pool.acquire()
        cancelled = asyncio.create_task(pool.acquire())
        second = asyncio.create_task(pool.acquire())
        await asyncio.sleep(0)

        cancelled.cancel()
        pool.release(held)
        with self.assertRaises(asyncio.CancelledError):
            await cancelled

        self.assertEqual(await asyncio.wait_for(second, 1), 'only')
        pool.release('only')
        self.assertEqual(pool.available, 1)
        self.assertEqual(pool.waiting, 0)

    async def test_released_when_block_raises(self):
        pool = ResourcePool(['only'])
        with self.assertRaises(RuntimeError):
            async with pool.connection():
                raise RuntimeError("boom")

        self.assertEqual(pool.available, 1)
        self.assertEqual(await asyncio.wait_for(pool.acquire(), 1), 'only')


class TestConnectionPool(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, 'pool.db')

    async def asyncTearDown(self):
        self.tmpdir.cleanup()

    async def test_connections_are_configured(self):
        pool = await open_connection_pool(self.path, size=3, busy_timeout_ms=1234)
        try:
            self.assertEqual(pool.size, 3)
            for conn in pool.resources():
                cursor = await conn.execute("PRAGMA busy_timeout")
                row = await cursor.fetchone()
                await cursor.close()
                self.assertEqual(row[0], 1234)

                cursor = await conn.execute("PRAGMA foreign_keys")
                row = await cursor.fetchone()
                await cursor.close()
                self.assertEqual(row[0], 1)
        finally:
            await pool.close()


if __name__ == '__main__':
    unittest.main()
