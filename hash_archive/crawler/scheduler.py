"""
Worker pool that answers queued crawl requests.
"""

import asyncio
import logging
from typing import Optional, Set

from .fetcher import WebFetcher
from ..storage.database import DatabaseError, DatabaseManager
from ..storage.models import CrawlRequest
from ..utils.logger import get_archive_logger
from ..utils.monitoring import ArchiveMonitor


class WorkerPool:
    """
    At most ``max_workers`` concurrent workers. A worker claims the oldest
    pending request, fetches it, stores the outcome, and repeats until the
    queue is empty; then it exits. ``wake`` brings workers back when new
    requests are queued.
    """

    def __init__(self, database: DatabaseManager, fetcher: WebFetcher,
                 max_workers: int = 10, claim_lease_seconds: int = 0,
                 monitor: Optional[ArchiveMonitor] = None):
        self.database = database
        self.fetcher = fetcher
        self.max_workers = max_workers
        self.lease_ms = claim_lease_seconds * 1000
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self.workers: Set[asyncio.Task] = set()
        self.is_running = True
        self._next_worker_id = 0
        # Bumped by wake(); a worker that sees it change while finding the
        # queue empty tries again instead of exiting.
        self._generation = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self.stats = {
            'requests_answered': 0,
            'fetch_failures': 0,
            'storage_errors': 0
        }

    @property
    def active_workers(self) -> int:
        return len(self.workers)

    def start(self):
        """Spawn the full pool."""
        self.is_running = True
        while self._spawn():
            pass
        self.logger.info(f"Started worker pool with {self.active_workers} workers")

    def wake(self):
        """Signal that new work is available."""
        self._generation += 1
        self._spawn()

    def _spawn(self) -> bool:
        if not self.is_running or len(self.workers) >= self.max_workers:
            return False
        worker_id = f"worker-{self._next_worker_id}"
        self._next_worker_id += 1
        task = asyncio.create_task(self._worker(worker_id))
        self.workers.add(task)
        task.add_done_callback(self._worker_done)
        self._idle.clear()
        self._report_workers()
        return True

    def _worker_done(self, task: asyncio.Task):
        self.workers.discard(task)
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Worker crashed", exc_info=task.exception())
        if not self.workers:
            self._idle.set()
        self._report_workers()

    def _report_workers(self):
        if self.monitor:
            self.monitor.update_active_workers(len(self.workers))

    async def _worker(self, worker_id: str):
        """Claim, fetch and store until the queue is empty."""
        log = get_archive_logger(__name__, worker_id=worker_id)
        log.debug(f"Worker {worker_id} started")

        while self.is_running:
            generation = self._generation
            try:
                request = await self.database.claim_next_request(self.lease_ms)
            except DatabaseError as e:
                log.error(f"Worker {worker_id} could not claim work: {e}", exc_info=True)
                self.stats['storage_errors'] += 1
                break

            if request is None:
                if generation != self._generation:
                    continue
                break

            try:
                await self._process_request(request, log)
            except asyncio.CancelledError:
                await self.database.release_claim(request)
                raise
            except DatabaseError as e:
                # The request stays pending; nothing retries it automatically.
                log.error(f"Worker {worker_id} failed to store {request.url}: {e}",
                          exc_info=True)
                self.stats['storage_errors'] += 1
                if self.monitor:
                    self.monitor.record_storage_error()
                break

        log.debug(f"Worker {worker_id} stopping (remaining: {len(self.workers) - 1})")

    async def _process_request(self, request: CrawlRequest, log):
        """Run one request through the fetch pipeline and persist the outcome."""
        result = await self.fetcher.fetch(request.url)
        await self.database.store_response(request, result)

        self.stats['requests_answered'] += 1
        if result.error is not None:
            self.stats['fetch_failures'] += 1
        if self.monitor:
            self.monitor.record_response(result.outcome, result.fetch_time)

        log.log_url_event(logging.INFO, request.url,
                          f"Answered request {request.request_id}: "
                          f"{result.error.name if result.error is not None else result.status_code}")

    async def drain(self, timeout: Optional[float] = None):
        """Wait until every worker has exited."""
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def stop(self):
        """Cancel and cleanup worker tasks."""
        self.is_running = False
        workers = list(self.workers)
        for worker in workers:
            if not worker.done():
                worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self.workers.clear()
        self._idle.set()
        self.logger.info("Worker pool stopped")

    def get_stats(self):
        stats = dict(self.stats)
        stats['active_workers'] = self.active_workers
        return stats
