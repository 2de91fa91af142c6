#!/usr/bin/env python3
"""
Main entry point for the hash archive.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from hash_archive import __version__
from hash_archive.archive import HashArchive, SubmissionKind
from hash_archive.hashing import codec
from hash_archive.storage.models import UrlHistory
from hash_archive.utils.config import load_config
from hash_archive.utils.logger import log_system_info, setup_logging


class ArchiveApp:
    """Main application class for the hash archive."""

    def __init__(self):
        self.archive: Optional[HashArchive] = None
        self.logger = logging.getLogger(__name__)
        self._shutdown_event: Optional[asyncio.Event] = None

    def setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self._request_shutdown, signum)

    def _request_shutdown(self, signum):
        self.logger.info(f"Received signal {signum}, initiating shutdown...")
        self._shutdown_event.set()

    async def run(self, config_path: str, lookups: List[str], wait: bool = False,
                  dry_run: bool = False) -> int:
        """Run the archive service, or answer lookups and exit."""
        # Created here so it belongs to the running loop.
        self._shutdown_event = asyncio.Event()
        try:
            config = load_config(config_path)
            setup_logging(config.logging)
            log_system_info()

            self.logger.info("=== HASH ARCHIVE STARTING ===")
            self.logger.info(f"Configuration loaded from: {config_path}")
            self.logger.info(f"Database: {config.database.path} "
                             f"(pool size {config.database.pool_size})")
            self.logger.info(f"Workers: {config.archive.max_workers}")
            self.logger.info(f"User agent: {config.archive.user_agent}")

            self.archive = HashArchive(config)
            await self.archive.initialize()

            if dry_run:
                self.logger.info("DRY RUN MODE: storage and fetcher opened successfully")
                return 0

            if lookups:
                return await self._answer_lookups(lookups, wait)

            await self._serve()

        except Exception as e:
            self.logger.error(f"Fatal error: {e}", exc_info=True)
            return 1

        finally:
            if self.archive:
                await self.archive.close()
            self.logger.info("=== HASH ARCHIVE FINISHED ===")

        return 0

    async def _serve(self):
        """Run workers and background refresh until a shutdown signal."""
        self.setup_signal_handlers()
        self.archive.monitor.metrics.start_prometheus_server()
        self.archive.start()
        await self._shutdown_event.wait()
        self.logger.info("Shutdown requested, stopping archive...")

    async def _answer_lookups(self, lookups: List[str], wait: bool) -> int:
        """Route each lookup and print the result."""
        exit_code = 0
        histories = []

        for text in lookups:
            submission = self.archive.submit(text)
            if submission.kind is SubmissionKind.URL:
                history = await self.archive.lookup_history(submission.value)
                histories.append(submission.value)
                print_history(history)
            elif submission.kind is SubmissionKind.HASH:
                sources = await self.archive.lookup_by_hash(submission.value)
                print(f"Sources for {submission.value}:")
                if not sources:
                    print("  (none)")
                for source in sources or []:
                    print(f"  {source.url}  last seen {source.last_observed_at}")
            else:
                print(f"Not a URL or hash: {text!r}")
                exit_code = 2

        if wait and histories:
            await self.archive.workers.drain()
            for url in histories:
                print_history(await self.archive.lookup_history(url))

        return exit_code


def print_history(history: UrlHistory):
    """Print a URL's responses with every encoding of their digests."""
    state = 'pending' if history.pending else ('outdated' if history.outdated else 'fresh')
    print(f"History for {history.url} ({state}):")
    if not history.responses:
        print("  (no responses yet)")
    for response in history.responses:
        label = response.error.name if response.error is not None else response.status
        print(f"  [{response.response_time}] {label} {response.content_type or ''}")
        for algo, data in response.digests.items():
            print(f"    {codec.format(codec.HASH_URI, algo, data)}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Hash Archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                                   # Run workers with config.yaml
  python main.py --lookup http://example.com/      # Show history, queue a crawl
  python main.py --lookup http://example.com/ --wait
  python main.py --lookup hash://sha256/<hex>      # Which URLs served this hash
  python main.py --dry-run                         # Test configuration only
        """
    )

    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Path to configuration file (default: config.yaml)'
    )

    parser.add_argument(
        '--lookup',
        action='append',
        default=[],
        metavar='TEXT',
        help='URL or hash to look up (repeatable)'
    )

    parser.add_argument(
        '--wait',
        action='store_true',
        help='After URL lookups, wait for queued crawls and show the result'
    )

    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Open storage and the fetcher, then exit'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Hash Archive {__version__}'
    )

    args = parser.parse_args()

    app = ArchiveApp()
    try:
        return asyncio.run(app.run(
            config_path=args.config,
            lookups=args.lookup,
            wait=args.wait,
            dry_run=args.dry_run
        ))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 1


if __name__ == '__main__':
    sys.exit(main())
