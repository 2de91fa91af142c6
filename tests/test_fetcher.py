"""
Fetch pipeline against a local aiohttp server.
"""

import hashlib
import os
import unittest

from aiohttp import web
from aiohttp import test_utils

from hash_archive.crawler.fetcher import WebFetcher
from hash_archive.crawler.hasher import DIGEST_ALGORITHMS
from hash_archive.crawler.outcome import FetchErrorKind, HttpStatus

from .helpers import unused_port


BIG_BODY = os.urandom(1024 * 1024)


def build_app(robots_txt=None):
    """A small site; every request path is appended to the returned list."""
    hits = []

    @web.middleware
    async def record_hits(request, handler):
        hits.append(request.path)
        return await handler(request)

    async def robots(request):
        if robots_txt is None:
            raise web.HTTPNotFound()
        return web.Response(text=robots_txt)

    async def big(request):
        return web.Response(body=BIG_BODY, content_type='application/octet-stream')

    async def with_headers(request):
        return web.Response(text='tagged', headers={
            'ETag': '"abc123"',
            'Last-Modified': 'Wed, 21 Oct 2015 07:28:00 GMT',
        })

    async def chain(request):
        remaining = int(request.match_info['n'])
        if remaining == 0:
            return web.Response(text='end of chain')
        raise web.HTTPFound(f"/r/{remaining - 1}")

    async def missing(request):
        return web.Response(status=404, text='not here')

    async def no_location(request):
        return web.Response(status=302, text='nowhere to go')

    async def to_ftp(request):
        raise web.HTTPFound('ftp://files.example/pub/')

    async def private(request):
        return web.Response(text='secret')

    app = web.Application(middlewares=[record_hits])
    app.router.add_get('/robots.txt', robots)
    app.router.add_get('/big', big)
    app.router.add_get('/headers', with_headers)
    app.router.add_get('/r/{n}', chain)
    app.router.add_get('/missing', missing)
    app.router.add_get('/no-location', no_location)
    app.router.add_get('/to-ftp', to_ftp)
    app.router.add_get('/private/{name}', private)
    return app, hits


class FetcherTestCase(unittest.IsolatedAsyncioTestCase):

    robots_txt = None

    async def asyncSetUp(self):
        self.app, self._hits = build_app(self.robots_txt)
        self.server = test_utils.TestServer(self.app)
        await self.server.start_server()
        self.fetcher = WebFetcher(user_agent='TestArchive/1.0', request_timeout=10)
        await self.fetcher.start()

    async def asyncTearDown(self):
        await self.fetcher.close()
        await self.server.close()

    def url(self, path):
        return str(self.server.make_url(path))

    @property
    def hits(self):
        return self._hits


class TestFetch(FetcherTestCase):

    async def test_digests_match_body(self):
        result = await self.fetcher.fetch(self.url('/big'))

        self.assertEqual(result.outcome, HttpStatus(200))
        self.assertEqual(result.bytes_downloaded, len(BIG_BODY))
        self.assertEqual(set(result.digests), set(DIGEST_ALGORITHMS))
        for algo in DIGEST_ALGORITHMS:
            with self.subTest(algo=algo):
                self.assertEqual(result.digests[algo], hashlib.new(algo, BIG_BODY).digest())

    async def test_captures_headers(self):
        result = await self.fetcher.fetch(self.url('/headers'))

        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.etag, '"abc123"')
        self.assertEqual(result.last_modified, 'Wed, 21 Oct 2015 07:28:00 GMT')
        self.assertTrue(result.content_type.startswith('text/plain'))
        self.assertIsNotNone(result.date)
        self.assertGreater(result.observed_at, 0)

    async def test_follows_redirects_up_to_limit(self):
        result = await self.fetcher.fetch(self.url('/r/5'))

        self.assertEqual(result.outcome, HttpStatus(200))
        self.assertEqual(result.url, self.url('/r/5'))
        self.assertEqual(result.final_url, self.url('/r/0'))
        self.assertEqual(result.digests['sha256'], hashlib.sha256(b'end of chain').digest())
        self.assertEqual(self.fetcher.stats['redirects_followed'], 5)

    async def test_too_many_redirects(self):
        result = await self.fetcher.fetch(self.url('/r/6'))

        self.assertEqual(result.error, FetchErrorKind.TOO_MANY_REDIRECTS)
        self.assertEqual(result.status_code, int(FetchErrorKind.TOO_MANY_REDIRECTS))
        self.assertEqual(result.digests, {})
        self.assertNotIn('/r/0', self.hits)
        self.assertIn('/r/1', self.hits)

    async def test_redirect_to_other_scheme_is_unknown(self):
        result = await self.fetcher.fetch(self.url('/to-ftp'))

        self.assertEqual(result.error, FetchErrorKind.UNKNOWN)
        self.assertEqual(result.digests, {})
        self.assertEqual(self.hits, ['/robots.txt', '/to-ftp'])
        self.assertEqual(self.fetcher.stats['redirects_followed'], 0)

    async def test_expired_robots_entries_are_dropped(self):
        checker = self.fetcher.robots_checker
        checker.robots_cache['http://stale.example'] = (0.0, None)

        await self.fetcher.fetch(self.url('/headers'))

        self.assertNotIn('http://stale.example', checker.robots_cache)
        self.assertEqual(len(checker.robots_cache), 1)

    async def test_missing_robots_allows_fetch(self):
        result = await self.fetcher.fetch(self.url('/private/x'))

        self.assertEqual(result.outcome, HttpStatus(200))
        self.assertEqual(self.hits, ['/robots.txt', '/private/x'])

    async def test_error_statuses_are_stored_answers(self):
        result = await self.fetcher.fetch(self.url('/missing'))
        self.assertEqual(result.outcome, HttpStatus(404))
        self.assertEqual(result.digests['sha256'], hashlib.sha256(b'not here').digest())

        result = await self.fetcher.fetch(self.url('/no-location'))
        self.assertEqual(result.outcome, HttpStatus(302))

    async def test_robots_is_cached_per_origin(self):
        await self.fetcher.fetch(self.url('/headers'))
        await self.fetcher.fetch(self.url('/big'))

        self.assertEqual(self.hits.count('/robots.txt'), 1)

    async def test_connection_refused(self):
        url = f"http://127.0.0.1:{unused_port()}/"
        result = await self.fetcher.fetch(url)

        self.assertEqual(result.error, FetchErrorKind.CONNECTION_REFUSED)
        self.assertEqual(result.digests, {})
        self.assertEqual(self.fetcher.stats['failed_fetches'], 1)


class TestRobotsBlocking(FetcherTestCase):

    robots_txt = "User-agent: *\nDisallow: /private\n"

    async def test_disallowed_url_is_never_requested(self):
        result = await self.fetcher.fetch(self.url('/private/x'))

        self.assertEqual(result.error, FetchErrorKind.BLOCKED)
        self.assertEqual(self.hits, ['/robots.txt'])
        self.assertEqual(self.fetcher.stats['robots_blocked'], 1)

    async def test_allowed_url(self):
        result = await self.fetcher.fetch(self.url('/headers'))
        self.assertEqual(result.outcome, HttpStatus(200))


if __name__ == '__main__':
    unittest.main()
