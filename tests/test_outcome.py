import asyncio
import socket
import unittest
from unittest.mock import MagicMock

from aiohttp import ClientConnectorError, ClientPayloadError

from hash_archive.crawler.outcome import (
    FetchError, FetchErrorKind, HttpStatus, classify_exception, outcome_from_code,
)


class TestClassifyException(unittest.TestCase):

    def test_dns_failure(self):
        exc = ClientConnectorError(MagicMock(), socket.gaierror(-2, 'Name or service not known'))
        self.assertEqual(classify_exception(exc), FetchErrorKind.NOT_FOUND)

    def test_connection_refused(self):
        exc = ClientConnectorError(MagicMock(), ConnectionRefusedError(111, 'Connection refused'))
        self.assertEqual(classify_exception(exc), FetchErrorKind.CONNECTION_REFUSED)

    def test_bare_os_errors(self):
        self.assertEqual(classify_exception(socket.gaierror(-2, 'x')), FetchErrorKind.NOT_FOUND)
        self.assertEqual(classify_exception(ConnectionRefusedError()),
                         FetchErrorKind.CONNECTION_REFUSED)

    def test_everything_else_is_unknown(self):
        for exc in [asyncio.TimeoutError(), ClientPayloadError('truncated'),
                    ClientConnectorError(MagicMock(), OSError(113, 'No route to host'))]:
            with self.subTest(exc=exc):
                with self.assertLogs('hash_archive.crawler.outcome', level='WARNING'):
                    self.assertEqual(classify_exception(exc), FetchErrorKind.UNKNOWN)


class TestOutcomeCodes(unittest.TestCase):

    def test_http_status(self):
        self.assertEqual(outcome_from_code(200), HttpStatus(200))
        self.assertEqual(HttpStatus(404).to_code(), 404)

    def test_failure_codes(self):
        for kind in FetchErrorKind:
            with self.subTest(kind=kind):
                self.assertLess(kind.value, 0)
                self.assertEqual(outcome_from_code(FetchError(kind).to_code()), FetchError(kind))

    def test_unrecognized_negative_code(self):
        self.assertEqual(outcome_from_code(-99), FetchError(FetchErrorKind.UNKNOWN))


if __name__ == '__main__':
    unittest.main()
