"""
Fetch outcomes.

An outcome is either a genuine HTTP status or one of a few well-known fetch
failures. Both are persisted in the same integer column: HTTP statuses are
positive, failures use the negative codes of ``FetchErrorKind``.
"""

import asyncio
import logging
import socket
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from aiohttp import ClientConnectorError, ClientError


logger = logging.getLogger(__name__)


class FetchErrorKind(IntEnum):
    """Failure categories stored in place of an HTTP status."""
    BLOCKED = -1
    TOO_MANY_REDIRECTS = -2
    NOT_FOUND = -3
    CONNECTION_REFUSED = -4
    UNKNOWN = -5


@dataclass(frozen=True)
class HttpStatus:
    """The server answered with this status code."""
    code: int

    def to_code(self) -> int:
        return self.code


@dataclass(frozen=True)
class FetchError:
    """No usable HTTP answer was obtained."""
    kind: FetchErrorKind

    def to_code(self) -> int:
        return int(self.kind)


Outcome = Union[HttpStatus, FetchError]


def outcome_from_code(code: int) -> Outcome:
    """Decode a stored status column value."""
    if code < 0:
        try:
            return FetchError(FetchErrorKind(code))
        except ValueError:
            return FetchError(FetchErrorKind.UNKNOWN)
    return HttpStatus(code)


def classify_exception(exc: BaseException) -> FetchErrorKind:
    """
    Map a transport-level exception to a failure category.

    DNS and refused connections get their own categories; everything else is
    UNKNOWN and logged so new cases can be diagnosed.
    """
    if isinstance(exc, ClientConnectorError):
        os_error = exc.os_error
        if isinstance(os_error, socket.gaierror):
            return FetchErrorKind.NOT_FOUND
        if isinstance(os_error, ConnectionRefusedError):
            return FetchErrorKind.CONNECTION_REFUSED
    elif isinstance(exc, socket.gaierror):
        return FetchErrorKind.NOT_FOUND
    elif isinstance(exc, ConnectionRefusedError):
        return FetchErrorKind.CONNECTION_REFUSED

    if isinstance(exc, asyncio.TimeoutError):
        logger.warning("Fetch timed out")
    else:
        logger.warning(f"Unknown fetch error {type(exc).__name__}: {exc}")
    return FetchErrorKind.UNKNOWN


FETCH_EXCEPTIONS = (ClientError, asyncio.TimeoutError, OSError, ValueError)
