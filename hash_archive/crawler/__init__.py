"""
Crawl pipeline components.
"""

from .outcome import FetchErrorKind, FetchError, HttpStatus, outcome_from_code
from .fetcher import WebFetcher, FetchResult
from .url_normalizer import normalize_url

__all__ = [
    'FetchErrorKind', 'FetchError', 'HttpStatus', 'outcome_from_code',
    'WebFetcher', 'FetchResult',
    'normalize_url'
]
