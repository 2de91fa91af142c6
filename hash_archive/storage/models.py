"""
Records read from and written to the archive database.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..crawler.outcome import FetchErrorKind, Outcome, outcome_from_code
from ..hashing import codec


@dataclass(frozen=True)
class CrawlRequest:
    """A queued crawl of one normalized URL."""
    request_id: int
    url: str
    request_time: int


@dataclass
class CrawlResponse:
    """What a worker observed when it answered a CrawlRequest."""
    response_id: int
    request_id: int
    status: int
    response_time: int
    content_type: Optional[str] = None
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    date: Optional[str] = None
    digests: Dict[str, bytes] = field(default_factory=dict)

    @property
    def outcome(self) -> Outcome:
        return outcome_from_code(self.status)

    @property
    def error(self) -> Optional[FetchErrorKind]:
        return getattr(self.outcome, 'kind', None)

    def hash_variants(self) -> Dict[str, Dict[str, Optional[str]]]:
        """Every text encoding of every digest, keyed by algorithm."""
        return {algo: codec.variants(algo, data) for algo, data in self.digests.items()}


@dataclass(frozen=True)
class FreshnessState:
    """Crawl state of a URL as seen by the freshness engine."""
    pending: bool
    outdated: bool


@dataclass(frozen=True)
class HashSource:
    """A URL that has served a given digest."""
    url: str
    last_observed_at: int


@dataclass
class UrlHistory:
    """Recent responses for a URL plus its current freshness."""
    url: str
    state: FreshnessState
    responses: List[CrawlResponse] = field(default_factory=list)

    @property
    def pending(self) -> bool:
        return self.state.pending

    @property
    def outdated(self) -> bool:
        return self.state.outdated
