"""
Streaming multi-digest computation.
"""

import hashlib
from typing import Dict, Iterable


# Every crawl computes exactly this set.
DIGEST_ALGORITHMS = ('md5', 'sha1', 'sha256', 'sha384', 'sha512')


class MultiHasher:
    """Feeds one byte stream through several hash functions at once."""

    def __init__(self, algorithms: Iterable[str] = DIGEST_ALGORITHMS):
        self._hashers = {algo: hashlib.new(algo) for algo in algorithms}
        self.bytes_hashed = 0

    def update(self, chunk: bytes):
        for hasher in self._hashers.values():
            hasher.update(chunk)
        self.bytes_hashed += len(chunk)

    def digests(self) -> Dict[str, bytes]:
        """Finalize; safe to call more than once."""
        return {algo: hasher.digest() for algo, hasher in self._hashers.items()}
