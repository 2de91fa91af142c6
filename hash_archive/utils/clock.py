"""
Timestamps as stored in the archive: integer milliseconds since the epoch.
"""

import time


def now_ms() -> int:
    """Current time in milliseconds."""
    return int(time.time() * 1000)


def seconds_to_ms(seconds: float) -> int:
    return int(seconds * 1000)
