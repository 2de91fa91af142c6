"""
Hash identifier parsing and formatting.
"""

from .codec import HashIdentifier, parse, format, normalize, variants, ENCODINGS
from .multihash import MultihashError

__all__ = [
    'HashIdentifier', 'parse', 'format', 'normalize', 'variants', 'ENCODINGS',
    'MultihashError'
]
