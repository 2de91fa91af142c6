"""
Hash Archive

A content-addressable web archive: fetches URLs, records digests of what they
served, and answers lookups by URL or by hash.
"""

__version__ = "1.0.0"
__description__ = "Content-addressable web archive with multi-format hash lookups"
