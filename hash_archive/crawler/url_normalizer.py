"""
URL normalization for crawl subjects.

Two inputs that normalize to the same string are the same crawl subject, so
this function must stay pure and idempotent.
"""

from typing import Optional
from urllib.parse import urlsplit, urlunsplit


ALLOWED_SCHEMES = ('http', 'https')


def normalize_url(text: str) -> Optional[str]:
    """
    Canonicalize an http(s) URL.

    Lowercases scheme and host, defaults the path to ``/``, keeps the query
    verbatim and any port exactly as written, and drops the fragment and
    credentials.

    Returns:
        The normalized URL, or None if the input is not an http(s) URL with
        a host
    """
    if not isinstance(text, str):
        return None
    try:
        parsed = urlsplit(text.strip())
        port = parsed.port
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        return None

    host = parsed.hostname
    if not host:
        return None
    if ':' in host:
        host = f"[{host}]"
    if port is not None:
        host = f"{host}:{port}"

    return urlunsplit((scheme, host, parsed.path or '/', parsed.query, ''))
