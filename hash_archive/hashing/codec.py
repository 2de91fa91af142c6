"""
Hash identifier codec.

Parses, canonicalizes and re-encodes ``(algorithm, digest)`` pairs written in
one of four textual conventions:

    hash-uri     hash://sha256/212cc9f7...
    named-info   ni:///sha256;ISzJ9z...
    prefix       sha256-ISzJ9w==
    multihash    Qm...  (base58 of the binary multihash)

Every entry point is total: malformed input yields ``None``, never an
exception.
"""

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from . import multihash
from .multihash import MultihashError


HASH_URI = 'hash-uri'
NAMED_INFO = 'named-info'
PREFIX = 'prefix'
MULTIHASH = 'multihash'

ENCODINGS = (HASH_URI, NAMED_INFO, PREFIX, MULTIHASH)

# Public algorithm name -> multihash wire name. Only these can be written
# as multihash text.
ALGORITHM_TO_WIRE: Dict[str, str] = {
    'sha1': 'sha1',
    'sha256': 'sha2-256',
    'sha512': 'sha2-512',
    'sha3': 'sha3',
}
WIRE_TO_ALGORITHM: Dict[str, str] = {v: k for k, v in ALGORITHM_TO_WIRE.items()}

_HASH_URI_RE = re.compile(
    r'^hash://([\w.-]+)/([0-9a-f]+)(\?[\w.%=&-]*)?(#[\w.%-]*)?$', re.IGNORECASE
)
_PREFIX_RE = re.compile(r'^([A-Za-z0-9_]+)-([A-Za-z0-9/+=]+)$')
_NAMED_INFO_RE = re.compile(r'^ni:///([\w.-]+);([A-Za-z0-9_-]+)$', re.IGNORECASE)
_MULTIHASH_RE = re.compile(
    r'^[123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz]{8,}$'
)
_LOWER_HEX_RE = re.compile(r'^(?:[0-9a-f]{2})+$')


@dataclass(frozen=True)
class HashIdentifier:
    """A digest together with the text encoding it was written in."""
    type: str
    algorithm: str
    digest: bytes


def _pad_base64(text: str) -> str:
    return text + '=' * (-len(text) % 4)


def _b64_decode(text: str) -> bytes:
    return base64.b64decode(_pad_base64(text), validate=True)


def _b64url_decode(text: str) -> bytes:
    return base64.urlsafe_b64decode(_pad_base64(text))


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _parse_hash_uri(text: str) -> Optional[HashIdentifier]:
    match = _HASH_URI_RE.match(text)
    if not match or not _LOWER_HEX_RE.match(match.group(2)):
        return None
    return HashIdentifier(HASH_URI, match.group(1).lower(),
                          bytes.fromhex(match.group(2)))


def _parse_prefix(text: str) -> Optional[HashIdentifier]:
    match = _PREFIX_RE.match(text)
    if not match:
        return None
    try:
        digest = _b64_decode(match.group(2))
    except (binascii.Error, ValueError):
        return None
    return HashIdentifier(PREFIX, match.group(1).lower(), digest)


def _parse_named_info(text: str) -> Optional[HashIdentifier]:
    match = _NAMED_INFO_RE.match(text)
    if not match:
        return None
    try:
        digest = _b64url_decode(match.group(2))
    except (binascii.Error, ValueError):
        return None
    return HashIdentifier(NAMED_INFO, match.group(1).lower(), digest)


def _parse_multihash(text: str) -> Optional[HashIdentifier]:
    if not _MULTIHASH_RE.match(text):
        return None
    try:
        wire_name, digest = multihash.from_text(text)
    except MultihashError:
        return None
    algorithm = WIRE_TO_ALGORITHM.get(wire_name, wire_name)
    return HashIdentifier(MULTIHASH, algorithm, digest)


# Priority order matters: the first parser that matches wins.
_PARSERS = (
    _parse_hash_uri,
    _parse_prefix,
    _parse_named_info,
    _parse_multihash,
)


def parse(text: str) -> Optional[HashIdentifier]:
    """
    Parse a hash identifier in any supported encoding.

    Args:
        text: Client-supplied hash string

    Returns:
        HashIdentifier, or None if the text matches no encoding
    """
    if not isinstance(text, str):
        return None
    for parser in _PARSERS:
        result = parser(text)
        if result is not None:
            return result
    return None


def _format_multihash(algorithm: str, digest: bytes) -> Optional[str]:
    if algorithm not in ALGORITHM_TO_WIRE:
        return None
    return multihash.to_text(digest, ALGORITHM_TO_WIRE[algorithm])


_FORMATTERS: Dict[str, Callable[[str, bytes], Optional[str]]] = {
    HASH_URI: lambda algorithm, digest: f"hash://{algorithm}/{digest.hex()}",
    NAMED_INFO: lambda algorithm, digest: f"ni:///{algorithm};{_b64url_encode(digest)}",
    PREFIX: lambda algorithm, digest: (
        f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"
    ),
    MULTIHASH: _format_multihash,
}


def format(type: str, algorithm: str, digest: bytes) -> Optional[str]:
    """
    Encode a digest as text.

    Returns None for unknown encodings and for multihash when the algorithm
    has no wire code (e.g. sha384, md5).
    """
    formatter = _FORMATTERS.get(type)
    if formatter is None:
        return None
    return formatter(algorithm, bytes(digest))


def normalize(text: str) -> Optional[str]:
    """Canonical form of a hash identifier, in the encoding it was written in."""
    ident = parse(text)
    if ident is None:
        return None
    return format(ident.type, ident.algorithm, ident.digest)


def variants(algorithm: str, digest: bytes) -> Dict[str, Optional[str]]:
    """All encodings of a digest, for display. Undefined ones map to None."""
    return {encoding: format(encoding, algorithm, digest) for encoding in ENCODINGS}
