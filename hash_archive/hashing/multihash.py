"""
Multihash binary structure and its base58 text form.

A multihash is ``[varint code][varint length][digest]``. Only the hash
functions listed in ``WIRE_CODES`` are recognized when decoding.
"""

from typing import Dict, Tuple

import base58


WIRE_CODES: Dict[str, int] = {
    'sha1': 0x11,
    'sha2-256': 0x12,
    'sha2-512': 0x13,
    'sha3': 0x14,
    'blake2b': 0x40,
    'blake2s': 0x41,
}
WIRE_NAMES: Dict[int, str] = {code: name for name, code in WIRE_CODES.items()}

# Varints longer than this cannot describe any code or length we accept.
MAX_VARINT_BYTES = 9


class MultihashError(ValueError):
    """Raised when bytes do not form a valid multihash."""
    pass


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as an unsigned LEB128 varint."""
    if value < 0:
        raise ValueError("varint value must be non-negative")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode an unsigned varint starting at ``offset``.

    Returns:
        (value, offset of the first byte after the varint)
    """
    value = 0
    shift = 0
    for i in range(MAX_VARINT_BYTES):
        pos = offset + i
        if pos >= len(data):
            raise MultihashError("truncated varint")
        byte = data[pos]
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if i > 0 and byte == 0:
                raise MultihashError("non-minimal varint")
            return value, pos + 1
        shift += 7
    raise MultihashError("varint too long")


def encode(digest: bytes, wire_name: str) -> bytes:
    """Wrap a digest in the multihash structure."""
    if wire_name not in WIRE_CODES:
        raise MultihashError(f"unknown multihash function: {wire_name}")
    return (encode_varint(WIRE_CODES[wire_name]) +
            encode_varint(len(digest)) +
            bytes(digest))


def decode(data: bytes) -> Tuple[str, bytes]:
    """
    Split a multihash into its wire function name and digest.

    Raises:
        MultihashError: on unknown codes or a length that disagrees with
            the remaining bytes
    """
    code, offset = decode_varint(data)
    if code not in WIRE_NAMES:
        raise MultihashError(f"unknown multihash code: {code:#x}")
    length, offset = decode_varint(data, offset)
    digest = data[offset:]
    if len(digest) != length:
        raise MultihashError(
            f"digest length {len(digest)} does not match declared length {length}"
        )
    return WIRE_NAMES[code], bytes(digest)


def to_text(digest: bytes, wire_name: str) -> str:
    """Multihash-encode and base58 (Bitcoin alphabet) a digest."""
    return base58.b58encode(encode(digest, wire_name)).decode('ascii')


def from_text(text: str) -> Tuple[str, bytes]:
    """Inverse of ``to_text``."""
    try:
        raw = base58.b58decode(text)
    except ValueError as e:
        raise MultihashError(f"invalid base58: {e}") from e
    return decode(raw)
