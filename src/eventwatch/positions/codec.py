"""
Binary position token file format.

Layout of a token file::

    +---------+---------+-----------+-----------+------------------+
    | "EWPT"  | version | tag length| type tag  | JSON payload     |
    | 4 bytes | 1 byte  | 2 bytes BE| UTF-8     | UTF-8 (pydantic) |
    +---------+---------+-----------+-----------+------------------+

The embedded type tag lets a reader reject a file written for another type
before touching the payload.
"""

from __future__ import annotations

import struct
from typing import TypeVar

from pydantic import ValidationError

from eventwatch.exceptions import TypeMismatchError
from eventwatch.positions.token import PositionToken

MAGIC = b"EWPT"
FORMAT_VERSION = 1

_HEADER = struct.Struct(">4sBH")

T = TypeVar("T", bound=PositionToken)


def encode_token(token: PositionToken) -> bytes:
    """
    Encode a token into its self-describing binary form.

    Args:
        token: Token to encode

    Returns:
        Bytes suitable for writing to a token file
    """
    tag = type(token).TYPE_TAG.encode("utf-8")
    payload = token.model_dump_json().encode("utf-8")
    return _HEADER.pack(MAGIC, FORMAT_VERSION, len(tag)) + tag + payload


def read_type_tag(data: bytes) -> str | None:
    """Return the embedded type tag, or None if the data is not a token file."""
    if len(data) < _HEADER.size:
        return None
    magic, version, tag_length = _HEADER.unpack_from(data)
    if magic != MAGIC or version != FORMAT_VERSION:
        return None
    end = _HEADER.size + tag_length
    if len(data) < end:
        return None
    try:
        return data[_HEADER.size : end].decode("utf-8")
    except UnicodeDecodeError:
        return None


def decode_token(
    data: bytes,
    expected_type: type[T] = PositionToken,  # type: ignore[assignment]
    location: str | None = None,
) -> T:
    """
    Decode a token, checking its type tag first.

    Args:
        data: Raw token file content
        expected_type: Token class the caller expects
        location: Where the data came from, for error messages

    Returns:
        Decoded token of ``expected_type``

    Raises:
        TypeMismatchError: If the data is not a token file, carries a
            different type tag, or its payload does not validate
    """
    tag = read_type_tag(data)
    if tag is None:
        raise TypeMismatchError(
            expected=expected_type.TYPE_TAG,
            actual=None,
            location=location,
            detail="not a position token file",
        )
    if tag != expected_type.TYPE_TAG:
        raise TypeMismatchError(expected=expected_type.TYPE_TAG, actual=tag, location=location)

    payload = data[_HEADER.size + len(tag.encode("utf-8")) :]
    try:
        return expected_type.model_validate_json(payload)
    except ValidationError as e:
        raise TypeMismatchError(
            expected=expected_type.TYPE_TAG,
            actual=tag,
            location=location,
            detail=f"payload does not validate: {e.error_count()} error(s)",
        ) from e


__all__ = [
    "MAGIC",
    "FORMAT_VERSION",
    "encode_token",
    "decode_token",
    "read_type_tag",
]
