"""
Position tokens and the stores that persist them.

Example:
    >>> from eventwatch.positions import FilePositionStore
    >>>
    >>> store = FilePositionStore(working_dir="/var/lib/myapp")
    >>> token = store.load("./app.pos")  # None on first run
    >>> if token is not None:
    ...     print(f"Resuming after record {token.record_sequence}")
"""

from eventwatch.positions.codec import decode_token, encode_token, read_type_tag
from eventwatch.positions.location import is_relative_marked, resolve_location
from eventwatch.positions.store import (
    BasePositionStore,
    BatchItemResult,
    BatchResult,
    FilePositionStore,
    InMemoryPositionStore,
    PositionStore,
)
from eventwatch.positions.token import PositionToken

__all__ = [
    "PositionToken",
    "PositionStore",
    "BasePositionStore",
    "FilePositionStore",
    "InMemoryPositionStore",
    "BatchResult",
    "BatchItemResult",
    "encode_token",
    "decode_token",
    "read_type_tag",
    "resolve_location",
    "is_relative_marked",
]
