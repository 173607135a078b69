"""
Position tokens (bookmarks).

A PositionToken marks the last record consumed from one source and query.
It is opaque to callers: they persist it and hand it back to a new watcher
to resume right after that record.
"""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel, ConfigDict, Field


class PositionToken(BaseModel):
    """
    Type-tagged marker of the last record consumed for a source and query.

    ``TYPE_TAG`` is written into every token file and checked on load, so a
    file holding some other kind of object is never returned as a token.
    ``query_key`` ties the token to the query it was produced for; a watcher
    refuses to start from a token produced for a different query.

    Attributes:
        source_identifier: Source the token belongs to
        query_key: Identity of the query the token was produced for
        record_sequence: Sequence of the last consumed record
        record_id: Identifier of the last consumed record
        time_created: Creation time of the last consumed record
    """

    model_config = ConfigDict(frozen=True)

    TYPE_TAG: ClassVar[str] = "eventwatch.PositionToken/1"

    source_identifier: str = Field(..., min_length=1)
    query_key: str = Field(..., min_length=1)
    record_sequence: int = Field(..., ge=0)
    record_id: str | None = None
    time_created: datetime | None = None

    def is_for(self, query_key: str) -> bool:
        """Check whether this token was produced for the given query key."""
        return self.query_key == query_key

    def __str__(self) -> str:
        return f"PositionToken({self.source_identifier}#{self.record_sequence})"


__all__ = ["PositionToken"]
