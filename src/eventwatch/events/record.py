"""
Event records.

An EventRecord is one entry of an append-only log as delivered by an event
source. Records are read-only to the rest of the system; each one yields
exactly one position token, its own.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from eventwatch.positions.token import PositionToken

if TYPE_CHECKING:
    from eventwatch.query.definition import Query


class EventRecord(BaseModel):
    """
    A single record emitted by an event source.

    Attributes:
        id: Source-assigned record identifier
        record_sequence: Position within the source, strictly increasing
        time_created: When the record was written (UTC)
        machine_origin: Host that produced the record
        source_identifier: Log name or file path the record came from
        payload: Structured record content

    Example:
        >>> record = EventRecord(
        ...     record_sequence=42,
        ...     machine_origin="web-01",
        ...     source_identifier="Application",
        ...     payload={"level": "error", "message": "disk full"},
        ... )
        >>> token = record.position_for(query)
        >>> token.record_sequence
        42
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Source-assigned record identifier",
    )
    record_sequence: int = Field(
        ...,
        ge=0,
        description="Monotonically increasing position within the source",
    )
    time_created: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="When the record was written (UTC)",
    )
    machine_origin: str = Field(
        default="",
        description="Host that produced the record",
    )
    source_identifier: str = Field(
        ...,
        min_length=1,
        description="Log name or file path the record came from",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured record content",
    )

    def position_for(self, query: Query) -> PositionToken:
        """
        Build the position token identifying this record within a query.

        Args:
            query: The query the record was delivered for

        Returns:
            Token that resumes right after this record
        """
        return PositionToken(
            source_identifier=self.source_identifier,
            query_key=query.key,
            record_sequence=self.record_sequence,
            record_id=self.id,
            time_created=self.time_created,
        )

    def field_value(self, path: str) -> Any:
        """
        Resolve a filter field path against this record.

        ``payload.a.b`` walks nested payload dictionaries; unknown paths
        resolve to None.
        """
        if path == "id":
            return self.id
        if path == "record_sequence":
            return self.record_sequence
        if path == "machine_origin":
            return self.machine_origin
        if path.startswith("payload."):
            value: Any = self.payload
            for part in path.split(".")[1:]:
                if not isinstance(value, dict) or part not in value:
                    return None
                value = value[part]
            return value
        return None

    def __str__(self) -> str:
        return f"EventRecord({self.source_identifier}#{self.record_sequence}, id={self.id})"


__all__ = ["EventRecord"]
