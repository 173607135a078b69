"""Library exceptions for the eventwatch package."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from eventwatch.events.record import EventRecord


class EventWatchError(Exception):
    """Base exception for eventwatch library."""

    pass


# =============================================================================
# Position store errors
# =============================================================================


class InvalidLocationError(EventWatchError):
    """Raised when a position store location is neither absolute nor relative-marked."""

    def __init__(self, location: Any, reason: str) -> None:
        self.location = location
        self.reason = reason
        super().__init__(f"Invalid position store location {location!r}: {reason}")


class ArityMismatchError(EventWatchError):
    """Raised when batch inputs and locations have different lengths."""

    def __init__(self, objects_count: int, locations_count: int) -> None:
        self.objects_count = objects_count
        self.locations_count = locations_count
        super().__init__(
            f"Batch arity mismatch: {objects_count} object(s) for "
            f"{locations_count} location(s); no location was touched."
        )


class TypeMismatchError(EventWatchError):
    """
    Raised when a stored or supplied token does not have the expected type.

    Attributes:
        location: Location the token was read from (None when not file based)
        expected: Type tag or query key that was expected
        actual: Type tag or query key that was found
    """

    def __init__(
        self,
        expected: str,
        actual: str | None,
        location: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        self.location = location
        where = f" at {location}" if location else ""
        message = f"Position token type mismatch{where}: expected {expected!r}, found {actual!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class PositionStoreIOError(EventWatchError):
    """Raised when a position store location cannot be read, written or locked."""

    def __init__(self, location: str, operation: str, message: str) -> None:
        self.location = location
        self.operation = operation
        super().__init__(f"Position store {operation} failed for {location}: {message}")


class BatchOperationError(EventWatchError):
    """Raised by BatchResult.raise_for_errors() when any pair of a batch failed."""

    def __init__(self, operation: str, errors: Sequence[BaseException], total: int) -> None:
        self.operation = operation
        self.errors = list(errors)
        self.total = total
        super().__init__(
            f"Batch {operation} failed for {len(self.errors)} of {total} item(s):\n"
            f"{describe_errors(self.errors)}"
        )


# =============================================================================
# Query errors
# =============================================================================


class QueryError(EventWatchError):
    """
    Raised when a query cannot be constructed.

    The offending identifier, filter and addressing mode are echoed back
    so the caller never has to guess which input was rejected.
    """

    def __init__(
        self,
        source_identifier: Any,
        filter_expression: Any,
        addressing_mode: Any,
        reason: str,
    ) -> None:
        self.source_identifier = source_identifier
        self.filter_expression = filter_expression
        self.addressing_mode = addressing_mode
        self.reason = reason
        mode = getattr(addressing_mode, "value", addressing_mode)
        super().__init__(
            f"Invalid query (source={source_identifier!r}, filter={filter_expression!r}, "
            f"mode={mode!r}): {reason}"
        )


# =============================================================================
# Watcher and binding errors
# =============================================================================


class WatcherStateError(EventWatchError):
    """Raised when an operation is invalid for the watcher's current state."""

    pass


class NotRegisteredError(WatcherStateError):
    """
    Raised when enabling a watcher that has no callback chain bound.

    Enabling first would let the event source move past records with
    nothing consuming them.
    """

    def __init__(self, source_identifier: str) -> None:
        self.source_identifier = source_identifier
        super().__init__(
            f"Watcher for {source_identifier!r} has no callback chain bound. "
            "Bind a chain with bind() or subscribe() before enabling it."
        )


class BindError(EventWatchError):
    """Raised when a callback chain cannot be bound to a watcher."""

    def __init__(self, source_identifier: str, reason: str) -> None:
        self.source_identifier = source_identifier
        self.reason = reason
        super().__init__(f"Cannot bind callback chain to watcher for {source_identifier!r}: {reason}")


# =============================================================================
# Delivery errors (reported through the error channel, never raised into sources)
# =============================================================================


class CallbackError(EventWatchError):
    """A user action raised while handling a record."""

    def __init__(self, record: EventRecord, action_name: str, cause: BaseException) -> None:
        self.record = record
        self.action_name = action_name
        self.cause = cause
        super().__init__(
            f"User action {action_name} failed on record {record.record_sequence} "
            f"(id={record.id}) from {record.source_identifier}: {cause}"
        )


class PersistenceError(EventWatchError):
    """Saving a record's position failed; that position update is lost."""

    def __init__(self, record: EventRecord, location: str, cause: BaseException) -> None:
        self.record = record
        self.location = location
        self.cause = cause
        super().__init__(
            f"Failed to persist position {record.record_sequence} "
            f"(id={record.id}) to {location}: {cause}"
        )


def describe_errors(errors: Sequence[BaseException]) -> str:
    """Render a list of errors as one line per error."""
    return "\n".join(f"- {type(e).__name__}: {e}" for e in errors)


__all__ = [
    "EventWatchError",
    "InvalidLocationError",
    "ArityMismatchError",
    "TypeMismatchError",
    "PositionStoreIOError",
    "BatchOperationError",
    "QueryError",
    "WatcherStateError",
    "NotRegisteredError",
    "BindError",
    "CallbackError",
    "PersistenceError",
    "describe_errors",
]
