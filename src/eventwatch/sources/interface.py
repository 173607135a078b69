"""Event source interface definitions.

An event source matches a Query against an append-only log and pushes the
matching records to a callback. Watchers never read logs themselves: they
attach to a source, receive a SourceBinding and drive it through
enable/disable/close.

Delivery contract every source must honour:

- one record at a time per binding; the callback for record N is awaited
  before record N+1 is delivered
- records arrive in non-decreasing ``record_sequence`` order
- ``disable()`` stops new deliveries but does not interrupt a callback
  already in progress
- a binding resumes right after its start position token when one is given,
  otherwise at the end or the beginning of the log as requested
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Literal, Protocol, runtime_checkable

from eventwatch.events.record import EventRecord
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query

# Callback invoked by a source for each matching record
RecordCallback = Callable[[EventRecord], Awaitable[None]]

StartFrom = Literal["end", "beginning"]


@runtime_checkable
class SourceBinding(Protocol):
    """
    Live attachment of one query to an event source.

    A binding starts disabled. Nothing is delivered until a callback is set
    and ``enable()`` is awaited.
    """

    @property
    def query(self) -> Query:
        """The query this binding delivers records for."""
        ...

    @property
    def enabled(self) -> bool:
        """True while the binding is delivering records."""
        ...

    def set_callback(self, callback: RecordCallback) -> None:
        """Set the callback that receives matching records."""
        ...

    async def enable(self) -> None:
        """Start (or resume) delivering records."""
        ...

    async def disable(self) -> None:
        """Stop delivering new records; an in-flight callback completes."""
        ...

    async def close(self) -> None:
        """Disable and release the binding. A closed binding cannot be enabled."""
        ...


class EventSource(ABC):
    """
    Abstract event source.

    Implementations own the log access and one delivery loop per enabled
    binding.

    Example:
        >>> source = InMemoryEventSource()
        >>> binding = source.attach(query, start_position=None, start_from="end")
        >>> binding.set_callback(chain.dispatch)
        >>> await binding.enable()
    """

    @abstractmethod
    def attach(
        self,
        query: Query,
        start_position: PositionToken | None = None,
        start_from: StartFrom = "end",
    ) -> SourceBinding:
        """
        Attach a query to this source.

        Args:
            query: Records to deliver
            start_position: Resume right after this token's record
            start_from: Where to start when no token is given; "end" delivers
                only records appended after the binding is first enabled

        Returns:
            A disabled SourceBinding
        """
        pass


__all__ = [
    "EventSource",
    "SourceBinding",
    "RecordCallback",
    "StartFrom",
]
