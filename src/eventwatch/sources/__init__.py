"""
Event sources: the collaborators that match queries against logs.

Example:
    >>> from eventwatch.sources import InMemoryEventSource
    >>>
    >>> source = InMemoryEventSource()
    >>> source.append("Application", {"level": "info", "message": "started"})
"""

from eventwatch.sources.in_memory import FIRST_SEQUENCE, InMemoryBinding, InMemoryEventSource
from eventwatch.sources.interface import EventSource, RecordCallback, SourceBinding, StartFrom

__all__ = [
    "EventSource",
    "SourceBinding",
    "RecordCallback",
    "StartFrom",
    "InMemoryEventSource",
    "InMemoryBinding",
    "FIRST_SEQUENCE",
]
