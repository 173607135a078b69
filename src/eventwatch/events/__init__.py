"""Event records delivered by event sources."""

from eventwatch.events.record import EventRecord

__all__ = ["EventRecord"]
