"""In-memory event source implementation.

This module provides an in-process event source holding one append-only
list of records per source identifier.

Suitable for tests, demos and embedding a watcher in an application that
produces its own records. It is not a log store: nothing is persisted.
"""

import asyncio
import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any

from eventwatch.events.record import EventRecord
from eventwatch.observability import Tracer, create_tracer
from eventwatch.observability.attributes import (
    ATTR_ADDRESSING_MODE,
    ATTR_FILTER_EXPRESSION,
    ATTR_RECORD_ID,
    ATTR_RECORD_SEQUENCE,
    ATTR_SOURCE_IDENTIFIER,
)
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query
from eventwatch.query.filter import EventFilter, FilterStats
from eventwatch.sources.interface import EventSource, RecordCallback, StartFrom

logger = logging.getLogger(__name__)

FIRST_SEQUENCE = 1


class InMemoryBinding:
    """
    Delivery loop for one query attached to an InMemoryEventSource.

    The binding keeps a cursor, the sequence of the last record it handed
    out (or skipped through the filter). While enabled, a single asyncio
    task walks the log from the cursor and awaits the callback for each
    matching record before moving on.
    """

    def __init__(
        self,
        source: "InMemoryEventSource",
        query: Query,
        start_position: PositionToken | None,
        start_from: StartFrom,
    ) -> None:
        self._source = source
        self._query = query
        self._filter: EventFilter = query.compile_filter()
        self._callback: RecordCallback | None = None
        # None until first enable when starting from the end of the log
        self._cursor: int | None = start_position.record_sequence if start_position else None
        if self._cursor is None and start_from == "beginning":
            self._cursor = FIRST_SEQUENCE - 1
        self._enabled = False
        self._closed = False
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self.records_delivered = 0

    @property
    def query(self) -> Query:
        return self._query

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cursor(self) -> int | None:
        """Sequence of the last record passed (delivered or filtered out)."""
        return self._cursor

    @property
    def filter_stats(self) -> FilterStats:
        return self._filter.stats

    def set_callback(self, callback: RecordCallback) -> None:
        self._callback = callback

    async def enable(self) -> None:
        if self._closed:
            raise RuntimeError(f"Binding for {self._query} is closed")
        if self._callback is None:
            raise RuntimeError(f"Binding for {self._query} has no callback set")
        if self._enabled:
            return
        self._source._remember_loop()
        if self._cursor is None:
            self._cursor = self._source.last_sequence(self._query.source_identifier)
        self._enabled = True
        # A previous loop may still be finishing its in-flight callback
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self._run(), name=f"eventwatch-delivery:{self._query.source_identifier}"
            )
        self._wakeup.set()
        logger.debug(
            "Delivery enabled",
            extra={"source_identifier": self._query.source_identifier, "cursor": self._cursor},
        )

    async def disable(self) -> None:
        if not self._enabled:
            return
        self._enabled = False
        self._wakeup.set()
        logger.debug(
            "Delivery disabled",
            extra={"source_identifier": self._query.source_identifier, "cursor": self._cursor},
        )

    async def close(self) -> None:
        await self.disable()
        self._closed = True
        self._source._detach(self)
        task = self._task
        # Closing from inside a callback must not wait on its own task
        if task is not None and task is not asyncio.current_task():
            await task

    def notify(self) -> None:
        """Wake the delivery loop after new records were appended."""
        self._wakeup.set()

    def _next_record(self) -> EventRecord | None:
        assert self._cursor is not None
        return self._source._record_after(self._query.source_identifier, self._cursor)

    async def _run(self) -> None:
        while self._enabled:
            record = self._next_record()
            if record is None:
                self._wakeup.clear()
                if self._enabled and self._next_record() is None:
                    await self._wakeup.wait()
                continue

            self._cursor = record.record_sequence
            try:
                matched = self._filter.matches(record)
            except Exception:
                # A record the filter cannot evaluate is skipped, later records still flow
                logger.error(
                    "Filter evaluation failed, skipping record",
                    exc_info=True,
                    extra={
                        "source_identifier": record.source_identifier,
                        "record_sequence": record.record_sequence,
                        "filter_expression": self._query.filter_expression,
                    },
                )
                continue
            if not matched:
                continue
            await self._deliver(record)

    async def _deliver(self, record: EventRecord) -> None:
        assert self._callback is not None
        with self._source._tracer.span(
            "eventwatch.source.deliver",
            {
                ATTR_SOURCE_IDENTIFIER: record.source_identifier,
                ATTR_RECORD_SEQUENCE: record.record_sequence,
                ATTR_RECORD_ID: record.id,
            },
        ):
            try:
                await self._callback(record)
            except Exception:
                # Callback failures never stop the delivery loop
                logger.error(
                    "Record callback failed",
                    exc_info=True,
                    extra={
                        "source_identifier": record.source_identifier,
                        "record_sequence": record.record_sequence,
                    },
                )
        self.records_delivered += 1

    def __repr__(self) -> str:
        return (
            f"InMemoryBinding(query={self._query.key!r}, enabled={self._enabled}, "
            f"cursor={self._cursor})"
        )


class InMemoryEventSource(EventSource):
    """
    In-memory event source.

    Records are appended per source identifier with a sequence that starts
    at 1 and increases by one per record. Every attached binding that is
    enabled is woken on append.

    Example:
        >>> source = InMemoryEventSource()
        >>> binding = source.attach(new_query("Application"), start_from="beginning")
        >>> binding.set_callback(handle_record)
        >>> await binding.enable()
        >>> source.append("Application", {"level": "error"}, machine_origin="web-01")

    Thread Safety:
        - append() is thread-safe; wake-ups are scheduled on the loop a
          binding was last enabled on
        - bindings must be driven from that loop
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._logs: dict[str, list[EventRecord]] = defaultdict(list)
        self._bindings: list[InMemoryBinding] = []
        self._lock = threading.RLock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def attach(
        self,
        query: Query,
        start_position: PositionToken | None = None,
        start_from: StartFrom = "end",
    ) -> InMemoryBinding:
        if start_from not in ("end", "beginning"):
            raise ValueError(f"start_from must be 'end' or 'beginning', got {start_from!r}")
        with self._tracer.span(
            "eventwatch.source.attach",
            {
                ATTR_SOURCE_IDENTIFIER: query.source_identifier,
                ATTR_ADDRESSING_MODE: query.addressing_mode.value,
                ATTR_FILTER_EXPRESSION: query.filter_expression,
            },
        ):
            binding = InMemoryBinding(self, query, start_position, start_from)
            with self._lock:
                self._bindings.append(binding)
        logger.debug(
            "Query attached to in-memory source",
            extra={
                "source_identifier": query.source_identifier,
                "start_sequence": start_position.record_sequence if start_position else None,
                "start_from": start_from,
            },
        )
        return binding

    def append(
        self,
        source_identifier: str,
        payload: dict[str, Any] | None = None,
        *,
        machine_origin: str = "",
        record_id: str | None = None,
        time_created: datetime | None = None,
    ) -> EventRecord:
        """
        Append a record to a source's log.

        Args:
            source_identifier: Log name or file path
            payload: Record content
            machine_origin: Host that produced the record
            record_id: Explicit record id (a UUID is generated otherwise)
            time_created: Explicit timestamp (now, UTC, otherwise)

        Returns:
            The appended record with its assigned sequence
        """
        fields: dict[str, Any] = {
            "source_identifier": source_identifier,
            "payload": payload or {},
            "machine_origin": machine_origin,
        }
        if record_id is not None:
            fields["id"] = record_id
        if time_created is not None:
            fields["time_created"] = time_created

        with self._lock:
            log = self._logs[source_identifier]
            sequence = log[-1].record_sequence + 1 if log else FIRST_SEQUENCE
            record = EventRecord(record_sequence=sequence, **fields)
            log.append(record)
            waiting = [b for b in self._bindings if b.query.source_identifier == source_identifier]

        self._wake(waiting)
        return record

    def _wake(self, bindings: list[InMemoryBinding]) -> None:
        if not bindings:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is not None and running is not self._loop:
            for binding in bindings:
                self._loop.call_soon_threadsafe(binding.notify)
            return
        for binding in bindings:
            binding.notify()

    def last_sequence(self, source_identifier: str) -> int:
        """Sequence of the newest record of a source (0 when empty)."""
        with self._lock:
            log = self._logs.get(source_identifier)
            return log[-1].record_sequence if log else FIRST_SEQUENCE - 1

    def records(self, source_identifier: str) -> list[EventRecord]:
        """Snapshot of a source's log."""
        with self._lock:
            return list(self._logs.get(source_identifier, ()))

    @property
    def bindings(self) -> list[InMemoryBinding]:
        with self._lock:
            return list(self._bindings)

    def _record_after(self, source_identifier: str, sequence: int) -> EventRecord | None:
        with self._lock:
            log = self._logs.get(source_identifier)
            if not log:
                return None
            # Sequences are dense from FIRST_SEQUENCE, so the index is direct
            index = max(sequence - FIRST_SEQUENCE + 1, 0)
            return log[index] if index < len(log) else None

    def _remember_loop(self) -> None:
        with self._lock:
            self._loop = asyncio.get_running_loop()

    def _detach(self, binding: InMemoryBinding) -> None:
        with self._lock:
            if binding in self._bindings:
                self._bindings.remove(binding)


__all__ = ["InMemoryEventSource", "InMemoryBinding", "FIRST_SEQUENCE"]
