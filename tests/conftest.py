"""
Shared pytest fixtures for the eventwatch library tests.

This module provides:
- Query fixtures (query, other_query)
- Record fixtures (make_record)
- Position store fixtures (file_store, memory_store, workdir)
- Event source fixtures (source)
- Async helpers (wait_until)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import pytest

from eventwatch.events.record import EventRecord
from eventwatch.observability import MockTracer
from eventwatch.positions.store import FilePositionStore, InMemoryPositionStore
from eventwatch.query.definition import Query, new_query
from eventwatch.sources.in_memory import InMemoryEventSource
from eventwatch.subscriptions.config import WatchConfig

# ============================================================================
# Query Fixtures
# ============================================================================


@pytest.fixture
def query() -> Query:
    """Query matching every record of the Application log."""
    return new_query("Application")


@pytest.fixture
def other_query() -> Query:
    """Query on the same log with a different filter."""
    return new_query("Application", "payload.level = error")


# ============================================================================
# Record Fixtures
# ============================================================================


@pytest.fixture
def make_record() -> Callable[..., EventRecord]:
    """Factory for records of the Application log."""

    def _make(sequence: int = 1, **kwargs: Any) -> EventRecord:
        kwargs.setdefault("source_identifier", "Application")
        kwargs.setdefault("machine_origin", "web-01")
        kwargs.setdefault("payload", {"level": "info", "message": f"record {sequence}"})
        return EventRecord(record_sequence=sequence, **kwargs)

    return _make


# ============================================================================
# Position Store Fixtures
# ============================================================================


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    """Explicit working directory for relative-marked locations."""
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def file_store(workdir: Path) -> FilePositionStore:
    """File store resolving './' locations against workdir."""
    return FilePositionStore(working_dir=workdir, lock_timeout=5.0, enable_tracing=False)


@pytest.fixture
def memory_store(workdir: Path) -> InMemoryPositionStore:
    """In-memory store resolving './' locations against workdir."""
    return InMemoryPositionStore(working_dir=workdir, enable_tracing=False)


@pytest.fixture
def mock_tracer() -> MockTracer:
    """Tracer recording span names and attributes."""
    return MockTracer()


@pytest.fixture
def config(workdir: Path) -> WatchConfig:
    """Watch configuration replaying from the beginning of the log."""
    return WatchConfig(
        start_from="beginning",
        lock_timeout=5.0,
        working_dir=str(workdir),
        enable_tracing=False,
    )


# ============================================================================
# Event Source Fixtures
# ============================================================================


@pytest.fixture
def source() -> InMemoryEventSource:
    """Empty in-memory event source."""
    return InMemoryEventSource(enable_tracing=False)


# ============================================================================
# Async Helpers
# ============================================================================


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a predicate until it holds, failing after a timeout."""

    async def _wait(
        predicate: Callable[[], bool],
        timeout: float = 3.0,
        interval: float = 0.005,
    ) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError(f"Condition not met within {timeout}s")
            await asyncio.sleep(interval)

    return _wait
