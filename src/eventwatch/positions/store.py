"""
Position stores for durable bookmark persistence.

A position store saves and restores one position token per location so a
watcher can resume after a restart. This module provides:

- PositionStore: Protocol all stores implement
- FilePositionStore: One binary token file per location, guarded by a lock file
- InMemoryPositionStore: Same contract held in process memory, for tests
- BatchResult / BatchItemResult: Per-pair outcome of save_many()/load_many()

Store methods are synchronous; async callers run them through
``asyncio.to_thread`` so waiting on a file lock never blocks the event loop.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TypeVar, runtime_checkable

from filelock import FileLock, Timeout

from eventwatch.exceptions import (
    ArityMismatchError,
    BatchOperationError,
    EventWatchError,
    PositionStoreIOError,
    TypeMismatchError,
)
from eventwatch.observability import Tracer, create_tracer
from eventwatch.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_STORE_LOCATION,
    ATTR_STORE_OPERATION,
)
from eventwatch.positions.codec import decode_token, encode_token
from eventwatch.positions.location import resolve_location
from eventwatch.positions.token import PositionToken

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=PositionToken)

Location = str | os.PathLike[str]

LOCK_SUFFIX = ".lock"


# =============================================================================
# Batch results
# =============================================================================


@dataclass(frozen=True)
class BatchItemResult:
    """
    Outcome of one (token, location) pair of a batch operation.

    Attributes:
        index: Position of the pair in the caller's sequences
        location: Location as supplied by the caller
        value: Loaded token (load), saved token (save), or None
        error: Error for this pair, None on success
    """

    index: int
    location: Any
    value: PositionToken | None = None
    error: EventWatchError | None = None

    @property
    def ok(self) -> bool:
        """True if this pair succeeded."""
        return self.error is None


@dataclass(frozen=True)
class BatchResult:
    """
    Result of a batch save or load.

    Every pair is attempted; a failed pair is recorded here and does not
    abort the pairs after it.
    """

    operation: str
    items: tuple[BatchItemResult, ...]

    @property
    def errors(self) -> list[EventWatchError]:
        """Errors of the failed pairs, in input order."""
        return [item.error for item in self.items if item.error is not None]

    @property
    def values(self) -> list[PositionToken | None]:
        """Value of every pair in input order (None for failed or empty pairs)."""
        return [item.value for item in self.items]

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return len(self.items) - self.succeeded

    def raise_for_errors(self) -> None:
        """
        Raise if any pair failed.

        Raises:
            BatchOperationError: Listing one error per failed pair
        """
        if self.failed:
            raise BatchOperationError(self.operation, self.errors, len(self.items))


# =============================================================================
# Store protocol and shared behaviour
# =============================================================================


@runtime_checkable
class PositionStore(Protocol):
    """
    Protocol for position stores.

    Locations are resolved with :func:`resolve_location`: relative-marked
    locations against ``working_dir`` (per call, else the store's configured
    directory, else the process working directory at call time); all others
    must be absolute.
    """

    def resolve(self, location: Location, working_dir: Location | None = None) -> Path:
        """Resolve a location to the absolute path save() and load() use."""
        ...

    def save(
        self,
        token: PositionToken,
        location: Location,
        *,
        working_dir: Location | None = None,
    ) -> Path:
        """
        Atomically replace the token stored at a location.

        Returns:
            The resolved path that was written
        """
        ...

    def load(
        self,
        location: Location,
        expected_type: type[T] = PositionToken,  # type: ignore[assignment]
        *,
        working_dir: Location | None = None,
    ) -> T | None:
        """
        Load the token stored at a location.

        Returns:
            The token, or None if nothing was ever saved there
        """
        ...

    def delete(self, location: Location, *, working_dir: Location | None = None) -> bool:
        """Remove the token at a location. Returns True if one existed."""
        ...

    def save_many(
        self,
        tokens: Sequence[Any],
        locations: Sequence[Location],
        *,
        working_dir: Location | None = None,
    ) -> BatchResult:
        """Save each token to the location at the same index."""
        ...

    def load_many(
        self,
        locations: Sequence[Location],
        expected_types: Sequence[type[PositionToken]] | None = None,
        *,
        working_dir: Location | None = None,
    ) -> BatchResult:
        """Load the token at each location."""
        ...


class BasePositionStore(ABC):
    """
    Shared resolution, validation, tracing and batch logic for stores.

    Subclasses implement the ``_write``, ``_read`` and ``_remove`` primitives
    on already-resolved absolute paths.
    """

    def __init__(
        self,
        working_dir: Location | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._working_dir = Path(os.fspath(working_dir)) if working_dir is not None else None
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def working_dir(self) -> Path | None:
        """Directory relative-marked locations resolve against (None: process cwd)."""
        return self._working_dir

    def resolve(self, location: Location, working_dir: Location | None = None) -> Path:
        """
        Resolve a location the way save() and load() will.

        The process working directory is read here, at the public boundary,
        only when neither the call nor the store supplies a directory.
        """
        if working_dir is not None:
            base: Location = working_dir
        elif self._working_dir is not None:
            base = self._working_dir
        else:
            base = Path.cwd()
        return resolve_location(location, base)

    def save(
        self,
        token: PositionToken,
        location: Location,
        *,
        working_dir: Location | None = None,
    ) -> Path:
        if not isinstance(token, PositionToken):
            raise TypeMismatchError(
                expected=PositionToken.TYPE_TAG,
                actual=type(token).__name__,
                detail="only position tokens can be saved",
            )
        path = self.resolve(location, working_dir)
        with self._tracer.span(
            "eventwatch.store.save",
            {ATTR_STORE_LOCATION: str(path), ATTR_STORE_OPERATION: "save"},
        ):
            self._write(path, encode_token(token))
        logger.debug(
            "Position saved",
            extra={"location": str(path), "record_sequence": token.record_sequence},
        )
        return path

    def load(
        self,
        location: Location,
        expected_type: type[T] = PositionToken,  # type: ignore[assignment]
        *,
        working_dir: Location | None = None,
    ) -> T | None:
        path = self.resolve(location, working_dir)
        with self._tracer.span(
            "eventwatch.store.load",
            {ATTR_STORE_LOCATION: str(path), ATTR_STORE_OPERATION: "load"},
        ):
            data = self._read(path)
        if data is None:
            logger.debug("No prior position", extra={"location": str(path)})
            return None
        return decode_token(data, expected_type, location=str(path))

    def delete(self, location: Location, *, working_dir: Location | None = None) -> bool:
        path = self.resolve(location, working_dir)
        with self._tracer.span(
            "eventwatch.store.delete",
            {ATTR_STORE_LOCATION: str(path), ATTR_STORE_OPERATION: "delete"},
        ):
            return self._remove(path)

    def save_many(
        self,
        tokens: Sequence[Any],
        locations: Sequence[Location],
        *,
        working_dir: Location | None = None,
    ) -> BatchResult:
        if len(tokens) != len(locations):
            raise ArityMismatchError(len(tokens), len(locations))

        items: list[BatchItemResult] = []
        with self._tracer.span(
            "eventwatch.store.save_many",
            {ATTR_BATCH_SIZE: len(tokens), ATTR_STORE_OPERATION: "save"},
        ):
            for index, (token, location) in enumerate(zip(tokens, locations, strict=True)):
                try:
                    self.save(token, location, working_dir=working_dir)
                except EventWatchError as e:
                    logger.warning(
                        "Batch save item failed",
                        extra={"index": index, "location": str(location), "error": str(e)},
                    )
                    items.append(BatchItemResult(index=index, location=location, error=e))
                else:
                    items.append(BatchItemResult(index=index, location=location, value=token))
        return BatchResult(operation="save", items=tuple(items))

    def load_many(
        self,
        locations: Sequence[Location],
        expected_types: Sequence[type[PositionToken]] | None = None,
        *,
        working_dir: Location | None = None,
    ) -> BatchResult:
        if expected_types is None:
            expected_types = [PositionToken] * len(locations)
        elif len(expected_types) != len(locations):
            raise ArityMismatchError(len(expected_types), len(locations))

        items: list[BatchItemResult] = []
        with self._tracer.span(
            "eventwatch.store.load_many",
            {ATTR_BATCH_SIZE: len(locations), ATTR_STORE_OPERATION: "load"},
        ):
            for index, (location, expected_type) in enumerate(
                zip(locations, expected_types, strict=True)
            ):
                try:
                    value = self.load(location, expected_type, working_dir=working_dir)
                except EventWatchError as e:
                    logger.warning(
                        "Batch load item failed",
                        extra={"index": index, "location": str(location), "error": str(e)},
                    )
                    items.append(BatchItemResult(index=index, location=location, error=e))
                else:
                    items.append(BatchItemResult(index=index, location=location, value=value))
        return BatchResult(operation="load", items=tuple(items))

    @abstractmethod
    def _write(self, path: Path, data: bytes) -> None:
        """Replace the content at ``path`` with ``data``."""

    @abstractmethod
    def _read(self, path: Path) -> bytes | None:
        """Return the content at ``path``, or None if absent."""

    @abstractmethod
    def _remove(self, path: Path) -> bool:
        """Remove the content at ``path``; True if something was removed."""


# =============================================================================
# File-backed store
# =============================================================================


class FilePositionStore(BasePositionStore):
    """
    Stores each token in its own binary file.

    Every read and write holds an exclusive lock on ``<location>.lock`` for
    its whole duration, so concurrent subscriptions targeting the same
    location are serialized and never observe a partially written token.
    A save writes a temporary sibling file and moves it over the target, so
    the previous token is replaced wholesale, never appended to.

    Lock files are left in place after release.

    Example:
        >>> store = FilePositionStore(working_dir="/var/lib/myapp")
        >>> store.save(token, "./bookmarks/app.pos")
        >>> store.load("./bookmarks/app.pos")
        PositionToken(...)
    """

    def __init__(
        self,
        working_dir: Location | None = None,
        *,
        lock_timeout: float = -1,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            working_dir: Directory relative-marked locations resolve against.
                Defaults to the process working directory at call time.
            lock_timeout: Seconds to wait for a location's lock; -1 waits forever
            tracer: Optional tracer (one is created if not provided)
            enable_tracing: Whether to enable OpenTelemetry tracing
        """
        super().__init__(working_dir, tracer=tracer, enable_tracing=enable_tracing)
        self._lock_timeout = lock_timeout

    @contextmanager
    def _locked(self, path: Path, operation: str) -> Iterator[None]:
        lock = FileLock(str(path) + LOCK_SUFFIX, timeout=self._lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise PositionStoreIOError(
                str(path), operation, f"lock not acquired within {self._lock_timeout}s"
            ) from e
        except OSError as e:
            raise PositionStoreIOError(str(path), operation, f"cannot lock: {e}") from e
        try:
            yield
        finally:
            lock.release()

    def _write(self, path: Path, data: bytes) -> None:
        if not path.parent.is_dir():
            raise PositionStoreIOError(
                str(path), "save", f"directory {path.parent} does not exist"
            )
        with self._locked(path, "save"):
            tmp_name: str | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    dir=path.parent,
                    prefix=f".{path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as tmp:
                    tmp_name = tmp.name
                    tmp.write(data)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, path)
                tmp_name = None
            except OSError as e:
                raise PositionStoreIOError(str(path), "save", str(e)) from e
            finally:
                if tmp_name is not None:
                    with contextlib.suppress(OSError):
                        os.unlink(tmp_name)

    def _read(self, path: Path) -> bytes | None:
        if not path.exists():
            return None
        with self._locked(path, "load"):
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as e:
                raise PositionStoreIOError(str(path), "load", str(e)) from e

    def _remove(self, path: Path) -> bool:
        if not path.exists():
            return False
        with self._locked(path, "delete"):
            try:
                path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise PositionStoreIOError(str(path), "delete", str(e)) from e
            return True


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryPositionStore(BasePositionStore):
    """
    In-memory implementation of the position store for testing.

    Stores the encoded bytes, so type-tag checking and location resolution
    behave exactly as with FilePositionStore. All data is lost when the
    process terminates.

    Example:
        >>> store = InMemoryPositionStore(working_dir="/app")
        >>> store.save(token, "./app.pos")
        >>> store.load("./app.pos") == token
        True
    """

    def __init__(
        self,
        working_dir: Location | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        super().__init__(working_dir, tracer=tracer, enable_tracing=enable_tracing)
        self._data: dict[Path, bytes] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    def _write(self, path: Path, data: bytes) -> None:
        with self._lock:
            self._data[path] = data
            self.save_count += 1

    def _read(self, path: Path) -> bytes | None:
        with self._lock:
            return self._data.get(path)

    def _remove(self, path: Path) -> bool:
        with self._lock:
            return self._data.pop(path, None) is not None

    def put_raw(self, location: Location, data: bytes, *, working_dir: Location | None = None) -> None:
        """Store raw bytes at a location, bypassing encoding (for corruption tests)."""
        self._write(self.resolve(location, working_dir), data)

    @property
    def locations(self) -> list[Path]:
        """Resolved locations currently holding data."""
        with self._lock:
            return list(self._data)


__all__ = [
    "PositionStore",
    "BasePositionStore",
    "FilePositionStore",
    "InMemoryPositionStore",
    "BatchResult",
    "BatchItemResult",
    "LOCK_SUFFIX",
]
