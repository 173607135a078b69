"""
Callback chain dispatch.

Every record delivered to a subscription runs through its chain:

1. PersistPositionAction saves the record's position token
2. The user actions run, in the order they were supplied

The position is saved before any user logic runs. A crash part way through
the user actions therefore loses that record's side effects while the
stored position already says it was consumed (at-most-once processing).

Failures never escape ``CallbackChain.dispatch``: they are wrapped as
PersistenceError or CallbackError and reported through the subscription's
DeliveryErrorHandler, and delivery continues.
"""

import asyncio
import inspect
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

from eventwatch.events.record import EventRecord
from eventwatch.exceptions import CallbackError, PersistenceError
from eventwatch.observability import Tracer, create_tracer
from eventwatch.observability.attributes import (
    ATTR_ACTION_COUNT,
    ATTR_ACTION_NAME,
    ATTR_ERROR_TYPE,
    ATTR_RECORD_ID,
    ATTR_RECORD_SEQUENCE,
    ATTR_SOURCE_IDENTIFIER,
    ATTR_STORE_LOCATION,
    ATTR_SUBSCRIPTION_TAG,
)
from eventwatch.positions.store import PositionStore
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query
from eventwatch.subscriptions.error_handling import DeliveryErrorHandler

logger = logging.getLogger(__name__)

# Context keys set by the library; callers cannot supply them
RESERVED_CONTEXT_KEYS: frozenset[str] = frozenset({"position_store_location", "subscription_tag"})


@dataclass(frozen=True)
class ChainContext:
    """
    Read-only context passed to every user action.

    Attributes:
        position_store_location: Resolved location the chain saves positions to
        subscription_tag: Tag of the owning subscription
        extras: Caller supplied key/values (read-only view)
    """

    position_store_location: str
    subscription_tag: str
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def __post_init__(self) -> None:
        if not isinstance(self.extras, MappingProxyType):
            object.__setattr__(self, "extras", MappingProxyType(dict(self.extras)))

    def __getitem__(self, key: str) -> Any:
        if key in RESERVED_CONTEXT_KEYS:
            return getattr(self, key)
        return self.extras[key]

    def __contains__(self, key: object) -> bool:
        return key in RESERVED_CONTEXT_KEYS or key in self.extras

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return self[key]
        except KeyError:
            return default

    def to_dict(self) -> dict[str, Any]:
        """Flatten reserved keys and extras into one dictionary."""
        return {
            **self.extras,
            "position_store_location": self.position_store_location,
            "subscription_tag": self.subscription_tag,
        }


def get_action_name(action: Any) -> str:
    """
    Get a descriptive name for a user action for logging and error reports.

    Args:
        action: Any action object (class instance, function, lambda)

    Returns:
        String name for the action
    """
    if inspect.isfunction(action) or inspect.ismethod(action):
        return str(getattr(action, "__qualname__", action.__name__))
    if hasattr(action, "handle"):
        return str(action.__class__.__name__)
    if hasattr(action, "__name__"):
        return str(action.__name__)
    return str(action.__class__.__name__)


# Type for normalized user actions
AsyncActionFunc = Callable[[EventRecord, ChainContext], Awaitable[None]]


class UserActionAdapter:
    """
    Adapter that normalizes user actions to a consistent async interface.

    This adapter accepts actions in various forms, each called as
    ``action(record, context)``:
    - Objects with async handle() method
    - Objects with sync handle() method
    - Async callable functions
    - Sync callable functions

    Example:
        >>> def print_record(record: EventRecord, context: ChainContext) -> None:
        ...     print(record)
        >>> adapter = UserActionAdapter(print_record)
        >>> await adapter.handle(record, context)

    Attributes:
        original: The original unwrapped action
        name: Descriptive name for logging
    """

    def __init__(self, action: Any) -> None:
        """
        Initialize the adapter with an action.

        Args:
            action: Object with handle() method or callable

        Raises:
            TypeError: If action doesn't have handle() method and isn't callable
        """
        self._original = action
        self._name = get_action_name(action)
        self._target = self._normalize(action)

    def _normalize(self, action: Any) -> Callable[..., Any]:
        handle = getattr(action, "handle", None)
        if handle is not None and callable(handle):
            return handle  # type: ignore[no-any-return]
        if callable(action):
            return action  # type: ignore[no-any-return]
        raise TypeError(
            f"User action {action!r} must be callable or have a handle() method"
        )

    @property
    def original(self) -> Any:
        return self._original

    @property
    def name(self) -> str:
        return self._name

    async def handle(self, record: EventRecord, context: ChainContext) -> None:
        """Run the action, awaiting it when it is async."""
        result = self._target(record, context)
        if inspect.isawaitable(result):
            await result

    def __repr__(self) -> str:
        return f"UserActionAdapter({self._name})"


class PersistPositionAction:
    """
    First, non-removable action of every chain: save the record's position.

    The store call runs in a worker thread so waiting on a file lock does
    not block the event loop.
    """

    name = "persist_position"

    def __init__(
        self,
        query: Query,
        store: PositionStore,
        location: str | os.PathLike[str],
    ) -> None:
        """
        Args:
            query: Query the records are delivered for
            store: Position store
            location: Absolute location the tokens are saved to
        """
        self._query = query
        self._store = store
        self._location = Path(os.fspath(location))

    @property
    def location(self) -> Path:
        return self._location

    @property
    def store(self) -> PositionStore:
        return self._store

    async def __call__(self, record: EventRecord) -> PositionToken:
        token = record.position_for(self._query)
        await asyncio.to_thread(self._store.save, token, self._location)
        return token

    def __repr__(self) -> str:
        return f"PersistPositionAction(location={str(self._location)!r})"


class CallbackChain:
    """
    Ordered actions run for every record delivered to a subscription.

    Invocations are serialized with an asyncio.Lock: one record is fully
    processed (persisted, then every user action) before the next starts.
    Different chains run concurrently.

    Example:
        >>> chain = CallbackChain(query, persist, [UserActionAdapter(notify)], context, errors)
        >>> await chain.dispatch(record)
        >>> chain.last_persisted.record_sequence == record.record_sequence
        True
    """

    def __init__(
        self,
        query: Query,
        persist: PersistPositionAction,
        user_actions: Sequence[UserActionAdapter],
        context: ChainContext,
        error_handler: DeliveryErrorHandler,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._query = query
        self._persist = persist
        self._user_actions = tuple(user_actions)
        self._context = context
        self._errors = error_handler
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._lock = asyncio.Lock()

        # Statistics
        self.events_delivered = 0
        self.last_persisted: PositionToken | None = None
        self.last_delivered_at: datetime | None = None
        self._in_flight: tuple[int, float] | None = None

    @property
    def actions(self) -> tuple[Any, ...]:
        """Every action in run order, the persistence action first."""
        return (self._persist, *self._user_actions)

    @property
    def user_actions(self) -> tuple[UserActionAdapter, ...]:
        return self._user_actions

    @property
    def context(self) -> ChainContext:
        return self._context

    @property
    def location(self) -> Path:
        return self._persist.location

    @property
    def error_handler(self) -> DeliveryErrorHandler:
        return self._errors

    @property
    def in_flight_sequence(self) -> int | None:
        """Sequence of the record being processed, None when idle."""
        return self._in_flight[0] if self._in_flight else None

    @property
    def in_flight_seconds(self) -> float | None:
        """How long the current record has been processing, None when idle."""
        if self._in_flight is None:
            return None
        return time.monotonic() - self._in_flight[1]

    async def dispatch(self, record: EventRecord) -> None:
        """
        Run the chain for one record. Never raises for action failures.

        Args:
            record: Record delivered by the event source
        """
        async with self._lock:
            self._in_flight = (record.record_sequence, time.monotonic())
            try:
                with self._tracer.span(
                    "eventwatch.chain.dispatch",
                    {
                        ATTR_SUBSCRIPTION_TAG: self._context.subscription_tag,
                        ATTR_SOURCE_IDENTIFIER: record.source_identifier,
                        ATTR_RECORD_SEQUENCE: record.record_sequence,
                        ATTR_RECORD_ID: record.id,
                        ATTR_ACTION_COUNT: len(self._user_actions) + 1,
                    },
                ):
                    logger.debug(
                        "Dispatching record",
                        extra={
                            "subscription_tag": self._context.subscription_tag,
                            "record_sequence": record.record_sequence,
                            "record_id": record.id,
                            "user_action_count": len(self._user_actions),
                        },
                    )
                    await self._run_persist(record)
                    for action in self._user_actions:
                        await self._run_action(action, record)
                self.events_delivered += 1
                self.last_delivered_at = datetime.now(UTC)
            finally:
                self._in_flight = None

    async def _run_persist(self, record: EventRecord) -> None:
        with self._tracer.span(
            "eventwatch.chain.persist",
            {
                ATTR_STORE_LOCATION: str(self._persist.location),
                ATTR_RECORD_SEQUENCE: record.record_sequence,
            },
        ):
            try:
                self.last_persisted = await self._persist(record)
            except Exception as e:
                error = PersistenceError(record, str(self._persist.location), e)
                error.__cause__ = e
                await self._errors.handle(error)

    async def _run_action(self, action: UserActionAdapter, record: EventRecord) -> None:
        with self._tracer.span(
            "eventwatch.chain.action",
            {
                ATTR_ACTION_NAME: action.name,
                ATTR_RECORD_SEQUENCE: record.record_sequence,
            },
        ) as span:
            try:
                await action.handle(record, self._context)
            except Exception as e:
                if span is not None:
                    span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                error = CallbackError(record, action.name, e)
                error.__cause__ = e
                await self._errors.handle(error)

    def __repr__(self) -> str:
        names = [self._persist.name, *(a.name for a in self._user_actions)]
        return f"CallbackChain({self._context.subscription_tag!r}, actions={names})"


__all__ = [
    "RESERVED_CONTEXT_KEYS",
    "ChainContext",
    "UserActionAdapter",
    "PersistPositionAction",
    "CallbackChain",
    "get_action_name",
]
