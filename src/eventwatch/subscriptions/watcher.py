"""
Watcher with state machine for managing the watch lifecycle.

This module provides:
- WatcherState: Enum of all possible watcher states
- Watcher: Attachment of one query to an event source, plus its state

State Machine:
    CREATED -> REGISTERED | STOPPED
    REGISTERED -> WATCHING | STOPPED
    WATCHING -> REGISTERED | STOPPED
    STOPPED -> (terminal)

REGISTERED is reached only by binding a callback chain. Enabling from
CREATED raises NotRegisteredError, so an event source never advances past
records while nothing is consuming them.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING

from eventwatch.exceptions import BindError, NotRegisteredError, TypeMismatchError, WatcherStateError
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query
from eventwatch.sources.interface import EventSource, SourceBinding
from eventwatch.subscriptions.config import WatchConfig

if TYPE_CHECKING:
    from eventwatch.events.record import EventRecord
    from eventwatch.positions.store import PositionStore

logger = logging.getLogger(__name__)


class WatcherState(Enum):
    """
    States a watcher can be in during its lifecycle.

    State transitions:
        CREATED -> REGISTERED | STOPPED
        REGISTERED -> WATCHING | STOPPED
        WATCHING -> REGISTERED | STOPPED
        STOPPED -> (terminal)
    """

    CREATED = "created"
    """Attached to a source, no callback chain bound yet."""

    REGISTERED = "registered"
    """Callback chain bound, not delivering."""

    WATCHING = "watching"
    """Delivering records to the bound chain."""

    STOPPED = "stopped"
    """Disposed and detached from the source."""


# Valid state transitions
VALID_TRANSITIONS: dict[WatcherState, set[WatcherState]] = {
    WatcherState.CREATED: {
        WatcherState.REGISTERED,
        WatcherState.STOPPED,
    },
    WatcherState.REGISTERED: {
        WatcherState.WATCHING,
        WatcherState.STOPPED,
    },
    WatcherState.WATCHING: {
        WatcherState.REGISTERED,  # disable
        WatcherState.STOPPED,
    },
    WatcherState.STOPPED: set(),  # Terminal state
}


def is_valid_transition(from_state: WatcherState, to_state: WatcherState) -> bool:
    """
    Check if a state transition is valid.

    Args:
        from_state: Current state
        to_state: Target state

    Returns:
        True if transition is allowed, False otherwise
    """
    return to_state in VALID_TRANSITIONS.get(from_state, set())


# Callback the bound chain exposes to the source
ChainCallback = Callable[["EventRecord"], Awaitable[None]]


class Watcher:
    """
    Watches one query on an event source.

    A watcher is created disabled. It only starts delivering after a
    callback chain has been bound (see ``bind``) and ``enable()`` is
    awaited. A watcher can be seeded with a position token to resume right
    after the record the token marks; the token must have been produced for
    the same query.

    Example:
        >>> watcher = Watcher(new_query("Application"), source)
        >>> subscription = await bind(watcher, "./app.pos", [print_record])
        >>> await subscription.enable()
        >>> watcher.state
        <WatcherState.WATCHING: 'watching'>
    """

    def __init__(
        self,
        query: Query,
        source: EventSource,
        starting_position: PositionToken | None = None,
        *,
        config: WatchConfig | None = None,
    ) -> None:
        """
        Create a watcher and attach it to the source.

        Args:
            query: Records to watch
            source: Event source that evaluates the query
            starting_position: Resume right after this token's record
            config: Watch configuration (defaults apply when omitted)

        Raises:
            TypeMismatchError: If starting_position is not a PositionToken
                or was produced for a different query
        """
        if starting_position is not None:
            _check_token(query, starting_position)

        self._query = query
        self._config = config or WatchConfig()
        self._starting_position = starting_position
        self._state = WatcherState.CREATED
        self._lock = asyncio.Lock()
        self._binding: SourceBinding = source.attach(
            query, starting_position, self._config.start_from
        )

        logger.info(
            "Watcher created",
            extra={
                "source_identifier": query.source_identifier,
                "query_key": query.key,
                "start_sequence": starting_position.record_sequence if starting_position else None,
                "start_from": self._config.start_from,
            },
        )

    @classmethod
    async def resume(
        cls,
        query: Query,
        source: EventSource,
        store: "PositionStore",
        location: str | os.PathLike[str],
        *,
        config: WatchConfig | None = None,
    ) -> "Watcher":
        """
        Create a watcher seeded from the last persisted position.

        With no token at the location the watcher starts according to
        ``config.start_from``.

        Args:
            query: Records to watch
            source: Event source that evaluates the query
            store: Store holding the position token
            location: Location of the position token
            config: Watch configuration

        Returns:
            A new watcher in CREATED state

        Raises:
            TypeMismatchError: If the stored object is not a position token
                or belongs to another query
            PositionStoreIOError: If the location cannot be read
        """
        config = config or WatchConfig()
        token = await asyncio.to_thread(
            store.load, location, PositionToken, working_dir=config.working_dir
        )
        if token is not None:
            logger.info(
                "Resuming from persisted position",
                extra={"query_key": query.key, "record_sequence": token.record_sequence},
            )
        return cls(query, source, token, config=config)

    @property
    def query(self) -> Query:
        return self._query

    @property
    def config(self) -> WatchConfig:
        return self._config

    @property
    def starting_position(self) -> PositionToken | None:
        return self._starting_position

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._state == WatcherState.WATCHING

    @property
    def is_registered(self) -> bool:
        """True once a callback chain has been bound (and until disposal)."""
        return self._state in (WatcherState.REGISTERED, WatcherState.WATCHING)

    @property
    def is_stopped(self) -> bool:
        return self._state == WatcherState.STOPPED

    @property
    def binding(self) -> SourceBinding:
        return self._binding

    async def register(self, callback: ChainCallback) -> None:
        """
        Bind the chain callback and enter REGISTERED.

        Pure registration: the watcher stays disabled. Used by ``bind``.

        Raises:
            BindError: If a chain is already bound or the watcher is stopped
        """
        async with self._lock:
            if self._state == WatcherState.STOPPED:
                raise BindError(self._query.source_identifier, "watcher has been disposed")
            if self._state != WatcherState.CREATED:
                raise BindError(
                    self._query.source_identifier, "a callback chain is already bound"
                )
            self._binding.set_callback(callback)
            self._transition(WatcherState.REGISTERED)

    async def enable(self) -> None:
        """
        Start delivering records to the bound chain.

        Enabling a watcher that is already watching is a no-op.

        Raises:
            NotRegisteredError: If no callback chain is bound
            WatcherStateError: If the watcher has been disposed
        """
        async with self._lock:
            if self._state == WatcherState.WATCHING:
                return
            if self._state == WatcherState.CREATED:
                raise NotRegisteredError(self._query.source_identifier)
            if self._state == WatcherState.STOPPED:
                raise WatcherStateError(
                    f"Watcher for {self._query.source_identifier!r} has been disposed. "
                    "Create a new watcher, e.g. with Watcher.resume(), to watch again."
                )
            await self._binding.enable()
            self._transition(WatcherState.WATCHING)

    async def disable(self) -> None:
        """
        Stop delivering new records.

        A record whose chain invocation is in progress is processed to the
        end. Disabling a watcher that is not watching is a no-op.
        """
        async with self._lock:
            if self._state != WatcherState.WATCHING:
                return
            await self._binding.disable()
            self._transition(WatcherState.REGISTERED)

    async def dispose(self) -> None:
        """
        Disable, detach from the source and enter STOPPED.

        Waits for an in-flight chain invocation to finish unless called from
        within it. Disposing twice is a no-op.
        """
        async with self._lock:
            if self._state == WatcherState.STOPPED:
                return
            await self._binding.disable()
            self._transition(WatcherState.STOPPED)
        # Outside the lock: an in-flight user action may still call disable()
        await self._binding.close()

    def _transition(self, new_state: WatcherState) -> None:
        if not is_valid_transition(self._state, new_state):
            valid_targets = VALID_TRANSITIONS.get(self._state, set())
            raise WatcherStateError(
                f"Cannot transition from {self._state.value} to {new_state.value}. "
                f"Valid transitions: {sorted(s.value for s in valid_targets)}"
            )
        old_state = self._state
        self._state = new_state
        logger.info(
            "Watcher state changed",
            extra={
                "source_identifier": self._query.source_identifier,
                "query_key": self._query.key,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    def __repr__(self) -> str:
        return f"Watcher(query={self._query.key!r}, state={self._state.value})"


def _check_token(query: Query, token: object) -> None:
    if not isinstance(token, PositionToken):
        raise TypeMismatchError(
            expected=PositionToken.TYPE_TAG,
            actual=type(token).__name__,
            detail="a watcher can only be seeded with a position token",
        )
    if not token.is_for(query.key):
        raise TypeMismatchError(
            expected=query.key,
            actual=token.query_key,
            detail="the position token was produced for a different query",
        )


__all__ = [
    "WatcherState",
    "VALID_TRANSITIONS",
    "is_valid_transition",
    "ChainCallback",
    "Watcher",
]
