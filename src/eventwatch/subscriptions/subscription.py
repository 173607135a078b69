"""
Subscription handle binding a callback chain to a watcher.

This module provides:
- Subscription: Handle returned by bind(); enable, disable, unregister, status
- SubscriptionStatus: Immutable snapshot for health checks
- bind(): Register a callback chain on a watcher (the watcher stays disabled)
- subscribe(): bind() plus registry registration plus optional enable

Only a bound watcher has a Subscription, so the normal API cannot enable a
watcher before its chain exists.
"""

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from eventwatch.exceptions import BindError, InvalidLocationError
from eventwatch.positions.store import FilePositionStore, PositionStore
from eventwatch.positions.token import PositionToken
from eventwatch.subscriptions.chain import (
    RESERVED_CONTEXT_KEYS,
    CallbackChain,
    ChainContext,
    PersistPositionAction,
    UserActionAdapter,
)
from eventwatch.subscriptions.config import WatchConfig
from eventwatch.subscriptions.error_handling import (
    DeliveryErrorHandler,
    DeliveryErrorInfo,
    ErrorHandlerRegistry,
)
from eventwatch.subscriptions.watcher import Watcher, WatcherState

if TYPE_CHECKING:
    from eventwatch.subscriptions.registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

DEFAULT_POSITION_LOCATION = "./bookmark.pos"
"""Default position token location, relative to the working directory."""

DEFAULT_SUBSCRIPTION_TAG = "eventwatch"
"""Default tag identifying a subscription for unregistration."""


@dataclass(frozen=True)
class SubscriptionStatus:
    """
    Status snapshot for health checks and monitoring.

    This is a point-in-time snapshot of subscription state,
    suitable for serialization and external reporting.

    Attributes:
        subscription_tag: Tag identifying the subscription
        source_identifier: Watched source
        query_key: Identity of the watched query
        state: Watcher state as string
        position_store_location: Resolved location positions are saved to
        last_persisted_sequence: Sequence of the last saved position
        events_delivered: Records fully run through the chain
        callback_failures: User action failures reported
        persistence_failures: Position saves that failed
        recent_errors_count: Number of errors in the recent-error buffer
        in_flight_sequence: Record being processed right now, if any
        in_flight_seconds: How long that record has been processing
        last_delivered_at: ISO timestamp of the last completed record
    """

    subscription_tag: str
    source_identifier: str
    query_key: str
    state: str
    position_store_location: str
    last_persisted_sequence: int | None
    events_delivered: int
    callback_failures: int
    persistence_failures: int
    recent_errors_count: int = 0
    in_flight_sequence: int | None = None
    in_flight_seconds: float | None = None
    last_delivered_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of status
        """
        return {
            "subscription_tag": self.subscription_tag,
            "source_identifier": self.source_identifier,
            "query_key": self.query_key,
            "state": self.state,
            "position_store_location": self.position_store_location,
            "last_persisted_sequence": self.last_persisted_sequence,
            "events_delivered": self.events_delivered,
            "callback_failures": self.callback_failures,
            "persistence_failures": self.persistence_failures,
            "recent_errors_count": self.recent_errors_count,
            "in_flight_sequence": self.in_flight_sequence,
            "in_flight_seconds": self.in_flight_seconds,
            "last_delivered_at": self.last_delivered_at,
        }


class Subscription:
    """
    A callback chain bound to a watcher.

    Attributes:
        watcher: The bound watcher
        chain: The callback chain records run through
        subscription_tag: Identifier used for unregistration

    Example:
        >>> async with await bind(watcher, "./app.pos", [notify]) as subscription:
        ...     await subscription.enable()
        ...     await run_until_shutdown()
        >>> watcher.state
        <WatcherState.STOPPED: 'stopped'>
    """

    def __init__(
        self,
        watcher: Watcher,
        chain: CallbackChain,
        subscription_tag: str,
    ) -> None:
        self._watcher = watcher
        self._chain = chain
        self._subscription_tag = subscription_tag
        self._registry: SubscriptionRegistry | None = None
        self.created_at = datetime.now(UTC)

    @property
    def watcher(self) -> Watcher:
        return self._watcher

    @property
    def chain(self) -> CallbackChain:
        return self._chain

    @property
    def subscription_tag(self) -> str:
        return self._subscription_tag

    @property
    def source_identifier(self) -> str:
        return self._watcher.query.source_identifier

    @property
    def context(self) -> ChainContext:
        return self._chain.context

    @property
    def state(self) -> WatcherState:
        return self._watcher.state

    @property
    def last_persisted(self) -> PositionToken | None:
        """Last position token this subscription saved."""
        return self._chain.last_persisted

    @property
    def errors(self) -> DeliveryErrorHandler:
        return self._chain.error_handler

    @property
    def recent_errors(self) -> list[DeliveryErrorInfo]:
        return self._chain.error_handler.recent_errors

    async def enable(self) -> None:
        """
        Start delivering records.

        Raises:
            WatcherStateError: If the subscription has been unregistered
        """
        await self._watcher.enable()

    async def disable(self) -> None:
        """Stop delivering new records; an in-flight record completes."""
        await self._watcher.disable()

    async def unregister(self) -> None:
        """
        Dispose the watcher and remove the subscription from its registry.

        Safe to call more than once.
        """
        await self._watcher.dispose()
        registry, self._registry = self._registry, None
        if registry is not None:
            await registry.discard(self)
        logger.info(
            "Subscription unregistered",
            extra={
                "subscription_tag": self._subscription_tag,
                "source_identifier": self.source_identifier,
                "events_delivered": self._chain.events_delivered,
            },
        )

    def get_status(self) -> SubscriptionStatus:
        """
        Get current status snapshot.

        Returns:
            SubscriptionStatus with current metrics
        """
        stats = self._chain.error_handler.stats
        last = self._chain.last_persisted
        in_flight_seconds = self._chain.in_flight_seconds
        return SubscriptionStatus(
            subscription_tag=self._subscription_tag,
            source_identifier=self.source_identifier,
            query_key=self._watcher.query.key,
            state=self._watcher.state.value,
            position_store_location=str(self._chain.location),
            last_persisted_sequence=last.record_sequence if last else None,
            events_delivered=self._chain.events_delivered,
            callback_failures=stats.callback_errors,
            persistence_failures=stats.persistence_errors,
            recent_errors_count=len(self._chain.error_handler.recent_errors),
            in_flight_sequence=self._chain.in_flight_sequence,
            in_flight_seconds=round(in_flight_seconds, 3) if in_flight_seconds is not None else None,
            last_delivered_at=(
                self._chain.last_delivered_at.isoformat() if self._chain.last_delivered_at else None
            ),
        )

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.unregister()

    def __repr__(self) -> str:
        return (
            f"Subscription(tag={self._subscription_tag!r}, "
            f"source={self.source_identifier!r}, state={self._watcher.state.value})"
        )


async def bind(
    watcher: Watcher,
    position_store_location: str | os.PathLike[str] = DEFAULT_POSITION_LOCATION,
    user_actions: Iterable[Any] = (),
    context: Mapping[str, Any] | None = None,
    *,
    subscription_tag: str = DEFAULT_SUBSCRIPTION_TAG,
    store: PositionStore | None = None,
    config: WatchConfig | None = None,
    error_registry: ErrorHandlerRegistry | None = None,
) -> Subscription:
    """
    Bind a callback chain to a watcher.

    The chain always starts with the persistence action, followed by the
    user actions in the order given. The watcher moves to REGISTERED and
    stays disabled; call ``Subscription.enable()`` to start delivery.

    Args:
        watcher: Watcher in CREATED state
        position_store_location: Where positions are saved; absolute or
            starting with a relative-path marker such as "./"
        user_actions: Callables or objects with handle(), each called as
            ``action(record, context)``
        context: Extra key/values passed read-only to every user action
        subscription_tag: Identifier used for unregistration
        store: Position store (a FilePositionStore by default)
        config: Configuration (the watcher's by default)
        error_registry: Callbacks to notify of delivery errors

    Returns:
        Subscription handle

    Raises:
        BindError: If the watcher is already bound or disposed, the location
            is invalid, the context uses a reserved key, the tag is empty or
            a user action is neither callable nor has handle()
    """
    config = config or watcher.config
    source_identifier = watcher.query.source_identifier

    if not isinstance(subscription_tag, str) or not subscription_tag.strip():
        raise BindError(source_identifier, "subscription tag must be a non-empty string")

    extras = dict(context or {})
    reserved = sorted(RESERVED_CONTEXT_KEYS.intersection(extras))
    if reserved:
        raise BindError(
            source_identifier,
            f"context keys {reserved} are reserved; position_store_location and "
            "subscription_tag are set from bind() arguments",
        )

    try:
        adapters = [UserActionAdapter(action) for action in user_actions]
    except TypeError as e:
        raise BindError(source_identifier, str(e)) from e

    if store is None:
        store = FilePositionStore(
            working_dir=config.working_dir,
            lock_timeout=config.lock_timeout,
            enable_tracing=config.enable_tracing,
        )
    try:
        location = store.resolve(position_store_location, config.working_dir)
    except InvalidLocationError as e:
        raise BindError(source_identifier, f"invalid position store location: {e}") from e

    chain_context = ChainContext(
        position_store_location=str(location),
        subscription_tag=subscription_tag,
        extras=extras,
    )
    error_handler = DeliveryErrorHandler(
        subscription_tag,
        registry=error_registry,
        max_recent_errors=config.max_recent_errors,
    )
    chain = CallbackChain(
        watcher.query,
        PersistPositionAction(watcher.query, store, location),
        adapters,
        chain_context,
        error_handler,
        enable_tracing=config.enable_tracing,
    )

    await watcher.register(chain.dispatch)

    logger.info(
        "Callback chain bound",
        extra={
            "subscription_tag": subscription_tag,
            "source_identifier": source_identifier,
            "position_store_location": str(location),
            "user_action_count": len(adapters),
        },
    )
    return Subscription(watcher, chain, subscription_tag)


async def subscribe(
    watcher: Watcher,
    position_store_location: str | os.PathLike[str] = DEFAULT_POSITION_LOCATION,
    user_actions: Iterable[Any] = (),
    context: Mapping[str, Any] | None = None,
    *,
    subscription_tag: str = DEFAULT_SUBSCRIPTION_TAG,
    store: PositionStore | None = None,
    config: WatchConfig | None = None,
    error_registry: ErrorHandlerRegistry | None = None,
    registry: "SubscriptionRegistry | None" = None,
    enable: bool = True,
) -> Subscription:
    """
    Bind, register and (by default) enable in one call.

    Args:
        registry: Registry to add the subscription to (optional)
        enable: Start delivery right away

    See ``bind`` for the remaining arguments.

    Raises:
        BindError: If binding fails or the tag is already registered
    """
    if registry is not None and registry.contains(subscription_tag):
        raise BindError(
            watcher.query.source_identifier,
            f"subscription tag {subscription_tag!r} is already registered",
        )

    subscription = await bind(
        watcher,
        position_store_location,
        user_actions,
        context,
        subscription_tag=subscription_tag,
        store=store,
        config=config,
        error_registry=error_registry,
    )

    if registry is not None:
        try:
            await registry.register(subscription)
        except BindError:
            await subscription.unregister()
            raise

    if enable:
        await subscription.enable()
    return subscription


__all__ = [
    "DEFAULT_POSITION_LOCATION",
    "DEFAULT_SUBSCRIPTION_TAG",
    "Subscription",
    "SubscriptionStatus",
    "bind",
    "subscribe",
]
