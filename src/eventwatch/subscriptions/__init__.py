"""
Watchers, callback chains and subscriptions.

Example:
    >>> from eventwatch.subscriptions import Watcher, bind
    >>>
    >>> watcher = await Watcher.resume(query, source, store, "./app.pos")
    >>> subscription = await bind(watcher, "./app.pos", [notify], store=store)
    >>> await subscription.enable()
"""

from eventwatch.subscriptions.chain import (
    RESERVED_CONTEXT_KEYS,
    CallbackChain,
    ChainContext,
    PersistPositionAction,
    UserActionAdapter,
    get_action_name,
)
from eventwatch.subscriptions.config import WatchConfig, create_replay_config
from eventwatch.subscriptions.error_handling import (
    DeliveryErrorHandler,
    DeliveryErrorInfo,
    DeliveryErrorKind,
    ErrorCallback,
    ErrorHandlerRegistry,
    ErrorStats,
    SyncErrorCallback,
)
from eventwatch.subscriptions.registry import SubscriptionRegistry
from eventwatch.subscriptions.subscription import (
    DEFAULT_POSITION_LOCATION,
    DEFAULT_SUBSCRIPTION_TAG,
    Subscription,
    SubscriptionStatus,
    bind,
    subscribe,
)
from eventwatch.subscriptions.watcher import (
    VALID_TRANSITIONS,
    Watcher,
    WatcherState,
    is_valid_transition,
)

__all__ = [
    # Configuration
    "WatchConfig",
    "create_replay_config",
    # Watcher
    "Watcher",
    "WatcherState",
    "VALID_TRANSITIONS",
    "is_valid_transition",
    # Chain
    "CallbackChain",
    "ChainContext",
    "PersistPositionAction",
    "UserActionAdapter",
    "RESERVED_CONTEXT_KEYS",
    "get_action_name",
    # Subscription
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionRegistry",
    "bind",
    "subscribe",
    "DEFAULT_POSITION_LOCATION",
    "DEFAULT_SUBSCRIPTION_TAG",
    # Error handling
    "DeliveryErrorHandler",
    "DeliveryErrorInfo",
    "DeliveryErrorKind",
    "ErrorHandlerRegistry",
    "ErrorStats",
    "ErrorCallback",
    "SyncErrorCallback",
]
