"""
eventwatch - Resumable event-log watching for Python.

This library provides:
- Queries with a small filter language over event records
- Watchers with an explicit lifecycle (bind before enable)
- Callback chains that persist the position before running user actions
- Durable, type-tagged position tokens in lock-protected files
- An in-memory event source for tests and embedding
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("eventwatch-py")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Records
from eventwatch.events.record import EventRecord
from eventwatch.exceptions import (
    ArityMismatchError,
    BatchOperationError,
    BindError,
    CallbackError,
    EventWatchError,
    InvalidLocationError,
    NotRegisteredError,
    PersistenceError,
    PositionStoreIOError,
    QueryError,
    TypeMismatchError,
    WatcherStateError,
)

# Observability
from eventwatch.observability import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    Tracer,
    create_tracer,
)

# Positions
from eventwatch.positions import (
    BatchItemResult,
    BatchResult,
    FilePositionStore,
    InMemoryPositionStore,
    PositionStore,
    PositionToken,
    resolve_location,
)

# Queries
from eventwatch.query import (
    AddressingMode,
    EventFilter,
    FilterStats,
    FilterSyntaxError,
    Query,
    new_query,
    parse_filter,
)

# Event sources
from eventwatch.sources import EventSource, InMemoryEventSource, SourceBinding

# Watchers and subscriptions
from eventwatch.subscriptions import (
    DEFAULT_POSITION_LOCATION,
    DEFAULT_SUBSCRIPTION_TAG,
    CallbackChain,
    ChainContext,
    DeliveryErrorInfo,
    DeliveryErrorKind,
    ErrorHandlerRegistry,
    Subscription,
    SubscriptionRegistry,
    SubscriptionStatus,
    WatchConfig,
    Watcher,
    WatcherState,
    bind,
    subscribe,
)

__all__ = [
    "__version__",
    # Records
    "EventRecord",
    # Exceptions
    "EventWatchError",
    "InvalidLocationError",
    "ArityMismatchError",
    "TypeMismatchError",
    "PositionStoreIOError",
    "BatchOperationError",
    "QueryError",
    "WatcherStateError",
    "NotRegisteredError",
    "BindError",
    "CallbackError",
    "PersistenceError",
    # Positions
    "PositionToken",
    "PositionStore",
    "FilePositionStore",
    "InMemoryPositionStore",
    "BatchResult",
    "BatchItemResult",
    "resolve_location",
    # Queries
    "Query",
    "AddressingMode",
    "new_query",
    "EventFilter",
    "FilterStats",
    "FilterSyntaxError",
    "parse_filter",
    # Event sources
    "EventSource",
    "SourceBinding",
    "InMemoryEventSource",
    # Watchers and subscriptions
    "WatchConfig",
    "Watcher",
    "WatcherState",
    "CallbackChain",
    "ChainContext",
    "Subscription",
    "SubscriptionStatus",
    "SubscriptionRegistry",
    "bind",
    "subscribe",
    "DEFAULT_POSITION_LOCATION",
    "DEFAULT_SUBSCRIPTION_TAG",
    "DeliveryErrorInfo",
    "DeliveryErrorKind",
    "ErrorHandlerRegistry",
    # Observability
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "MockTracer",
    "create_tracer",
]
