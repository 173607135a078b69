"""
Error reporting for record delivery.

Failures inside a callback chain never propagate into the event source.
Instead they are reported through this module:
- Classification into callback (user action) and persistence failures
- Error callbacks/hooks for monitoring and alerting
- Error statistics and a bounded buffer of recent errors per subscription
"""

import asyncio
import logging
import traceback
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from eventwatch.exceptions import CallbackError, PersistenceError

logger = logging.getLogger(__name__)


# =============================================================================
# Error Context and Tracking
# =============================================================================


class DeliveryErrorKind(Enum):
    """Where in the callback chain a failure happened."""

    CALLBACK = "callback"
    """A user action raised; the record's position was still saved."""

    PERSISTENCE = "persistence"
    """Saving the record's position failed; that position update is lost."""


@dataclass
class DeliveryErrorInfo:
    """
    Detailed information about a delivery error.

    Captures the record, the failing step and the cause so monitoring code
    never needs the exception object itself.
    """

    kind: DeliveryErrorKind
    subscription_tag: str
    source_identifier: str
    record_id: str
    record_sequence: int
    error_type: str
    error_message: str
    error_stacktrace: str
    action_name: str | None = None
    location: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    error: CallbackError | PersistenceError | None = field(default=None, repr=False)

    @classmethod
    def from_error(
        cls,
        error: CallbackError | PersistenceError,
        subscription_tag: str,
    ) -> "DeliveryErrorInfo":
        """Build error info from a wrapped delivery error."""
        cause = error.cause
        stacktrace = "".join(traceback.format_exception(type(cause), cause, cause.__traceback__))
        if isinstance(error, CallbackError):
            kind = DeliveryErrorKind.CALLBACK
            action_name: str | None = error.action_name
            location: str | None = None
        else:
            kind = DeliveryErrorKind.PERSISTENCE
            action_name = None
            location = error.location
        return cls(
            kind=kind,
            subscription_tag=subscription_tag,
            source_identifier=error.record.source_identifier,
            record_id=error.record.id,
            record_sequence=error.record.record_sequence,
            error_type=type(cause).__name__,
            error_message=str(cause),
            error_stacktrace=stacktrace,
            action_name=action_name,
            location=location,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind.value,
            "subscription_tag": self.subscription_tag,
            "source_identifier": self.source_identifier,
            "record_id": self.record_id,
            "record_sequence": self.record_sequence,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "error_stacktrace": self.error_stacktrace,
            "action_name": self.action_name,
            "location": self.location,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ErrorStats:
    """
    Aggregate error statistics for a subscription.

    Tracks error patterns for health monitoring.
    """

    total_errors: int = 0
    callback_errors: int = 0
    persistence_errors: int = 0
    errors_by_type: dict[str, int] = field(default_factory=dict)
    errors_by_action: dict[str, int] = field(default_factory=dict)
    first_error_at: datetime | None = None
    last_error_at: datetime | None = None

    def record_error(self, error_info: DeliveryErrorInfo) -> None:
        """
        Record an error in statistics.

        Args:
            error_info: The error information to record
        """
        self.total_errors += 1

        if error_info.kind == DeliveryErrorKind.CALLBACK:
            self.callback_errors += 1
            if error_info.action_name:
                self.errors_by_action[error_info.action_name] = (
                    self.errors_by_action.get(error_info.action_name, 0) + 1
                )
        else:
            self.persistence_errors += 1

        self.errors_by_type[error_info.error_type] = (
            self.errors_by_type.get(error_info.error_type, 0) + 1
        )

        if self.first_error_at is None:
            self.first_error_at = error_info.timestamp
        self.last_error_at = error_info.timestamp

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "total_errors": self.total_errors,
            "callback_errors": self.callback_errors,
            "persistence_errors": self.persistence_errors,
            "errors_by_type": dict(self.errors_by_type),
            "errors_by_action": dict(self.errors_by_action),
            "first_error_at": (self.first_error_at.isoformat() if self.first_error_at else None),
            "last_error_at": (self.last_error_at.isoformat() if self.last_error_at else None),
        }


# =============================================================================
# Error Callbacks and Handlers
# =============================================================================


# Type alias for error callbacks
ErrorCallback = Callable[[DeliveryErrorInfo], Awaitable[None]]
"""Async callback invoked when a delivery error occurs."""

SyncErrorCallback = Callable[[DeliveryErrorInfo], None]
"""Sync callback invoked when a delivery error occurs."""


class ErrorHandlerRegistry:
    """
    Registry for error callbacks.

    Allows registering multiple callbacks that will be invoked when
    delivery errors occur. One registry may be shared by many
    subscriptions.

    Example:
        >>> registry = ErrorHandlerRegistry()
        >>> async def alert_on_lost_position(error: DeliveryErrorInfo):
        ...     await send_alert(f"position not saved: {error.error_message}")
        >>> registry.register_for_kind(DeliveryErrorKind.PERSISTENCE, alert_on_lost_position)
    """

    def __init__(self) -> None:
        """Initialize the error handler registry."""
        self._callbacks: list[ErrorCallback] = []
        self._sync_callbacks: list[SyncErrorCallback] = []
        self._kind_callbacks: dict[DeliveryErrorKind, list[ErrorCallback]] = {}

    def register(self, callback: ErrorCallback) -> None:
        """
        Register a callback for all errors.

        Args:
            callback: Async function to call on error
        """
        self._callbacks.append(callback)

    def register_sync(self, callback: SyncErrorCallback) -> None:
        """
        Register a synchronous callback for all errors.

        Args:
            callback: Sync function to call on error
        """
        self._sync_callbacks.append(callback)

    def register_for_kind(
        self,
        kind: DeliveryErrorKind,
        callback: ErrorCallback,
    ) -> None:
        """
        Register a callback for errors of a specific kind.

        Args:
            kind: The error kind to filter on
            callback: Async function to call for matching errors
        """
        self._kind_callbacks.setdefault(kind, []).append(callback)

    @property
    def callback_count(self) -> int:
        return (
            len(self._callbacks)
            + len(self._sync_callbacks)
            + sum(len(cbs) for cbs in self._kind_callbacks.values())
        )

    async def notify(self, error_info: DeliveryErrorInfo) -> None:
        """
        Notify all registered callbacks about an error.

        Invokes callbacks in order:
        1. Sync callbacks
        2. General async callbacks
        3. Kind-specific callbacks

        Errors in callbacks are logged but don't prevent other callbacks.

        Args:
            error_info: The error information to broadcast
        """
        for sync_cb in self._sync_callbacks:
            try:
                sync_cb(error_info)
            except Exception as e:
                logger.error(
                    "Sync error callback failed",
                    exc_info=True,
                    extra={
                        "error": str(e),
                        "callback": getattr(sync_cb, "__name__", repr(sync_cb)),
                        "error_info": error_info.to_dict(),
                    },
                )

        for async_cb in self._callbacks:
            try:
                await async_cb(error_info)
            except Exception as e:
                logger.error(
                    "Error callback failed",
                    exc_info=True,
                    extra={
                        "error": str(e),
                        "callback": getattr(async_cb, "__name__", repr(async_cb)),
                        "error_info": error_info.to_dict(),
                    },
                )

        for kind_cb in self._kind_callbacks.get(error_info.kind, []):
            try:
                await kind_cb(error_info)
            except Exception as e:
                logger.error(
                    "Kind-specific error callback failed",
                    exc_info=True,
                    extra={
                        "error": str(e),
                        "callback": getattr(kind_cb, "__name__", repr(kind_cb)),
                        "kind": error_info.kind.value,
                    },
                )

    def clear(self) -> None:
        """Remove all registered callbacks."""
        self._callbacks.clear()
        self._sync_callbacks.clear()
        self._kind_callbacks.clear()


class DeliveryErrorHandler:
    """
    Error handler for one subscription's callback chain.

    Logs each delivery error, records it in statistics and the bounded
    recent-error buffer, and notifies the error callback registry.

    Example:
        >>> handler = DeliveryErrorHandler("audit", registry=registry)
        >>> info = await handler.handle(CallbackError(record, "notify", cause))
        >>> handler.stats.callback_errors
        1
    """

    def __init__(
        self,
        subscription_tag: str,
        registry: ErrorHandlerRegistry | None = None,
        max_recent_errors: int = 100,
    ) -> None:
        """
        Initialize the delivery error handler.

        Args:
            subscription_tag: Tag of the subscription this handler is for
            registry: Callback registry to notify (a private one by default)
            max_recent_errors: Capacity of the recent-error buffer
        """
        self.subscription_tag = subscription_tag
        self._registry = registry or ErrorHandlerRegistry()
        self._stats = ErrorStats()
        self._recent_errors: deque[DeliveryErrorInfo] = deque(maxlen=max_recent_errors)
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> ErrorHandlerRegistry:
        return self._registry

    async def handle(self, error: CallbackError | PersistenceError) -> DeliveryErrorInfo:
        """
        Report a delivery error.

        Args:
            error: The wrapped failure

        Returns:
            DeliveryErrorInfo describing the failure
        """
        error_info = DeliveryErrorInfo.from_error(error, self.subscription_tag)
        self._log_error(error_info)

        async with self._lock:
            self._stats.record_error(error_info)
            self._recent_errors.append(error_info)

        await self._registry.notify(error_info)
        return error_info

    def _log_error(self, error_info: DeliveryErrorInfo) -> None:
        """Log the error; lost positions are logged at error level."""
        extra = {
            "subscription_tag": self.subscription_tag,
            "source_identifier": error_info.source_identifier,
            "record_id": error_info.record_id,
            "record_sequence": error_info.record_sequence,
            "error_type": error_info.error_type,
            "kind": error_info.kind.value,
            "action_name": error_info.action_name,
            "location": error_info.location,
            "error_message": error_info.error_message,
        }
        exc_info = error_info.error.cause if error_info.error is not None else None

        if error_info.kind == DeliveryErrorKind.PERSISTENCE:
            logger.error(
                "Position was not saved, record will not be redelivered",
                exc_info=exc_info,
                extra=extra,
            )
        else:
            logger.warning(
                "User action failed",
                exc_info=exc_info,
                extra=extra,
            )

    @property
    def stats(self) -> ErrorStats:
        return self._stats

    @property
    def recent_errors(self) -> list[DeliveryErrorInfo]:
        """Most recent errors, oldest first."""
        return list(self._recent_errors)

    @property
    def total_errors(self) -> int:
        return self._stats.total_errors

    async def clear_stats(self) -> None:
        """Reset statistics and the recent-error buffer."""
        async with self._lock:
            self._stats = ErrorStats()
            self._recent_errors.clear()


__all__ = [
    "DeliveryErrorKind",
    "DeliveryErrorInfo",
    "ErrorStats",
    "ErrorCallback",
    "SyncErrorCallback",
    "ErrorHandlerRegistry",
    "DeliveryErrorHandler",
]
