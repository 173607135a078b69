"""
Subscription registry for lookup and unregistration by tag.

Example:
    >>> registry = SubscriptionRegistry()
    >>> await registry.register(subscription)
    >>> sub = registry.get("audit")
    >>> await registry.unregister("audit")
"""

import asyncio
import logging
from collections.abc import ItemsView, Iterator

from eventwatch.exceptions import BindError
from eventwatch.subscriptions.subscription import Subscription, SubscriptionStatus

logger = logging.getLogger(__name__)


class SubscriptionRegistry:
    """
    Registry of subscriptions keyed by subscription tag.

    Handles:
    - Registration, rejecting duplicate tags
    - Unregistration, which disposes the subscription's watcher
    - Lookup by tag and iteration

    Example:
        >>> registry = SubscriptionRegistry()
        >>> subscription = await subscribe(watcher, "./app.pos", [notify],
        ...                                subscription_tag="audit", registry=registry)
        >>> registry.get_statuses()["audit"].state
        'watching'
    """

    def __init__(self) -> None:
        """Initialize the subscription registry."""
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()

    async def register(self, subscription: Subscription) -> Subscription:
        """
        Register a subscription under its tag.

        Args:
            subscription: The subscription to register

        Returns:
            The registered subscription

        Raises:
            BindError: If a subscription with this tag is already registered
        """
        tag = subscription.subscription_tag
        async with self._lock:
            existing = self._subscriptions.get(tag)
            if existing is not None and existing is not subscription:
                raise BindError(
                    subscription.source_identifier,
                    f"subscription tag {tag!r} is already registered",
                )
            self._subscriptions[tag] = subscription
            subscription._registry = self

        logger.info(
            "Subscription registered",
            extra={
                "subscription_tag": tag,
                "source_identifier": subscription.source_identifier,
            },
        )
        return subscription

    async def unregister(self, tag: str) -> Subscription | None:
        """
        Unregister a subscription by tag and dispose its watcher.

        Args:
            tag: The subscription tag to remove

        Returns:
            The removed Subscription, or None if not found
        """
        async with self._lock:
            subscription = self._subscriptions.pop(tag, None)
        if subscription is None:
            return None
        subscription._registry = None
        await subscription.unregister()
        return subscription

    async def unregister_all(self) -> list[Subscription]:
        """Unregister every subscription, in registration order."""
        async with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription._registry = None
            await subscription.unregister()
        return subscriptions

    async def discard(self, subscription: Subscription) -> None:
        """Drop a subscription that unregistered itself."""
        async with self._lock:
            if self._subscriptions.get(subscription.subscription_tag) is subscription:
                del self._subscriptions[subscription.subscription_tag]

    def get(self, tag: str) -> Subscription | None:
        """
        Get a subscription by tag.

        Args:
            tag: The subscription tag

        Returns:
            The Subscription, or None if not found
        """
        return self._subscriptions.get(tag)

    def get_all(self) -> list[Subscription]:
        """Get all registered subscriptions."""
        return list(self._subscriptions.values())

    def get_tags(self) -> list[str]:
        """Get all registered subscription tags."""
        return list(self._subscriptions.keys())

    def get_statuses(self) -> dict[str, SubscriptionStatus]:
        """
        Get status snapshots of all subscriptions.

        Returns:
            Dictionary of subscription tag to SubscriptionStatus
        """
        return {tag: sub.get_status() for tag, sub in self._subscriptions.items()}

    def contains(self, tag: str) -> bool:
        """Check if a subscription with the given tag exists."""
        return tag in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)

    def __iter__(self) -> "Iterator[Subscription]":
        return iter(self._subscriptions.values())

    def items(self) -> "ItemsView[str, Subscription]":
        """Iterate over (tag, subscription) pairs."""
        return self._subscriptions.items()


__all__ = ["SubscriptionRegistry"]
