"""
Configuration for watchers and subscriptions.

This module provides:
- WatchConfig: Configuration shared by a watcher, its chain and its store
- StartFrom: Type alias for where a watcher without a token starts
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from eventwatch.sources.interface import StartFrom

_START_FROM_VALUES = ("end", "beginning")


@dataclass(frozen=True)
class WatchConfig:
    """
    Configuration for a watch subscription.

    Attributes:
        start_from: Where to start when there is no position token
            - "end": Only records appended after the watcher is enabled (default)
            - "beginning": Every record still in the log
        lock_timeout: Seconds to wait for a position file's lock; -1 waits
            forever (default)
        max_recent_errors: Size of the subscription's recent-error buffer
        enable_tracing: Emit OpenTelemetry spans when OpenTelemetry is installed
        working_dir: Directory relative-marked store locations resolve
            against; None reads the process working directory when the
            store is used

    Example:
        >>> config = WatchConfig(
        ...     start_from="beginning",
        ...     lock_timeout=5.0,
        ...     working_dir="/var/lib/myapp",
        ... )
    """

    # Starting position
    start_from: StartFrom = "end"

    # Position store
    lock_timeout: float = -1
    working_dir: str | os.PathLike[str] | None = None

    # Error tracking
    max_recent_errors: int = 100

    # Observability
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.start_from not in _START_FROM_VALUES:
            raise ValueError(
                f"start_from must be 'end' or 'beginning', got {self.start_from!r}. "
                "A persisted position token always takes precedence; seed the watcher "
                "with Watcher.resume() to continue from one."
            )

        if self.lock_timeout != -1 and self.lock_timeout < 0:
            raise ValueError(
                f"lock_timeout must be -1 (wait forever) or >= 0, got {self.lock_timeout}. "
                "Use a value like 5.0 seconds to fail fast on a stuck lock."
            )

        if self.max_recent_errors < 0:
            raise ValueError(
                f"max_recent_errors must be >= 0, got {self.max_recent_errors}. "
                "Use 100 (default) or 0 to disable the recent-error buffer."
            )

        if self.working_dir is not None and not os.path.isabs(os.fspath(self.working_dir)):
            raise ValueError(
                f"working_dir must be an absolute path, got {os.fspath(self.working_dir)!r}. "
                "Pass e.g. os.getcwd() explicitly if the process directory is intended."
            )


def create_replay_config(**overrides: object) -> WatchConfig:
    """
    Create a configuration that replays the whole log on first start.

    Args:
        **overrides: Any other WatchConfig field

    Returns:
        WatchConfig with start_from="beginning"
    """
    return WatchConfig(start_from="beginning", **overrides)  # type: ignore[arg-type]


__all__ = ["WatchConfig", "StartFrom", "create_replay_config"]
