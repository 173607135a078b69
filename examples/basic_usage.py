"""
Basic Usage Example

This example demonstrates the fundamental concepts of resumable watching:
- Building a query with a filter expression
- Binding a callback chain to a watcher
- Persisting the position before user actions run
- Resuming after a restart from the persisted position

Run with: python examples/basic_usage.py
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from eventwatch import (
    ChainContext,
    DeliveryErrorInfo,
    ErrorHandlerRegistry,
    EventRecord,
    FilePositionStore,
    InMemoryEventSource,
    SubscriptionRegistry,
    WatchConfig,
    Watcher,
    new_query,
    subscribe,
)

# =============================================================================
# Step 1: Define user actions
# =============================================================================
# Actions run after the record's position has been saved. They receive the
# record and a read-only context.


def print_record(record: EventRecord, context: ChainContext) -> None:
    print(
        f"  [{context['team']}] #{record.record_sequence} "
        f"{record.machine_origin}: {record.payload.get('message')}"
    )


class PagerAction:
    """Action object with an async handle() method."""

    def __init__(self) -> None:
        self.pages: list[int] = []

    async def handle(self, record: EventRecord, context: ChainContext) -> None:
        if record.payload.get("code", 0) >= 500:
            self.pages.append(record.record_sequence)


async def report_error(error: DeliveryErrorInfo) -> None:
    print(f"  ! {error.kind.value} error on record {error.record_sequence}: {error.error_message}")


# =============================================================================
# Step 2: Run, stop, and resume
# =============================================================================


async def run_once(
    source: InMemoryEventSource,
    store: FilePositionStore,
    config: WatchConfig,
    expected: int,
) -> list[int]:
    query = new_query("Application", "payload.level = error or payload.code >= 500")
    pager = PagerAction()
    errors = ErrorHandlerRegistry()
    errors.register(report_error)
    registry = SubscriptionRegistry()

    watcher = await Watcher.resume(query, source, store, "./app.pos", config=config)
    print(f"Starting after {watcher.starting_position or 'nothing (fresh start)'}")
    subscription = await subscribe(
        watcher,
        "./app.pos",
        [print_record, pager],
        {"team": "ops"},
        subscription_tag="app-errors",
        store=store,
        error_registry=errors,
        registry=registry,
    )

    while subscription.chain.events_delivered < expected:
        await asyncio.sleep(0.01)

    print(f"Status: {subscription.get_status().to_dict()}")
    await registry.unregister_all()
    return pager.pages


async def main() -> None:
    logging.basicConfig(level=logging.WARNING)

    with tempfile.TemporaryDirectory() as state_dir:
        source = InMemoryEventSource(enable_tracing=False)
        store = FilePositionStore(working_dir=Path(state_dir), lock_timeout=5.0)
        config = WatchConfig(start_from="beginning", working_dir=state_dir, lock_timeout=5.0)

        source.append(
            "Application",
            {"level": "info", "message": "started"},
            machine_origin="web-01",
        )
        source.append(
            "Application",
            {"level": "error", "code": 503, "message": "upstream timeout"},
            machine_origin="web-01",
        )
        source.append(
            "Application",
            {"level": "error", "message": "retry failed"},
            machine_origin="web-02",
        )

        print("First run:")
        pages = await run_once(source, store, config, expected=2)
        print(f"Paged for records {pages}")

        # Appended while nothing is watching
        source.append(
            "Application",
            {"level": "warning", "code": 500, "message": "slow disk"},
            machine_origin="db-01",
        )

        print("\nSecond run (resumed):")
        pages = await run_once(source, store, config, expected=1)
        print(f"Paged for records {pages}")


if __name__ == "__main__":
    asyncio.run(main())
