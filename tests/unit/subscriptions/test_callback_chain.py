"""
Unit tests for the callback chain.

Tests cover:
- ChainContext read-only access
- UserActionAdapter normalization
- Persistence before user actions
- Error isolation (persist and user action failures)
- Serialized dispatch and in-flight tracking
- Tracing spans
"""

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from eventwatch.events.record import EventRecord
from eventwatch.exceptions import CallbackError, PersistenceError, PositionStoreIOError
from eventwatch.observability import MockTracer
from eventwatch.positions.store import InMemoryPositionStore
from eventwatch.positions.token import PositionToken
from eventwatch.query.definition import Query
from eventwatch.subscriptions.chain import (
    CallbackChain,
    ChainContext,
    PersistPositionAction,
    UserActionAdapter,
    get_action_name,
)
from eventwatch.subscriptions.error_handling import DeliveryErrorHandler, DeliveryErrorKind


class FailingStore(InMemoryPositionStore):
    """Store whose writes always fail."""

    def _write(self, path: Path, data: bytes) -> None:
        raise PositionStoreIOError(str(path), "save", "disk full")


class RecordingAction:
    """Action object with an async handle() method."""

    def __init__(self, log: list[str], label: str) -> None:
        self.log = log
        self.label = label

    async def handle(self, record: EventRecord, context: ChainContext) -> None:
        self.log.append(f"{self.label}:{record.record_sequence}")


def build_chain(
    query: Query,
    store: InMemoryPositionStore,
    workdir: Path,
    actions: list,
    *,
    extras: dict | None = None,
    tracer: MockTracer | None = None,
) -> CallbackChain:
    location = workdir / "app.pos"
    context = ChainContext(
        position_store_location=str(location),
        subscription_tag="test",
        extras=extras or {},
    )
    return CallbackChain(
        query,
        PersistPositionAction(query, store, location),
        [UserActionAdapter(a) for a in actions],
        context,
        DeliveryErrorHandler("test"),
        tracer=tracer,
        enable_tracing=False,
    )


class TestChainContext:
    """Tests for the read-only context."""

    def test_reserved_and_extra_keys(self):
        context = ChainContext("/tmp/app.pos", "audit", {"team": "ops"})

        assert context["position_store_location"] == "/tmp/app.pos"
        assert context["subscription_tag"] == "audit"
        assert context["team"] == "ops"
        assert "team" in context
        assert context.get("missing", 5) == 5
        assert context.to_dict() == {
            "team": "ops",
            "position_store_location": "/tmp/app.pos",
            "subscription_tag": "audit",
        }

    def test_extras_are_read_only(self):
        source = {"team": "ops"}
        context = ChainContext("/tmp/app.pos", "audit", source)

        with pytest.raises(TypeError):
            context.extras["team"] = "dev"  # type: ignore[index]

        source["team"] = "dev"
        assert context["team"] == "ops"


class TestUserActionAdapter:
    """Tests for normalizing user actions."""

    @pytest.mark.asyncio
    async def test_sync_function(self, make_record: Callable[..., EventRecord]):
        seen: list[int] = []

        def action(record: EventRecord, context: ChainContext) -> None:
            seen.append(record.record_sequence)

        await UserActionAdapter(action).handle(make_record(3), ChainContext("/x", "t"))

        assert seen == [3]

    @pytest.mark.asyncio
    async def test_async_function(self, make_record: Callable[..., EventRecord]):
        seen: list[str] = []

        async def action(record: EventRecord, context: ChainContext) -> None:
            seen.append(context.subscription_tag)

        await UserActionAdapter(action).handle(make_record(1), ChainContext("/x", "tag"))

        assert seen == ["tag"]

    @pytest.mark.asyncio
    async def test_object_with_handle(self, make_record: Callable[..., EventRecord]):
        log: list[str] = []
        adapter = UserActionAdapter(RecordingAction(log, "a"))

        await adapter.handle(make_record(2), ChainContext("/x", "t"))

        assert log == ["a:2"]
        assert adapter.name == "RecordingAction"

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError, match="callable"):
            UserActionAdapter(42)

    def test_action_names(self):
        def notify(record, context):
            pass

        assert get_action_name(notify).endswith("notify")
        assert get_action_name(RecordingAction([], "x")) == "RecordingAction"


class TestDispatch:
    """Tests for CallbackChain.dispatch()."""

    @pytest.mark.asyncio
    async def test_persists_before_user_actions(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        """Test that the position is stored by the time the first action runs."""
        observed: list[int | None] = []

        def action(record: EventRecord, context: ChainContext) -> None:
            token = memory_store.load(context.position_store_location)
            observed.append(token.record_sequence if token else None)

        chain = build_chain(query, memory_store, workdir, [action])

        await chain.dispatch(make_record(7))

        assert observed == [7]
        assert chain.last_persisted.record_sequence == 7
        assert chain.last_persisted.query_key == query.key
        assert chain.events_delivered == 1

    @pytest.mark.asyncio
    async def test_actions_run_in_order(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        log: list[str] = []
        chain = build_chain(
            query,
            memory_store,
            workdir,
            [RecordingAction(log, "first"), RecordingAction(log, "second")],
        )

        await chain.dispatch(make_record(1))
        await chain.dispatch(make_record(2))

        assert log == ["first:1", "second:1", "first:2", "second:2"]
        assert chain.actions[0].name == "persist_position"

    @pytest.mark.asyncio
    async def test_context_passed_to_actions(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        seen: list[dict] = []

        def action(record: EventRecord, context: ChainContext) -> None:
            seen.append(context.to_dict())

        chain = build_chain(query, memory_store, workdir, [action], extras={"team": "ops"})

        await chain.dispatch(make_record(1))

        assert seen == [
            {
                "team": "ops",
                "position_store_location": str(workdir / "app.pos"),
                "subscription_tag": "test",
            }
        ]

    @pytest.mark.asyncio
    async def test_failing_action_does_not_block_others(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        """Test that a raising action is reported and later actions still run."""
        log: list[str] = []

        def broken(record: EventRecord, context: ChainContext) -> None:
            raise ValueError("bad payload")

        chain = build_chain(query, memory_store, workdir, [broken, RecordingAction(log, "after")])

        await chain.dispatch(make_record(4))

        assert log == ["after:4"]
        assert memory_store.load("./app.pos").record_sequence == 4
        errors = chain.error_handler.recent_errors
        assert len(errors) == 1
        assert errors[0].kind == DeliveryErrorKind.CALLBACK
        assert errors[0].error_type == "ValueError"
        assert isinstance(errors[0].error, CallbackError)
        assert errors[0].error.record.record_sequence == 4

    @pytest.mark.asyncio
    async def test_persist_failure_reported_and_actions_still_run(
        self,
        query: Query,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        """Test that a failed save is reported and user actions still run."""
        log: list[str] = []
        chain = build_chain(
            query,
            FailingStore(working_dir=workdir, enable_tracing=False),
            workdir,
            [RecordingAction(log, "a")],
        )

        await chain.dispatch(make_record(5))

        assert log == ["a:5"]
        assert chain.last_persisted is None
        errors = chain.error_handler.recent_errors
        assert [e.kind for e in errors] == [DeliveryErrorKind.PERSISTENCE]
        assert isinstance(errors[0].error, PersistenceError)
        assert isinstance(errors[0].error.__cause__, PositionStoreIOError)
        assert errors[0].location == str(workdir / "app.pos")

    @pytest.mark.asyncio
    async def test_dispatch_is_serialized(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        """Test that concurrent dispatch calls never interleave."""
        log: list[str] = []

        async def slow(record: EventRecord, context: ChainContext) -> None:
            log.append(f"start:{record.record_sequence}")
            await asyncio.sleep(0.01)
            log.append(f"end:{record.record_sequence}")

        chain = build_chain(query, memory_store, workdir, [slow])

        await asyncio.gather(chain.dispatch(make_record(1)), chain.dispatch(make_record(2)))

        assert log == ["start:1", "end:1", "start:2", "end:2"]

    @pytest.mark.asyncio
    async def test_in_flight_tracking(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        started = asyncio.Event()
        release = asyncio.Event()

        async def blocking(record: EventRecord, context: ChainContext) -> None:
            started.set()
            await release.wait()

        chain = build_chain(query, memory_store, workdir, [blocking])
        task = asyncio.create_task(chain.dispatch(make_record(8)))
        await started.wait()

        assert chain.in_flight_sequence == 8
        assert chain.in_flight_seconds is not None

        release.set()
        await task

        assert chain.in_flight_sequence is None
        assert chain.in_flight_seconds is None
        assert chain.last_delivered_at is not None


class TestChainTracing:
    """Tests for chain spans."""

    @pytest.mark.asyncio
    async def test_spans(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        tracer = MockTracer()
        chain = build_chain(
            query, memory_store, workdir, [RecordingAction([], "a")], tracer=tracer
        )

        await chain.dispatch(make_record(1))

        assert tracer.span_names == [
            "eventwatch.chain.dispatch",
            "eventwatch.chain.persist",
            "eventwatch.chain.action",
        ]
        dispatch_attributes = tracer.spans[0][1]
        assert dispatch_attributes["eventwatch.subscription.tag"] == "test"
        assert dispatch_attributes["eventwatch.chain.action_count"] == 2


class TestPersistPositionAction:
    """Tests for the persistence action."""

    @pytest.mark.asyncio
    async def test_returns_saved_token(
        self,
        query: Query,
        memory_store: InMemoryPositionStore,
        workdir: Path,
        make_record: Callable[..., EventRecord],
    ):
        action = PersistPositionAction(query, memory_store, workdir / "app.pos")

        token = await action(make_record(3))

        assert isinstance(token, PositionToken)
        assert memory_store.load(workdir / "app.pos") == token
